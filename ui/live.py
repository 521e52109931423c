# ui/live.py
import argparse
import logging
import sys
import threading
import time
from pathlib import Path
from datetime import datetime


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from hrvxo.config import load_config, hrv_window
from hrvxo.hrv.processor import HrvProcessor
from hrvxo.io.hr_source import available_sources, create_source, load_rr_csv
from hrvxo.session.commands import COMMANDS, load_script, merge_timeline, parse_command
from hrvxo.session.driver import SessionDriver
from hrvxo.session.events import DeviceDisconnectedEvent, EndSessionEvent, StartSessionEvent, rr_batch
from hrvxo.session.state import SessionPhase
from hrvxo.store.results import ResultStore


STATUS_EVERY_SEC = 10.0


def _now_ms() -> int:
    return int(time.time() * 1000)


def build_parser():
    p = argparse.ArgumentParser(
        prog="HrvXo Live",
        description="Measure per-song cardiac coherence while you listen."
    )
    p.add_argument("--config", default="configs/defaults.yaml", help="Path to defaults.yaml.")
    p.add_argument("--source", type=str, help="RR source: polar | replay.")
    p.add_argument("--device", type=str, help="BLE name fragment or address of the strap.")
    p.add_argument("--rr-csv", type=str, help="Recorded RR stream for the replay source.")
    p.add_argument("--script", type=str,
                   help="Timestamped command script; with --rr-csv runs the whole session offline.")
    p.add_argument("--results-csv", type=str, help="Where valid song results are appended.")
    p.add_argument("--require-selection", action="store_true",
                   help="Ignore playback until a song has been selected.")
    p.add_argument("--log-level", choices=["INFO", "DEBUG"], default="INFO")
    return p


def _resolve(args):
    cfg = load_config(args.config)
    src = cfg["source"]
    if args.source: src["name"] = args.source
    if args.device: src["device"] = args.device
    if args.rr_csv: src["rr_csv"] = args.rr_csv
    if args.results_csv: cfg["outputs"]["results_csv"] = args.results_csv
    if args.require_selection: cfg["session"]["require_selection"] = True
    return cfg


def _print_phase(phase, manager):
    if phase is SessionPhase.ACTIVE_SETTLING and manager.current_song:
        print(f"[INFO] Now measuring: {manager.current_song.track.label} "
              f"(settling {manager.settle_countdown_sec}s)")
    elif phase is SessionPhase.ACTIVE_RECORDING:
        print("[INFO] Settled. Recording coherence ...")
    elif phase is SessionPhase.ACTIVE_WAITING_PLAYBACK and manager.pending_song:
        print(f"[INFO] Waiting for playback of {manager.pending_song.label}")
    else:
        print(f"[INFO] Phase: {phase.value}")


def _print_results(results):
    if not results:
        print("[WARN] No songs were measured this session.")
        return
    print("\n=== Session Results ===")
    for i, r in enumerate(results, start=1):
        flags = ("valid" if r.is_valid else "too short") + (", movement" if r.movement_detected else "")
        print(f"{i:2d}. {r.track.label:40s} coherence={r.avg_coherence:.3f} "
              f"rmssd={r.avg_rmssd:.1f}ms hr={r.mean_hr:.1f}bpm "
              f"listened={r.duration_listened_sec}s  [{flags}]")


def _stdin_loop(driver: SessionDriver):
    print(f"[INFO] Commands: {', '.join(COMMANDS)}, status. 'end' finishes the session.")
    for line in sys.stdin:
        cmd = line.strip().lower()
        if cmd == "status":
            m = driver.manager
            metrics = driver.latest_metrics
            mtxt = (f"coherence={metrics.coherence_score:.3f} rmssd={metrics.rmssd:.1f} hr={metrics.mean_hr:.1f}"
                    if metrics else "no HRV snapshot yet")
            print(f"[INFO] phase={m.phase.value} settle={m.settle_countdown_sec}s "
                  f"recording={m.recording_duration_sec}s | {mtxt}")
            continue
        ev = parse_command(line, _now_ms())
        if ev is None:
            if cmd:
                print(f"[WARN] Unknown command: {line.strip()}")
            continue
        driver.post(ev)
        if isinstance(ev, EndSessionEvent):
            return
    # stdin closed
    driver.post(EndSessionEvent(_now_ms()))


def open_source(src_cfg):
    """Build the configured RR source for a wall-clock (interactive) session."""
    name = src_cfg.get("name", "polar")
    if name == "polar":
        import hrvxo.io.polar_bridge  # noqa: F401  registers the BLE source
    if name != "replay":
        return create_source(name, device=src_cfg.get("device"))
    if not src_cfg.get("realtime", True):
        # typed commands carry wall-clock stamps; recorded stamps would never line up
        print("[WARN] realtime: false needs --script; replaying in real time instead.")
    return create_source(name, rr_csv=src_cfg.get("rr_csv"), realtime=True)


def run_offline(driver: SessionDriver, rr_csv: str, script_path: str):
    """Replay a recorded RR stream against a command script, no threads involved."""
    events = merge_timeline(load_rr_csv(rr_csv), load_script(script_path))
    if not any(isinstance(e, StartSessionEvent) for e in events):
        first_ts = min((getattr(e, "timestamp_ms", 0) for e in events), default=0)
        driver.post(StartSessionEvent(first_ts))
    last_ts = 0
    for e in events:
        driver.post(e)
        last_ts = max(last_ts, getattr(e, "timestamp_ms", 0))
    driver.post(EndSessionEvent(last_ts))
    driver.drain()


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    cfg = _resolve(args)
    results_csv = Path(cfg["outputs"]["results_csv"])
    results_csv.parent.mkdir(parents=True, exist_ok=True)

    driver = SessionDriver(
        processor=HrvProcessor(hrv_window(cfg)),
        sink=ResultStore(results_csv),
        require_selection=bool(cfg["session"].get("require_selection", False)),
        stop_on_end=True,
    )
    driver.add_observer(_print_phase)

    src_cfg = cfg["source"]
    if args.script:
        if not src_cfg.get("rr_csv"):
            print("[ERROR] --script needs a recorded RR stream (--rr-csv).")
            sys.exit(2)
        try:
            run_offline(driver, src_cfg["rr_csv"], args.script)
        except (OSError, ValueError) as e:
            print(f"[ERROR] Offline replay failed: {e}")
            sys.exit(2)
        _print_results(driver.manager.results)
        print(f"[OK] Valid results appended to {results_csv}")
        return

    name = src_cfg.get("name", "polar")
    try:
        source = open_source(src_cfg)
    except (ValueError, FileNotFoundError, TypeError) as e:
        print(f"[ERROR] {e} (sources: {available_sources()})")
        sys.exit(2)

    driver.start()
    driver.post(StartSessionEvent(_now_ms()))

    print(f"[INFO] Connecting RR source '{name}' ...")
    try:
        source.connect(
            lambda rr, ts: driver.post(rr_batch(rr, ts)),
            lambda: driver.post(DeviceDisconnectedEvent(_now_ms())),
        )
    except Exception as e:
        print(f"[ERROR] Could not connect RR source: {e}")
        driver.stop()
        sys.exit(2)
    print(f"[INFO] Connected. Session started at {datetime.now():%H:%M:%S}.")

    reader = threading.Thread(target=_stdin_loop, args=(driver,), daemon=True)
    reader.start()

    try:
        last_status = time.time()
        while not driver.wait(timeout=1.0):
            m = driver.manager
            if m.phase is SessionPhase.ACTIVE_RECORDING and time.time() - last_status >= STATUS_EVERY_SEC:
                last_status = time.time()
                age = source.last_sample_age_sec() if hasattr(source, "last_sample_age_sec") else None
                atxt = f" (last beat {age:.1f}s ago)" if age is not None else ""
                print(f"[INFO] recording {m.recording_duration_sec}s{atxt}")
    except KeyboardInterrupt:
        print("\n[INFO] Interrupted; ending session.")
        driver.post(EndSessionEvent(_now_ms()))
        driver.wait(timeout=5.0)
    finally:
        # Upstream subscriptions go first so nothing lands after the end
        try:
            source.close()
        except Exception as e:
            print(f"[WARN] RR source close failed: {e}")
        driver.stop()

    if driver.error is not None:
        print(f"[ERROR] Session aborted: {driver.error}")
        sys.exit(1)
    _print_results(driver.manager.results)
    print(f"[OK] Valid results appended to {results_csv}")


if __name__ == "__main__":
    main()
