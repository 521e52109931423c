# ui/cli.py
import argparse
import logging
import sys
from pathlib import Path
from datetime import datetime

import pandas as pd

# --- ensure project root on sys.path (so `import hrvxo.*` works when running from /ui) ---
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
# ----------------------------------------------------------------------------------------

from hrvxo.config import load_config
from hrvxo.store.results import FIELD_ORDER, ResultStore


# --------- small helpers ---------
def _fmt_date(ms):
    return datetime.fromtimestamp(int(ms) / 1000.0).strftime("%Y-%m-%d %H:%M")

def _fmt_song(row):
    artist = row.get("artist") or "-"
    return f"{row['title'][:36]:36s} {artist[:24]:24s}"


# --------- CLI ---------
def build_parser():
    p = argparse.ArgumentParser(
        prog="HrvXo Results",
        description="Browse and manage saved per-song coherence results."
    )
    p.add_argument("--top", type=int, metavar="N", help="List the N songs with the highest mean coherence.")
    p.add_argument("--still-only", action="store_true", help="With --top: skip songs where movement was detected.")
    p.add_argument("--sessions", action="store_true", help="List saved sessions (newest first).")
    p.add_argument("--session", type=int, metavar="DATE_MS", help="List the songs of one session.")
    p.add_argument("--stats", action="store_true", help="Overall statistics.")
    p.add_argument("--delete-session", type=int, metavar="DATE_MS", help="Delete one session's songs.")
    p.add_argument("--delete-all", action="store_true", help="Delete every saved result.")
    p.add_argument("--yes", action="store_true", help="Do not ask before deleting.")
    p.add_argument("--export", metavar="PATH", help="Write every saved song to a CSV file.")

    p.add_argument("--config", default="configs/defaults.yaml", help="Path to defaults.yaml.")
    p.add_argument("--results-csv", help="Override results CSV path.")
    p.add_argument("--log-level", choices=["INFO", "DEBUG"], default="INFO")
    return p

def _export(store, dest):
    rows = store.all_songs()
    dest = Path(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)
    pd.DataFrame(rows, columns=FIELD_ORDER).to_csv(dest, index=False)
    return len(rows)

def _confirm(prompt, assume_yes):
    if assume_yes:
        return True
    return input(f"{prompt} [y/N] ").strip().lower() in ("y", "yes")

def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    cfg = load_config(args.config)
    results_csv = Path(args.results_csv or cfg["outputs"]["results_csv"])
    store = ResultStore(results_csv)

    if not any([args.top, args.sessions, args.session, args.stats, args.delete_session, args.delete_all, args.export]):
        parser.print_help()
        sys.exit(0)

    try:
        if args.delete_all:
            if _confirm(f"Delete all results in {results_csv}?", args.yes):
                store.delete_all()
                print("[OK] All results deleted.")
            sys.exit(0)

        if args.delete_session is not None:
            if _confirm(f"Delete session {_fmt_date(args.delete_session)}?", args.yes):
                n = store.delete_session(args.delete_session)
                if n == 0:
                    print(f"[WARN] No rows for session {args.delete_session}.")
                else:
                    print(f"[OK] Deleted {n} song(s).")
            sys.exit(0)

        if args.export:
            n = _export(store, args.export)
            print(f"[OK] Exported {n} song(s) to {args.export}")

        if args.stats:
            stats = store.overall_stats()
            if stats is None:
                print("[INFO] No results saved yet.")
            else:
                print("=== HrvXo Stats ===")
                print(f"Songs measured   : {stats['total_songs']}")
                print(f"Sessions         : {stats['total_sessions']}")
                print(f"Mean coherence   : {stats['avg_coherence']:.3f}")
                print(f"Mean RMSSD (ms)  : {stats['avg_rmssd']:.1f}")
                print(f"Listening (min)  : {stats['total_listened_sec'] / 60.0:.1f}")
                best = store.all_time_best_song()
                if best: print(f"Best song        : {best['title']} - {best['artist']} ({best['avg_coherence']:.3f})")
                artist = store.top_artist_by_coherence()
                if artist: print(f"Top artist       : {artist['artist']} ({artist['avg_coherence']:.3f}, {artist['song_count']} songs)")

        if args.sessions:
            rows = store.session_summaries()
            if not rows:
                print("[INFO] No sessions saved yet.")
            for r in rows:
                print(f"[{r['session_date']}] {_fmt_date(r['session_date'])}  songs={r['song_count']:3d}  "
                      f"avg={r['avg_coherence']:.3f}  best={r['max_coherence']:.3f}")

        if args.session is not None:
            rows = store.songs_for_session(args.session)
            if not rows:
                print(f"[WARN] No songs for session {args.session}.")
            for r in rows:
                move = "  (movement)" if r["movement_detected"] else ""
                print(f"{_fmt_song(r)} coherence={r['avg_coherence']:.3f} rmssd={r['avg_rmssd']:.1f} "
                      f"hr={r['mean_hr']:.1f} {r['duration_listened_sec']}s{move}")

        if args.top:
            rows = store.top_coherence_songs(args.top, include_movement=not args.still_only)
            if not rows:
                print("[INFO] No results saved yet.")
            for i, r in enumerate(rows, start=1):
                print(f"{i:3d}. {_fmt_song(r)} coherence={r['avg_coherence']:.3f}  plays={r['times_played']}")
    except (OSError, ValueError, KeyError) as e:
        print(f"[ERROR] Could not read {results_csv}: {e}")
        sys.exit(1)

if __name__ == "__main__":
    main()
