"""
Single owner loop for an HRV listening session.

Three independent producers feed a session: the RR stream from the strap
(BLE notification thread), playback detection (player/notification layer)
and the movement sensor. They, and the user's own commands, only `post()`
events onto one thread-safe queue. The driver is the sole consumer: it pops
events in arrival order and applies each one to the `HrvProcessor` and the
`SessionManager`, so phase checks and the mutations that follow them are
never interleaved.

Usage:
    driver = SessionDriver(sink=ResultStore("outputs/results.csv"))
    driver.start()                      # background owner thread
    driver.post(StartSessionEvent(now))
    source.connect(lambda rr, ts: driver.post(rr_batch(rr, ts)))
    ...
    driver.post(EndSessionEvent(now))
    driver.stop()

Tests (and simple scripts) can skip the thread and call `drain()` instead.
"""

from __future__ import annotations
import logging
import queue
import threading
from typing import Callable, List, Optional, Protocol, Sequence, Tuple

from hrvxo.hrv.processor import HrvMetrics, HrvProcessor
from hrvxo.session.events import (
    DeviceDisconnectedEvent,
    EndSessionEvent,
    MovementEvent,
    PlaybackEvent,
    PlaybackKind,
    ResetEvent,
    RrBatchEvent,
    SelectSongEvent,
    SessionEvent,
    StartSessionEvent,
)
from hrvxo.session.manager import SessionManager
from hrvxo.session.state import SessionPhase, SongSessionResult

log = logging.getLogger(__name__)

Observer = Callable[[SessionPhase, SessionManager], None]

_IDLE_PHASES = (SessionPhase.ACTIVE_NO_SONG, SessionPhase.ACTIVE_WAITING_PLAYBACK)


class ResultSink(Protocol):
    def save_session(self, results: Sequence[SongSessionResult], session_date_ms: int) -> int:
        ...


class SessionDriver:
    def __init__(
        self,
        processor: Optional[HrvProcessor] = None,
        manager: Optional[SessionManager] = None,
        sink: Optional[ResultSink] = None,
        require_selection: bool = False,
        stop_on_end: bool = False,
    ) -> None:
        self.processor = processor or HrvProcessor()
        self.manager = manager or SessionManager()
        self.sink = sink
        self.require_selection = require_selection
        self.stop_on_end = stop_on_end

        self._queue: "queue.Queue[SessionEvent]" = queue.Queue()
        self._observers: List[Observer] = []
        self._latest: Optional[HrvMetrics] = None
        self._last_track: Optional[Tuple[str, str]] = None
        self._has_selected = False
        self._error: Optional[BaseException] = None

        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    # ---------- producers (any thread) ----------
    def post(self, event: SessionEvent) -> None:
        self._queue.put(event)

    # ---------- observers ----------
    def add_observer(self, fn: Observer) -> None:
        """`fn(phase, manager)` runs on the owner thread after every phase change."""
        self._observers.append(fn)

    @property
    def latest_metrics(self) -> Optional[HrvMetrics]:
        return self._latest

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    # ---------- consumer ----------
    def drain(self) -> int:
        """Apply every queued event on the calling thread. Returns how many ran."""
        n = 0
        while True:
            try:
                event = self._queue.get_nowait()
            except queue.Empty:
                return n
            self.dispatch(event)
            n += 1

    def dispatch(self, event: SessionEvent) -> None:
        before = self.manager.phase
        self._apply(event)
        after = self.manager.phase
        if after is not before:
            for fn in list(self._observers):
                fn(after, self.manager)

    def _apply(self, event: SessionEvent) -> None:
        m = self.manager
        if isinstance(event, RrBatchEvent):
            metrics = self.processor.add_rr_intervals(event.intervals, event.timestamp_ms)
            if metrics is None:
                return
            self._latest = metrics
            if m.phase.is_measuring:
                m.record_metrics(metrics, event.timestamp_ms)
        elif isinstance(event, PlaybackEvent):
            self._apply_playback(event)
        elif isinstance(event, MovementEvent):
            # settling readings are not kept, so neither is movement
            if event.moving and m.phase is SessionPhase.ACTIVE_RECORDING:
                m.report_movement()
        elif isinstance(event, DeviceDisconnectedEvent):
            log.info("Device disconnected; clearing HRV window")
            self.processor.reset()
            self._latest = None
        elif isinstance(event, StartSessionEvent):
            was_active = m.phase.is_active
            m.start_session()
            if not was_active:
                self._last_track = None
                self._has_selected = False
        elif isinstance(event, SelectSongEvent):
            if m.phase.is_active:
                self._has_selected = True
            m.select_song(event.track, event.timestamp_ms)
        elif isinstance(event, EndSessionEvent):
            was_active = m.phase.is_active
            m.end_session(event.timestamp_ms)
            if was_active:
                self._persist(event.timestamp_ms)
                if self.stop_on_end:
                    self._stop_event.set()
        elif isinstance(event, ResetEvent):
            m.reset()
            self._last_track = None
            self._has_selected = False
        else:
            log.warning("Ignoring unknown session event %r", event)

    def _apply_playback(self, event: PlaybackEvent) -> None:
        m = self.manager
        if self.require_selection and not self._has_selected:
            log.debug("Playback %s ignored until a song is selected", event.kind.value)
            return
        if event.kind is PlaybackKind.STOPPED:
            m.on_playback_stopped(event.timestamp_ms)
            return

        key = (event.title, event.artist)
        same = key == self._last_track
        if m.phase in _IDLE_PHASES:
            if event.kind is PlaybackKind.CHANGED and same:
                return
            m.on_playback_detected(event.title, event.artist, event.timestamp_ms)
        elif m.phase.is_measuring:
            if same:
                return
            m.on_song_changed(event.title, event.artist, event.timestamp_ms)
        else:
            return
        self._last_track = key

    def _persist(self, session_date_ms: int) -> None:
        if self.sink is None:
            return
        valid = [r for r in self.manager.results if r.is_valid]
        if not valid:
            log.info("No valid songs to save for this session")
            return
        saved = self.sink.save_session(valid, session_date_ms)
        log.info("Saved %d song result(s)", saved)

    # ---------- owner thread ----------
    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="session-driver", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 2.0) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout)
        self._thread = None

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the owner loop has stopped (e.g. after stop_on_end)."""
        return self._stop_event.wait(timeout)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self, poll_interval: float = 0.2) -> None:
        while not self._stop_event.is_set():
            try:
                event = self._queue.get(timeout=poll_interval)
            except queue.Empty:
                continue
            try:
                self.dispatch(event)
            except Exception as e:
                log.exception("Session driver stopped on %r", event)
                self._error = e
                self._stop_event.set()
