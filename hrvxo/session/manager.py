"""
Session state machine: gates HRV measurement windows by playback state.

Phases:
  NOT_STARTED -> ACTIVE_NO_SONG -> ACTIVE_WAITING_PLAYBACK -> ACTIVE_SETTLING
  -> ACTIVE_RECORDING -> (ACTIVE_NO_SONG | ACTIVE_SETTLING) ... -> ENDED

A song is "tagged" when playback is detected. The first SETTLE_IN_MS after
tagging are excluded from measurement; only afterwards are metric readings
accumulated. When the song ends (stop, track change, session end) the
accumulator is finalized into an immutable `SongSessionResult`.

All mutating calls must come from a single writer (see `SessionDriver`).
Calls that do not apply to the current phase are silent no-ops, since the
upstream event sources can race with a user-initiated session end.
"""

from __future__ import annotations
import logging
import time
from typing import List, Optional, Tuple

from hrvxo.hrv.processor import HrvMetrics
from hrvxo.session.state import SessionPhase, SongSessionResult, TaggedSong, Track

log = logging.getLogger(__name__)

SETTLE_IN_MS = 15_000
MIN_RECORDING_SEC = 60


def _now_ms() -> int:
    return int(time.time() * 1000)

def _mean(values: List[float]) -> float:
    return float(sum(values) / len(values)) if values else 0.0


class SessionManager:

    def __init__(self) -> None:
        self._phase = SessionPhase.NOT_STARTED
        self._current: Optional[TaggedSong] = None
        self._pending: Optional[Track] = None
        self._results: List[SongSessionResult] = []
        self._settle_countdown_sec = 0
        self._recording_duration_sec = 0

    # ---------- observable state ----------
    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def current_song(self) -> Optional[TaggedSong]:
        """Copy of the song under measurement, or None."""
        return self._current.snapshot() if self._current else None

    @property
    def pending_song(self) -> Optional[Track]:
        return self._pending

    @property
    def results(self) -> Tuple[SongSessionResult, ...]:
        return tuple(self._results)

    @property
    def settle_countdown_sec(self) -> int:
        return self._settle_countdown_sec

    @property
    def recording_duration_sec(self) -> int:
        return self._recording_duration_sec

    # ---------- lifecycle ----------
    def start_session(self) -> None:
        if self._phase.is_active:
            log.debug("start_session ignored; session already active")
            return
        self._current = None
        self._pending = None
        self._results = []
        self._settle_countdown_sec = 0
        self._recording_duration_sec = 0
        self._set_phase(SessionPhase.ACTIVE_NO_SONG)

    def end_session(self, now_ms: Optional[int] = None) -> None:
        """Finalize any song in progress and stop. Results are kept."""
        if not self._phase.is_active:
            log.debug("end_session ignored in phase %s", self._phase.name)
            return
        self._finalize_current(_now_ms() if now_ms is None else now_ms)
        self._current = None
        self._pending = None
        self._set_phase(SessionPhase.ENDED)

    def reset(self) -> None:
        self._current = None
        self._pending = None
        self._results = []
        self._settle_countdown_sec = 0
        self._recording_duration_sec = 0
        self._set_phase(SessionPhase.NOT_STARTED)

    # ---------- user / playback events ----------
    def select_song(self, track: Track, now_ms: Optional[int] = None) -> None:
        """
        User picked a song; wait for the player to report it.
        A song still under measurement is finalized first.
        """
        if not self._phase.is_active:
            log.debug("select_song ignored in phase %s", self._phase.name)
            return
        if self._current is not None:
            self._finalize_current(_now_ms() if now_ms is None else now_ms)
            self._current = None
        self._pending = track
        self._set_phase(SessionPhase.ACTIVE_WAITING_PLAYBACK)

    def on_playback_detected(self, title: str, artist: str, now_ms: int) -> None:
        """
        Playback started. The pending selection (which carries the track id)
        wins over the detected metadata.
        """
        if not self._phase.is_active:
            log.debug("playback detected ignored in phase %s", self._phase.name)
            return
        track = self._pending or Track(track_id="", title=title, artist=artist or "")
        self._pending = None
        self._tag(track, now_ms)

    def on_song_changed(self, title: str, artist: str, now_ms: int,
                        resolved: Optional[Track] = None) -> None:
        """Metadata changed mid-playback. The pending slot is left alone."""
        if not self._phase.is_active:
            log.debug("song change ignored in phase %s", self._phase.name)
            return
        track = resolved or Track(track_id="", title=title, artist=artist or "")
        self._tag(track, now_ms)

    def on_playback_stopped(self, now_ms: int) -> None:
        if not self._phase.is_measuring:
            log.debug("playback stop ignored in phase %s", self._phase.name)
            return
        self._finalize_current(now_ms)
        self._current = None
        self._set_phase(SessionPhase.ACTIVE_NO_SONG)

    # ---------- measurement ----------
    def record_metrics(self, metrics: HrvMetrics, now_ms: int) -> None:
        song = self._current
        if song is None:
            return

        if self._phase is SessionPhase.ACTIVE_SETTLING:
            elapsed = now_ms - song.tagged_at_ms
            self._settle_countdown_sec = max(0, SETTLE_IN_MS - elapsed) // 1000
            if elapsed >= SETTLE_IN_MS:
                # the reading that closes the settle window is not recorded
                self._recording_duration_sec = 0
                self._set_phase(SessionPhase.ACTIVE_RECORDING)
        elif self._phase is SessionPhase.ACTIVE_RECORDING:
            song.coherence_readings.append(float(metrics.coherence_score))
            song.rmssd_readings.append(float(metrics.rmssd))
            song.hr_readings.append(float(metrics.mean_hr))
            self._recording_duration_sec = max(0, now_ms - song.tagged_at_ms - SETTLE_IN_MS) // 1000

    def report_movement(self) -> None:
        """Mark the current song as disturbed. Sticky for the song's lifetime."""
        if self._current is None:
            return
        if not self._current.movement_detected:
            log.info("Movement detected during '%s'", self._current.track.label)
        self._current.movement_detected = True

    # ---------- internals ----------
    def _set_phase(self, phase: SessionPhase) -> None:
        if phase is not self._phase:
            log.debug("Session phase %s -> %s", self._phase.name, phase.name)
        self._phase = phase

    def _tag(self, track: Track, now_ms: int) -> None:
        self._finalize_current(now_ms)
        self._current = TaggedSong(track=track, tagged_at_ms=int(now_ms))
        self._settle_countdown_sec = SETTLE_IN_MS // 1000
        self._recording_duration_sec = 0
        self._set_phase(SessionPhase.ACTIVE_SETTLING)
        log.info("Tagged '%s'; settling for %d s", track.label, SETTLE_IN_MS // 1000)

    def _finalize_current(self, now_ms: int) -> Optional[SongSessionResult]:
        song = self._current
        if song is None:
            return None

        duration_sec = max(0, now_ms - song.tagged_at_ms - SETTLE_IN_MS) // 1000
        if song.reading_count == 0 and duration_sec == 0:
            log.debug("Discarding '%s': never measured", song.track.label)
            return None

        result = SongSessionResult(
            track=song.track,
            avg_coherence=_mean(song.coherence_readings),
            avg_rmssd=_mean(song.rmssd_readings),
            mean_hr=_mean(song.hr_readings),
            duration_listened_sec=int(duration_sec),
            is_valid=duration_sec >= MIN_RECORDING_SEC,
            movement_detected=song.movement_detected,
        )
        self._results.append(result)
        log.info("Finalized '%s': %ds, coherence=%.3f, valid=%s",
                 song.track.label, result.duration_listened_sec,
                 result.avg_coherence, result.is_valid)
        return result
