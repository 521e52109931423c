"""
Rolling RR-interval buffer that turns device batches into HRV snapshots.

The processor knows nothing about sessions or playback. It is fed the raw
RR intervals (ms) reported by the strap and, once enough beats are buffered,
returns an immutable `HrvMetrics` snapshot for every qualifying batch.

Artifact handling follows the usual physiological bounds: intervals shorter
than 300 ms or longer than 2000 ms are dropped beats / double detections and
never enter the window. Malformed values are logged and skipped; a batch is
never rejected as a whole.
"""

from __future__ import annotations
import logging
import math
import time
from collections import deque
from dataclasses import dataclass
from numbers import Real
from typing import Deque, Iterable, List, Optional, Tuple

import numpy as np

from hrvxo.hrv.metrics import coherence_score, mean_hr, rmssd

log = logging.getLogger(__name__)

MIN_RR_MS = 300
MAX_RR_MS = 2000


@dataclass(frozen=True)
class HrvMetrics:
    coherence_score: float   # soft [0, 1], not clamped
    rmssd: float             # ms
    mean_hr: float           # bpm


@dataclass
class HrvWindow:
    # 64 s of beats: enough for a few cycles of the 0.04 Hz band edge
    seconds: float = 64.0
    max_intervals: int = 256
    min_intervals: int = 30
    min_rr_ms: int = MIN_RR_MS
    max_rr_ms: int = MAX_RR_MS


class HrvProcessor:
    """Stateful RR batch -> metrics transform. Single-writer; not thread-safe."""

    def __init__(self, window: Optional[HrvWindow] = None):
        self.window = window or HrvWindow()
        self._buf: Deque[Tuple[float, int]] = deque()  # (received_ms, rr_ms)
        self._span_ms: int = 0
        self._rejected_total: int = 0

    # ---------- validation ----------
    def _accept(self, value) -> Optional[int]:
        if isinstance(value, bool) or not isinstance(value, Real):
            log.warning("Discarding non-numeric RR value %r", value)
            return None
        v = float(value)
        if not math.isfinite(v):
            log.warning("Discarding non-finite RR value %r", value)
            return None
        rr = int(round(v))
        if rr < self.window.min_rr_ms or rr > self.window.max_rr_ms:
            log.debug("Discarding implausible RR interval %d ms", rr)
            return None
        return rr

    def _validate(self, batch: Iterable) -> List[int]:
        if batch is None:
            return []
        try:
            items = list(batch)
        except TypeError:
            log.warning("Discarding RR batch that is not a sequence: %r", batch)
            return []
        valid = []
        for value in items:
            rr = self._accept(value)
            if rr is None:
                self._rejected_total += 1
            else:
                valid.append(rr)
        return valid

    # ---------- window upkeep ----------
    def _prune(self, now_ms: float) -> None:
        cut = now_ms - self.window.seconds * 1000.0
        while self._buf and self._buf[0][0] < cut:
            self._span_ms -= self._buf.popleft()[1]
        limit_ms = self.window.seconds * 1000.0
        while len(self._buf) > self.window.max_intervals or (
            len(self._buf) > 1 and self._span_ms > limit_ms
        ):
            self._span_ms -= self._buf.popleft()[1]

    # ---------- public API ----------
    def add_rr_intervals(self, batch: Iterable, now_ms: Optional[float] = None) -> Optional[HrvMetrics]:
        """
        Append a batch of RR intervals received at `now_ms` (wall clock, ms).
        Returns a fresh snapshot, or None when the batch carried nothing
        usable or the window still holds fewer than `min_intervals` beats.
        """
        valid = self._validate(batch)
        if not valid:
            return None
        if now_ms is None:
            now_ms = time.time() * 1000.0

        for rr in valid:
            self._buf.append((float(now_ms), rr))
            self._span_ms += rr
        self._prune(float(now_ms))

        if len(self._buf) < self.window.min_intervals:
            log.debug("HRV window has %d/%d intervals; no snapshot yet",
                      len(self._buf), self.window.min_intervals)
            return None

        rr_arr = np.fromiter((rr for _, rr in self._buf), dtype=np.float64, count=len(self._buf))
        return HrvMetrics(
            coherence_score=coherence_score(rr_arr),
            rmssd=rmssd(rr_arr),
            mean_hr=mean_hr(rr_arr),
        )

    def reset(self) -> None:
        """Clear the rolling window (device disconnect). Idempotent."""
        self._buf.clear()
        self._span_ms = 0

    # ---------- data access ----------
    @property
    def intervals(self) -> Tuple[int, ...]:
        return tuple(rr for _, rr in self._buf)

    def sample_count(self) -> int:
        return len(self._buf)

    def window_span_sec(self) -> float:
        """Seconds of beats currently covered by the window."""
        return self._span_ms / 1000.0

    @property
    def rejected_total(self) -> int:
        return self._rejected_total
