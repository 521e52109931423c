from __future__ import annotations
import csv
import logging
import threading
import time
from abc import ABC, abstractmethod
from itertools import groupby
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Type

log = logging.getLogger(__name__)

# on_batch(rr_intervals_ms, received_at_ms)
BatchCallback = Callable[[List[int], int], None]
DisconnectCallback = Callable[[], None]


class RRSource(ABC):
    """Unified interface all RR-interval sources must implement."""

    def __init__(self, **kwargs) -> None:
        self._kwargs = kwargs

    @abstractmethod
    def connect(self, on_batch: BatchCallback, on_disconnect: Optional[DisconnectCallback] = None) -> None:
        """
        Open the source and start delivering RR batches to `on_batch`.
        Callbacks may fire on a background thread; they must only enqueue.
        """
        ...

    def disconnect(self) -> None:
        """Optional cleanup."""
        ...

    def close(self) -> None:
        """Optional cleanup."""
        ...


_SOURCE_REGISTRY: Dict[str, Type[RRSource]] = {}

def register_source(name: str):
    """Decorator to register a concrete RRSource under a CLI name."""
    def deco(cls: Type[RRSource]) -> Type[RRSource]:
        _SOURCE_REGISTRY[name.lower()] = cls
        return cls
    return deco

def create_source(name: str, **kwargs) -> RRSource:
    key = (name or "").lower()
    if key not in _SOURCE_REGISTRY:
        raise ValueError(f"Unknown RR source '{name}'. Available: {sorted(_SOURCE_REGISTRY.keys())}")
    return _SOURCE_REGISTRY[key](**kwargs)

def available_sources() -> List[str]:
    return sorted(_SOURCE_REGISTRY.keys())


def load_rr_csv(path: str | Path) -> List[Tuple[int, List[int]]]:
    """
    Read a recorded RR stream: columns `timestamp_ms, rr_ms`, one beat per row.
    Rows sharing a timestamp form one batch. Returns [(timestamp_ms, [rr, ...]), ...].
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"RR recording not found: {p}")
    rows: List[Tuple[int, int]] = []
    with p.open("r", encoding="utf-8", newline="") as f:
        rdr = csv.DictReader(f)
        if not rdr.fieldnames or not {"timestamp_ms", "rr_ms"} <= {c.strip() for c in rdr.fieldnames}:
            raise ValueError(f"{p} must have columns timestamp_ms, rr_ms")
        for i, row in enumerate(rdr, start=2):
            row = {k.strip(): v for k, v in row.items() if k}
            try:
                rows.append((int(float(row["timestamp_ms"])), int(float(row["rr_ms"]))))
            except (TypeError, ValueError):
                log.warning("Skipping malformed row %d in %s", i, p)
    return [(ts, [rr for _, rr in grp]) for ts, grp in groupby(rows, key=lambda r: r[0])]


@register_source("replay")
class ReplayRRSource(RRSource):
    """
    Plays a recorded RR stream back. With `realtime=True` batches are paced by
    their recorded timestamps on a background thread and stamped with the
    current wall clock; otherwise every batch is delivered synchronously from
    `connect()` with its recorded timestamp.
    """

    def __init__(self, rr_csv: str | Path, realtime: bool = True, speed: float = 1.0, **kwargs):
        super().__init__(**kwargs)
        self.batches = load_rr_csv(rr_csv)
        self.realtime = realtime
        self.speed = max(1e-3, float(speed))
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def connect(self, on_batch: BatchCallback, on_disconnect: Optional[DisconnectCallback] = None) -> None:
        if not self.realtime:
            for ts, rr in self.batches:
                on_batch(list(rr), ts)
            if on_disconnect:
                on_disconnect()
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._play, args=(on_batch, on_disconnect), daemon=True)
        self._thread.start()

    def _play(self, on_batch: BatchCallback, on_disconnect: Optional[DisconnectCallback]) -> None:
        prev_ts = None
        for ts, rr in self.batches:
            if prev_ts is not None:
                if self._stop.wait(max(0.0, (ts - prev_ts) / 1000.0 / self.speed)):
                    return
            prev_ts = ts
            on_batch(list(rr), int(time.time() * 1000))
        if on_disconnect and not self._stop.is_set():
            on_disconnect()

    def disconnect(self) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=2.0)
        self._thread = None

    def close(self) -> None:
        self.disconnect()
