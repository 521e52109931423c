# hrvxo/session/events.py
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Union

from hrvxo.session.state import Track


class PlaybackKind(str, Enum):
    STARTED = "started"
    CHANGED = "changed"
    STOPPED = "stopped"


@dataclass(frozen=True)
class RrBatchEvent:
    intervals: Tuple[int, ...]
    timestamp_ms: int


@dataclass(frozen=True)
class PlaybackEvent:
    kind: PlaybackKind
    timestamp_ms: int
    title: str = ""
    artist: str = ""


@dataclass(frozen=True)
class MovementEvent:
    moving: bool
    timestamp_ms: int


@dataclass(frozen=True)
class DeviceDisconnectedEvent:
    timestamp_ms: int


# ---- user control -----------------------------------------------------------
@dataclass(frozen=True)
class StartSessionEvent:
    timestamp_ms: int


@dataclass(frozen=True)
class SelectSongEvent:
    track: Track
    timestamp_ms: int


@dataclass(frozen=True)
class EndSessionEvent:
    timestamp_ms: int


@dataclass(frozen=True)
class ResetEvent:
    timestamp_ms: int


SessionEvent = Union[
    RrBatchEvent,
    PlaybackEvent,
    MovementEvent,
    DeviceDisconnectedEvent,
    StartSessionEvent,
    SelectSongEvent,
    EndSessionEvent,
    ResetEvent,
]


def rr_batch(intervals, timestamp_ms: int) -> RrBatchEvent:
    return RrBatchEvent(intervals=tuple(intervals), timestamp_ms=int(timestamp_ms))

def playback(kind: str, timestamp_ms: int, title: Optional[str] = None,
             artist: Optional[str] = None) -> PlaybackEvent:
    return PlaybackEvent(kind=PlaybackKind(kind), timestamp_ms=int(timestamp_ms),
                         title=title or "", artist=artist or "")
