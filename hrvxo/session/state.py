# hrvxo/session/state.py
from __future__ import annotations
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Optional


class SessionPhase(str, Enum):
    NOT_STARTED = "not_started"
    ACTIVE_NO_SONG = "active_no_song"
    ACTIVE_WAITING_PLAYBACK = "active_waiting_playback"
    ACTIVE_SETTLING = "active_settling"
    ACTIVE_RECORDING = "active_recording"
    ENDED = "ended"

    @property
    def is_active(self) -> bool:
        return self not in (SessionPhase.NOT_STARTED, SessionPhase.ENDED)

    @property
    def is_measuring(self) -> bool:
        return self in (SessionPhase.ACTIVE_SETTLING, SessionPhase.ACTIVE_RECORDING)


@dataclass(frozen=True)
class Track:
    track_id: str          # "" when only detected metadata is known
    title: str
    artist: str
    album: Optional[str] = None
    duration: Optional[str] = None

    @property
    def label(self) -> str:
        return f"{self.title} - {self.artist}" if self.artist else self.title


@dataclass
class TaggedSong:
    """Reading accumulator for the song currently under measurement."""
    track: Track
    tagged_at_ms: int
    coherence_readings: List[float] = field(default_factory=list)
    rmssd_readings: List[float] = field(default_factory=list)
    hr_readings: List[float] = field(default_factory=list)
    movement_detected: bool = False

    @property
    def reading_count(self) -> int:
        return len(self.coherence_readings)

    def snapshot(self) -> "TaggedSong":
        return replace(
            self,
            coherence_readings=list(self.coherence_readings),
            rmssd_readings=list(self.rmssd_readings),
            hr_readings=list(self.hr_readings),
        )


@dataclass(frozen=True)
class SongSessionResult:
    track: Track
    avg_coherence: float
    avg_rmssd: float
    mean_hr: float
    duration_listened_sec: int
    is_valid: bool
    movement_detected: bool = False
