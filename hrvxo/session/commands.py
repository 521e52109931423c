# hrvxo/session/commands.py
"""
Text commands for driving a session by hand (live runner stdin, scripted
event files). One command per line:

  select <title> [| <artist> [| <track id>]]
  play   <title> [| <artist>]
  change <title> [| <artist>]
  stop
  move | still
  start | end | reset
"""
from __future__ import annotations
from typing import List, Optional

from hrvxo.session.events import (
    EndSessionEvent,
    MovementEvent,
    PlaybackKind,
    ResetEvent,
    SelectSongEvent,
    SessionEvent,
    StartSessionEvent,
    playback,
    rr_batch,
)
from hrvxo.session.state import Track

COMMANDS = ("select", "play", "change", "stop", "move", "still", "start", "end", "reset")


def _fields(rest: str) -> List[str]:
    return [p.strip() for p in rest.split("|")]

def parse_command(line: str, now_ms: int) -> Optional[SessionEvent]:
    """Turn one command line into an event; None for blanks, comments and unknown verbs."""
    text = (line or "").strip()
    if not text or text.startswith("#"):
        return None
    verb, _, rest = text.partition(" ")
    verb = verb.lower()
    rest = rest.strip()

    if verb == "select":
        f = _fields(rest) + ["", ""]
        if not f[0]:
            return None
        return SelectSongEvent(Track(track_id=f[2], title=f[0], artist=f[1]), now_ms)
    if verb in ("play", "change"):
        f = _fields(rest) + [""]
        if not f[0]:
            return None
        kind = PlaybackKind.STARTED if verb == "play" else PlaybackKind.CHANGED
        return playback(kind.value, now_ms, f[0], f[1])
    if verb == "stop":
        return playback(PlaybackKind.STOPPED.value, now_ms)
    if verb in ("move", "still"):
        return MovementEvent(moving=(verb == "move"), timestamp_ms=now_ms)
    if verb == "start":
        return StartSessionEvent(now_ms)
    if verb == "end":
        return EndSessionEvent(now_ms)
    if verb == "reset":
        return ResetEvent(now_ms)
    return None


def load_script(path) -> List[tuple]:
    """
    Read a timestamped command script: `<timestamp_ms> <command>` per line.
    Returns [(timestamp_ms, command), ...] in file order.
    """
    out = []
    with open(path, "r", encoding="utf-8") as f:
        for lineno, raw in enumerate(f, start=1):
            text = raw.strip()
            if not text or text.startswith("#"):
                continue
            ts, _, cmd = text.partition(" ")
            try:
                out.append((int(float(ts)), cmd.strip()))
            except ValueError:
                raise ValueError(f"{path}:{lineno}: expected '<timestamp_ms> <command>'") from None
    return out

def merge_timeline(rr_batches, script) -> List[SessionEvent]:
    """
    Interleave recorded RR batches and scripted commands by timestamp.
    At equal timestamps RR batches go first, then commands in script order.
    """
    tagged = [(ts, 0, i, rr_batch(rr, ts)) for i, (ts, rr) in enumerate(rr_batches)]
    for i, (ts, cmd) in enumerate(script):
        ev = parse_command(cmd, ts)
        if ev is not None:
            tagged.append((ts, 1, i, ev))
    tagged.sort(key=lambda t: (t[0], t[1], t[2]))
    return [ev for *_, ev in tagged]
