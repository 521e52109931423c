# hrvxo/store/results.py
"""
CSV-backed store for finalized song results, plus the ranking queries the
leaderboard / insights views need. One row per valid song per session;
`session_date` (ms since epoch) groups the rows of one session.
"""
from __future__ import annotations
import csv
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from hrvxo.session.state import SongSessionResult

log = logging.getLogger(__name__)

FIELD_ORDER = [
    "session_date", "track_id", "title", "artist",
    "avg_coherence", "avg_rmssd", "mean_hr",
    "duration_listened_sec", "movement_detected",
]
_TEXT_COLS = {"track_id": str, "title": str, "artist": str}


def _plain(v: Any) -> Any:
    # numpy scalars -> python scalars
    return v.item() if hasattr(v, "item") else v

def _records(df: pd.DataFrame) -> List[Dict[str, Any]]:
    return [{k: _plain(v) for k, v in row.items()} for row in df.to_dict("records")]

def _song_key(df: pd.DataFrame) -> pd.Series:
    # detected-only tracks have no id; fall back to title/artist
    fallback = df["title"].str.lower() + "\x1f" + df["artist"].str.lower()
    return df["track_id"].where(df["track_id"] != "", fallback)


class ResultStore:
    def __init__(self, csv_path: str | Path):
        self.path = Path(csv_path)

    # ---------- writes ----------
    def insert_result(self, result: SongSessionResult, session_date_ms: int) -> None:
        self._append_rows([self._row(result, session_date_ms)])

    def save_session(self, results: Sequence[SongSessionResult], session_date_ms: int) -> int:
        """Append the valid results of one session. Returns rows written."""
        rows = [self._row(r, session_date_ms) for r in results if r.is_valid]
        if rows:
            self._append_rows(rows)
        return len(rows)

    def delete_session(self, session_date_ms: int) -> int:
        df = self._load()
        keep = df[df["session_date"] != int(session_date_ms)]
        removed = len(df) - len(keep)
        if removed:
            self._rewrite(keep)
            log.info("Deleted %d row(s) of session %d", removed, session_date_ms)
        return removed

    def delete_all(self) -> None:
        if self.path.exists():
            self.path.unlink()

    # ---------- queries ----------
    def song_count(self) -> int:
        return len(self._load())

    def distinct_session_dates(self) -> List[int]:
        df = self._load()
        return sorted((int(d) for d in df["session_date"].unique()), reverse=True)

    def songs_for_session(self, session_date_ms: int) -> List[Dict[str, Any]]:
        df = self._load()
        return _records(df[df["session_date"] == int(session_date_ms)])

    def all_songs(self) -> List[Dict[str, Any]]:
        return _records(self._load())

    def top_coherence_songs(self, limit: int = 20, include_movement: bool = True) -> List[Dict[str, Any]]:
        """Songs ranked by mean coherence across every session they were measured in."""
        df = self._load()
        if not include_movement:
            df = df[df["movement_detected"] == 0]
        if df.empty:
            return []
        df = df.assign(_key=_song_key(df))
        agg = df.groupby("_key", sort=False).agg(
            track_id=("track_id", "first"),
            title=("title", "first"),
            artist=("artist", "first"),
            avg_coherence=("avg_coherence", "mean"),
            avg_rmssd=("avg_rmssd", "mean"),
            mean_hr=("mean_hr", "mean"),
            times_played=("avg_coherence", "size"),
            total_listened_sec=("duration_listened_sec", "sum"),
        ).reset_index(drop=True)
        agg = agg.sort_values(["avg_coherence", "times_played"], ascending=[False, False], kind="stable")
        return _records(agg.head(int(limit)))

    def session_summaries(self) -> List[Dict[str, Any]]:
        df = self._load()
        if df.empty:
            return []
        agg = df.groupby("session_date").agg(
            song_count=("avg_coherence", "size"),
            avg_coherence=("avg_coherence", "mean"),
            max_coherence=("avg_coherence", "max"),
            total_listened_sec=("duration_listened_sec", "sum"),
        ).reset_index()
        return _records(agg.sort_values("session_date", ascending=False))

    def coherence_trend(self) -> List[Dict[str, Any]]:
        """Per-session mean coherence, oldest first."""
        df = self._load()
        if df.empty:
            return []
        agg = df.groupby("session_date").agg(avg_coherence=("avg_coherence", "mean")).reset_index()
        return _records(agg.sort_values("session_date"))

    def overall_stats(self) -> Optional[Dict[str, Any]]:
        df = self._load()
        if df.empty:
            return None
        return {
            "total_songs": int(len(df)),
            "total_sessions": int(df["session_date"].nunique()),
            "avg_coherence": float(df["avg_coherence"].mean()),
            "avg_rmssd": float(df["avg_rmssd"].mean()),
            "total_listened_sec": int(df["duration_listened_sec"].sum()),
        }

    def top_artist_by_coherence(self) -> Optional[Dict[str, Any]]:
        df = self._load()
        df = df[df["artist"].str.strip() != ""]
        if df.empty:
            return None
        agg = df.groupby("artist").agg(
            avg_coherence=("avg_coherence", "mean"),
            song_count=("avg_coherence", "size"),
        ).reset_index()
        best = agg.sort_values(["avg_coherence", "song_count"], ascending=[False, False], kind="stable")
        return _records(best.head(1))[0]

    def all_time_best_song(self) -> Optional[Dict[str, Any]]:
        df = self._load()
        if df.empty:
            return None
        return _records(df.loc[[df["avg_coherence"].idxmax()]])[0]

    # ---------- helpers ----------
    @staticmethod
    def _row(result: SongSessionResult, session_date_ms: int) -> Dict[str, Any]:
        return {
            "session_date": int(session_date_ms),
            "track_id": result.track.track_id,
            "title": result.track.title,
            "artist": result.track.artist,
            "avg_coherence": float(result.avg_coherence),
            "avg_rmssd": float(result.avg_rmssd),
            "mean_hr": float(result.mean_hr),
            "duration_listened_sec": int(result.duration_listened_sec),
            "movement_detected": 1 if result.movement_detected else 0,
        }

    def _append_rows(self, rows: List[Dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        write_header = not self.path.exists()
        with self.path.open("a", newline="", encoding="utf-8") as f:
            w = csv.DictWriter(f, fieldnames=FIELD_ORDER)
            if write_header:
                w.writeheader()
            for row in rows:
                w.writerow({k: row.get(k, "") for k in FIELD_ORDER})

    def _rewrite(self, df: pd.DataFrame) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        df[FIELD_ORDER].to_csv(tmp, index=False)
        tmp.replace(self.path)

    def _load(self) -> pd.DataFrame:
        if not self.path.exists():
            return pd.DataFrame({c: pd.Series(dtype=object if c in _TEXT_COLS else "float64") for c in FIELD_ORDER})
        df = pd.read_csv(self.path, dtype=_TEXT_COLS, keep_default_na=False)
        df.columns = [c.strip() for c in df.columns]
        return df
