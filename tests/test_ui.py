# tests/test_ui.py
from pathlib import Path

import pandas as pd

from hrvxo.session.state import SongSessionResult, Track
from hrvxo.store.results import FIELD_ORDER, ResultStore
from ui import cli, live


def _result(title, coherence):
    return SongSessionResult(Track("", title, "Artist"), coherence, 40.0, 62.0, 90, True)

def _args(tmp_path: Path, *extra):
    return ["--config", str(tmp_path / "none.yaml"), "--results-csv", str(tmp_path / "results.csv"), *extra]


def test_export_writes_every_saved_song(tmp_path: Path, capsys):
    store = ResultStore(tmp_path / "results.csv")
    store.save_session([_result("A", 0.5), _result("B", 0.7)], 1_000)
    store.save_session([_result("C", 0.6)], 2_000)
    out = tmp_path / "export" / "songs.csv"

    cli.main(_args(tmp_path, "--export", str(out)))

    df = pd.read_csv(out, keep_default_na=False)
    assert list(df.columns) == FIELD_ORDER
    assert list(df["title"]) == ["A", "B", "C"]
    assert list(df["session_date"]) == [1_000, 1_000, 2_000]
    assert "Exported 3 song(s)" in capsys.readouterr().out

def test_export_of_empty_store_writes_header(tmp_path: Path):
    out = tmp_path / "songs.csv"
    cli.main(_args(tmp_path, "--export", str(out)))
    assert out.read_text(encoding="utf-8").strip().split(",") == FIELD_ORDER

def test_results_cli_accepts_log_level():
    assert cli.build_parser().parse_args(["--log-level", "DEBUG"]).log_level == "DEBUG"
    assert cli.build_parser().parse_args([]).log_level == "INFO"

def test_interactive_replay_is_always_realtime(tmp_path: Path, capsys):
    rr = tmp_path / "rr.csv"
    rr.write_text("timestamp_ms,rr_ms\n0,1000\n1000,990\n", encoding="utf-8")
    src = live.open_source({"name": "replay", "rr_csv": str(rr), "realtime": False})
    assert src.realtime is True
    assert "[WARN]" in capsys.readouterr().out

    src = live.open_source({"name": "replay", "rr_csv": str(rr), "realtime": True})
    assert src.realtime is True
    assert capsys.readouterr().out == ""
