# tests/test_config.py
from pathlib import Path

from hrvxo.config import DEFAULTS, hrv_window, load_config, movement_rules


def test_missing_file_gives_defaults(tmp_path: Path):
    cfg = load_config(tmp_path / "nope.yaml")
    assert cfg == DEFAULTS
    assert cfg is not DEFAULTS
    cfg["hrv"]["min_intervals"] = 1
    assert DEFAULTS["hrv"]["min_intervals"] == 30

def test_yaml_is_merged_per_section(tmp_path: Path):
    p = tmp_path / "cfg.yaml"
    p.write_text("hrv:\n  min_intervals: 40\nmovement:\n  threshold: 0.8\nextra: 1\n", encoding="utf-8")
    cfg = load_config(p)
    assert cfg["hrv"]["min_intervals"] == 40
    assert cfg["hrv"]["window_sec"] == 64.0
    assert cfg["extra"] == 1
    assert hrv_window(cfg).min_intervals == 40
    assert movement_rules(cfg).threshold == 0.8
    assert movement_rules(cfg).window_size == 10

def test_broken_yaml_falls_back(tmp_path: Path):
    p = tmp_path / "bad.yaml"
    p.write_text("hrv: [unclosed\n", encoding="utf-8")
    assert load_config(p) == DEFAULTS

def test_shipped_defaults_match_code():
    root = Path(__file__).resolve().parents[1]
    assert load_config(root / "configs" / "defaults.yaml") == DEFAULTS
