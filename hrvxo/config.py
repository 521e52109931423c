# hrvxo/config.py
"""Defaults and YAML loading for HrvXo runs (mirror of configs/defaults.yaml)."""
from __future__ import annotations
import copy
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from hrvxo.control.movement import MovementRules
from hrvxo.hrv.processor import HrvWindow

log = logging.getLogger(__name__)

DEFAULTS: Dict[str, Dict[str, Any]] = {
    "hrv": {
        "window_sec": 64.0,
        "max_intervals": 256,
        "min_intervals": 30,
        "min_rr_ms": 300,
        "max_rr_ms": 2000,
    },
    "movement": {
        "threshold": 0.5,
        "window_size": 10,
        "min_samples": 3,
    },
    "session": {
        # ignore whatever was already playing until the user picks a song
        "require_selection": False,
    },
    "source": {
        "name": "polar",
        "device": "Polar",
        "rr_csv": None,
        "realtime": True,
    },
    "outputs": {
        "results_csv": "outputs/results.csv",
        "plots_dir": "outputs/plots",
    },
}


def _safe_load_yaml(path) -> Dict[str, Any]:
    """Load YAML if present; a missing or broken file yields {}."""
    if path is None:
        return {}
    p = Path(path)
    if not p.exists():
        return {}
    try:
        import yaml  # requires PyYAML
        with p.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except Exception as e:
        log.warning("Could not parse YAML at %s (%s). Falling back to defaults.", p, e)
        return {}
    if not isinstance(data, dict):
        log.warning("Ignoring %s: top level must be a mapping", p)
        return {}
    return data


def load_config(path: Optional[str | Path] = None) -> Dict[str, Dict[str, Any]]:
    """DEFAULTS with the YAML file shallow-merged per section."""
    cfg = copy.deepcopy(DEFAULTS)
    for k, v in _safe_load_yaml(path).items():
        if isinstance(v, dict) and k in cfg:
            cfg[k].update(v)
        else:
            cfg[k] = v
    return cfg


def hrv_window(cfg: Dict[str, Any]) -> HrvWindow:
    h = cfg.get("hrv", {})
    return HrvWindow(
        seconds=float(h.get("window_sec", 64.0)),
        max_intervals=int(h.get("max_intervals", 256)),
        min_intervals=int(h.get("min_intervals", 30)),
        min_rr_ms=int(h.get("min_rr_ms", 300)),
        max_rr_ms=int(h.get("max_rr_ms", 2000)),
    )


def movement_rules(cfg: Dict[str, Any]) -> MovementRules:
    m = cfg.get("movement", {})
    return MovementRules(
        threshold=float(m.get("threshold", 0.5)),
        window_size=int(m.get("window_size", 10)),
        min_samples=int(m.get("min_samples", 3)),
    )
