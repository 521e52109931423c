# tests/conftest.py
from pathlib import Path
import math
import sys

import pytest

# Ensure project root is on sys.path for `import hrvxo.*`
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def sine_rr(n, freq_hz, mean_ms=1000.0, amp_ms=50.0):
    """RR series whose value oscillates at `freq_hz` in beat time."""
    out, t = [], 0.0
    for _ in range(n):
        rr = mean_ms + amp_ms * math.sin(2 * math.pi * freq_hz * t)
        out.append(int(round(rr)))
        t += rr / 1000.0
    return out


@pytest.fixture
def resonant_rr():
    # 0.1 Hz: slow-breathing resonance, inside the coherence band
    return sine_rr(64, 0.1)


@pytest.fixture
def metrics():
    from hrvxo.hrv.processor import HrvMetrics
    return HrvMetrics(coherence_score=0.6, rmssd=42.0, mean_hr=65.0)


@pytest.fixture
def make_rr():
    return sine_rr
