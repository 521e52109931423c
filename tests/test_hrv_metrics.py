# tests/test_hrv_metrics.py
import math

import numpy as np
import pytest

from hrvxo.hrv.metrics import coherence_score, mean_hr, rmssd, tachogram


def test_rmssd_known_value():
    rr = np.array([800, 810, 790, 800], dtype=float)
    # diffs: 10, -20, 10 -> sqrt((100 + 400 + 100) / 3)
    assert rmssd(rr) == pytest.approx(math.sqrt(200.0))

def test_rmssd_reversal_invariant_for_constant_steps():
    rr = np.arange(700, 1000, 15, dtype=float)
    assert rmssd(rr) == pytest.approx(15.0)
    assert rmssd(rr[::-1]) == pytest.approx(rmssd(rr))

def test_rmssd_needs_two_intervals():
    assert rmssd(np.array([900.0])) == 0.0

def test_mean_hr():
    assert mean_hr(np.array([1000.0, 1000.0, 1000.0])) == pytest.approx(60.0)
    assert mean_hr(np.array([750.0, 750.0])) == pytest.approx(80.0)

def test_tachogram_is_uniform_4hz():
    rr = np.array([1000.0] * 11)
    x = tachogram(rr)
    # 10 s between first and last beat at 4 Hz
    assert x.size == 40
    assert np.allclose(x, 1000.0)

def test_constant_rhythm_has_zero_coherence():
    assert coherence_score(np.array([1000.0] * 60)) == 0.0

def test_resonant_breathing_is_coherent(resonant_rr):
    score = coherence_score(np.array(resonant_rr, dtype=float))
    assert score > 0.8

def test_fast_oscillation_is_not_coherent(make_rr):
    rr = np.array(make_rr(64, 0.35), dtype=float)
    assert coherence_score(rr) < 0.3

def test_coherence_ranks_resonance_above_noise(resonant_rr):
    rng = np.random.default_rng(7)
    noise = 1000.0 + rng.normal(0.0, 50.0, size=64)
    assert coherence_score(np.array(resonant_rr, dtype=float)) > coherence_score(noise)
