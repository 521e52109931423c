# hrvxo/hrv/metrics.py
from __future__ import annotations
import numpy as np
from scipy.signal import detrend, welch

# Uniform resampling rate for the tachogram (Hz)
TACHOGRAM_FS = 4.0

COHERENCE_BAND_HZ = (0.04, 0.26)
TOTAL_BAND_HZ = (0.0, 0.4)


def rmssd(rr_ms: np.ndarray) -> float:
    """Root mean square of successive RR differences (ms)."""
    if rr_ms.size < 2:
        return 0.0
    d = np.diff(rr_ms.astype(np.float64))
    return float(np.sqrt(np.mean(np.square(d))))

def mean_hr(rr_ms: np.ndarray) -> float:
    m = float(np.mean(rr_ms, dtype=np.float64)) if rr_ms.size else 0.0
    if m <= 1e-12:
        return 0.0
    return 60000.0 / m

def tachogram(rr_ms: np.ndarray, fs: float = TACHOGRAM_FS) -> np.ndarray:
    """
    Linear interpolation of the RR series onto a uniform time grid.
    Each interval is placed at the time of the beat that closes it.
    """
    rr = rr_ms.astype(np.float64)
    t = np.cumsum(rr) / 1000.0
    t = t - t[0]
    if t[-1] <= 0.0:
        return rr[:1]
    grid = np.arange(0.0, t[-1], 1.0 / fs)
    return np.interp(grid, t, rr)

def band_power(freqs: np.ndarray, psd: np.ndarray, lo: float, hi: float) -> float:
    # uniform bin spacing, so a plain sum is proportional to the integral
    mask = (freqs >= lo) & (freqs <= hi)
    if not np.any(mask):
        return 0.0
    return float(psd[mask].sum())

def coherence_score(rr_ms: np.ndarray, fs: float = TACHOGRAM_FS) -> float:
    """
    Fraction of tachogram power inside 0.04-0.26 Hz relative to 0-0.4 Hz.
    Not clamped; returns 0.0 when the series carries no power.
    """
    if rr_ms.size < 3:
        return 0.0
    x = tachogram(rr_ms, fs)
    if x.size < 8:
        return 0.0
    x = detrend(x, type="linear")
    freqs, psd = welch(x, fs=fs, window="hann", nperseg=min(256, x.size))
    total = band_power(freqs, psd, *TOTAL_BAND_HZ)
    if total <= 1e-12:
        return 0.0
    return band_power(freqs, psd, *COHERENCE_BAND_HZ) / total
