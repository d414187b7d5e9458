# hrv_live/hrv_metrics/analysis.py
"""
Post-session HRV analysis of a finalized recording.

Runs on the accepted intervals of a stopped session, never on the live
stream. Provides:
    - time-domain summary (metrics.compute_time_domain_metrics)
    - frequency-domain band powers (spline resampling + Welch PSD)
    - DFA alpha1 (short-term fractal scaling exponent)
"""

from typing import Any, Dict, Optional, Sequence

import numpy as np
from scipy.integrate import trapezoid
from scipy.interpolate import CubicSpline
from scipy.signal import welch

from hrv_live.config.settings import settings
from hrv_live.hrv_metrics.metrics import compute_time_domain_metrics


def _empty_freq_domain() -> Dict[str, Any]:
    return {
        "freq": [],
        "psd": [],
        "band_powers": {"VLF": None, "LF": None, "HF": None},
        "lf_hf_ratio": None,
    }


def compute_freq_domain(rr_ms: Sequence[float], fs_resample: Optional[float] = None) -> Dict[str, Any]:
    """
    VLF / LF / HF band powers (ms^2) from an RR series in milliseconds.

    The RR series is placed on its own cumulative time axis, resampled to a
    uniform grid (fs_resample Hz) with a cubic spline, detrended and passed
    through Welch. Too short recordings return None powers.
    """
    if fs_resample is None:
        fs_resample = settings.stats.fs_resample

    rr = np.asarray(rr_ms, dtype=float)
    if rr.ndim != 1 or rr.size < 4:
        return _empty_freq_domain()

    # 1) Time axis: cumulative RR (seconds), starting at 0
    t = np.cumsum(rr) / 1000.0
    t = t - t[0]

    # 2) Uniform time axis
    dt = 1.0 / fs_resample
    t_uniform = np.arange(0.0, t[-1], dt)
    if t_uniform.size < 8:
        return _empty_freq_domain()

    # 3) Spline resampling + mean removal
    spline = CubicSpline(t, rr)
    rr_interp = spline(t_uniform)
    rr_detrended = rr_interp - np.mean(rr_interp)

    # 4) Welch PSD
    nperseg = min(256, rr_detrended.size)
    f, pxx = welch(rr_detrended, fs=fs_resample, nperseg=nperseg)

    # 5) Band powers
    bands = {
        "VLF": settings.stats.vlf_band,
        "LF": settings.stats.lf_band,
        "HF": settings.stats.hf_band,
    }
    band_powers: Dict[str, Optional[float]] = {}
    for name, (low, high) in bands.items():
        mask = (f >= low) & (f < high)
        if np.count_nonzero(mask) >= 2:
            band_powers[name] = float(trapezoid(pxx[mask], f[mask]))
        else:
            band_powers[name] = 0.0

    lf_power = band_powers["LF"]
    hf_power = band_powers["HF"]
    lf_hf_ratio = float(lf_power / hf_power) if hf_power else None

    return {
        "freq": f.tolist(),
        "psd": pxx.tolist(),
        "band_powers": band_powers,
        "lf_hf_ratio": lf_hf_ratio,
    }


def dfa_alpha1(
    rr_ms: Sequence[float],
    min_box: Optional[int] = None,
    max_box: Optional[int] = None,
) -> Optional[float]:
    """
    Detrended fluctuation analysis, short-term exponent alpha1.

    Integrates the mean-removed RR series, splits it into non-overlapping
    boxes of n beats (min_box..max_box), removes a linear trend per box and
    fits log F(n) against log n. Returns None when the series is shorter
    than two of the largest boxes.
    """
    if min_box is None:
        min_box = settings.stats.dfa_min_box
    if max_box is None:
        max_box = settings.stats.dfa_max_box

    rr = np.asarray(rr_ms, dtype=float)
    if rr.ndim != 1 or rr.size < 2 * max_box or min_box < 2 or max_box <= min_box:
        return None

    profile = np.cumsum(rr - np.mean(rr))

    box_sizes = []
    fluctuations = []
    for n in range(min_box, max_box + 1):
        n_boxes = profile.size // n
        if n_boxes < 2:
            continue
        boxes = profile[: n_boxes * n].reshape(n_boxes, n)
        x = np.arange(n)
        residuals = []
        for box in boxes:
            coef = np.polyfit(x, box, 1)
            trend = np.polyval(coef, x)
            residuals.append(np.mean((box - trend) ** 2))
        f_n = np.sqrt(np.mean(residuals))
        if f_n > 0:
            box_sizes.append(n)
            fluctuations.append(f_n)

    if len(box_sizes) < 2:
        return None

    slope, _ = np.polyfit(np.log(box_sizes), np.log(fluctuations), 1)
    return float(slope)


def analyze_intervals(rr_ms: Sequence[float], fs_resample: Optional[float] = None) -> Dict[str, Any]:
    """
    Full post-session analysis dict used by the API and export tooling.
    """
    return {
        "time_domain": compute_time_domain_metrics(rr_ms),
        "freq_domain": compute_freq_domain(rr_ms, fs_resample=fs_resample),
        "dfa_alpha1": dfa_alpha1(rr_ms),
    }
