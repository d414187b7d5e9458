# hrv_live/hrv_metrics/metrics.py
# Pure HRV metric computations from RR intervals (ms), batch form.

from typing import Dict, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd


ArrayLike = Union[Sequence[float], np.ndarray, pd.Series]


def _to_numpy(rr_ms: ArrayLike) -> np.ndarray:
    """Converts input RR series to a clean 1D numpy array (ms)."""
    arr = np.asarray(rr_ms, dtype=np.float64)
    # drop NaN values if any
    arr = arr[~np.isnan(arr)]
    return arr


def _or_none(value: float) -> Optional[float]:
    return None if np.isnan(value) else float(value)


def sdrr(rr_ms: ArrayLike) -> float:
    """Calculates SDRR (sample standard deviation of RR intervals, ms)."""
    rr = _to_numpy(rr_ms)
    if rr.size < 2:
        return np.nan
    return float(np.std(rr, ddof=1))


def rmssd(rr_ms: ArrayLike) -> float:
    """Calculates RMSSD (root mean square of successive differences, ms)."""
    rr = _to_numpy(rr_ms)
    if rr.size < 2:
        return np.nan
    diff = np.diff(rr)
    return float(np.sqrt(np.mean(diff ** 2)))


def poincare_sd(rr_ms: ArrayLike) -> Tuple[float, float]:
    """
    SD1 / SD2 of the Poincaré plot (ms).

    SD1 is the spread perpendicular to the identity line, SD2 the spread
    along it: sqrt(var(RR[n+1] -/+ RR[n]) / 2), sample variance over the points.
    Needs at least 2 points (3 intervals).
    """
    rr = _to_numpy(rr_ms)
    if rr.size < 3:
        return np.nan, np.nan
    x = rr[:-1]
    y = rr[1:]
    sd1 = float(np.sqrt(np.var(y - x, ddof=1) / 2.0))
    sd2 = float(np.sqrt(np.var(y + x, ddof=1) / 2.0))
    return sd1, sd2


def nn50(rr_ms: ArrayLike, threshold_ms: float = 50.0) -> int:
    """Counts successive RR differences greater than threshold_ms (default 50 ms)."""
    rr = _to_numpy(rr_ms)
    if rr.size < 2:
        return 0
    diff = np.abs(np.diff(rr))
    return int(np.sum(diff > threshold_ms))


def pnn50(rr_ms: ArrayLike, threshold_ms: float = 50.0) -> float:
    """Calculates pNN50 (% of successive RR differences > threshold_ms)."""
    rr = _to_numpy(rr_ms)
    n = rr.size
    if n < 2:
        return np.nan
    nn50_count = nn50(rr, threshold_ms=threshold_ms)
    # number of successive pairs is (n - 1)
    return float(100.0 * nn50_count / (n - 1))


def hr_min(rr_ms: ArrayLike) -> float:
    """Calculates minimum heart rate (bpm) from RR intervals in ms."""
    rr = _to_numpy(rr_ms)
    if rr.size == 0:
        return np.nan
    hr = 60000.0 / rr
    return float(np.min(hr))


def hr_max(rr_ms: ArrayLike) -> float:
    """Calculates maximum heart rate (bpm) from RR intervals in ms."""
    rr = _to_numpy(rr_ms)
    if rr.size == 0:
        return np.nan
    hr = 60000.0 / rr
    return float(np.max(hr))


def mean_hr(rr_ms: ArrayLike) -> float:
    """Mean heart rate (bpm), i.e. 60000 / mean RR."""
    rr = _to_numpy(rr_ms)
    if rr.size == 0:
        return np.nan
    return float(60000.0 / np.mean(rr))


def compute_time_domain_metrics(rr_ms: ArrayLike) -> Dict[str, Optional[float]]:
    """
    Computes a basic set of time-domain HRV metrics from RR intervals (ms).
    Undefined metrics (too few samples) are reported as None.
    """
    rr = _to_numpy(rr_ms)
    sd1, sd2 = poincare_sd(rr)
    return {
        "SDRR_ms": _or_none(sdrr(rr)),
        "RMSSD_ms": _or_none(rmssd(rr)),
        "SD1_ms": _or_none(sd1),
        "SD2_ms": _or_none(sd2),
        "NN50_count": nn50(rr),
        "pNN50_percent": _or_none(pnn50(rr)),
        "HR_mean_bpm": _or_none(mean_hr(rr)),
        "HR_min_bpm": _or_none(hr_min(rr)),
        "HR_max_bpm": _or_none(hr_max(rr)),
    }
