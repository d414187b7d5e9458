# hrv_live/hrv_metrics/accumulator.py
"""
Incremental HRV statistics over the accepted-sample sequence.

Responsibilities:
    - Own the accepted RR sequence (ms) of one session and its Poincaré points.
    - Update running moments in O(1) per accepted sample:
        * intervals                   -> mean, SDRR
        * successive differences d    -> RMSSD, SD1
        * successive sums s           -> SD2
    - Publish an immutable HrvSnapshot after every update.

SD1 / SD2 come from the rotated Poincaré axes:
    SD1 = sqrt(var(RR[n+1] - RR[n]) / 2)   (perpendicular to the identity line)
    SD2 = sqrt(var(RR[n+1] + RR[n]) / 2)   (along the identity line)
so they reduce to the variances of the d / s streams and never need the full
history.
"""

import math
from dataclasses import asdict, dataclass
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd

from hrv_live.config.settings import settings
from hrv_live.hrv_metrics import metrics


PoincarePoint = Tuple[float, float]


@dataclass(frozen=True)
class HrvSnapshot:
    """
    Point-in-time HRV statistics of the accepted-sample sequence.

    Statistics that need more samples than available are None, never 0.

    Attributes:
        rmssd:
            Root mean square of successive differences (ms), n >= 2.
        sdrr:
            Sample standard deviation of the intervals (ms), n >= 2.
        sd1, sd2:
            Poincaré short / long term variability (ms), >= 2 points.
        sample_count:
            Number of accepted intervals.
        mean_interval:
            Mean accepted interval (ms), n >= 1.
        low_confidence:
            True below settings.stats.low_confidence_samples samples.
    """
    rmssd: Optional[float]
    sdrr: Optional[float]
    sd1: Optional[float]
    sd2: Optional[float]
    sample_count: int
    mean_interval: Optional[float]
    low_confidence: bool = True

    @classmethod
    def empty(cls) -> "HrvSnapshot":
        return cls(
            rmssd=None,
            sdrr=None,
            sd1=None,
            sd2=None,
            sample_count=0,
            mean_interval=None,
            low_confidence=True,
        )

    @property
    def mean_hr(self) -> Optional[float]:
        if not self.mean_interval:
            return None
        return 60000.0 / self.mean_interval

    @property
    def sd1_sd2_ratio(self) -> Optional[float]:
        if self.sd1 is None or not self.sd2:
            return None
        return self.sd1 / self.sd2

    def to_dict(self) -> Dict[str, object]:
        data = asdict(self)
        data["mean_hr"] = self.mean_hr
        data["sd1_sd2_ratio"] = self.sd1_sd2_ratio
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "HrvSnapshot":
        return cls(
            rmssd=data.get("rmssd"),
            sdrr=data.get("sdrr"),
            sd1=data.get("sd1"),
            sd2=data.get("sd2"),
            sample_count=int(data["sample_count"]),
            mean_interval=data.get("mean_interval"),
            low_confidence=bool(data.get("low_confidence", True)),
        )


class _RunningMoments:
    """Welford running mean / sum of squared deviations."""

    __slots__ = ("count", "mean", "m2")

    def __init__(self) -> None:
        self.count = 0
        self.mean = 0.0
        self.m2 = 0.0

    def push(self, value: float) -> None:
        self.count += 1
        delta = value - self.mean
        self.mean += delta / self.count
        self.m2 += delta * (value - self.mean)

    def sample_variance(self) -> Optional[float]:
        if self.count < 2:
            return None
        # rounding can push m2 a hair below zero on constant input
        return max(self.m2, 0.0) / (self.count - 1)


class StatisticsAccumulator:
    """
    Running HRV statistics for one recording.

    Only accepted samples are ingested; the accepted sequence grows
    monotonically and can be frozen once the recording stops.
    """

    def __init__(self, low_confidence_samples: Optional[int] = None) -> None:
        self.low_confidence_samples = (
            low_confidence_samples
            if low_confidence_samples is not None
            else settings.stats.low_confidence_samples
        )

        self._intervals: List[float] = []
        self._points: List[PoincarePoint] = []
        self._history: List[Dict[str, Optional[float]]] = []

        self._rr = _RunningMoments()
        self._diff = _RunningMoments()
        self._sum = _RunningMoments()
        self._sum_sq_diff = 0.0
        self._elapsed_s = 0.0

        self._frozen = False
        self._snapshot = HrvSnapshot.empty()

    # ------------------------------------------------------------------ #
    # Writer side
    # ------------------------------------------------------------------ #

    def ingest(self, accepted_ms: float) -> HrvSnapshot:
        """
        Add one accepted interval and return the updated snapshot.

        Raises:
            RuntimeError if the accumulator was frozen.
        """
        if self._frozen:
            raise RuntimeError("accumulator is frozen, the recording has stopped")

        value = float(accepted_ms)

        if self._intervals:
            previous = self._intervals[-1]
            d = value - previous
            self._diff.push(d)
            self._sum.push(value + previous)
            self._sum_sq_diff += d * d
            self._points.append((previous, value))

        self._intervals.append(value)
        self._rr.push(value)
        self._elapsed_s += value / 1000.0

        self._snapshot = self._build_snapshot()
        self._history.append(
            {
                "elapsed_s": self._elapsed_s,
                "rmssd": self._snapshot.rmssd,
                "sdrr": self._snapshot.sdrr,
                "sd1": self._snapshot.sd1,
                "sd2": self._snapshot.sd2,
                "mean_hr": self._snapshot.mean_hr,
            }
        )
        return self._snapshot

    def ingest_many(self, accepted_ms: Iterable[float]) -> HrvSnapshot:
        """Batch ingest; folds ingest() so the result equals one-by-one ingestion."""
        for value in accepted_ms:
            self.ingest(value)
        return self._snapshot

    def freeze(self) -> HrvSnapshot:
        """Make the accepted sequence immutable and return the final snapshot."""
        self._frozen = True
        return self._snapshot

    def _build_snapshot(self) -> HrvSnapshot:
        n = self._rr.count

        rmssd = math.sqrt(self._sum_sq_diff / (n - 1)) if n >= 2 else None

        var_rr = self._rr.sample_variance()
        sdrr = math.sqrt(var_rr) if var_rr is not None else None

        var_d = self._diff.sample_variance()
        var_s = self._sum.sample_variance()
        sd1 = math.sqrt(var_d / 2.0) if var_d is not None else None
        sd2 = math.sqrt(var_s / 2.0) if var_s is not None else None

        return HrvSnapshot(
            rmssd=rmssd,
            sdrr=sdrr,
            sd1=sd1,
            sd2=sd2,
            sample_count=n,
            mean_interval=self._rr.mean if n else None,
            low_confidence=n < self.low_confidence_samples,
        )

    # ------------------------------------------------------------------ #
    # Reader side
    # ------------------------------------------------------------------ #

    def snapshot(self) -> HrvSnapshot:
        """Current snapshot. No side effect; repeated calls return the same object."""
        return self._snapshot

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def sample_count(self) -> int:
        return self._rr.count

    def tail(self, count: int) -> List[float]:
        """Last `count` accepted intervals (ms)."""
        if count <= 0:
            return []
        return self._intervals[-count:]

    def intervals(self) -> Tuple[float, ...]:
        return tuple(self._intervals)

    def poincare_points(self, max_points: Optional[int] = None) -> Tuple[PoincarePoint, ...]:
        """Poincaré points (RR[n], RR[n+1]); optionally only the last max_points."""
        if max_points is not None and max_points >= 0:
            if max_points == 0:
                return ()
            return tuple(self._points[-max_points:])
        return tuple(self._points)

    def window_snapshot(self, samples: Optional[int] = None) -> HrvSnapshot:
        """
        Statistics over the last `samples` accepted intervals.

        Computed on demand in O(window) with the batch metric functions.
        """
        if samples is None:
            samples = settings.stats.default_window_samples
        rr = np.asarray(self.tail(samples), dtype=np.float64)

        def _opt(value: float) -> Optional[float]:
            return None if np.isnan(value) else float(value)

        sd1, sd2 = metrics.poincare_sd(rr)
        return HrvSnapshot(
            rmssd=_opt(metrics.rmssd(rr)),
            sdrr=_opt(metrics.sdrr(rr)),
            sd1=_opt(sd1),
            sd2=_opt(sd2),
            sample_count=int(rr.size),
            mean_interval=float(np.mean(rr)) if rr.size else None,
            low_confidence=rr.size < self.low_confidence_samples,
        )

    def history_frame(self, max_points: Optional[int] = None) -> pd.DataFrame:
        """Per-sample trend of the running statistics as a DataFrame."""
        rows = self._history
        if max_points is not None and max_points > 0:
            rows = rows[-max_points:]
        return pd.DataFrame(
            rows,
            columns=["elapsed_s", "rmssd", "sdrr", "sd1", "sd2", "mean_hr"],
        )

    def __repr__(self) -> str:
        return f"<StatisticsAccumulator(samples={self.sample_count}, frozen={self._frozen})>"
