# hrv_live/hrv_metrics/sample_filter.py
"""
Causal RR artifact classification.

Each incoming interval is classified exactly once, at ingestion time, against
a reference window of past samples only (no look-ahead):

    1) non-finite / non-positive values        -> artifact
    2) outside the physiological band          -> artifact
    3) first valid sample of a session         -> accepted
    4) too far from the trailing-window mean   -> artifact
    5) too far from the last accepted sample   -> artifact

A sustained change of rhythm (or a bad first beat) would otherwise lock the
reference out for good: once `reseed_after` consecutive deviation artifacts
agree with each other, should_reseed() tells the session to restart the
reference window from them.

Deviation bounds are inclusive, so a sample exactly at the tolerance is kept.
Classification never raises: anything that cannot be read as a number is an
artifact.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from hrv_live.config.settings import FilterSettings, settings


class ArtifactReason(str, Enum):
    NON_FINITE = "non_finite"
    NON_POSITIVE = "non_positive"
    OUT_OF_RANGE = "out_of_range"
    WINDOW_DEVIATION = "window_deviation"
    SUCCESSIVE_DEVIATION = "successive_deviation"
    NON_MONOTONIC_TIMESTAMP = "non_monotonic_timestamp"


@dataclass(frozen=True)
class Classification:
    """
    Result of classifying one candidate interval.

    Attributes:
        accepted:
            True when the sample feeds the statistics.
        reason:
            Why the sample was rejected (None when accepted).
    """
    accepted: bool
    reason: Optional[ArtifactReason] = None

    @classmethod
    def accept(cls) -> "Classification":
        return cls(accepted=True)

    @classmethod
    def artifact(cls, reason: ArtifactReason) -> "Classification":
        return cls(accepted=False, reason=reason)

    @property
    def is_artifact(self) -> bool:
        return not self.accepted


ACCEPT = Classification.accept()


def _relative_deviation(value: float, reference: float) -> float:
    return abs(value - reference) / reference


class SampleFilter:
    """
    Tolerance-band artifact filter over a short trailing window.

    Parameters default to settings.filter and can be overridden per instance
    (the thresholds are tunables, not fixed physiology).
    """

    def __init__(
        self,
        rr_min_ms: Optional[float] = None,
        rr_max_ms: Optional[float] = None,
        window_size: Optional[int] = None,
        window_tolerance: Optional[float] = None,
        successive_tolerance: Optional[float] = None,
        reseed_after: Optional[int] = None,
        config: Optional[FilterSettings] = None,
    ) -> None:
        config = config if config else settings.filter

        self.rr_min_ms = float(rr_min_ms if rr_min_ms is not None else config.rr_min_ms)
        self.rr_max_ms = float(rr_max_ms if rr_max_ms is not None else config.rr_max_ms)
        self.window_size = int(window_size if window_size is not None else config.window_size)
        self.window_tolerance = float(
            window_tolerance if window_tolerance is not None else config.window_tolerance
        )
        self.successive_tolerance = float(
            successive_tolerance if successive_tolerance is not None else config.successive_tolerance
        )
        self.reseed_after = int(reseed_after if reseed_after is not None else config.reseed_after)

        if self.window_size < 1:
            raise ValueError("window_size must be >= 1")
        if self.rr_min_ms > self.rr_max_ms:
            raise ValueError("rr_min_ms must not exceed rr_max_ms")
        if self.reseed_after < 0 or self.reseed_after == 1:
            raise ValueError("reseed_after must be 0 (disabled) or >= 2")

    def classify(self, previous_accepted_window: Sequence[float], candidate) -> Classification:
        """
        Classify one candidate interval.

        Args:
            previous_accepted_window:
                Accepted intervals (ms) in arrival order; only the last
                `window_size` entries are looked at.
            candidate:
                Candidate interval duration in milliseconds.

        Returns:
            Classification.accept() or Classification.artifact(reason).
        """
        try:
            value = float(candidate)
        except (TypeError, ValueError):
            return Classification.artifact(ArtifactReason.NON_FINITE)

        if not math.isfinite(value):
            return Classification.artifact(ArtifactReason.NON_FINITE)
        if value <= 0.0:
            return Classification.artifact(ArtifactReason.NON_POSITIVE)
        if value < self.rr_min_ms or value > self.rr_max_ms:
            return Classification.artifact(ArtifactReason.OUT_OF_RANGE)

        if not previous_accepted_window:
            return ACCEPT

        window = list(previous_accepted_window[-self.window_size:])
        local_mean = sum(window) / len(window)
        if _relative_deviation(value, local_mean) > self.window_tolerance:
            return Classification.artifact(ArtifactReason.WINDOW_DEVIATION)

        if _relative_deviation(value, window[-1]) > self.successive_tolerance:
            return Classification.artifact(ArtifactReason.SUCCESSIVE_DEVIATION)

        return ACCEPT

    def should_reseed(self, rejected_run: Sequence[float]) -> bool:
        """
        True when the last `reseed_after` consecutive deviation artifacts
        are consistent with each other under the same tolerances, i.e. the
        rhythm moved rather than a one-off outlier arrived.
        """
        if self.reseed_after == 0 or len(rejected_run) < self.reseed_after:
            return False

        run = list(rejected_run[-self.reseed_after:])
        run_mean = sum(run) / len(run)
        if any(_relative_deviation(v, run_mean) > self.window_tolerance for v in run):
            return False
        return all(
            _relative_deviation(curr, prev) <= self.successive_tolerance
            for prev, curr in zip(run, run[1:])
        )

    def __repr__(self) -> str:
        return (
            f"<SampleFilter(range=[{self.rr_min_ms:.0f}, {self.rr_max_ms:.0f}] ms, "
            f"window={self.window_size}, tol={self.window_tolerance:.2f}/{self.successive_tolerance:.2f})>"
        )
