# hrv_live/session/session.py
"""
Recording session aggregate.

A Session is created when the machine enters Recording and owns:
    - every received interval in arrival order, with its artifact flag,
    - the StatisticsAccumulator fed with the accepted subset,
    - per-reason artifact counts (diagnostics only),
    - the reference window of the artifact filter, restarted from the
      rejected run when the rhythm moves for good.

It is finalized (immutable) when the recording stops or the device fails;
after that its samples and snapshot can be handed out without copying.
"""

import math
import uuid
from collections import Counter, deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from hrv_live.hrv_metrics.accumulator import HrvSnapshot, PoincarePoint, StatisticsAccumulator
from hrv_live.hrv_metrics.sample_filter import ArtifactReason, SampleFilter


@dataclass(frozen=True)
class IntervalSample:
    """
    One received RR interval.

    Attributes:
        timestamp:
            Arrival time, epoch seconds.
        duration_ms:
            Interval in milliseconds (NaN when the notification carried
            something that is not a number).
        artifact:
            Set once at ingestion, never changed.
        reason:
            ArtifactReason value for artifacts, None otherwise.
    """
    timestamp: float
    duration_ms: float
    artifact: bool = False
    reason: Optional[str] = None


_DEVIATION_REASONS = (ArtifactReason.WINDOW_DEVIATION, ArtifactReason.SUCCESSIVE_DEVIATION)


def _as_float(value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


class Session:
    """
    One recording: samples + statistics.
    """

    def __init__(
        self,
        sample_filter: Optional[SampleFilter] = None,
        accumulator: Optional[StatisticsAccumulator] = None,
        session_id: Optional[str] = None,
        started_at: Optional[datetime] = None,
        device: Optional[str] = None,
    ) -> None:
        self.session_id = session_id if session_id else str(uuid.uuid4())
        self.started_at = started_at if started_at else datetime.now(timezone.utc)
        self.stopped_at: Optional[datetime] = None
        self.device = device

        self.sample_filter = sample_filter if sample_filter else SampleFilter()
        self.accumulator = accumulator if accumulator else StatisticsAccumulator()

        self._samples: List[IntervalSample] = []
        self._frozen_samples: Optional[Tuple[IntervalSample, ...]] = None
        self._artifact_counts: Counter = Counter()
        self._last_timestamp: Optional[float] = None

        # reference the filter compares against: trailing accepted samples,
        # or the agreeing run of deviation artifacts after a reseed
        self._reference: deque = deque(maxlen=self.sample_filter.window_size)
        self._rejected_run: List[float] = []

        self.final_snapshot: Optional[HrvSnapshot] = None
        self.aborted_reason: Optional[str] = None

    # ------------------------------------------------------------------ #
    # Ingestion
    # ------------------------------------------------------------------ #

    def ingest(self, timestamp, duration_ms) -> IntervalSample:
        """
        Classify one received interval and, if accepted, feed the statistics.

        Never raises on bad values: they end up as artifacts.
        """
        self._check_open()

        ts = _as_float(timestamp)
        value = _as_float(duration_ms)

        if not math.isfinite(ts) or (self._last_timestamp is not None and ts < self._last_timestamp):
            reason: Optional[ArtifactReason] = ArtifactReason.NON_MONOTONIC_TIMESTAMP
        else:
            self._last_timestamp = ts
            reason = self.sample_filter.classify(list(self._reference), duration_ms).reason
            if reason in _DEVIATION_REASONS:
                self._rejected_run.append(value)
                if self.sample_filter.should_reseed(self._rejected_run):
                    self._reference = deque(
                        self._rejected_run[-self.sample_filter.reseed_after:],
                        maxlen=self.sample_filter.window_size,
                    )
                    self._rejected_run = []
                    reason = None
            elif reason is None:
                self._reference.append(value)
                self._rejected_run = []

        if reason is None:
            sample = IntervalSample(timestamp=ts, duration_ms=value)
            self.accumulator.ingest(value)
        else:
            sample = IntervalSample(timestamp=ts, duration_ms=value, artifact=True, reason=reason.value)
            self._artifact_counts[reason.value] += 1

        self._samples.append(sample)
        return sample

    def restore(self, sample: IntervalSample) -> None:
        """
        Append an already classified sample (reconstruction from storage);
        the stored flag is trusted, nothing is reclassified.
        """
        self._check_open()
        if sample.artifact:
            self._artifact_counts[sample.reason or "unknown"] += 1
        else:
            self.accumulator.ingest(sample.duration_ms)
            self._reference.append(sample.duration_ms)
            self._last_timestamp = sample.timestamp
        self._samples.append(sample)

    def finalize(self, stopped_at: Optional[datetime] = None, aborted_reason: Optional[str] = None) -> HrvSnapshot:
        """
        Freeze the session and compute the final snapshot. Idempotent.
        """
        if self.finalized:
            return self.final_snapshot

        self.stopped_at = stopped_at if stopped_at else datetime.now(timezone.utc)
        self.aborted_reason = aborted_reason
        self._frozen_samples = tuple(self._samples)
        self.final_snapshot = self.accumulator.freeze()
        return self.final_snapshot

    def _check_open(self) -> None:
        if self.finalized:
            raise RuntimeError(f"session {self.session_id} is finalized")

    # ------------------------------------------------------------------ #
    # Read side
    # ------------------------------------------------------------------ #

    @property
    def finalized(self) -> bool:
        return self._frozen_samples is not None

    @property
    def samples(self) -> Tuple[IntervalSample, ...]:
        if self._frozen_samples is not None:
            return self._frozen_samples
        return tuple(self._samples)

    @property
    def sample_count(self) -> int:
        return len(self._samples)

    @property
    def is_empty(self) -> bool:
        return not self._samples

    @property
    def accepted_intervals(self) -> Tuple[float, ...]:
        return self.accumulator.intervals()

    @property
    def artifact_count(self) -> int:
        return sum(self._artifact_counts.values())

    @property
    def artifact_counts(self) -> Dict[str, int]:
        return dict(self._artifact_counts)

    def snapshot(self) -> HrvSnapshot:
        return self.accumulator.snapshot()

    def poincare_points(self, max_points: Optional[int] = None) -> Tuple[PoincarePoint, ...]:
        return self.accumulator.poincare_points(max_points)

    def summary(self) -> Dict[str, object]:
        return {
            "session_id": self.session_id,
            "started_at": self.started_at.isoformat(),
            "stopped_at": self.stopped_at.isoformat() if self.stopped_at else None,
            "device": self.device,
            "finalized": self.finalized,
            "aborted_reason": self.aborted_reason,
            "samples": self.sample_count,
            "accepted": self.accumulator.sample_count,
            "artifacts": self.artifact_counts,
        }

    def __repr__(self) -> str:
        status = "finalized" if self.finalized else "recording"
        return f"<Session(id={self.session_id}, samples={self.sample_count}, status={status})>"
