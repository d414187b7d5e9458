# hrv_live/session/storage.py
"""
Session persistence.

Logical record of one session (what gets written, whatever the encoding):

    {
        "session_id": <str>,
        "started_at": <iso datetime>,
        "stopped_at": <iso datetime | null>,
        "device": <str | null>,
        "aborted_reason": <str | null>,
        "samples": [{"timestamp", "duration_ms", "artifact", "reason"}, ...],
                   (timestamp / duration_ms null when not a finite number)
        "final_snapshot": {HrvSnapshot fields}
    }

Reconstruction replays the stored artifact flags (nothing is reclassified),
so a loaded session has exactly the statistics it was saved with.
"""

import json
import math
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import pandas as pd

from hrv_live.config.settings import settings
from hrv_live.errors import SerializationError
from hrv_live.hrv_metrics.accumulator import HrvSnapshot
from hrv_live.session.session import IntervalSample, Session
from hrv_live.utils.logging_utils import get_logger


logger = get_logger(module_name="storage", logfile_name="storage.log")

PathLike = Union[str, Path]


# -------------------- RECORD <-> SESSION -------------------- #

# Non-finite numbers (artifacts that were not numbers at all) are stored as
# null so the file stays strict JSON.

def _finite_or_none(value: float) -> Optional[float]:
    return value if math.isfinite(value) else None


def _float_or_nan(value) -> float:
    return math.nan if value is None else float(value)


def session_to_record(session: Session) -> Dict[str, Any]:
    """Logical record of a finalized session."""
    if not session.finalized:
        raise SerializationError(f"session {session.session_id} is not finalized")

    return {
        "session_id": session.session_id,
        "started_at": session.started_at.isoformat(),
        "stopped_at": session.stopped_at.isoformat() if session.stopped_at else None,
        "device": session.device,
        "aborted_reason": session.aborted_reason,
        "samples": [
            {
                "timestamp": _finite_or_none(s.timestamp),
                "duration_ms": _finite_or_none(s.duration_ms),
                "artifact": s.artifact,
                "reason": s.reason,
            }
            for s in session.samples
        ],
        "final_snapshot": session.final_snapshot.to_dict(),
    }


def session_from_record(record: Dict[str, Any]) -> Session:
    """
    Rebuild a finalized Session from its record without the device stream.

    Raises:
        SerializationError on missing fields, bad types or a sample count
        that does not match the stored final snapshot.
    """
    try:
        session = Session(
            session_id=str(record["session_id"]),
            started_at=datetime.fromisoformat(record["started_at"]),
            device=record.get("device"),
        )
        for item in record["samples"]:
            session.restore(
                IntervalSample(
                    timestamp=_float_or_nan(item["timestamp"]),
                    duration_ms=_float_or_nan(item["duration_ms"]),
                    artifact=bool(item["artifact"]),
                    reason=item.get("reason"),
                )
            )
        stored = HrvSnapshot.from_dict(record["final_snapshot"])
        stopped_at = record.get("stopped_at")
        session.finalize(
            stopped_at=datetime.fromisoformat(stopped_at) if stopped_at else None,
            aborted_reason=record.get("aborted_reason"),
        )
    except SerializationError:
        raise
    except (KeyError, TypeError, ValueError) as e:
        raise SerializationError(f"invalid session record: {e!r}") from e

    if session.final_snapshot.sample_count != stored.sample_count:
        raise SerializationError(
            f"session {session.session_id}: {session.final_snapshot.sample_count} accepted samples "
            f"but the stored snapshot says {stored.sample_count}"
        )
    return session


# -------------------- STORE -------------------- #

class SessionStore:
    """
    Ordered in-memory collection of finalized sessions, with JSON
    save / load and CSV export.
    """

    def __init__(self) -> None:
        self._sessions: List[Session] = []

    def add(self, session: Session) -> None:
        if not session.finalized:
            raise SerializationError(f"session {session.session_id} is not finalized")
        self._sessions.append(session)
        logger.info("Stored session %s (%d samples)", session.session_id, session.sample_count)

    def list(self) -> List[Session]:
        return list(self._sessions)

    def get(self, idx: int) -> Session:
        if not 0 <= idx < len(self._sessions):
            raise IndexError(f"requested an out of bounds session index: {idx}, #sessions: {len(self._sessions)}")
        return self._sessions[idx]

    def delete(self, idx: int) -> None:
        if 0 <= idx < len(self._sessions):
            removed = self._sessions.pop(idx)
            logger.info("Deleted session %s", removed.session_id)

    def clear(self) -> None:
        self._sessions.clear()

    def __len__(self) -> int:
        return len(self._sessions)

    # -------------------- files -------------------- #

    def save(self, path: PathLike) -> Path:
        """Write all sessions as a JSON list of records."""
        out_path = Path(path)
        records = [session_to_record(s) for s in self._sessions]
        try:
            out_path.parent.mkdir(parents=True, exist_ok=True)
            with open(out_path, "w", encoding="utf-8") as f:
                json.dump(records, f, ensure_ascii=False, indent=2, allow_nan=False)
        except (OSError, ValueError) as e:
            raise SerializationError(f"cannot write {out_path}: {e}") from e

        logger.info("Saved %d sessions to %s", len(records), out_path)
        return out_path

    def load(self, path: PathLike, replace: bool = True) -> int:
        """
        Read sessions from a JSON file written by save().

        The store is only modified when the whole file was read successfully.

        Returns:
            Number of sessions loaded.
        """
        in_path = Path(path)
        try:
            with open(in_path, "r", encoding="utf-8") as f:
                records = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise SerializationError(f"cannot read {in_path}: {e}") from e

        if not isinstance(records, list):
            raise SerializationError(f"{in_path}: expected a list of session records")

        sessions = [session_from_record(r) for r in records]
        if replace:
            self._sessions = sessions
        else:
            self._sessions.extend(sessions)

        logger.info("Loaded %d sessions from %s", len(sessions), in_path)
        return len(sessions)

    def to_frame(self, idx: int) -> pd.DataFrame:
        """Samples of one session as a DataFrame (timestamp, duration_ms, artifact, reason)."""
        session = self.get(idx)
        df = pd.DataFrame(
            [
                {
                    "timestamp": s.timestamp,
                    "duration_ms": s.duration_ms,
                    "artifact": s.artifact,
                    "reason": s.reason,
                }
                for s in session.samples
            ],
            columns=["timestamp", "duration_ms", "artifact", "reason"],
        )
        df["hr_bpm"] = 60000.0 / df["duration_ms"]
        df["session_id"] = session.session_id
        return df

    def export_csv(self, idx: int, path: PathLike) -> Path:
        out_path = Path(path)
        try:
            out_path.parent.mkdir(parents=True, exist_ok=True)
            self.to_frame(idx).to_csv(out_path, index=False)
        except OSError as e:
            raise SerializationError(f"cannot write {out_path}: {e}") from e
        logger.info("Exported session %d to %s", idx, out_path)
        return out_path

    def __repr__(self) -> str:
        return f"<SessionStore(sessions={len(self._sessions)})>"


def default_sessions_path(name: Optional[str] = None) -> Path:
    return settings.paths.sessions_dir / (name or "sessions.json")
