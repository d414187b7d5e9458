# hrv_live/streaming/events.py
"""
Device events, user commands and command outcomes.

Device events come from the device collaborator (BLE bridge, Kafka, replay),
commands come from the user (API / CLI). Both are plain frozen dataclasses so
the state machine can switch on their type explicitly.

Kafka / JSON message schema for device events:
    {"type": "device_found", "handle": <str>, "name": <str>}
    {"type": "connected", "handle": <str>}
    {"type": "disconnected"}
    {"type": "interval", "ts": <float epoch s>, "rr_ms": <float>}
    {"type": "hrs", "ts": <float epoch s>, "payload": <hex str>}
    {"type": "scan_timeout"}
    {"type": "error", "reason": <str>}
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

from hrv_live.errors import HrvLiveError


# -------------------- DEVICE EVENTS -------------------- #

@dataclass(frozen=True)
class DeviceFound:
    handle: str
    name: str = ""


@dataclass(frozen=True)
class Connected:
    handle: str = ""


@dataclass(frozen=True)
class Disconnected:
    pass


@dataclass(frozen=True)
class IntervalNotification:
    """One RR interval; timestamp in epoch seconds, duration in milliseconds."""
    timestamp: float
    duration_ms: Any


@dataclass(frozen=True)
class RawNotification:
    """Undecoded BLE Heart Rate Measurement payload."""
    timestamp: float
    payload: bytes


@dataclass(frozen=True)
class ScanTimeout:
    pass


@dataclass(frozen=True)
class DeviceError:
    reason: str


DeviceEvent = Union[
    DeviceFound,
    Connected,
    Disconnected,
    IntervalNotification,
    RawNotification,
    ScanTimeout,
    DeviceError,
]


# -------------------- COMMANDS -------------------- #

@dataclass(frozen=True)
class StartScan:
    pass


@dataclass(frozen=True)
class CancelScan:
    pass


@dataclass(frozen=True)
class SelectDevice:
    handle: str


@dataclass(frozen=True)
class StartRecording:
    pass


@dataclass(frozen=True)
class StopRecording:
    pass


@dataclass(frozen=True)
class Reset:
    pass


Command = Union[StartScan, CancelScan, SelectDevice, StartRecording, StopRecording, Reset]

COMMANDS_BY_NAME = {
    "start_scan": StartScan,
    "cancel_scan": CancelScan,
    "select_device": SelectDevice,
    "start_recording": StartRecording,
    "stop_recording": StopRecording,
    "reset": Reset,
}


# -------------------- OUTCOMES -------------------- #

class OutcomeKind(str, Enum):
    APPLIED = "applied"
    REJECTED = "rejected"
    FATAL = "fatal"


@dataclass(frozen=True)
class Outcome:
    """
    Explicit result of a command or event.

    Attributes:
        kind:
            APPLIED, REJECTED (invalid transition, nothing changed) or
            FATAL (a device failure: the machine entered Failed, or
            stayed Idle because discovery could not start).
        state:
            Machine state after handling (for REJECTED: the unchanged state).
        reason:
            Failure reason for FATAL outcomes.
    """
    kind: OutcomeKind
    state: Any = None
    reason: Optional[str] = None

    @classmethod
    def applied(cls, state) -> "Outcome":
        return cls(OutcomeKind.APPLIED, state)

    @classmethod
    def rejected(cls, state) -> "Outcome":
        return cls(OutcomeKind.REJECTED, state)

    @classmethod
    def fatal(cls, state, reason: str) -> "Outcome":
        return cls(OutcomeKind.FATAL, state, reason)

    @property
    def is_applied(self) -> bool:
        return self.kind is OutcomeKind.APPLIED

    @property
    def is_rejected(self) -> bool:
        return self.kind is OutcomeKind.REJECTED

    @property
    def is_fatal(self) -> bool:
        return self.kind is OutcomeKind.FATAL

    def to_dict(self) -> Dict[str, Any]:
        state = getattr(self.state, "value", self.state)
        return {"outcome": self.kind.value, "state": state, "reason": self.reason}


# -------------------- JSON MAPPING -------------------- #

class InvalidEventMessage(HrvLiveError):
    """A transport message that is not a device event at all."""


def event_to_message(event: DeviceEvent) -> Dict[str, Any]:
    """Serialize a device event into the JSON message schema."""
    if isinstance(event, DeviceFound):
        return {"type": "device_found", "handle": event.handle, "name": event.name}
    if isinstance(event, Connected):
        return {"type": "connected", "handle": event.handle}
    if isinstance(event, Disconnected):
        return {"type": "disconnected"}
    if isinstance(event, IntervalNotification):
        return {"type": "interval", "ts": event.timestamp, "rr_ms": event.duration_ms}
    if isinstance(event, RawNotification):
        return {"type": "hrs", "ts": event.timestamp, "payload": event.payload.hex()}
    if isinstance(event, ScanTimeout):
        return {"type": "scan_timeout"}
    if isinstance(event, DeviceError):
        return {"type": "error", "reason": event.reason}
    raise InvalidEventMessage(f"not a device event: {event!r}")


def message_to_event(data: Any) -> DeviceEvent:
    """
    Parse a JSON message into a device event.

    Interval values are passed through untouched: a bad duration is the
    artifact filter's business, not the transport's. A non-hex "hrs"
    payload is reported as a DeviceError (malformed notification).

    Raises:
        InvalidEventMessage if the message is not a device event.
    """
    if not isinstance(data, dict):
        raise InvalidEventMessage(f"non-dict message: {data!r}")

    kind = data.get("type")
    if kind is None and "rr_ms" in data:
        # bare RR messages {"ts", "rr_ms"} are accepted as intervals
        kind = "interval"

    if kind == "device_found":
        return DeviceFound(handle=str(data.get("handle", "")), name=str(data.get("name", "")))
    if kind == "connected":
        return Connected(handle=str(data.get("handle", "")))
    if kind == "disconnected":
        return Disconnected()
    if kind == "interval":
        if "rr_ms" not in data:
            raise InvalidEventMessage(f"interval message without 'rr_ms': {data!r}")
        return IntervalNotification(timestamp=_timestamp(data), duration_ms=data["rr_ms"])
    if kind == "hrs":
        try:
            payload = bytes.fromhex(str(data.get("payload", "")))
        except ValueError:
            return DeviceError(reason=f"malformed notification payload: {data.get('payload')!r}")
        return RawNotification(timestamp=_timestamp(data), payload=payload)
    if kind == "scan_timeout":
        return ScanTimeout()
    if kind == "error":
        return DeviceError(reason=str(data.get("reason", "unknown device error")))

    raise InvalidEventMessage(f"unknown message type: {data!r}")


def _timestamp(data: Dict[str, Any]) -> float:
    try:
        return float(data.get("ts", time.time()))
    except (TypeError, ValueError):
        return time.time()
