import pytest

from hrv_live.session.state_machine import AcquisitionState
from hrv_live.streaming.events import (
    COMMANDS_BY_NAME,
    Connected,
    DeviceError,
    DeviceFound,
    Disconnected,
    IntervalNotification,
    InvalidEventMessage,
    Outcome,
    RawNotification,
    ScanTimeout,
    SelectDevice,
    event_to_message,
    message_to_event,
)


@pytest.mark.parametrize(
    "event",
    [
        DeviceFound(handle="AA:BB", name="Polar H10"),
        Connected(handle="AA:BB"),
        Disconnected(),
        IntervalNotification(timestamp=12.5, duration_ms=812.0),
        RawNotification(timestamp=12.5, payload=b"\x16\x3c\x00\x04"),
        ScanTimeout(),
        DeviceError(reason="GATT error"),
    ],
)
def test_event_message_mapping(event):
    assert message_to_event(event_to_message(event)) == event


def test_bare_rr_message_is_an_interval():
    event = message_to_event({"ts": 3.0, "rr_ms": 790})
    assert event == IntervalNotification(timestamp=3.0, duration_ms=790)


def test_interval_value_is_passed_through():
    event = message_to_event({"type": "interval", "ts": 3.0, "rr_ms": "oops"})
    assert event.duration_ms == "oops"


def test_non_hex_payload_is_a_device_error():
    event = message_to_event({"type": "hrs", "ts": 1.0, "payload": "zz"})
    assert isinstance(event, DeviceError)
    assert "malformed" in event.reason


@pytest.mark.parametrize(
    "message",
    [
        ["interval", 800],
        "800",
        {"type": "heartbeat"},
        {"type": "interval", "ts": 1.0},
        {},
    ],
)
def test_invalid_messages(message):
    with pytest.raises(InvalidEventMessage):
        message_to_event(message)


def test_missing_timestamp_defaults_to_now():
    event = message_to_event({"type": "interval", "rr_ms": 800.0})
    assert event.timestamp > 0


def test_commands_by_name():
    assert set(COMMANDS_BY_NAME) == {
        "start_scan",
        "cancel_scan",
        "select_device",
        "start_recording",
        "stop_recording",
        "reset",
    }
    assert COMMANDS_BY_NAME["select_device"] is SelectDevice


def test_outcome_to_dict():
    assert Outcome.applied(AcquisitionState.SCANNING).to_dict() == {
        "outcome": "applied",
        "state": "scanning",
        "reason": None,
    }
    fatal = Outcome.fatal(AcquisitionState.FAILED, "connection lost")
    assert fatal.is_fatal
    assert fatal.to_dict()["reason"] == "connection lost"
