import pytest

from hrv_live.errors import MalformedNotification
from hrv_live.streaming.heartrate_message import HeartrateMessage


def test_parse_uint8_hr_with_rr():
    # flags: RR present, contact supported + detected; HR 60; RR 1024/1024 s
    msg = HeartrateMessage.parse(bytes([0x16, 60, 0x00, 0x04]))

    assert msg.heart_rate == 60
    assert not msg.has_long_hr
    assert msg.sensor_contact
    assert msg.sensor_contact_supported
    assert msg.has_rr_intervals
    assert msg.rr_intervals_ms == (1000.0,)


def test_parse_uint16_hr_without_rr():
    msg = HeartrateMessage.parse(bytes([0x01, 0x2C, 0x01]))
    assert msg.has_long_hr
    assert msg.heart_rate == 300
    assert msg.rr_intervals_ms == ()


def test_parse_energy_and_several_rr():
    payload = bytes([0x18, 80, 0x10, 0x00, 0x00, 0x04, 0x00, 0x02])
    msg = HeartrateMessage.parse(payload)

    assert msg.has_energy_expended
    assert msg.energy_expended == 16
    assert msg.rr_intervals_ms == (1000.0, 500.0)


@pytest.mark.parametrize(
    "payload",
    [
        b"",
        b"\x10",
        b"\x01\x50",
        b"\x08\x50\x01",
        b"\x10\x50\x00",
    ],
    ids=["empty", "flags-only", "truncated-hr16", "truncated-energy", "odd-rr-bytes"],
)
def test_malformed_payloads(payload):
    with pytest.raises(MalformedNotification):
        HeartrateMessage.parse(payload)


def test_encode_quantizes_to_rr_units():
    payload = HeartrateMessage.from_rr((800.0, 812.5), heart_rate=74).encode()
    msg = HeartrateMessage.parse(payload)

    assert msg.heart_rate == 74
    # 1/1024 s resolution
    assert msg.rr_intervals_ms[0] == pytest.approx(800.0, abs=1000.0 / 1024.0)
    assert msg.rr_intervals_ms[1] == 812.5


def test_str_mentions_rr():
    text = str(HeartrateMessage.parse(bytes([0x16, 60, 0x00, 0x04])))
    assert "1000.00 ms" in text
    assert "hr=60 bpm" in text
