# hrv_live/streaming/heartrate_message.py
"""
Bluetooth LE Heart Rate Measurement (characteristic 0x2A37) decoder.

Payload layout:
    byte 0        flags
                    bit 0: heart rate is uint16 (else uint8)
                    bit 1: sensor contact detected
                    bit 2: sensor contact supported
                    bit 3: energy expended present (uint16, kJ)
                    bit 4: RR intervals present
    byte 1..      heart rate (uint8 or uint16 LE)
    [2 bytes]     energy expended
    [2*k bytes]   RR intervals, uint16 LE, unit 1/1024 s
"""

import struct
from dataclasses import dataclass, field
from typing import Tuple

from hrv_live.errors import MalformedNotification


HEARTRATE_MEASUREMENT_UUID = "00002a37-0000-1000-8000-00805f9b34fb"

_FLAG_HR_UINT16 = 1 << 0
_FLAG_CONTACT = 1 << 1
_FLAG_CONTACT_SUPPORTED = 1 << 2
_FLAG_ENERGY = 1 << 3
_FLAG_RR = 1 << 4

RR_UNITS_PER_SECOND = 1024.0


@dataclass(frozen=True)
class HeartrateMessage:
    flags: int
    heart_rate: int
    energy_expended: int = 0
    rr_intervals_ms: Tuple[float, ...] = field(default_factory=tuple)

    @property
    def has_long_hr(self) -> bool:
        return bool(self.flags & _FLAG_HR_UINT16)

    @property
    def has_rr_intervals(self) -> bool:
        return bool(self.flags & _FLAG_RR)

    @property
    def has_energy_expended(self) -> bool:
        return bool(self.flags & _FLAG_ENERGY)

    @property
    def sensor_contact(self) -> bool:
        return bool(self.flags & _FLAG_CONTACT)

    @property
    def sensor_contact_supported(self) -> bool:
        return bool(self.flags & _FLAG_CONTACT_SUPPORTED)

    @classmethod
    def parse(cls, payload: bytes) -> "HeartrateMessage":
        """
        Decode a raw notification.

        Raises:
            MalformedNotification on short or truncated payloads.
        """
        data = bytes(payload)
        if len(data) < 2:
            raise MalformedNotification(f"payload too short ({len(data)} bytes)")

        flags = data[0]
        offset = 1

        if flags & _FLAG_HR_UINT16:
            if len(data) < offset + 2:
                raise MalformedNotification("truncated 16-bit heart rate")
            (heart_rate,) = struct.unpack_from("<H", data, offset)
            offset += 2
        else:
            heart_rate = data[offset]
            offset += 1

        energy = 0
        if flags & _FLAG_ENERGY:
            if len(data) < offset + 2:
                raise MalformedNotification("truncated energy expended field")
            (energy,) = struct.unpack_from("<H", data, offset)
            offset += 2

        rr: Tuple[float, ...] = ()
        if flags & _FLAG_RR:
            rr_bytes = data[offset:]
            if len(rr_bytes) % 2:
                raise MalformedNotification("odd number of RR interval bytes")
            raw = struct.unpack(f"<{len(rr_bytes) // 2}H", rr_bytes)
            rr = tuple(value * 1000.0 / RR_UNITS_PER_SECOND for value in raw)

        return cls(flags=flags, heart_rate=heart_rate, energy_expended=energy, rr_intervals_ms=rr)

    def encode(self) -> bytes:
        """Inverse of parse(), used by the replay device and the tests."""
        flags = self.flags
        out = bytearray([flags])
        if flags & _FLAG_HR_UINT16:
            out += struct.pack("<H", self.heart_rate)
        else:
            out.append(self.heart_rate & 0xFF)
        if flags & _FLAG_ENERGY:
            out += struct.pack("<H", self.energy_expended)
        if flags & _FLAG_RR:
            for rr_ms in self.rr_intervals_ms:
                out += struct.pack("<H", int(round(rr_ms * RR_UNITS_PER_SECOND / 1000.0)))
        return bytes(out)

    @classmethod
    def from_rr(cls, rr_intervals_ms: Tuple[float, ...], heart_rate: int = 0) -> "HeartrateMessage":
        return cls(
            flags=_FLAG_RR | _FLAG_CONTACT | _FLAG_CONTACT_SUPPORTED,
            heart_rate=heart_rate,
            rr_intervals_ms=tuple(rr_intervals_ms),
        )

    def __str__(self) -> str:
        rr = ", ".join(f"{v:.2f} ms" for v in self.rr_intervals_ms) or "None"
        return (
            f"HeartrateMessage(flags=0b{self.flags:08b}, hr={self.heart_rate} bpm, "
            f"energy={self.energy_expended} kJ, rr=[{rr}], contact={self.sensor_contact})"
        )
