# hrv_live/streaming/sources.py
"""
Device collaborators: where device events come from.

Every source implements the same small link interface used by the state
machine, plus a lazy event iterator consumed by the runner:

    start_discovery() / stop_discovery()
    connect(handle) / disconnect()
    events() -> Iterator[DeviceEvent]     (unbounded, restartable)

Sources:
    - ReplayDeviceSource: simulated wearable replaying an RR series.
    - KafkaDeviceSource:  device events from a Kafka topic (BLE bridge),
                          control requests to a second topic.
"""

import json
import queue
import threading
import time
from pathlib import Path
from typing import Callable, Iterator, Optional, Sequence, Union

import numpy as np
import pandas as pd
from kafka import KafkaConsumer, KafkaProducer

from hrv_live.config.settings import settings
from hrv_live.streaming.events import (
    Connected,
    DeviceEvent,
    DeviceFound,
    Disconnected,
    IntervalNotification,
    InvalidEventMessage,
    RawNotification,
    message_to_event,
)
from hrv_live.streaming.heartrate_message import HeartrateMessage
from hrv_live.utils.logging_utils import get_logger


logger = get_logger(module_name="device", logfile_name="device.log")


def load_rr_ms(csv_path: Union[str, Path]) -> np.ndarray:
    """
    Load RR intervals (ms) from a CSV file.

    Expected columns:
        - 'rr'     : seconds  -> converted to ms
        - 'rr_ms'  : already in milliseconds

    Returns:
        1D numpy array (float64) of RR intervals in milliseconds,
        with non-finite values removed.
    """
    df = pd.read_csv(csv_path)

    if "rr" in df.columns:
        rr_ms = df["rr"].to_numpy(dtype=float) * 1000.0
    elif "rr_ms" in df.columns:
        rr_ms = df["rr_ms"].to_numpy(dtype=float)
    else:
        raise ValueError(f"RR column not found in {csv_path}. Columns={list(df.columns)}")

    rr_ms = rr_ms[np.isfinite(rr_ms)]
    return rr_ms


# -------------------- REPLAY -------------------- #

class ReplayDeviceSource:
    """
    Simulated heart-rate sensor.

    Discovery reports one device; connecting to it starts a worker thread
    that emits one notification per RR value, paced by the RR value itself
    divided by `speed` (speed <= 0 disables pacing). The end of the series
    is reported as a disconnection unless `loop` is set.

    Args:
        rr_ms:
            RR series in milliseconds.
        raw:
            Emit BLE Heart Rate Measurement payloads (RawNotification)
            instead of decoded IntervalNotification events.
    """

    def __init__(
        self,
        rr_ms: Sequence[float],
        handle: Optional[str] = None,
        name: str = "Replay HR sensor",
        speed: Optional[float] = None,
        loop: bool = False,
        raw: bool = False,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.rr_ms = [float(v) for v in rr_ms]
        self.handle = handle if handle else settings.streaming.replay_handle
        self.name = name
        self.speed = float(speed if speed is not None else settings.streaming.replay_speed)
        self.loop = loop
        self.raw = raw
        self.clock = clock

        self._queue: "queue.Queue[DeviceEvent]" = queue.Queue()
        self._stop_streaming = threading.Event()
        self._closed = threading.Event()
        self._worker: Optional[threading.Thread] = None

        logger.info("Replay device %s ready (%d RR values, speed=%.2f)", self.handle, len(self.rr_ms), self.speed)

    @classmethod
    def from_csv(cls, csv_path: Union[str, Path], **kwargs) -> "ReplayDeviceSource":
        return cls(load_rr_ms(csv_path), **kwargs)

    # -------------------- link -------------------- #

    def start_discovery(self) -> None:
        self._queue.put(DeviceFound(handle=self.handle, name=self.name))

    def stop_discovery(self) -> None:
        logger.debug("Replay discovery stopped")

    def connect(self, handle: str) -> None:
        if handle != self.handle:
            raise ValueError(f"unknown device handle: {handle}")

        self.disconnect()
        self._stop_streaming.clear()
        self._queue.put(Connected(handle=handle))

        self._worker = threading.Thread(
            target=self._stream_loop,
            name="Replay-Device-Thread",
            daemon=True,
        )
        self._worker.start()
        logger.info("Replay device %s connected", handle)

    def disconnect(self) -> None:
        self._stop_streaming.set()
        if self._worker is not None and self._worker.is_alive() and self._worker is not threading.current_thread():
            self._worker.join(timeout=5)
        self._worker = None

    # -------------------- events -------------------- #

    def events(self) -> Iterator[DeviceEvent]:
        while not self._closed.is_set():
            try:
                event = self._queue.get(timeout=settings.streaming.poll_timeout_s)
            except queue.Empty:
                continue
            yield event

    def close(self) -> None:
        self.disconnect()
        self._closed.set()

    def _stream_loop(self) -> None:
        while True:
            for rr in self.rr_ms:
                if self.speed > 0:
                    if self._stop_streaming.wait(rr / 1000.0 / self.speed):
                        return
                elif self._stop_streaming.is_set():
                    return

                ts = self.clock()
                if self.raw:
                    payload = HeartrateMessage.from_rr((rr,), heart_rate=int(round(60000.0 / rr)) if rr > 0 else 0)
                    self._queue.put(RawNotification(timestamp=ts, payload=payload.encode()))
                else:
                    self._queue.put(IntervalNotification(timestamp=ts, duration_ms=rr))

            if not self.loop:
                break

        self._queue.put(Disconnected())
        logger.info("Replay device %s reached the end of its RR series", self.handle)

    def __repr__(self) -> str:
        return f"<ReplayDeviceSource(handle={self.handle}, rr={len(self.rr_ms)})>"


# -------------------- KAFKA -------------------- #

class KafkaDeviceSource:
    """
    Device events from Kafka.

    A BLE bridge process publishes device events (see streaming.events for
    the JSON schema) to `event_topic` and listens for control requests
    ({"command": "scan" | "stop_scan" | "connect" | "disconnect"}) on
    `control_topic`.
    """

    def __init__(
        self,
        bootstrap_servers: Optional[str] = None,
        event_topic: Optional[str] = None,
        control_topic: Optional[str] = None,
        group_id: Optional[str] = None,
    ) -> None:
        self.bootstrap_servers = bootstrap_servers or settings.kafka.bootstrap_servers
        self.event_topic = event_topic or settings.kafka.event_topic
        self.control_topic = control_topic or settings.kafka.control_topic
        self.group_id = group_id or settings.kafka.group_id

        self._producer: Optional[KafkaProducer] = None

    # -------------------- link -------------------- #

    def _send_control(self, command: str, **extra) -> None:
        if self._producer is None:
            self._producer = KafkaProducer(
                bootstrap_servers=self.bootstrap_servers,
                value_serializer=lambda v: json.dumps(v).encode("utf-8"),
                acks=1,
            )
        msg = {"command": command, "ts": time.time(), **extra}
        self._producer.send(self.control_topic, msg)
        self._producer.flush()
        logger.info("Control request sent: %s", msg)

    def start_discovery(self) -> None:
        self._send_control("scan")

    def stop_discovery(self) -> None:
        self._send_control("stop_scan")

    def connect(self, handle: str) -> None:
        self._send_control("connect", handle=handle)

    def disconnect(self) -> None:
        self._send_control("disconnect")

    # -------------------- events -------------------- #

    def events(self) -> Iterator[DeviceEvent]:
        """
        Yield device events from the event topic until the consumer fails.

        Messages that are not JSON or not device events are logged and
        skipped; transport errors propagate to the runner, which reconnects.
        """
        consumer = KafkaConsumer(
            self.event_topic,
            bootstrap_servers=self.bootstrap_servers,
            group_id=self.group_id,
            auto_offset_reset="latest",
            enable_auto_commit=True,
        )
        logger.info(
            "Listening on topic='%s' (bootstrap=%s, group_id=%s)",
            self.event_topic,
            self.bootstrap_servers,
            self.group_id,
        )
        try:
            for msg in consumer:
                try:
                    data = json.loads(msg.value.decode("utf-8"))
                    event = message_to_event(data)
                except (UnicodeDecodeError, json.JSONDecodeError, InvalidEventMessage) as e:
                    logger.warning("Skipped message: %s", e)
                    continue
                yield event
        finally:
            consumer.close()

    def close(self) -> None:
        if self._producer is not None:
            self._producer.close()
            self._producer = None

    def __repr__(self) -> str:
        return f"<KafkaDeviceSource(topic={self.event_topic}, bootstrap={self.bootstrap_servers})>"
