# hrv_live/streaming/rr_producer.py
"""
Streams an RR series to Kafka as device events, playing the part of a
BLE bridge for demos and integration runs:

    device_found -> connected -> interval ... interval -> disconnected

The consumer side is KafkaDeviceSource.
"""

import json
import time
from pathlib import Path
from typing import Optional, Sequence, Union

from kafka import KafkaProducer

from hrv_live.config.settings import settings
from hrv_live.streaming.events import (
    Connected,
    DeviceFound,
    Disconnected,
    IntervalNotification,
    event_to_message,
)
from hrv_live.streaming.sources import load_rr_ms
from hrv_live.utils.logging_utils import get_logger


logger = get_logger(module_name="rr_producer", logfile_name="producer.log")


def build_producer(bootstrap_servers: Optional[str] = None) -> KafkaProducer:
    return KafkaProducer(
        bootstrap_servers=bootstrap_servers or settings.kafka.bootstrap_servers,
        value_serializer=lambda v: json.dumps(v).encode("utf-8"),
        acks=1,
    )


def stream_rr(
    producer: KafkaProducer,
    rr_ms: Sequence[float],
    handle: str,
    topic: Optional[str] = None,
    loop: bool = False,
    speed: float = 1.0,
) -> int:
    """
    Send one session's worth of device events for an RR series.

    Args:
        loop:
            If True, wraps around at the end of the series (never returns).
        speed:
            Playback speed; each interval is sent after rr / speed ms.
            speed <= 0 sends as fast as possible.

    Returns:
        Number of interval events sent.
    """
    topic = topic or settings.kafka.event_topic

    producer.send(topic, event_to_message(DeviceFound(handle=handle, name="RR replay")))
    producer.send(topic, event_to_message(Connected(handle=handle)))

    sent = 0
    try:
        while True:
            for rr in rr_ms:
                if speed > 0:
                    time.sleep(float(rr) / 1000.0 / speed)
                msg = event_to_message(IntervalNotification(timestamp=time.time(), duration_ms=float(rr)))
                producer.send(topic, msg)
                sent += 1
            producer.flush()
            if not loop:
                break
    finally:
        producer.send(topic, event_to_message(Disconnected()))
        producer.flush()

    return sent


def main(
    rr_file: Union[str, Path],
    loop: bool = False,
    speed: float = 1.0,
    handle: Optional[str] = None,
) -> None:
    """
    Producer entry point: stream the RR series of `rr_file` to Kafka.
    """
    rr_ms = load_rr_ms(rr_file)
    if rr_ms.size == 0:
        logger.warning("Empty RR series in %s, nothing to send", rr_file)
        return

    handle = handle or settings.streaming.replay_handle
    producer = build_producer()
    logger.info(
        "Producing %d RR values from %s to topic='%s' (loop=%s, speed=%.2f)",
        rr_ms.size,
        rr_file,
        settings.kafka.event_topic,
        loop,
        speed,
    )

    try:
        sent = stream_rr(producer, rr_ms, handle=handle, loop=loop, speed=speed)
        logger.info("Done, %d intervals sent", sent)
    finally:
        producer.close()
