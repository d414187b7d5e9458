# hrv_live/config/settings.py
"""
Central application configuration for the live HRV acquisition service.

All constants and tunables live here:
    - File paths (logs, stored sessions, replay input)
    - Kafka device-event transport
    - Artifact filter thresholds
    - Statistics parameters
    - Streaming / runner behaviour
    - REST API

Read from anywhere via:
    from hrv_live.config.settings import settings
"""

import os
from dataclasses import dataclass, field
from pathlib import Path


# Repository root: .../package
BASE_DIR = Path(__file__).resolve().parents[2]


@dataclass(frozen=True)
class PathSettings:
    """
    File and directory locations.

    Environment variables:
        HRV_LOG_DIR
        HRV_SESSIONS_DIR
        HRV_RR_FILE
    """

    base_dir: Path = BASE_DIR
    log_dir: Path = Path(os.getenv("HRV_LOG_DIR", str(BASE_DIR / "logs")))
    sessions_dir: Path = Path(os.getenv("HRV_SESSIONS_DIR", str(BASE_DIR / "data" / "sessions")))
    # RR series replayed by the simulated device (csv with 'rr' or 'rr_ms' column)
    rr_file: str = os.getenv("HRV_RR_FILE", "")


@dataclass(frozen=True)
class KafkaSettings:
    """
    Kafka connection settings for the device bridge.

    Environment variables:
        KAFKA_BOOTSTRAP
        KAFKA_EVENT_TOPIC
        KAFKA_CONTROL_TOPIC
        KAFKA_GROUP_ID
    """

    bootstrap_servers: str = os.getenv("KAFKA_BOOTSTRAP", "localhost:9092")
    event_topic: str = os.getenv("KAFKA_EVENT_TOPIC", "hrv-device-events")
    control_topic: str = os.getenv("KAFKA_CONTROL_TOPIC", "hrv-device-control")
    group_id: str = os.getenv("KAFKA_GROUP_ID", "hrv-live")


@dataclass(frozen=True)
class FilterSettings:
    """
    Artifact classification parameters.

    The deviation tolerances are relative (0.20 = 20 %) and inclusive.
    """

    # Physiological RR limits (ms), roughly 30-200 bpm
    rr_min_ms: float = 300.0
    rr_max_ms: float = 2000.0

    # Number of trailing accepted samples for the local mean
    window_size: int = 5

    window_tolerance: float = 0.20
    successive_tolerance: float = 0.20

    # Consecutive deviation rejections that agree with each other before the
    # reference window restarts from them (0 disables, otherwise >= 2)
    reseed_after: int = 3


@dataclass(frozen=True)
class StatsSettings:
    """
    HRV statistics parameters.
    """

    # Snapshots below this many accepted samples are flagged low-confidence
    low_confidence_samples: int = 30

    # Default "stats window" (accepted samples) for windowed metrics
    default_window_samples: int = 60

    # Frequency-domain resampling frequency (Hz)
    fs_resample: float = 4.0

    # Spectral band limits (Hz)
    vlf_band: tuple = (0.0033, 0.04)
    lf_band: tuple = (0.04, 0.15)
    hf_band: tuple = (0.15, 0.40)

    # DFA alpha1 box sizes (beats)
    dfa_min_box: int = 4
    dfa_max_box: int = 16


@dataclass(frozen=True)
class StreamingSettings:
    """
    Device event source and runner behaviour.

    Environment variables:
        HRV_SOURCE   ('replay', 'kafka' or '' for none)
    """

    source: str = os.getenv("HRV_SOURCE", "")
    retry_delay_s: float = 2.0
    poll_timeout_s: float = 0.5
    replay_speed: float = 1.0
    replay_handle: str = "replay-0"


@dataclass(frozen=True)
class ApiSettings:
    """
    REST API settings.
    """

    host: str = os.getenv("HRV_API_HOST", "127.0.0.1")
    port: int = int(os.getenv("HRV_API_PORT", "8000"))
    max_poincare_points: int = 1000
    max_history_points: int = 500


@dataclass(frozen=True)
class AppSettings:
    paths: PathSettings = field(default_factory=PathSettings)
    kafka: KafkaSettings = field(default_factory=KafkaSettings)
    filter: FilterSettings = field(default_factory=FilterSettings)
    stats: StatsSettings = field(default_factory=StatsSettings)
    streaming: StreamingSettings = field(default_factory=StreamingSettings)
    api: ApiSettings = field(default_factory=ApiSettings)


# Single global config object
settings = AppSettings()
