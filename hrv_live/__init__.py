"""
hrv_live: live heart-rate-variability acquisition.

Device events (BLE bridge over Kafka, or a replayed RR series) drive an
acquisition state machine; accepted RR intervals feed incremental HRV
statistics (RMSSD, SDRR, Poincaré SD1 / SD2) that are served over REST.
"""

__version__ = "1.0.0"
