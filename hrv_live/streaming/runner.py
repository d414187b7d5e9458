# hrv_live/streaming/runner.py
"""
Acquisition runner.

Responsibilities:
    - Iterate the device source's event sequence in a background thread.
    - Hand every event, in arrival order, to the session model (the single
      writer of state and statistics).
    - Restart the event sequence after transport errors, with a retry delay.

Processing of one event is synchronous; the only waiting happens while
the source has nothing to deliver.
"""

import threading
from typing import Optional

from hrv_live.config.settings import settings
from hrv_live.session.model import SessionModel
from hrv_live.utils.logging_utils import get_logger


logger = get_logger(module_name="acquisition", logfile_name="acquisition.log")


class AcquisitionRunner:
    """
    Background consumer feeding device events into a SessionModel.
    """

    def __init__(self, model: SessionModel, source, retry_delay_s: Optional[float] = None) -> None:
        self.model = model
        self.source = source
        self.retry_delay_s = retry_delay_s if retry_delay_s is not None else settings.streaming.retry_delay_s

        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self.events_processed = 0

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the consumer thread if it is not already running."""
        if self.is_running:
            logger.warning("Acquisition runner already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_forever,
            name="Acquisition-Runner-Thread",
            daemon=True,
        )
        self._thread.start()
        logger.info("Acquisition runner started (source=%r)", self.source)

    def stop(self, timeout: float = 5.0) -> None:
        """Ask the thread to stop after the current event and wait for it."""
        if not self.is_running:
            return

        self._stop_event.set()
        close = getattr(self.source, "close", None)
        if close is not None:
            try:
                close()
            except Exception as e:
                logger.error("Error closing source: %s", e, exc_info=True)

        self._thread.join(timeout=timeout)
        logger.info("Acquisition runner stopped after %d events", self.events_processed)

    def _run_forever(self) -> None:
        while not self._stop_event.is_set():
            try:
                for event in self.source.events():
                    if self._stop_event.is_set():
                        break
                    self.model.handle_event(event)
                    self.events_processed += 1
                else:
                    # the sequence ended on its own: restart it
                    logger.info("Event sequence ended, restarting")
                    self._stop_event.wait(settings.streaming.poll_timeout_s)
                    continue
                break

            except Exception as e:
                # Any transport error (broker down, adapter gone...): log and retry
                logger.error("Event source error: %r (retrying in %.1fs)", e, self.retry_delay_s, exc_info=True)
                self._stop_event.wait(self.retry_delay_s)

    def __repr__(self) -> str:
        status = "running" if self.is_running else "stopped"
        return f"<AcquisitionRunner(status={status}, events={self.events_processed})>"
