# hrv_live/session/state_machine.py
"""
Acquisition lifecycle state machine.

States:
    IDLE -> SCANNING -> CONNECTED -> RECORDING -> STOPPED
                        CONNECTED | RECORDING -> FAILED(reason)

Transition table (anything else is rejected, state untouched):

    IDLE        StartScan                  -> SCANNING   link.start_discovery()
    IDLE        StartScan, discovery raises-> IDLE       fatal outcome, reason kept
    SCANNING    DeviceFound                -> SCANNING   remember handle
    SCANNING    SelectDevice / Connected   -> CONNECTED  link.connect(handle)
    SCANNING    CancelScan / ScanTimeout   -> IDLE       link.stop_discovery()
    CONNECTED   StartRecording             -> RECORDING  new Session
    RECORDING   Interval / Raw notification-> RECORDING  filter -> statistics
    RECORDING   StopRecording/Disconnected -> STOPPED    finalize Session
    CONNECTED   Disconnected               -> FAILED     connection lost
    CONNECTED,
    RECORDING   DeviceError / bad payload  -> FAILED     freeze Session
    STOPPED,
    FAILED      Reset                      -> IDLE       link.disconnect()

Samples only flow while RECORDING. Every command and event returns an
explicit Outcome (applied / rejected / fatal); invalid transitions are never
raised. One lock serializes the consumer thread (device events) and the
command callers, so a stop lands between two samples.
"""

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Optional

from hrv_live.errors import MalformedNotification
from hrv_live.hrv_metrics.accumulator import HrvSnapshot, StatisticsAccumulator
from hrv_live.hrv_metrics.sample_filter import SampleFilter
from hrv_live.session.published import PublishedCell
from hrv_live.session.session import Session
from hrv_live.streaming.events import (
    CancelScan,
    Connected,
    DeviceError,
    DeviceFound,
    Disconnected,
    IntervalNotification,
    Outcome,
    RawNotification,
    Reset,
    ScanTimeout,
    SelectDevice,
    StartRecording,
    StartScan,
    StopRecording,
)
from hrv_live.streaming.heartrate_message import HeartrateMessage
from hrv_live.utils.logging_utils import get_logger


logger = get_logger(module_name="acquisition", logfile_name="acquisition.log")


class AcquisitionState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    CONNECTED = "connected"
    RECORDING = "recording"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass(frozen=True)
class LiveView:
    """
    What readers see: the authoritative state plus the latest snapshot.
    """
    state: AcquisitionState = AcquisitionState.IDLE
    failure_reason: Optional[str] = None
    snapshot: HrvSnapshot = field(default_factory=HrvSnapshot.empty)
    session_id: Optional[str] = None
    device: Optional[str] = None
    artifact_count: int = 0

    def to_dict(self) -> Dict[str, object]:
        return {
            "state": self.state.value,
            "failure_reason": self.failure_reason,
            "session_id": self.session_id,
            "device": self.device,
            "artifact_count": self.artifact_count,
            "snapshot": self.snapshot.to_dict(),
        }


class AcquisitionStateMachine:
    """
    Owns the acquisition state and the session being recorded.

    Args:
        link:
            Device collaborator (start_discovery / stop_discovery / connect /
            disconnect). Optional: without it transitions have no side effects.
        filter_factory:
            Builds the SampleFilter of each new session.
        accumulator_factory:
            Builds the StatisticsAccumulator of each new session.
        on_finalized:
            Called with every session that was finalized with data
            (stopped, or frozen by a device failure).
        cell:
            Published cell for LiveView values (created if omitted).
    """

    def __init__(
        self,
        link=None,
        filter_factory: Callable[[], SampleFilter] = SampleFilter,
        accumulator_factory: Callable[[], StatisticsAccumulator] = StatisticsAccumulator,
        on_finalized: Optional[Callable[[Session], None]] = None,
        cell: Optional[PublishedCell] = None,
    ) -> None:
        self.link = link
        self.filter_factory = filter_factory
        self.accumulator_factory = accumulator_factory
        self.on_finalized = on_finalized
        self.cell: PublishedCell = cell if cell else PublishedCell(LiveView())

        self._lock = threading.RLock()
        self._state = AcquisitionState.IDLE
        self._failure_reason: Optional[str] = None
        self._device: Optional[str] = None
        self._discovered: Dict[str, str] = {}
        self._session: Optional[Session] = None
        self._snapshot = HrvSnapshot.empty()

        logger.info("Acquisition state machine initialized (state=%s)", self._state.value)

    # ------------------------------------------------------------------ #
    # Read side
    # ------------------------------------------------------------------ #

    @property
    def state(self) -> AcquisitionState:
        return self._state

    @property
    def failure_reason(self) -> Optional[str]:
        return self._failure_reason

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def device(self) -> Optional[str]:
        return self._device

    @property
    def discovered_devices(self) -> Dict[str, str]:
        return dict(self._discovered)

    # ------------------------------------------------------------------ #
    # Commands
    # ------------------------------------------------------------------ #

    def command(self, cmd) -> Outcome:
        """Apply a user command (StartScan, SelectDevice, ...)."""
        with self._lock:
            state = self._state

            if isinstance(cmd, StartScan):
                if state is AcquisitionState.IDLE:
                    return self._enter_scanning()
            elif isinstance(cmd, CancelScan):
                if state is AcquisitionState.SCANNING:
                    return self._leave_scanning("scan cancelled")
            elif isinstance(cmd, SelectDevice):
                if state is AcquisitionState.SCANNING:
                    return self._enter_connected(cmd.handle)
            elif isinstance(cmd, StartRecording):
                if state is AcquisitionState.CONNECTED:
                    return self._enter_recording()
            elif isinstance(cmd, StopRecording):
                if state is AcquisitionState.RECORDING:
                    return self._enter_stopped("stop requested")
            elif isinstance(cmd, Reset):
                if state in (AcquisitionState.STOPPED, AcquisitionState.FAILED):
                    return self._enter_idle()

            return self._reject(cmd)

    # ------------------------------------------------------------------ #
    # Device events
    # ------------------------------------------------------------------ #

    def handle_event(self, event) -> Outcome:
        """Apply one event from the device collaborator, in arrival order."""
        with self._lock:
            state = self._state

            if isinstance(event, IntervalNotification):
                if state is AcquisitionState.RECORDING:
                    self._ingest(event.timestamp, event.duration_ms)
                    return Outcome.applied(state)
            elif isinstance(event, RawNotification):
                if state is AcquisitionState.RECORDING:
                    return self._ingest_raw(event)
            elif isinstance(event, DeviceFound):
                if state is AcquisitionState.SCANNING:
                    self._discovered[event.handle] = event.name
                    logger.info("Device found: %s (%s)", event.handle, event.name or "unnamed")
                    return Outcome.applied(state)
            elif isinstance(event, Connected):
                if state is AcquisitionState.SCANNING:
                    return self._enter_connected(event.handle, request_connect=False)
            elif isinstance(event, ScanTimeout):
                if state is AcquisitionState.SCANNING:
                    return self._leave_scanning("scan timed out")
            elif isinstance(event, Disconnected):
                if state is AcquisitionState.RECORDING:
                    return self._enter_stopped("connection lost")
                if state is AcquisitionState.CONNECTED:
                    return self._enter_failed("connection lost")
            elif isinstance(event, DeviceError):
                if state in (AcquisitionState.CONNECTED, AcquisitionState.RECORDING):
                    return self._enter_failed(event.reason)
                logger.warning("Device error in state %s: %s", state.value, event.reason)

            logger.debug("Ignored %r in state %s", event, state.value)
            return Outcome.rejected(state)

    # ------------------------------------------------------------------ #
    # Transitions
    # ------------------------------------------------------------------ #

    def _enter_scanning(self) -> Outcome:
        self._discovered.clear()
        self._failure_reason = None
        try:
            if self.link is not None:
                self.link.start_discovery()
        except Exception as e:
            # discovery never started: stay IDLE
            logger.error("Failed to start discovery: %s", e, exc_info=True)
            self._failure_reason = f"discovery failed: {e}"
            self._publish()
            return Outcome.fatal(self._state, self._failure_reason)
        self._set_state(AcquisitionState.SCANNING)
        return Outcome.applied(self._state)

    def _leave_scanning(self, why: str) -> Outcome:
        self._call_link("stop_discovery")
        logger.info("Leaving scan: %s", why)
        self._set_state(AcquisitionState.IDLE)
        return Outcome.applied(self._state)

    def _enter_connected(self, handle: str, request_connect: bool = True) -> Outcome:
        self._call_link("stop_discovery")
        self._device = handle
        self._set_state(AcquisitionState.CONNECTED)
        if request_connect:
            try:
                if self.link is not None:
                    self.link.connect(handle)
            except Exception as e:
                logger.error("Failed to connect to %s: %s", handle, e, exc_info=True)
                return self._enter_failed(f"connect failed: {e}")
        return Outcome.applied(self._state)

    def _enter_recording(self) -> Outcome:
        self._session = Session(
            sample_filter=self.filter_factory(),
            accumulator=self.accumulator_factory(),
            device=self._device,
        )
        self._snapshot = self._session.snapshot()
        self._set_state(AcquisitionState.RECORDING)
        logger.info("Recording session %s on device %s", self._session.session_id, self._device)
        return Outcome.applied(self._state)

    def _enter_stopped(self, why: str) -> Outcome:
        session = self._session
        self._snapshot = session.finalize()
        self._set_state(AcquisitionState.STOPPED)
        logger.info(
            "Session %s stopped (%s): %d samples, %d accepted, %d artifacts",
            session.session_id,
            why,
            session.sample_count,
            self._snapshot.sample_count,
            session.artifact_count,
        )
        self._hand_over(session)
        return Outcome.applied(self._state)

    def _enter_failed(self, reason: str) -> Outcome:
        session = self._session
        self._failure_reason = reason
        if session is not None:
            if session.is_empty:
                # nothing recorded: drop it
                self._session = None
            else:
                self._snapshot = session.finalize(aborted_reason=reason)
        self._set_state(AcquisitionState.FAILED)
        logger.warning("Acquisition failed: %s", reason)
        if self._session is not None:
            self._hand_over(self._session)
        return Outcome.fatal(self._state, reason)

    def _enter_idle(self) -> Outcome:
        self._call_link("disconnect")
        self._session = None
        self._device = None
        self._failure_reason = None
        self._discovered.clear()
        self._set_state(AcquisitionState.IDLE)
        return Outcome.applied(self._state)

    def _reject(self, cmd) -> Outcome:
        logger.info("Rejected %s in state %s", type(cmd).__name__, self._state.value)
        return Outcome.rejected(self._state)

    # ------------------------------------------------------------------ #
    # Sample flow
    # ------------------------------------------------------------------ #

    def _ingest(self, timestamp, duration_ms) -> None:
        sample = self._session.ingest(timestamp, duration_ms)
        if sample.artifact:
            logger.debug("Artifact %.1f ms (%s)", sample.duration_ms, sample.reason)
        self._snapshot = self._session.snapshot()
        self._publish()

    def _ingest_raw(self, event: RawNotification) -> Outcome:
        try:
            message = HeartrateMessage.parse(event.payload)
        except MalformedNotification as e:
            return self._enter_failed(f"malformed notification: {e}")
        for rr_ms in message.rr_intervals_ms:
            self._ingest(event.timestamp, rr_ms)
        return Outcome.applied(self._state)

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def _set_state(self, new_state: AcquisitionState) -> None:
        old_state = self._state
        self._state = new_state
        logger.info("State %s -> %s", old_state.value, new_state.value)
        self._publish()

    def _publish(self) -> None:
        session = self._session
        self.cell.publish(
            LiveView(
                state=self._state,
                failure_reason=self._failure_reason,
                snapshot=self._snapshot,
                session_id=session.session_id if session else None,
                device=self._device,
                artifact_count=session.artifact_count if session else 0,
            )
        )

    def _call_link(self, method: str, *args) -> None:
        if self.link is None:
            return
        try:
            getattr(self.link, method)(*args)
        except Exception as e:
            logger.error("Device link %s() failed: %s", method, e, exc_info=True)

    def _hand_over(self, session: Session) -> None:
        if self.on_finalized is None or session.is_empty:
            return
        try:
            self.on_finalized(session)
        except Exception as e:
            logger.error("Finalized-session callback failed for %s: %s", session.session_id, e, exc_info=True)

    def __repr__(self) -> str:
        return f"<AcquisitionStateMachine(state={self._state.value}, device={self._device})>"
