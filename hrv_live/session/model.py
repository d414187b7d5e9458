# hrv_live/session/model.py
"""
Session model: the addressable aggregate read by the presentation layer.

Live values (state, current snapshot, Poincaré points) are read during the
recording; the final snapshot only becomes available once the machine is
STOPPED. Readers never mutate anything; all writes go through the state
machine (command / handle_event).
"""

from dataclasses import dataclass
from typing import Optional, Tuple, Union

import pandas as pd

from hrv_live.hrv_metrics.accumulator import HrvSnapshot, PoincarePoint
from hrv_live.session.session import Session
from hrv_live.session.state_machine import AcquisitionState, AcquisitionStateMachine, LiveView
from hrv_live.streaming.events import Outcome


@dataclass(frozen=True)
class NotFinalized:
    """Returned by final_snapshot() while the session is not stopped."""
    state: AcquisitionState

    def to_dict(self):
        return {"error": "not_finalized", "state": self.state.value}


class SessionModel:
    """
    Read accessors over an AcquisitionStateMachine.

    Args:
        machine:
            The single writer. A default machine without device link is
            created when omitted.
    """

    def __init__(self, machine: Optional[AcquisitionStateMachine] = None) -> None:
        self.machine = machine if machine else AcquisitionStateMachine()

    # -------------------- writes (delegated) -------------------- #

    def command(self, cmd) -> Outcome:
        return self.machine.command(cmd)

    def handle_event(self, event) -> Outcome:
        return self.machine.handle_event(event)

    # -------------------- live reads -------------------- #

    def live_view(self) -> LiveView:
        return self.machine.cell.get()

    def state(self) -> AcquisitionState:
        return self.live_view().state

    def failure_reason(self) -> Optional[str]:
        return self.live_view().failure_reason

    def current_snapshot(self) -> HrvSnapshot:
        """Most recent published snapshot; kept after stop or failure."""
        return self.live_view().snapshot

    def session(self) -> Optional[Session]:
        return self.machine.session

    def poincare_points(self, max_points: Optional[int] = None) -> Tuple[PoincarePoint, ...]:
        session = self.machine.session
        if session is None:
            return ()
        return session.poincare_points(max_points)

    def window_snapshot(self, samples: Optional[int] = None) -> HrvSnapshot:
        session = self.machine.session
        if session is None:
            return HrvSnapshot.empty()
        return session.accumulator.window_snapshot(samples)

    def history_frame(self, max_points: Optional[int] = None) -> pd.DataFrame:
        session = self.machine.session
        if session is None:
            return pd.DataFrame(columns=["elapsed_s", "rmssd", "sdrr", "sd1", "sd2", "mean_hr"])
        return session.accumulator.history_frame(max_points)

    def wait_for_update(self, version: int, timeout: Optional[float] = None) -> Tuple[int, LiveView]:
        """Block until a LiveView newer than `version` is published (or timeout)."""
        return self.machine.cell.wait_for(version, timeout=timeout)

    # -------------------- finalized reads -------------------- #

    def final_snapshot(self) -> Union[HrvSnapshot, NotFinalized]:
        """
        Final snapshot of the stopped session, or NotFinalized(state) while
        the machine is anywhere but STOPPED.
        """
        state = self.machine.state
        session = self.machine.session
        if state is not AcquisitionState.STOPPED or session is None or not session.finalized:
            return NotFinalized(state=state)
        return session.final_snapshot

    def finalized_session(self) -> Optional[Session]:
        """The stopped session, safe to hand to storage without copying."""
        if self.machine.state is AcquisitionState.STOPPED:
            return self.machine.session
        return None

    def __repr__(self) -> str:
        return f"<SessionModel(state={self.machine.state.value})>"
