import os
import tempfile
import time

# Settings are read at import time: point logs and stored sessions to a
# scratch directory and make sure no device source is started by the API.
_SCRATCH = tempfile.mkdtemp(prefix="hrv_live_tests_")
os.environ["HRV_LOG_DIR"] = os.path.join(_SCRATCH, "logs")
os.environ["HRV_SESSIONS_DIR"] = os.path.join(_SCRATCH, "sessions")
os.environ["HRV_SOURCE"] = ""

import pytest  # noqa: E402

from hrv_live.session.model import SessionModel  # noqa: E402
from hrv_live.session.state_machine import AcquisitionStateMachine  # noqa: E402
from hrv_live.session.storage import SessionStore  # noqa: E402
from hrv_live.streaming.events import (  # noqa: E402
    IntervalNotification,
    SelectDevice,
    StartRecording,
    StartScan,
)


class FakeLink:
    """Device link that records the calls made by the state machine."""

    def __init__(self, fail_connect=False, fail_discovery=False):
        self.calls = []
        self.fail_connect = fail_connect
        self.fail_discovery = fail_discovery

    def start_discovery(self):
        self.calls.append(("start_discovery",))
        if self.fail_discovery:
            raise ConnectionError("adapter off")

    def stop_discovery(self):
        self.calls.append(("stop_discovery",))

    def connect(self, handle):
        self.calls.append(("connect", handle))
        if self.fail_connect:
            raise ConnectionError("adapter unavailable")

    def disconnect(self):
        self.calls.append(("disconnect",))

    def names(self):
        return [c[0] for c in self.calls]


def wait_until(predicate, timeout=5.0, interval=0.01):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def link():
    return FakeLink()


@pytest.fixture
def store():
    return SessionStore()


@pytest.fixture
def machine(link, store):
    return AcquisitionStateMachine(link=link, on_finalized=store.add)


@pytest.fixture
def recording_machine(machine):
    """A machine driven up to RECORDING on device 'dev-1'."""
    machine.command(StartScan())
    machine.command(SelectDevice(handle="dev-1"))
    machine.command(StartRecording())
    return machine


@pytest.fixture
def model(machine):
    return SessionModel(machine)


def feed(machine, intervals, start=1000.0):
    """Send intervals as IntervalNotification events with increasing timestamps."""
    ts = start
    outcomes = []
    for rr in intervals:
        ts += 1.0
        outcomes.append(machine.handle_event(IntervalNotification(timestamp=ts, duration_ms=rr)))
    return outcomes
