import queue
import threading

import pytest

from conftest import wait_until

from hrv_live.session.model import SessionModel
from hrv_live.session.state_machine import AcquisitionState, AcquisitionStateMachine
from hrv_live.session.storage import SessionStore
from hrv_live.streaming.events import (
    Connected,
    DeviceFound,
    Disconnected,
    IntervalNotification,
    RawNotification,
    SelectDevice,
    StartRecording,
    StartScan,
)
from hrv_live.streaming.heartrate_message import HeartrateMessage
from hrv_live.streaming.runner import AcquisitionRunner
from hrv_live.streaming.sources import ReplayDeviceSource, load_rr_ms


RR = [800.0, 810.0, 790.0, 805.0, 815.0]


def _drain_until_disconnect(source, limit=100):
    events = []
    for event in source.events():
        events.append(event)
        if isinstance(event, Disconnected) or len(events) >= limit:
            break
    return events


# -------------------- replay source -------------------- #

def test_load_rr_ms_seconds_and_milliseconds(tmp_path):
    seconds = tmp_path / "rr_s.csv"
    seconds.write_text("rr\n0.8\n0.81\n\n0.79\n", encoding="utf-8")
    millis = tmp_path / "rr_ms.csv"
    millis.write_text("rr_ms\n800\n810\n", encoding="utf-8")
    other = tmp_path / "other.csv"
    other.write_text("hr\n70\n", encoding="utf-8")

    assert load_rr_ms(seconds).tolist() == pytest.approx([800.0, 810.0, 790.0])
    assert load_rr_ms(millis).tolist() == [800.0, 810.0]
    with pytest.raises(ValueError):
        load_rr_ms(other)


def test_replay_discovery_and_stream():
    source = ReplayDeviceSource(RR, handle="replay-x", speed=0, clock=iter(range(100, 200)).__next__)
    source.start_discovery()
    source.connect("replay-x")

    events = _drain_until_disconnect(source)
    source.close()

    assert events[0] == DeviceFound(handle="replay-x", name="Replay HR sensor")
    assert events[1] == Connected(handle="replay-x")
    intervals = [e for e in events if isinstance(e, IntervalNotification)]
    assert [e.duration_ms for e in intervals] == RR
    assert [e.timestamp for e in intervals] == [100, 101, 102, 103, 104]
    assert isinstance(events[-1], Disconnected)


def test_replay_raw_payloads():
    source = ReplayDeviceSource(RR, speed=0, raw=True)
    source.connect(source.handle)
    events = _drain_until_disconnect(source)
    source.close()

    raw = [e for e in events if isinstance(e, RawNotification)]
    assert len(raw) == len(RR)
    decoded = [HeartrateMessage.parse(e.payload).rr_intervals_ms[0] for e in raw]
    assert decoded == pytest.approx(RR, abs=1.0)


def test_replay_unknown_handle():
    source = ReplayDeviceSource(RR, handle="replay-0", speed=0)
    with pytest.raises(ValueError):
        source.connect("somebody-else")
    source.close()


def test_replay_events_stop_on_close():
    source = ReplayDeviceSource(RR, speed=0)
    seen = []

    def consume():
        for event in source.events():
            seen.append(event)

    t = threading.Thread(target=consume)
    t.start()
    source.close()
    t.join(timeout=5.0)
    assert not t.is_alive()


# -------------------- runner -------------------- #

class QueueSource:
    """Event source fed by the test; the first events() call can fail."""

    def __init__(self, fail_first=False):
        self.queue = queue.Queue()
        self.fail_first = fail_first
        self.calls = 0
        self.closed = threading.Event()

    def events(self):
        self.calls += 1
        if self.fail_first and self.calls == 1:
            raise ConnectionError("broker unavailable")
        while not self.closed.is_set():
            try:
                yield self.queue.get(timeout=0.05)
            except queue.Empty:
                continue

    def close(self):
        self.closed.set()


def _recording_model(store):
    model = SessionModel(AcquisitionStateMachine(on_finalized=store.add))
    model.command(StartScan())
    model.command(SelectDevice(handle="dev-1"))
    model.command(StartRecording())
    return model


def test_runner_feeds_events_in_order():
    store = SessionStore()
    model = _recording_model(store)
    source = QueueSource()
    runner = AcquisitionRunner(model, source, retry_delay_s=0.01)

    runner.start()
    try:
        for i, rr in enumerate(RR):
            source.queue.put(IntervalNotification(timestamp=float(i), duration_ms=rr))
        source.queue.put(Disconnected())

        assert wait_until(lambda: model.state() is AcquisitionState.STOPPED)
    finally:
        runner.stop()

    assert not runner.is_running
    assert runner.events_processed == len(RR) + 1
    assert model.final_snapshot().sample_count == len(RR)
    assert len(store) == 1


def test_runner_retries_after_source_error():
    store = SessionStore()
    model = _recording_model(store)
    source = QueueSource(fail_first=True)
    runner = AcquisitionRunner(model, source, retry_delay_s=0.01)

    runner.start()
    try:
        source.queue.put(IntervalNotification(timestamp=1.0, duration_ms=800.0))
        assert wait_until(lambda: model.current_snapshot().sample_count == 1)
    finally:
        runner.stop()

    assert source.calls >= 2


def test_runner_start_is_idempotent():
    model = SessionModel()
    source = QueueSource()
    runner = AcquisitionRunner(model, source)
    runner.start()
    first = runner._thread
    runner.start()
    assert runner._thread is first
    runner.stop()
    assert source.closed.is_set()
