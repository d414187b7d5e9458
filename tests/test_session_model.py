import threading

import pytest

from conftest import feed

from hrv_live.hrv_metrics.accumulator import HrvSnapshot
from hrv_live.session.model import NotFinalized, SessionModel
from hrv_live.session.session import Session
from hrv_live.session.state_machine import AcquisitionState
from hrv_live.streaming.events import (
    DeviceError,
    Reset,
    SelectDevice,
    StartRecording,
    StartScan,
    StopRecording,
)


def _record(model, intervals):
    model.command(StartScan())
    model.command(SelectDevice(handle="dev-1"))
    model.command(StartRecording())
    feed(model.machine, intervals)


def test_final_snapshot_not_available_before_stop(model):
    assert model.final_snapshot() == NotFinalized(state=AcquisitionState.IDLE)

    _record(model, [800.0, 810.0, 790.0])
    result = model.final_snapshot()
    assert isinstance(result, NotFinalized)
    assert result.state is AcquisitionState.RECORDING
    assert result.to_dict() == {"error": "not_finalized", "state": "recording"}
    assert model.finalized_session() is None


def test_final_snapshot_after_stop(model):
    _record(model, [800.0, 810.0, 790.0, 805.0])
    live = model.current_snapshot()
    model.command(StopRecording())

    final = model.final_snapshot()
    assert isinstance(final, HrvSnapshot)
    assert final == live
    assert final.sample_count == 4
    assert model.finalized_session() is model.session()


def test_failed_session_has_no_final_snapshot(model):
    _record(model, [800.0, 810.0])
    model.handle_event(DeviceError(reason="bond lost"))

    assert model.state() is AcquisitionState.FAILED
    assert model.failure_reason() == "bond lost"
    assert isinstance(model.final_snapshot(), NotFinalized)
    # the last valid snapshot is still readable
    assert model.current_snapshot().sample_count == 2


def test_live_reads(model):
    assert model.poincare_points() == ()
    assert model.window_snapshot() == HrvSnapshot.empty()
    assert model.history_frame().empty

    _record(model, [800.0, 810.0, 790.0, 805.0, 815.0])
    assert len(model.poincare_points()) == 4
    assert model.poincare_points(2) == ((790.0, 805.0), (805.0, 815.0))
    assert model.window_snapshot(3).sample_count == 3
    assert len(model.history_frame()) == 5


def test_reads_after_reset(model):
    _record(model, [800.0, 810.0])
    model.command(StopRecording())
    model.command(Reset())

    assert model.state() is AcquisitionState.IDLE
    assert model.session() is None
    assert isinstance(model.final_snapshot(), NotFinalized)


def test_wait_for_update_wakes_up_on_publish(model):
    version, _ = model.machine.cell.read()
    seen = {}

    def reader():
        seen["result"] = model.wait_for_update(version, timeout=5.0)

    t = threading.Thread(target=reader)
    t.start()
    model.command(StartScan())
    t.join(timeout=5.0)

    new_version, view = seen["result"]
    assert new_version > version
    assert view.state is AcquisitionState.SCANNING


def test_wait_for_update_times_out():
    model = SessionModel()
    version, view = model.wait_for_update(model.machine.cell.version, timeout=0.01)
    assert version == model.machine.cell.version
    assert view.state is AcquisitionState.IDLE


def test_session_flags_non_monotonic_timestamps():
    session = Session()
    session.ingest(10.0, 800.0)
    late = session.ingest(9.0, 805.0)
    session.ingest(11.0, 810.0)

    assert late.artifact
    assert late.reason == "non_monotonic_timestamp"
    assert session.accepted_intervals == (800.0, 810.0)
    assert session.artifact_counts == {"non_monotonic_timestamp": 1}


def test_finalized_session_is_immutable():
    session = Session()
    session.ingest(1.0, 800.0)
    first = session.finalize()
    assert session.finalize() is first
    assert session.stopped_at is not None

    with pytest.raises(RuntimeError):
        session.ingest(2.0, 810.0)
    assert session.sample_count == 1
