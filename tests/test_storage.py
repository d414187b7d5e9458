import json
import math

import pytest

from hrv_live.errors import SerializationError
from hrv_live.session.session import Session
from hrv_live.session.storage import (
    SessionStore,
    default_sessions_path,
    session_from_record,
    session_to_record,
)


def _finished_session(values=(800.0, 810.0, 2000.0, 790.0, 805.0)):
    session = Session(device="dev-1")
    for i, v in enumerate(values):
        session.ingest(100.0 + i, v)
    session.finalize()
    return session


def test_record_round_trip_keeps_statistics():
    session = _finished_session()
    rebuilt = session_from_record(session_to_record(session))

    assert rebuilt.session_id == session.session_id
    assert rebuilt.device == "dev-1"
    assert rebuilt.finalized
    assert rebuilt.samples == session.samples
    assert rebuilt.final_snapshot == session.final_snapshot
    assert rebuilt.artifact_counts == {"window_deviation": 1}


def test_unfinalized_session_cannot_be_serialized():
    session = Session()
    session.ingest(1.0, 800.0)
    with pytest.raises(SerializationError):
        session_to_record(session)
    with pytest.raises(SerializationError):
        SessionStore().add(session)


def test_missing_field_is_serialization_error():
    record = session_to_record(_finished_session())
    del record["samples"]
    with pytest.raises(SerializationError):
        session_from_record(record)


def test_bad_timestamp_is_serialization_error():
    record = session_to_record(_finished_session())
    record["started_at"] = "yesterday"
    with pytest.raises(SerializationError):
        session_from_record(record)


def test_sample_count_mismatch_is_serialization_error():
    record = session_to_record(_finished_session())
    record["final_snapshot"]["sample_count"] = 99
    with pytest.raises(SerializationError):
        session_from_record(record)


def test_store_save_and_load(tmp_path):
    store = SessionStore()
    store.add(_finished_session())
    store.add(_finished_session((900.0, 910.0, 905.0)))

    path = store.save(tmp_path / "sessions.json")
    assert path.exists()

    other = SessionStore()
    assert other.load(path) == 2
    assert [s.session_id for s in other.list()] == [s.session_id for s in store.list()]
    assert other.get(1).final_snapshot == store.get(1).final_snapshot

    assert other.load(path, replace=False) == 2
    assert len(other) == 4


def test_load_failures_leave_store_untouched(tmp_path):
    store = SessionStore()
    store.add(_finished_session())

    with pytest.raises(SerializationError):
        store.load(tmp_path / "missing.json")

    bad_json = tmp_path / "bad.json"
    bad_json.write_text("{not json", encoding="utf-8")
    with pytest.raises(SerializationError):
        store.load(bad_json)

    not_a_list = tmp_path / "dict.json"
    not_a_list.write_text(json.dumps({"session_id": "x"}), encoding="utf-8")
    with pytest.raises(SerializationError):
        store.load(not_a_list)

    assert len(store) == 1


def test_store_index_errors_and_delete():
    store = SessionStore()
    store.add(_finished_session())
    with pytest.raises(IndexError):
        store.get(3)

    store.delete(3)
    assert len(store) == 1
    store.delete(0)
    assert len(store) == 0


def test_to_frame_and_csv_export(tmp_path):
    store = SessionStore()
    session = _finished_session()
    store.add(session)

    df = store.to_frame(0)
    assert list(df.columns) == ["timestamp", "duration_ms", "artifact", "reason", "hr_bpm", "session_id"]
    assert len(df) == 5
    assert int(df["artifact"].sum()) == 1
    assert df["hr_bpm"].iloc[0] == pytest.approx(75.0)

    out = store.export_csv(0, tmp_path / "export" / "session.csv")
    assert out.exists()
    assert out.read_text(encoding="utf-8").splitlines()[0].startswith("timestamp,duration_ms")


def test_default_sessions_path():
    assert default_sessions_path().name == "sessions.json"
    assert default_sessions_path("a.json").name == "a.json"


def test_non_numeric_durations_are_saved_as_strict_json(tmp_path):
    session = Session(device="dev-1")
    for i, v in enumerate([800.0, "garbage", float("nan"), 810.0]):
        session.ingest(100.0 + i, v)
    session.ingest(float("nan"), 805.0)
    session.finalize()

    store = SessionStore()
    store.add(session)
    path = store.save(tmp_path / "sessions.json")

    def reject_constant(token):
        raise AssertionError(f"non-standard JSON constant {token}")

    records = json.loads(path.read_text(encoding="utf-8"), parse_constant=reject_constant)
    samples = records[0]["samples"]
    assert [s["duration_ms"] for s in samples] == [800.0, None, None, 810.0, 805.0]
    assert samples[-1]["timestamp"] is None

    loaded = SessionStore()
    loaded.load(path)
    rebuilt = loaded.get(0)
    assert math.isnan(rebuilt.samples[1].duration_ms)
    assert rebuilt.samples[1].artifact
    assert math.isnan(rebuilt.samples[-1].timestamp)
    assert rebuilt.artifact_counts == session.artifact_counts
    assert rebuilt.final_snapshot == session.final_snapshot
