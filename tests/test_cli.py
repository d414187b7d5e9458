import pytest

from hrv_live import cli
from hrv_live.streaming.sources import ReplayDeviceSource


def test_serve_defaults():
    args = cli.build_parser().parse_args(["serve"])
    assert args.func is cli._serve
    assert args.source is None
    assert isinstance(args.port, int)
    assert cli._build_source(args) is None


def test_serve_with_replay_source(tmp_path):
    csv = tmp_path / "rr.csv"
    csv.write_text("rr_ms\n800\n810\n", encoding="utf-8")
    args = cli.build_parser().parse_args(
        ["serve", "--source", "replay", "--rr-file", str(csv), "--speed", "0", "--port", "9001"]
    )

    source = cli._build_source(args)
    assert isinstance(source, ReplayDeviceSource)
    assert source.rr_ms == [800.0, 810.0]
    assert source.speed == 0.0
    assert args.port == 9001


def test_replay_source_needs_a_file():
    args = cli.build_parser().parse_args(["serve", "--source", "replay"])
    with pytest.raises(SystemExit):
        cli._build_source(args)


def test_replay_command_calls_producer(monkeypatch):
    calls = {}

    def fake_main(rr_file, loop=False, speed=1.0, handle=None):
        calls.update(rr_file=rr_file, loop=loop, speed=speed, handle=handle)

    monkeypatch.setattr("hrv_live.streaming.rr_producer.main", fake_main)
    cli.main(["replay", "--rr-file", "data.csv", "--loop", "--speed", "2"])

    assert calls == {"rr_file": "data.csv", "loop": True, "speed": 2.0, "handle": None}


def test_command_is_required():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args([])
