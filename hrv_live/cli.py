# hrv_live/cli.py
# Command line entry point: run the API service or produce device events to Kafka.

import argparse
from typing import List, Optional

from hrv_live.config.settings import settings


def _build_source(args: argparse.Namespace):
    from hrv_live.streaming.sources import KafkaDeviceSource, ReplayDeviceSource

    kind = (args.source or settings.streaming.source).strip().lower()
    if kind == "replay":
        rr_file = args.rr_file or settings.paths.rr_file
        if not rr_file:
            raise SystemExit("--source replay needs --rr-file (or HRV_RR_FILE)")
        return ReplayDeviceSource.from_csv(rr_file, speed=args.speed, loop=args.loop)
    if kind == "kafka":
        return KafkaDeviceSource()
    return None


def _serve(args: argparse.Namespace) -> None:
    import uvicorn

    from hrv_live.api.fastapi_app import create_app

    app = create_app(source=_build_source(args))
    uvicorn.run(app, host=args.host, port=args.port)


def _replay(args: argparse.Namespace) -> None:
    from hrv_live.streaming import rr_producer

    rr_producer.main(args.rr_file, loop=args.loop, speed=args.speed, handle=args.handle)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hrv-live", description="Live HRV acquisition service")
    sub = parser.add_subparsers(dest="cmd", required=True)

    serve = sub.add_parser("serve", help="run the REST API (and the acquisition runner)")
    serve.add_argument("--host", default=settings.api.host)
    serve.add_argument("--port", type=int, default=settings.api.port)
    serve.add_argument("--source", choices=["replay", "kafka"], default=None)
    serve.add_argument("--rr-file", default=None, help="csv with an 'rr' (s) or 'rr_ms' column")
    serve.add_argument("--speed", type=float, default=settings.streaming.replay_speed)
    serve.add_argument("--loop", action="store_true", help="replay source wraps around")
    serve.set_defaults(func=_serve)

    replay = sub.add_parser("replay", help="stream an RR csv to Kafka as device events")
    replay.add_argument("--rr-file", required=True)
    replay.add_argument("--loop", action="store_true")
    replay.add_argument("--speed", type=float, default=1.0)
    replay.add_argument("--handle", default=None)
    replay.set_defaults(func=_replay)

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    args.func(args)


if __name__ == "__main__":
    main()
