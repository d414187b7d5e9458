# hrv_live/api/fastapi_app.py
"""
FastAPI presentation layer for live HRV acquisition.

This service:
    - Runs the acquisition runner (device source -> state machine) in the
      background when a device source is configured.
    - Exposes read-only views of the live state, the current HRV snapshot,
      the Poincaré point set and the finalized session.
    - Accepts the acquisition commands and returns their explicit outcome.

Endpoints:
    - GET  /health
    - GET  /state
    - GET  /metrics/snapshot
    - GET  /metrics/window
    - GET  /metrics/poincare
    - GET  /metrics/history
    - GET  /session/final
    - GET  /session/analysis
    - POST /commands/{name}
    - GET  /sessions
    - GET  /sessions/{idx}/analysis
    - POST /sessions/save
    - POST /sessions/load
"""

from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from hrv_live.config.settings import settings
from hrv_live.errors import SerializationError
from hrv_live.hrv_metrics.analysis import analyze_intervals
from hrv_live.session.model import NotFinalized, SessionModel
from hrv_live.session.state_machine import AcquisitionStateMachine
from hrv_live.session.storage import SessionStore, default_sessions_path
from hrv_live.streaming.events import COMMANDS_BY_NAME, SelectDevice
from hrv_live.streaming.runner import AcquisitionRunner
from hrv_live.streaming.sources import KafkaDeviceSource, ReplayDeviceSource
from hrv_live.utils.logging_utils import get_logger


logger = get_logger(module_name="hrv_api", logfile_name="api.log")


def build_source_from_settings():
    """
    Device source selected by settings.streaming.source:
        'replay' -> ReplayDeviceSource over settings.paths.rr_file
        'kafka'  -> KafkaDeviceSource
        other    -> None (commands only, no device events)
    """
    kind = settings.streaming.source.strip().lower()
    if kind == "replay":
        if not settings.paths.rr_file:
            raise ValueError("HRV_SOURCE=replay needs HRV_RR_FILE")
        return ReplayDeviceSource.from_csv(settings.paths.rr_file)
    if kind == "kafka":
        return KafkaDeviceSource()
    return None


def create_app(
    model: Optional[SessionModel] = None,
    store: Optional[SessionStore] = None,
    source=None,
) -> FastAPI:
    """
    Build the API around a session model.

    Without an explicit model, a state machine linked to `source` is
    created and every finalized session is added to `store`.
    """
    store = store if store is not None else SessionStore()
    if model is None:
        machine = AcquisitionStateMachine(link=source, on_finalized=store.add)
        model = SessionModel(machine)

    runner = AcquisitionRunner(model, source) if source is not None else None

    app = FastAPI(
        title="HRV Live Acquisition API",
        version="1.0.0",
        description="Live HRV statistics, Poincaré data and acquisition commands.",
    )

    # CORS (open for development; narrow it down in production)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.model = model
    app.state.store = store
    app.state.runner = runner

    # --- Startup / shutdown: acquisition runner --- #

    @app.on_event("startup")
    def startup_event() -> None:
        if runner is None:
            logger.info("HRV API starting without a device source")
            return
        logger.info("HRV API starting, device source=%r", source)
        runner.start()

    @app.on_event("shutdown")
    def shutdown_event() -> None:
        if runner is not None:
            runner.stop()

    # --- Health --- #

    @app.get("/health")
    def health() -> Dict[str, str]:
        return {"status": "ok"}

    # --- Live reads --- #

    @app.get("/state")
    def state() -> Dict[str, Any]:
        """Acquisition state, failure reason, device and session id."""
        view = model.live_view()
        return {
            "state": view.state.value,
            "failure_reason": view.failure_reason,
            "device": view.device,
            "session_id": view.session_id,
            "artifact_count": view.artifact_count,
            "discovered_devices": model.machine.discovered_devices,
        }

    @app.get("/metrics/snapshot")
    def snapshot() -> Dict[str, Any]:
        """Most recent HRV snapshot (RMSSD, SDRR, SD1, SD2, mean interval)."""
        return model.current_snapshot().to_dict()

    @app.get("/metrics/window")
    def window_metrics(
        samples: Optional[int] = Query(
            None,
            ge=2,
            description="Number of trailing accepted samples. Defaults to settings.stats.default_window_samples.",
        ),
    ) -> Dict[str, Any]:
        return model.window_snapshot(samples).to_dict()

    @app.get("/metrics/poincare")
    def poincare(
        max_points: Optional[int] = Query(
            None,
            ge=0,
            description="Maximum number of (most recent) Poincaré points.",
        ),
    ) -> Dict[str, Any]:
        """Poincaré scatter (RR[n], RR[n+1]) plus SD1 / SD2 of the whole session."""
        mp = max_points if max_points is not None else settings.api.max_poincare_points
        points = model.poincare_points(mp)
        snap = model.current_snapshot()
        return {
            "x": [p[0] for p in points],
            "y": [p[1] for p in points],
            "sd1": snap.sd1,
            "sd2": snap.sd2,
            "sd1_sd2_ratio": snap.sd1_sd2_ratio,
        }

    @app.get("/metrics/history")
    def history(
        max_points: Optional[int] = Query(None, ge=1, description="Most recent rows only."),
    ) -> Dict[str, Any]:
        mp = max_points if max_points is not None else settings.api.max_history_points
        df = model.history_frame(mp)
        df = df.astype(object).where(df.notna(), None)
        return {"columns": list(df.columns), "rows": df.values.tolist()}

    # --- Finalized reads --- #

    @app.get("/session/final")
    def final_snapshot():
        result = model.final_snapshot()
        if isinstance(result, NotFinalized):
            return JSONResponse(status_code=409, content=result.to_dict())
        return result.to_dict()

    @app.get("/session/analysis")
    def final_analysis():
        session = model.finalized_session()
        if session is None:
            return JSONResponse(status_code=409, content=NotFinalized(state=model.state()).to_dict())
        return {
            "session": session.summary(),
            "analysis": analyze_intervals(session.accepted_intervals),
        }

    # --- Commands --- #

    @app.post("/commands/{name}")
    def command(
        name: str,
        handle: Optional[str] = Query(None, description="Device handle (select_device only)."),
    ):
        cmd_cls = COMMANDS_BY_NAME.get(name)
        if cmd_cls is None:
            raise HTTPException(status_code=404, detail=f"unknown command: {name}")

        if cmd_cls is SelectDevice:
            if not handle:
                raise HTTPException(status_code=400, detail="select_device needs a 'handle'")
            cmd = SelectDevice(handle=handle)
        else:
            cmd = cmd_cls()

        outcome = model.command(cmd)
        logger.info("POST /commands/%s -> %s", name, outcome.kind.value)
        if outcome.is_rejected:
            return JSONResponse(status_code=409, content=outcome.to_dict())
        return outcome.to_dict()

    # --- Stored sessions --- #

    @app.get("/sessions")
    def sessions():
        return [s.summary() for s in store.list()]

    @app.get("/sessions/{idx}/analysis")
    def stored_analysis(idx: int):
        try:
            session = store.get(idx)
        except IndexError as e:
            raise HTTPException(status_code=404, detail=str(e))
        return {
            "session": session.summary(),
            "final_snapshot": session.final_snapshot.to_dict(),
            "analysis": analyze_intervals(session.accepted_intervals),
        }

    @app.post("/sessions/save")
    def save_sessions(path: Optional[str] = Query(None, description="Target JSON file.")):
        target = path or default_sessions_path()
        try:
            out = store.save(target)
        except SerializationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {"path": str(out), "sessions": len(store)}

    @app.post("/sessions/load")
    def load_sessions(path: Optional[str] = Query(None, description="Source JSON file.")):
        target = path or default_sessions_path()
        try:
            count = store.load(target)
        except SerializationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {"path": str(target), "sessions": count}

    return app


app = create_app(source=build_source_from_settings())


# --- Local run entrypoint (uvicorn) --- #

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "hrv_live.api.fastapi_app:app",
        host=settings.api.host,
        port=settings.api.port,
        reload=False,
    )
