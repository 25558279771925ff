import logging
from typing import Optional

from fastapi import FastAPI, Response
from fastapi.responses import JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from errors.exceptions import MinterError
from middleware.error_handler import setup_error_handlers
from monitoring.health import HealthMonitor, record_state
from state.state import StateStore

logger = logging.getLogger(__name__)

app = FastAPI(title="Mint Engine Status API", version="1.0.0")
setup_error_handlers(app)

app.state.store = None
app.state.health = None


def set_engine_context(store: Optional[StateStore], health: Optional[HealthMonitor]):
    """Point the API at the running engine's state store and health monitor"""
    app.state.store = store
    app.state.health = health
    logger.info("Engine context set in web module")


def _store() -> StateStore:
    store = app.state.store
    if store is None:
        raise MinterError("Engine not started", "NOT_READY")
    return store


@app.get("/health")
async def health_check():
    health = app.state.health
    if health is None:
        raise MinterError("Engine not started", "NOT_READY")
    report = health.get_health()
    status_code = 503 if report["status"] == "unhealthy" else 200
    return JSONResponse(status_code=status_code, content=report)


@app.get("/status")
async def status():
    store = _store()
    snapshot = store.snapshot()
    return {
        "next_sequence": snapshot.next_mint_counter,
        "pending": snapshot.pending_deposits,
        "processed_count": len(snapshot.processed_deposits),
    }


@app.get("/deposits/{deposit_id}")
async def deposit_status(deposit_id: str):
    store = _store()
    pending = store.pending
    return {
        "deposit_id": deposit_id,
        "processed": store.is_processed(deposit_id),
        "pending_sequence": pending.get(deposit_id),
    }


@app.get("/metrics")
async def metrics():
    if app.state.store is not None:
        record_state(app.state.store)
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
