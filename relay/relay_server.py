"""
FastAPI application for the realtime relay.

Routes:
    GET  /health
    GET  /relay   -> 426, the endpoint only speaks WebSocket
    WS   /relay   -> authenticated relay to a realtime provider
    /control/...  -> read API (control_api.py)
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, FastAPI, WebSocket
from fastapi.responses import PlainTextResponse

from logging_setup import get_logger, Component
from observability.event_store import EventStore
from .config import RelayConfig
from .control_api import router as control_router
from .errors import RelayError
from .session_relay import FastAPIClientChannel
from .supervisor import RelaySupervisor, build_supervisor

logger = get_logger(Component.RELAY_SERVER)

router = APIRouter()


@router.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "ok", "component": "relay"}


@router.get("/relay")
async def relay_http():
    return PlainTextResponse("Expected WebSocket upgrade", status_code=426)


async def _deny(websocket: WebSocket, error: RelayError) -> None:
    """Refuse the upgrade with an HTTP status, or a 4000+status close code."""
    try:
        await websocket.send_denial_response(
            PlainTextResponse(str(error), status_code=error.status_code)
        )
    except RuntimeError:
        # Server without the websocket.http.response extension. A close before
        # accept is answered with a 403 handshake rejection, so accept first.
        await websocket.accept()
        await websocket.close(code=4000 + error.status_code, reason=str(error))


@router.websocket("/relay")
async def relay_socket(
    websocket: WebSocket,
    provider: Optional[str] = None,
    model: Optional[str] = None,
    device_id: Optional[str] = None,
):
    supervisor: RelaySupervisor = websocket.app.state.supervisor
    correlation_id = websocket.headers.get("x-request-id")

    try:
        admission = await supervisor.admit(
            websocket.headers.get("authorization"), provider, model
        )
    except RelayError as e:
        logger.info(
            "Relay rejected",
            category=e.category,
            status_code=e.status_code,
            provider=provider,
            reason=str(e),
        )
        supervisor.emitter.relay_rejected(
            e.category, e.status_code, provider=provider, correlation_id=correlation_id
        )
        await _deny(websocket, e)
        return
    except Exception as e:
        # Don't crash the handler - log and refuse
        logger.error("Relay admission failed", error=str(e), exception_type=type(e).__name__)
        error = RelayError("Internal error")
        supervisor.emitter.relay_rejected(
            error.category, error.status_code, provider=provider, correlation_id=correlation_id
        )
        await _deny(websocket, error)
        return

    await websocket.accept()
    await supervisor.serve(FastAPIClientChannel(websocket), admission, device_id=device_id)


def create_app(
    config: Optional[RelayConfig] = None,
    *,
    supervisor: Optional[RelaySupervisor] = None,
    event_store: Optional[EventStore] = None,
) -> FastAPI:
    """
    Build the relay app.

    With no supervisor one is wired from ``config`` (or the environment).
    The supervisor is closed on shutdown, after pending metering finishes.
    """
    if supervisor is None:
        config = config or RelayConfig.from_env()
        supervisor = build_supervisor(config, store=event_store or EventStore())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        logger.info("Relay shutting down", pending_metering=supervisor.pending_metering)
        await supervisor.aclose()

    app = FastAPI(title="Realtime Relay", lifespan=lifespan)
    app.state.supervisor = supervisor
    app.include_router(router)
    app.include_router(control_router)
    return app
