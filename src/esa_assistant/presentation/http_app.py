"""HTTP health endpoints served next to the Slack socket connection."""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.responses import JSONResponse, PlainTextResponse

from esa_assistant import __version__
from esa_assistant.services.connection_monitor import (
    SocketState,
    build_liveness_body,
    is_disconnected_too_long,
)


def build_http_app(state: SocketState, grace_ms: int) -> FastAPI:
    """Create the FastAPI app exposing ``/healthz`` and ``/liveness``."""
    app = FastAPI(title="esa-slack-assistant", version=__version__, docs_url=None, redoc_url=None)

    @app.get("/healthz", response_class=PlainTextResponse)
    async def healthz() -> str:
        """Process is up."""
        return "ok"

    @app.get("/liveness")
    async def liveness() -> JSONResponse:
        """Reflect Slack socket connectivity, allowing ``grace_ms`` of disconnection."""
        ok = not is_disconnected_too_long(state, grace_ms)
        return JSONResponse(
            status_code=200 if ok else 503,
            content=build_liveness_body(state, grace_ms, ok),
        )

    return app
