"""FastAPI application: signal webhook, force-close and read-only signal views."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import structlog
from fastapi import BackgroundTasks, Body, FastAPI, HTTPException
from fastapi.responses import JSONResponse

from signal_executor.lifecycle.controller import LifecycleController
from signal_executor.models import SignalStatus

logger = structlog.get_logger("api")


def create_app(controller: LifecycleController) -> FastAPI:
    """Build the API around an already-wired controller."""
    app = FastAPI(
        title="Signal Executor API",
        description="Accepts trading signals and exposes their execution state",
        version="0.1.0",
    )
    app.state.controller = controller

    @app.get("/api/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}

    @app.post("/signal")
    async def signal(payload: dict[str, Any] | None = Body(default=None)):
        """Accept a {symbol, side, price} signal; 422 if any field is missing or bad."""
        if not controller.accept_signal(payload or {}):
            return JSONResponse(status_code=422, content={"status": "REJECTED"})
        return {"status": "OK"}

    @app.post("/close")
    async def close(background_tasks: BackgroundTasks):
        """Liquidate every position and settle open signals, in the background."""
        logger.warning("force_close_requested")
        background_tasks.add_task(controller.force_close_all)
        return {"status": "OK"}

    @app.get("/api/signals")
    async def list_signals(status: str | None = None, limit: int = 100):
        """Most recent signals, optionally filtered by status."""
        status_filter: SignalStatus | None = None
        if status is not None:
            try:
                status_filter = SignalStatus(status.upper())
            except ValueError:
                raise HTTPException(status_code=400, detail=f"Unknown status {status!r}")
        signals = controller.store.list_signals(status_filter, limit=min(limit, 1000))
        return {"signals": [s.model_dump(mode="json") for s in signals]}

    @app.get("/api/signals/{signal_id}")
    async def get_signal(signal_id: int):
        found = controller.store.get(signal_id)
        if found is None:
            raise HTTPException(status_code=404, detail="Signal not found")
        return found.model_dump(mode="json")

    return app
