"""Valheim status FastAPI service — main application entry point."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from valheim_status import config
from valheim_status.context import build_context
from valheim_status.routers.api import debug_router, status_router
from valheim_status.observability import initialize as initialize_observability, shutdown as shutdown_observability

logging.basicConfig(level=getattr(logging, config.LOG_LEVEL, logging.INFO))
logger = logging.getLogger("valheim_status")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("Valheim status monitor starting for container %s", config.CONTAINER)
    initialize_observability(app)

    monitor = build_context()
    app.state.monitor = monitor
    await monitor.start()

    yield

    logger.info("Valheim status monitor shutting down")
    await monitor.stop()
    shutdown_observability(app)


app = FastAPI(
    title="Valheim Status API",
    description="Readiness, liveness and player sessions for a dockerised Valheim server",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(status_router)
app.include_router(debug_router)


@app.get("/api/health")
def health():
    """Health check endpoint."""
    monitor = getattr(app.state, "monitor", None)
    return {
        "status": "ok",
        "tail": monitor.tail.state.value if monitor else "stopped",
    }


def run() -> None:
    import uvicorn

    uvicorn.run(app, host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    run()
