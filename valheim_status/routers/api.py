"""API routers for server status, players and raw-log debugging."""
from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse

from valheim_status import config
from valheim_status.context import MonitorContext
from valheim_status.models import Player, ServerStatus

status_router = APIRouter(prefix="/api", tags=["status"])
debug_router = APIRouter(prefix="/api/debug", tags=["debug"])


def _get_monitor(request: Request) -> MonitorContext:
    monitor = getattr(request.app.state, "monitor", None)
    if not monitor:
        raise HTTPException(status_code=503, detail="Monitor not initialized")
    return monitor


@status_router.get("/status", response_model=ServerStatus)
async def get_status(request: Request):
    """Readiness verdict plus the current session snapshot."""
    monitor = _get_monitor(request)
    return await monitor.aggregator.build_status()


@status_router.get("/players", response_model=list[Player])
def list_online_players(request: Request):
    """Players currently in world, most recently active first."""
    monitor = _get_monitor(request)
    return monitor.engine.get_snapshot().players


@debug_router.get("/raw", response_class=PlainTextResponse)
def get_raw_lines(request: Request, lines: int = Query(config.RAW_DEBUG_LINES, ge=1, le=10000)):
    monitor = _get_monitor(request)
    return PlainTextResponse("\n".join(monitor.raw_lines.tail(lines)))


@debug_router.post("/reset")
def reset_state(request: Request):
    """Forget all players, pending connections and raw lines."""
    monitor = _get_monitor(request)
    monitor.reset()
    return {"status": "reset"}


@status_router.get("/players/{steam_id}", response_model=Player)
def get_player(request: Request, steam_id: str):
    """A known player by SteamID, including players gone offline."""
    monitor = _get_monitor(request)
    player = monitor.engine.get_player(steam_id)
    if player is None:
        raise HTTPException(status_code=404, detail="Player not found")
    return player
