"""Pydantic models returned by the state engine and the status API."""
from __future__ import annotations
from pydantic import BaseModel, Field
from typing import Optional


# ── Session state models ────────────────────────────────────────────

class ServerVersion(BaseModel):
    version: str
    network: str


class PendingConnection(BaseModel):
    steamId: str
    firstSeenMs: int
    lastSeenMs: int
    stage: str = "connected"  # "connected" | "handshake"
    lastReason: Optional[str] = None


class Player(BaseModel):
    steamId: str
    name: Optional[str] = None
    connectedMs: Optional[int] = None
    lastSeenMs: Optional[int] = None
    online: bool = False
    lastEvent: Optional[str] = None


class AttemptRecord(BaseModel):
    steamId: str
    atMs: int
    type: str  # "wrong_password" | "disconnect_before_join" | "pending_timeout"
    detail: str = ""
    line: Optional[str] = None


class SessionSnapshot(BaseModel):
    serverReadyFromLog: bool = False
    world: Optional[str] = None
    serverVersion: Optional[ServerVersion] = None
    lastLine: Optional[str] = None
    firstSeenMs: Optional[int] = None
    lastSeenMs: Optional[int] = None
    readyMs: Optional[int] = None
    playersOnline: int = 0
    players: list[Player] = Field(default_factory=list)
    pending: list[PendingConnection] = Field(default_factory=list)
    recentAttempts: list[AttemptRecord] = Field(default_factory=list)


# ── Container / status models ───────────────────────────────────────

class ContainerState(BaseModel):
    """Subset of `docker inspect --format '{{json .State}}'`."""
    Running: bool = False
    Restarting: bool = False
    Status: str = "unknown"
    StartedAt: Optional[str] = None


class ServerStatus(BaseModel):
    atMs: int
    container: str

    containerExists: bool = False
    containerRunning: bool = False
    containerStatus: str = "unknown"
    containerRestarting: bool = False
    containerStartedAtMs: Optional[int] = None
    procRunning: bool = False

    logAgeSec: Optional[int] = None
    logsFresh: bool = False
    serverReady: bool = False
    online: bool = False
    lastError: Optional[str] = None
    connectionsHint: str = ""

    serverReadyFromLog: bool = False
    world: Optional[str] = None
    serverVersion: Optional[ServerVersion] = None
    lastLine: Optional[str] = None
    firstSeenMs: Optional[int] = None
    lastSeenMs: Optional[int] = None
    readyMs: Optional[int] = None
    lastSeenAgo: Optional[str] = None
    readyAgo: Optional[str] = None

    playersOnline: int = 0
    players: list[Player] = Field(default_factory=list)
    pending: list[PendingConnection] = Field(default_factory=list)
    recentAttempts: list[AttemptRecord] = Field(default_factory=list)
