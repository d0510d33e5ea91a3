"""In-memory player session tracking driven by Valheim log lines.

The engine keeps three structures: pending connections (socket opened, not yet
in world), players (ever seen in world, flagged online/offline) and a bounded
history of failed or abandoned connection attempts.

Binding "Got character ZDOID from <name>" to a SteamID is heuristic: the line
carries no id, so it is attributed to the most recently active pending
connection. Simultaneous joins can be misattributed.
"""
from __future__ import annotations

import logging
import math
import threading
from collections import deque
from dataclasses import dataclass
from typing import Callable, Optional

from valheim_status.date_utils import now_ms, parse_log_time_ms
from valheim_status.models import (
    AttemptRecord,
    PendingConnection,
    Player,
    ServerVersion,
    SessionSnapshot,
)
from valheim_status.parsers import valheim_log
from valheim_status.parsers.valheim_log import ClassifiedLine, LineEvent

logger = logging.getLogger("valheim_status.state")

UNKNOWN_ID_PREFIX = "unknown:"


@dataclass
class _Pending:
    steam_id: str
    first_seen_ms: int
    last_seen_ms: int
    stage: str = valheim_log.CONNECTED
    last_reason: Optional[str] = None


@dataclass
class _Player:
    steam_id: str
    name: Optional[str] = None
    connected_ms: Optional[int] = None
    last_seen_ms: Optional[int] = None
    online: bool = False
    last_event: Optional[str] = None


@dataclass
class _Attempt:
    steam_id: str
    at_ms: int
    type: str
    detail: str
    line: Optional[str]


class SessionStateEngine:
    """Sequential log-line consumer producing point-in-time snapshots.

    `ingest`, `get_snapshot` and `reset` each run under one lock, so a snapshot
    never observes a half-applied line.
    """

    def __init__(
        self,
        pending_ttl_ms: int = 2 * 60 * 1000,
        player_seen_ttl_ms: int = 10 * 60 * 1000,
        attempts_keep: int = 30,
        clock: Callable[[], int] = now_ms,
    ):
        self.pending_ttl_ms = int(pending_ttl_ms)
        self.player_seen_ttl_ms = int(player_seen_ttl_ms)
        self.attempts_keep = max(1, int(attempts_keep))
        self._clock = clock
        self._lock = threading.Lock()

        self._pending: dict[str, _Pending] = {}
        self._players: dict[str, _Player] = {}
        self._attempts: deque[_Attempt] = deque(maxlen=self.attempts_keep)
        self._clear_summary()

        self._marker_handlers: dict[str, Callable[[LineEvent, int], None]] = {
            valheim_log.VERSION: self._on_version,
            valheim_log.WORLD: self._on_world,
            valheim_log.SERVER_READY: self._on_server_ready,
            valheim_log.READY_AT: self._on_ready_at,
        }
        self._lifecycle_handlers: dict[str, Callable[[LineEvent, int, str], None]] = {
            valheim_log.CONNECTED: self._on_connection_stage,
            valheim_log.HANDSHAKE: self._on_connection_stage,
            valheim_log.WRONG_PASSWORD: self._on_wrong_password,
            valheim_log.CHARACTER: self._on_character,
            valheim_log.CLOSING_SOCKET: self._on_closing_socket,
            valheim_log.PEER_DISCONNECTED: self._on_peer_disconnected,
            valheim_log.DISCONNECT: self._on_generic_disconnect,
        }

    def _clear_summary(self) -> None:
        self._server_ready_from_log = False
        self._world: Optional[str] = None
        self._server_version: Optional[tuple[str, str]] = None
        self._last_line: Optional[str] = None
        self._first_seen_ms: Optional[int] = None
        self._last_seen_ms: Optional[int] = None
        self._ready_ms: Optional[int] = None

    # ── Public API ──────────────────────────────────────────────────

    def ingest(self, line: str, at_ms: Optional[int] = None) -> Optional[ClassifiedLine]:
        """Apply one log line. Never raises on malformed input.

        `at_ms` is the caller's ingestion time; the line's embedded stamp is
        used only when it is missing. Returns the classification, or None for
        blank lines.
        """
        text = str(line if line is not None else "").strip()
        if not text:
            return None

        classified = valheim_log.classify_line(text)
        with self._lock:
            t_ms = self._resolve_time(text, at_ms)
            self._last_line = text
            self._touch(t_ms)
            self._sweep(t_ms)

            for marker in classified.markers:
                self._marker_handlers[marker.kind](marker, t_ms)
            if classified.lifecycle is not None:
                self._lifecycle_handlers[classified.lifecycle.kind](classified.lifecycle, t_ms, text)
        return classified

    def get_snapshot(self) -> SessionSnapshot:
        with self._lock:
            players = sorted(
                (self._player_model(p) for p in self._players.values() if p.online),
                key=lambda p: p.lastSeenMs or 0,
                reverse=True,
            )
            pending = sorted(
                (self._pending_model(p) for p in self._pending.values()),
                key=lambda p: p.lastSeenMs or 0,
                reverse=True,
            )
            attempts = [
                AttemptRecord(steamId=a.steam_id, atMs=a.at_ms, type=a.type, detail=a.detail, line=a.line)
                for a in reversed(self._attempts)
            ]
            version = None
            if self._server_version is not None:
                version = ServerVersion(version=self._server_version[0], network=self._server_version[1])

            return SessionSnapshot(
                serverReadyFromLog=self._server_ready_from_log,
                world=self._world,
                serverVersion=version,
                lastLine=self._last_line,
                firstSeenMs=self._first_seen_ms,
                lastSeenMs=self._last_seen_ms,
                readyMs=self._ready_ms,
                playersOnline=len(players),
                players=players,
                pending=pending,
                recentAttempts=attempts,
            )

    def get_player(self, steam_id: str) -> Optional[Player]:
        """Look up a known player, online or not."""
        with self._lock:
            player = self._players.get(steam_id)
            return self._player_model(player) if player is not None else None

    def reset(self) -> None:
        with self._lock:
            self._pending.clear()
            self._players.clear()
            self._attempts.clear()
            self._clear_summary()
        logger.info("Session state reset")

    # ── Bookkeeping ─────────────────────────────────────────────────

    def _resolve_time(self, text: str, at_ms: Optional[int]) -> int:
        if at_ms is not None and isinstance(at_ms, (int, float)) and math.isfinite(at_ms):
            t_ms = int(at_ms)
        else:
            parsed = parse_log_time_ms(text)
            t_ms = parsed if parsed is not None else int(self._clock())
        # Entity timestamps never move backwards.
        if self._last_seen_ms is not None and t_ms < self._last_seen_ms:
            t_ms = self._last_seen_ms
        return t_ms

    def _touch(self, t_ms: int) -> None:
        if self._first_seen_ms is None:
            self._first_seen_ms = t_ms
        self._last_seen_ms = t_ms

    def _push_attempt(self, steam_id: str, t_ms: int, kind: str, detail: str, line: Optional[str]) -> None:
        self._attempts.append(_Attempt(steam_id=steam_id, at_ms=t_ms, type=kind, detail=detail, line=line))

    def _sweep(self, t_ms: int) -> None:
        for steam_id, pending in list(self._pending.items()):
            if t_ms - pending.last_seen_ms > self.pending_ttl_ms:
                self._drop_pending(
                    steam_id,
                    t_ms,
                    "pending_timeout",
                    f"Pending TTL exceeded (stage={pending.stage})",
                    None,
                )

        for player in self._players.values():
            if (
                player.online
                and player.last_seen_ms is not None
                and t_ms - player.last_seen_ms > self.player_seen_ttl_ms
            ):
                player.online = False
                player.last_event = "stale_timeout"
                logger.debug("Player %s marked stale", player.steam_id)

    def _ensure_pending(self, steam_id: str, t_ms: int) -> _Pending:
        pending = self._pending.get(steam_id)
        if pending is None:
            pending = _Pending(steam_id=steam_id, first_seen_ms=t_ms, last_seen_ms=t_ms)
            self._pending[steam_id] = pending
            # A new socket for an id still flagged online supersedes that session.
            player = self._players.get(steam_id)
            if player is not None and player.online:
                player.online = False
                player.last_event = "reconnect"
        else:
            pending.last_seen_ms = t_ms
        return pending

    def _ensure_player(self, steam_id: str) -> _Player:
        player = self._players.get(steam_id)
        if player is None:
            player = _Player(steam_id=steam_id)
            self._players[steam_id] = player
        return player

    def _drop_pending(self, steam_id: str, t_ms: int, kind: str, detail: str, line: Optional[str]) -> None:
        pending = self._pending.pop(steam_id, None)
        if pending is not None:
            pending.last_seen_ms = t_ms
            pending.last_reason = kind
        self._push_attempt(steam_id, t_ms, kind, detail, line)
        logger.debug("Dropped pending %s (%s)", steam_id, kind)

    def _mark_offline(self, steam_id: str, t_ms: int, reason: str) -> None:
        player = self._players.get(steam_id)
        if player is None:
            return
        player.last_seen_ms = t_ms
        player.online = False
        player.last_event = reason
        logger.debug("Player %s offline (%s)", steam_id, reason)

    def _most_recent_pending(self) -> Optional[_Pending]:
        best: Optional[_Pending] = None
        for pending in self._pending.values():
            if best is None or pending.last_seen_ms > best.last_seen_ms:
                best = pending
        return best

    # ── Server marker handlers ──────────────────────────────────────

    def _on_version(self, event: LineEvent, t_ms: int) -> None:
        self._server_version = (event.version or "", event.network or "")

    def _on_world(self, event: LineEvent, t_ms: int) -> None:
        self._world = event.world

    def _on_server_ready(self, event: LineEvent, t_ms: int) -> None:
        self._server_ready_from_log = True

    def _on_ready_at(self, event: LineEvent, t_ms: int) -> None:
        if self._ready_ms is None:
            self._ready_ms = t_ms

    # ── Connection lifecycle handlers ───────────────────────────────

    def _on_connection_stage(self, event: LineEvent, t_ms: int, line: str) -> None:
        pending = self._ensure_pending(event.steam_id, t_ms)
        pending.stage = event.kind

    def _on_wrong_password(self, event: LineEvent, t_ms: int, line: str) -> None:
        self._ensure_pending(event.steam_id, t_ms)
        self._drop_pending(event.steam_id, t_ms, "wrong_password", "Rejected at password prompt", line)
        self._mark_offline(event.steam_id, t_ms, "wrong_password")

    def _on_character(self, event: LineEvent, t_ms: int, line: str) -> None:
        name = event.name or ""
        pending = self._most_recent_pending()
        if pending is not None:
            player = self._ensure_player(pending.steam_id)
            player.connected_ms = pending.first_seen_ms
            del self._pending[pending.steam_id]
        else:
            player = self._ensure_player(f"{UNKNOWN_ID_PREFIX}{name}")
            if player.connected_ms is None or not player.online:
                player.connected_ms = t_ms

        player.last_seen_ms = t_ms
        player.online = True
        player.last_event = "in_world"
        if name:
            player.name = name
        logger.debug("Player %s (%s) in world", player.steam_id, name)

    def _on_closing_socket(self, event: LineEvent, t_ms: int, line: str) -> None:
        pending = self._pending.get(event.steam_id)
        if pending is not None:
            self._drop_pending(
                event.steam_id,
                t_ms,
                "disconnect_before_join",
                f"Closed before join (stage={pending.stage})",
                line,
            )
        elif event.steam_id in self._players:
            self._mark_offline(event.steam_id, t_ms, "closing_socket")

    def _on_peer_disconnected(self, event: LineEvent, t_ms: int, line: str) -> None:
        self._mark_offline(event.steam_id, t_ms, "peer_disconnected")

    def _on_generic_disconnect(self, event: LineEvent, t_ms: int, line: str) -> None:
        # No id on the line, so nobody is flipped offline; the touch above is enough.
        return

    # ── Snapshot copies ─────────────────────────────────────────────

    @staticmethod
    def _player_model(player: _Player) -> Player:
        return Player(
            steamId=player.steam_id,
            name=player.name,
            connectedMs=player.connected_ms,
            lastSeenMs=player.last_seen_ms,
            online=player.online,
            lastEvent=player.last_event,
        )

    @staticmethod
    def _pending_model(pending: _Pending) -> PendingConnection:
        return PendingConnection(
            steamId=pending.steam_id,
            firstSeenMs=pending.first_seen_ms,
            lastSeenMs=pending.last_seen_ms,
            stage=pending.stage,
            lastReason=pending.last_reason,
        )
