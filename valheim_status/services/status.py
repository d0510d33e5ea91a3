"""Combine docker liveness facts with log-derived session state."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from valheim_status.date_utils import format_ago, now_ms, parse_docker_time_ms
from valheim_status.models import ServerStatus, SessionSnapshot
from valheim_status.observability import record_status_build, start_span
from valheim_status.services.docker_probe import DockerProbe
from valheim_status.session_state import SessionStateEngine

logger = logging.getLogger("valheim_status.status")


@dataclass(frozen=True)
class StatusFacts:
    container_exists: bool = False
    container_running: bool = False
    container_status: str = "unknown"
    container_restarting: bool = False
    container_started_at_ms: Optional[int] = None
    proc_running: bool = False
    logs_fresh: bool = False
    log_age_sec: Optional[int] = None
    ready_ms: Optional[int] = None


def ready_marker_is_current(facts: StatusFacts) -> bool:
    if facts.ready_ms is None:
        return False
    return facts.container_started_at_ms is None or facts.ready_ms >= facts.container_started_at_ms


def resolve_last_error(facts: StatusFacts) -> Optional[str]:
    """Return the single most fundamental failing precondition, or None."""
    if not facts.container_exists:
        return "Container not found"
    if not facts.container_running:
        return f"Container not running ({facts.container_status})"
    if facts.container_restarting:
        return "Container restarting"
    if not facts.proc_running:
        return "valheim_server.exe process not running"
    if not facts.logs_fresh:
        age = facts.log_age_sec if facts.log_age_sec is not None else "?"
        return f"No fresh logs ({age}s old)"
    if facts.ready_ms is None:
        return "Server not ready yet (no ready marker seen)"
    if not ready_marker_is_current(facts):
        return "Ready marker is from previous container start"
    return None


def is_server_ready(facts: StatusFacts) -> bool:
    return (
        facts.container_running
        and facts.proc_running
        and ready_marker_is_current(facts)
        and facts.logs_fresh
    )


def is_online(facts: StatusFacts) -> bool:
    return facts.container_running and facts.proc_running and facts.logs_fresh


class StatusAggregator:
    def __init__(
        self,
        probe: DockerProbe,
        engine: SessionStateEngine,
        container: str,
        stale_log_seconds: int = 180,
        clock: Callable[[], int] = now_ms,
    ):
        self.probe = probe
        self.engine = engine
        self.container = container
        self.stale_log_seconds = int(stale_log_seconds)
        self._clock = clock

    async def collect_facts(self, snapshot: SessionSnapshot, at_ms: int) -> StatusFacts:
        state = await self.probe.inspect_state()
        container_running = bool(state and state.Running)
        proc_running = await self.probe.is_process_running() if container_running else False

        log_age_sec = None
        logs_fresh = False
        if snapshot.lastSeenMs:
            age_ms = at_ms - snapshot.lastSeenMs
            log_age_sec = max(0, age_ms // 1000)
            logs_fresh = age_ms <= self.stale_log_seconds * 1000

        return StatusFacts(
            container_exists=state is not None,
            container_running=container_running,
            container_status=(state.Status if state else None) or "unknown",
            container_restarting=bool(state and state.Restarting),
            container_started_at_ms=parse_docker_time_ms(state.StartedAt) if state else None,
            proc_running=proc_running,
            logs_fresh=logs_fresh,
            log_age_sec=log_age_sec,
            ready_ms=snapshot.readyMs,
        )

    async def build_status(self) -> ServerStatus:
        started = time.monotonic()
        with start_span("valheim.status.build", {"container": self.container}):
            at_ms = self._clock()
            snapshot = self.engine.get_snapshot()
            facts = await self.collect_facts(snapshot, at_ms)

            status = ServerStatus(
                atMs=at_ms,
                container=self.container,
                containerExists=facts.container_exists,
                containerRunning=facts.container_running,
                containerStatus=facts.container_status,
                containerRestarting=facts.container_restarting,
                containerStartedAtMs=facts.container_started_at_ms,
                procRunning=facts.proc_running,
                logAgeSec=facts.log_age_sec,
                logsFresh=facts.logs_fresh,
                serverReady=is_server_ready(facts),
                online=is_online(facts),
                lastError=resolve_last_error(facts),
                connectionsHint=(
                    f"proc={'yes' if facts.proc_running else 'no'}, "
                    f"logsFresh={'yes' if facts.logs_fresh else 'no'}"
                ),
                serverReadyFromLog=snapshot.serverReadyFromLog,
                world=snapshot.world,
                serverVersion=snapshot.serverVersion,
                lastLine=snapshot.lastLine,
                firstSeenMs=snapshot.firstSeenMs,
                lastSeenMs=snapshot.lastSeenMs,
                readyMs=snapshot.readyMs,
                lastSeenAgo=format_ago(snapshot.lastSeenMs, at_ms),
                readyAgo=format_ago(snapshot.readyMs, at_ms),
                playersOnline=snapshot.playersOnline,
                players=snapshot.players,
                pending=snapshot.pending,
                recentAttempts=snapshot.recentAttempts,
            )

        duration_ms = (time.monotonic() - started) * 1000
        record_status_build(status.serverReady, duration_ms)
        if status.lastError:
            logger.debug("Status for %s: %s", self.container, status.lastError)
        return status
