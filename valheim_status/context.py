"""Monitor context: one tail, one state engine, one raw-line buffer per app."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from valheim_status import config
from valheim_status.date_utils import now_ms
from valheim_status.log_tail import LogTailSupervisor
from valheim_status.observability import record_log_line
from valheim_status.raw_lines import RawLineBuffer
from valheim_status.services.docker_probe import DockerProbe
from valheim_status.services.status import StatusAggregator
from valheim_status.session_state import SessionStateEngine

logger = logging.getLogger("valheim_status.tail")


@dataclass
class MonitorContext:
    tail: LogTailSupervisor
    engine: SessionStateEngine
    raw_lines: RawLineBuffer
    aggregator: StatusAggregator
    clock: Callable[[], int] = now_ms

    def __post_init__(self) -> None:
        self.tail.on_line(self.handle_line)
        self.tail.on_error(self.handle_error)

    def handle_line(self, line: str) -> None:
        self.raw_lines.push(line)
        # docker logs carries no reliable source timestamps, so stamp on arrival.
        classified = self.engine.ingest(line, self.clock())
        if classified is not None:
            kinds = classified.kinds
            record_log_line(kinds[-1] if kinds else "unmatched")

    def handle_error(self, error: Exception) -> None:
        logger.error("[log tail] %s", error)

    def reset(self) -> None:
        self.engine.reset()
        self.raw_lines.clear()

    async def start(self) -> None:
        await self.tail.start()

    async def stop(self) -> None:
        await self.tail.stop()


def build_context() -> MonitorContext:
    """Wire the monitor from `config`."""
    engine = SessionStateEngine(
        pending_ttl_ms=config.PENDING_TTL_MS,
        player_seen_ttl_ms=config.PLAYER_SEEN_TTL_MS,
        attempts_keep=config.ATTEMPTS_KEEP,
    )
    tail = LogTailSupervisor(
        container=config.CONTAINER,
        tail_lines=config.TAIL_LINES,
        restart_delay_seconds=config.RESTART_DELAY_SECONDS,
        docker_bin=config.DOCKER_BIN,
        stderr_keep_chars=config.STDERR_KEEP_CHARS,
    )
    probe = DockerProbe(
        container=config.CONTAINER,
        process_pattern=config.PROCESS_PATTERN,
        timeout_seconds=config.PROBE_TIMEOUT_SECONDS,
        docker_bin=config.DOCKER_BIN,
    )
    aggregator = StatusAggregator(
        probe=probe,
        engine=engine,
        container=config.CONTAINER,
        stale_log_seconds=config.STALE_LOG_SECONDS,
    )
    return MonitorContext(
        tail=tail,
        engine=engine,
        raw_lines=RawLineBuffer(config.RAW_KEEP_LINES),
        aggregator=aggregator,
    )
