"""Shared timestamp parsing and formatting helpers."""
from __future__ import annotations

import re
import time
from datetime import datetime
from typing import Any

# Valheim prefixes lines with "02/17/2026 20:08:01: ..."
_LOG_STAMP_RE = re.compile(r"^(\d{2})/(\d{2})/(\d{4}) (\d{2}):(\d{2}):(\d{2}):")
# Docker emits RFC3339 with nanoseconds, e.g. "2026-02-17T18:08:01.123456789Z"
_DOCKER_TIME_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})?$"
)
_DOCKER_ZERO_TIME_PREFIX = "0001-01-01"


def now_ms() -> int:
    return int(time.time() * 1000)


def parse_log_time_ms(line: str) -> int | None:
    """Parse the embedded Valheim timestamp at the start of a log line.

    The stamp carries no zone, so it is read as host local time.
    """
    match = _LOG_STAMP_RE.match(line or "")
    if not match:
        return None
    month, day, year, hour, minute, second = (int(part) for part in match.groups())
    try:
        return int(datetime(year, month, day, hour, minute, second).timestamp() * 1000)
    except (ValueError, OverflowError, OSError):
        return None


def parse_docker_time_ms(value: Any) -> int | None:
    """Convert a Docker `StartedAt` value into epoch milliseconds.

    Docker reports never-started containers with the zero time, which maps to None.
    """
    token = str(value or "").strip()
    if not token or token.startswith(_DOCKER_ZERO_TIME_PREFIX):
        return None
    match = _DOCKER_TIME_RE.match(token)
    if not match:
        return None
    base, fraction, zone = match.groups()
    fraction = (fraction or "0")[:6].ljust(6, "0")
    zone = "+00:00" if zone in (None, "Z") else zone
    try:
        dt = datetime.fromisoformat(f"{base}.{fraction}{zone}")
    except ValueError:
        return None
    return int(dt.timestamp() * 1000)


def format_ago(value_ms: int | None, at_ms: int | None = None) -> str | None:
    """Render elapsed time since `value_ms` as 12s / 5m / 3h / 2d."""
    if not value_ms:
        return None
    diff = (now_ms() if at_ms is None else at_ms) - value_ms
    if diff < 0:
        return None
    seconds = diff // 1000
    if seconds < 60:
        return f"{seconds}s"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes}m"
    hours = minutes // 60
    if hours < 48:
        return f"{hours}h"
    return f"{hours // 24}d"
