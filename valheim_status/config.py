"""Valheim status monitor configuration."""
import os


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


# Server settings
HOST = os.getenv("HOST", "0.0.0.0")
PORT = _env_int("PORT", 8080)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Monitored container
CONTAINER = os.getenv("VALHEIM_CONTAINER", "valheim")
DOCKER_BIN = os.getenv("DOCKER_BIN", "docker")
PROCESS_PATTERN = os.getenv("VALHEIM_PROCESS_PATTERN", r"valheim_server\.exe")
PROBE_TIMEOUT_SECONDS = _env_int("PROBE_TIMEOUT_SECONDS", 5)

# Log tail
TAIL_LINES = _env_int("DOCKER_LOG_TAIL", 400)
RESTART_DELAY_SECONDS = _env_int("TAIL_RESTART_DELAY_MS", 1500) / 1000.0
STDERR_KEEP_CHARS = 8000

# Raw lines kept in memory for /api/debug/raw
RAW_KEEP_LINES = _env_int("RAW_KEEP_LINES", 600)
RAW_DEBUG_LINES = _env_int("RAW_DEBUG_LINES", 400)

# If no log lines arrive for this long, logs are considered stale
STALE_LOG_SECONDS = _env_int("STALE_LOG_SECONDS", 180)

# Session state tuning
PENDING_TTL_MS = _env_int("PENDING_TTL_MS", 2 * 60 * 1000)
PLAYER_SEEN_TTL_MS = _env_int("PLAYER_SEEN_TTL_MS", 10 * 60 * 1000)
ATTEMPTS_KEEP = _env_int("ATTEMPTS_KEEP", 30)

# Observability
OTEL_ENABLED = _env_bool("VALHEIM_STATUS_OTEL_ENABLED", False)
OTEL_ENDPOINT = os.getenv("VALHEIM_STATUS_OTEL_ENDPOINT", "http://localhost:4318")
OTEL_SERVICE_NAME = os.getenv("VALHEIM_STATUS_OTEL_SERVICE_NAME", "valheim-status")
PROM_PORT = _env_int("VALHEIM_STATUS_PROM_PORT", 9464)
