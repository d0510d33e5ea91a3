"""Classify Valheim dedicated-server log lines into lifecycle events.

Only a fixed vocabulary of markers is recognised. Server markers (version,
world, ready) are evaluated on every line; connection markers form an
ordered rule table where the first matching rule wins.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Optional

# Server markers
VERSION = "version"
WORLD = "world"
SERVER_READY = "server_ready"
READY_AT = "ready_at"

# Connection lifecycle markers, in evaluation order
CONNECTED = "connected"
HANDSHAKE = "handshake"
WRONG_PASSWORD = "wrong_password"
CHARACTER = "character"
CLOSING_SOCKET = "closing_socket"
PEER_DISCONNECTED = "peer_disconnected"
DISCONNECT = "disconnect"

_VERSION_RE = re.compile(r"Valheim version:\s*([0-9.]+)\s*\(network version\s*([0-9]+)\)", re.IGNORECASE)
_WORLD_RE = re.compile(r"Load world:\s*([^(]+)\s*\(", re.IGNORECASE)
_SERVER_READY_RE = re.compile(r"Opened Steam server|ZNET START", re.IGNORECASE)
_READY_AT_RE = re.compile(r"Game server connected|Registering lobby", re.IGNORECASE)


@dataclass(frozen=True)
class LineEvent:
    kind: str
    steam_id: Optional[str] = None
    name: Optional[str] = None
    version: Optional[str] = None
    network: Optional[str] = None
    world: Optional[str] = None


@dataclass(frozen=True)
class ClassifiedLine:
    markers: tuple[LineEvent, ...]
    lifecycle: Optional[LineEvent]

    @property
    def kinds(self) -> list[str]:
        kinds = [event.kind for event in self.markers]
        if self.lifecycle is not None:
            kinds.append(self.lifecycle.kind)
        return kinds


def _with_id(kind: str) -> Callable[[re.Match], LineEvent]:
    return lambda match: LineEvent(kind=kind, steam_id=match.group(1))


def _character(match: re.Match) -> LineEvent:
    return LineEvent(kind=CHARACTER, name=match.group(1).strip())


# (pattern, builder) pairs; order is priority.
_LIFECYCLE_RULES: list[tuple[re.Pattern, Callable[[re.Match], LineEvent]]] = [
    (re.compile(r"Got connection SteamID\s+(\d+)", re.IGNORECASE), _with_id(CONNECTED)),
    (re.compile(r"Got handshake from client\s+(\d+)", re.IGNORECASE), _with_id(HANDSHAKE)),
    (re.compile(r"Peer\s+(\d+)\s+has wrong password", re.IGNORECASE), _with_id(WRONG_PASSWORD)),
    # "Got character ZDOID from Pikus : 912527495:1"
    (re.compile(r"Got character ZDOID from\s+(.+?)\s*:\s*", re.IGNORECASE), _character),
    (re.compile(r"Closing socket\s+(\d+)", re.IGNORECASE), _with_id(CLOSING_SOCKET)),
    (re.compile(r"Peer\s+(\d+)\s+disconnected", re.IGNORECASE), _with_id(PEER_DISCONNECTED)),
    (re.compile(r"RPC_Disconnect\b|Socket closed by peer", re.IGNORECASE), lambda match: LineEvent(kind=DISCONNECT)),
]


def _server_markers(line: str) -> list[LineEvent]:
    markers: list[LineEvent] = []

    version_match = _VERSION_RE.search(line)
    if version_match:
        markers.append(
            LineEvent(kind=VERSION, version=version_match.group(1), network=version_match.group(2))
        )

    world_match = _WORLD_RE.search(line)
    if world_match:
        markers.append(LineEvent(kind=WORLD, world=world_match.group(1).strip()))

    if _SERVER_READY_RE.search(line):
        markers.append(LineEvent(kind=SERVER_READY))
    if _READY_AT_RE.search(line):
        markers.append(LineEvent(kind=READY_AT))

    return markers


def classify_lifecycle(line: str) -> Optional[LineEvent]:
    for pattern, build in _LIFECYCLE_RULES:
        match = pattern.search(line)
        if match:
            return build(match)
    return None


def classify_line(line: str) -> ClassifiedLine:
    """Classify one trimmed log line. Unrecognised lines yield no events."""
    return ClassifiedLine(markers=tuple(_server_markers(line)), lifecycle=classify_lifecycle(line))
