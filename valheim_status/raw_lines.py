"""Bounded buffer of raw log lines for the debug endpoint."""
from __future__ import annotations

import threading
from collections import deque


class RawLineBuffer:
    def __init__(self, keep: int = 600):
        self.keep = max(1, int(keep))
        self._lines: deque[str] = deque(maxlen=self.keep)
        self._lock = threading.Lock()

    def push(self, line: str) -> None:
        with self._lock:
            self._lines.append(line)

    def tail(self, count: int) -> list[str]:
        """Newest `count` lines, oldest first."""
        if count <= 0:
            return []
        with self._lock:
            lines = list(self._lines)
        return lines[-count:]

    def clear(self) -> None:
        with self._lock:
            self._lines.clear()

    def __len__(self) -> int:
        return len(self._lines)
