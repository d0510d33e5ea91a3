"""Supervised `docker logs -f` tail.

Runs the log process as an asyncio subprocess, publishes each stdout line to
line observers and restarts the process after a fixed backoff whenever it exits
without a manual stop.
"""
from __future__ import annotations

import asyncio
import enum
import logging
import signal as signal_module
from typing import Any, Awaitable, Callable, Optional

from valheim_status.observability import record_tail_event

logger = logging.getLogger("valheim_status.tail")

LineHandler = Callable[[str], Any]
ErrorHandler = Callable[[Exception], Any]
ProcessFactory = Callable[..., Awaitable[Any]]

_STREAM_LIMIT = 1024 * 1024
_TERMINATE_TIMEOUT_SECONDS = 5.0


class TailState(str, enum.Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    RESTART_PENDING = "restart_pending"


class LogTailError(Exception):
    """Base class for faults delivered to error observers."""


class SpawnFailure(LogTailError):
    def __init__(self, command: list[str], cause: BaseException):
        super().__init__(f"failed to start {' '.join(command)}: {cause}")
        self.command = command
        self.cause = cause


class UnexpectedExit(LogTailError):
    def __init__(self, code: Optional[int], signal: Optional[str], stderr_tail: str = ""):
        message = f"docker logs exited (code={code}, signal={signal})"
        if stderr_tail:
            message += f" | {stderr_tail}"
        super().__init__(message)
        self.code = code
        self.signal = signal
        self.stderr_tail = stderr_tail


def _split_returncode(returncode: Optional[int]) -> tuple[Optional[int], Optional[str]]:
    """asyncio reports death-by-signal as a negative return code."""
    if returncode is None or returncode >= 0:
        return returncode, None
    try:
        return None, signal_module.Signals(-returncode).name
    except ValueError:
        return None, str(-returncode)


class LogTailSupervisor:
    """Keep a `docker logs -f --tail N <container>` stream flowing.

    States: STOPPED -> RUNNING -> (unexpected exit) -> RESTART_PENDING -> RUNNING.
    `stop()` is valid from any state, cancels a pending restart and forces STOPPED.
    """

    def __init__(
        self,
        container: str,
        tail_lines: int = 400,
        restart_delay_seconds: float = 1.5,
        docker_bin: str = "docker",
        stderr_keep_chars: int = 8000,
        process_factory: Optional[ProcessFactory] = None,
    ):
        self.container = container
        self.tail_lines = int(tail_lines)
        self.restart_delay_seconds = float(restart_delay_seconds)
        self.docker_bin = docker_bin
        self.stderr_keep_chars = int(stderr_keep_chars)
        self._process_factory = process_factory or asyncio.create_subprocess_exec

        self._line_handlers: list[LineHandler] = []
        self._error_handlers: list[ErrorHandler] = []

        self._state = TailState.STOPPED
        self._proc: Any = None
        self._pump_task: Optional[asyncio.Task] = None
        self._launch_task: Optional[asyncio.Task] = None
        self._restart_handle: Optional[asyncio.TimerHandle] = None
        self._stopped_manually = False
        self._launching = False
        self._stderr_tail = ""

    @property
    def command(self) -> list[str]:
        return [self.docker_bin, "logs", "-f", "--tail", str(self.tail_lines), self.container]

    @property
    def state(self) -> TailState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is TailState.RUNNING

    @property
    def stderr_tail(self) -> str:
        return self._stderr_tail

    # ── Observers ───────────────────────────────────────────────────

    def on_line(self, handler: LineHandler) -> None:
        self._line_handlers.append(handler)

    def on_error(self, handler: ErrorHandler) -> None:
        self._error_handlers.append(handler)

    def _emit_line(self, line: str) -> None:
        for handler in list(self._line_handlers):
            try:
                handler(line)
            except Exception:
                logger.exception("Line handler %r failed", handler)

    def _emit_error(self, error: Exception) -> None:
        for handler in list(self._error_handlers):
            try:
                handler(error)
            except Exception:
                logger.exception("Error handler %r failed", handler)

    # ── Lifecycle ───────────────────────────────────────────────────

    async def start(self) -> None:
        """Launch the tail. No-op while a process is attached or spawning."""
        if self._proc is not None or self._launching:
            return
        self._stopped_manually = False
        self._cancel_restart()
        await self._launch()

    async def stop(self) -> None:
        self._stopped_manually = True
        self._cancel_restart()

        if self._launch_task is not None and self._launch_task is not asyncio.current_task():
            self._launch_task.cancel()
        self._launch_task = None

        proc = self._proc
        pump_task = self._pump_task
        self._cleanup()

        if pump_task is not None:
            pump_task.cancel()
            try:
                await pump_task
            except asyncio.CancelledError:
                pass

        if proc is not None:
            await self._terminate(proc)

        self._state = TailState.STOPPED
        logger.info("Log tail stopped for container %s", self.container)

    async def _terminate(self, proc: Any) -> None:
        if proc.returncode is not None:
            return
        try:
            proc.terminate()
            await asyncio.wait_for(proc.wait(), timeout=_TERMINATE_TIMEOUT_SECONDS)
        except ProcessLookupError:
            pass
        except asyncio.TimeoutError:
            logger.warning("docker logs did not exit after SIGTERM, killing")
            proc.kill()
            await proc.wait()

    async def _launch(self) -> None:
        command = self.command
        self._launching = True
        try:
            proc = await self._process_factory(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=_STREAM_LIMIT,
            )
        except (OSError, ValueError) as exc:
            self._state = TailState.STOPPED
            record_tail_event("spawn_failure")
            self._emit_error(SpawnFailure(command, exc))
            return
        finally:
            self._launching = False

        if self._stopped_manually:
            # stop() landed while the process was spawning.
            await self._terminate(proc)
            return

        self._proc = proc
        self._stderr_tail = ""
        self._state = TailState.RUNNING
        self._pump_task = asyncio.create_task(self._pump(proc))
        logger.info("Log tail started: %s", " ".join(command))

    async def _pump(self, proc: Any) -> None:
        stderr_task = asyncio.create_task(self._drain_stderr(proc.stderr))
        try:
            while True:
                raw = await proc.stdout.readline()
                if not raw:
                    break
                self._emit_line(raw.decode("utf-8", errors="replace").rstrip("\r\n"))
            returncode = await proc.wait()
            await stderr_task
        except asyncio.CancelledError:
            stderr_task.cancel()
            raise
        except (OSError, ValueError) as exc:
            # Broken pipe or an over-long line; the tail is unusable, so end it.
            logger.warning("Log stream read failed: %s", exc)
            stderr_task.cancel()
            await self._terminate(proc)
            returncode = proc.returncode
        self._on_process_exit(returncode)

    async def _drain_stderr(self, stream: Any) -> None:
        while True:
            chunk = await stream.read(4096)
            if not chunk:
                return
            self._stderr_tail += chunk.decode("utf-8", errors="replace")
            if len(self._stderr_tail) > self.stderr_keep_chars:
                self._stderr_tail = self._stderr_tail[-self.stderr_keep_chars:]

    def _on_process_exit(self, returncode: Optional[int]) -> None:
        stderr_tail = self._stderr_tail.strip()
        self._cleanup()
        if self._stopped_manually:
            return

        code, signal_name = _split_returncode(returncode)
        record_tail_event("unexpected_exit")
        self._emit_error(UnexpectedExit(code, signal_name, stderr_tail))
        self._schedule_restart()

    def _cleanup(self) -> None:
        self._proc = None
        self._pump_task = None
        if self._state is TailState.RUNNING:
            self._state = TailState.STOPPED

    # ── Restart timer ───────────────────────────────────────────────

    def _schedule_restart(self) -> None:
        if self._restart_handle is not None:
            return
        loop = asyncio.get_running_loop()
        self._state = TailState.RESTART_PENDING
        self._restart_handle = loop.call_later(self.restart_delay_seconds, self._fire_restart)
        logger.info("Log tail restart scheduled in %.1fs", self.restart_delay_seconds)

    def _cancel_restart(self) -> None:
        if self._restart_handle is not None:
            self._restart_handle.cancel()
            self._restart_handle = None
        if self._state is TailState.RESTART_PENDING:
            self._state = TailState.STOPPED

    def _fire_restart(self) -> None:
        self._restart_handle = None
        if self._stopped_manually or self._proc is not None or self._launching:
            return
        record_tail_event("restart")
        self._launch_task = asyncio.create_task(self._launch())
