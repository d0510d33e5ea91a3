"""Container and process liveness checks via the docker CLI.

Every call is bounded by a timeout and never raises: failures map to
"unknown" (None) or False.
"""
from __future__ import annotations

import asyncio
import json
import logging
import shlex
from typing import Optional

from pydantic import ValidationError

from valheim_status.models import ContainerState

logger = logging.getLogger("valheim_status.probe")

_MAX_OUTPUT_BYTES = 10 * 1024 * 1024


class ProbeError(Exception):
    """A docker CLI call failed, timed out or exited non-zero."""


class DockerProbe:
    def __init__(
        self,
        container: str,
        process_pattern: str = r"valheim_server\.exe",
        timeout_seconds: float = 5.0,
        docker_bin: str = "docker",
    ):
        self.container = container
        self.process_pattern = process_pattern
        self.timeout_seconds = float(timeout_seconds)
        self.docker_bin = docker_bin

    async def _run(self, *args: str) -> str:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.docker_bin,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise ProbeError(f"cannot run {self.docker_bin}: {exc}") from exc

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise ProbeError(f"{self.docker_bin} {args[0]} timed out after {self.timeout_seconds}s") from exc
        finally:
            # Covers timeouts and cancelled requests alike.
            if proc.returncode is None:
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass
                await proc.wait()

        if proc.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()
            raise ProbeError(f"{self.docker_bin} {args[0]} exited {proc.returncode}: {detail}")
        return stdout[:_MAX_OUTPUT_BYTES].decode("utf-8", errors="replace")

    async def _exec_shell(self, command: str) -> str:
        return await self._run("exec", "-i", self.container, "sh", "-lc", command)

    async def inspect_state(self) -> Optional[ContainerState]:
        """`docker inspect` State block, or None when the container is unknown."""
        try:
            out = await self._run("inspect", self.container, "--format", "{{json .State}}")
            return ContainerState.model_validate(json.loads(out))
        except (ProbeError, ValueError, ValidationError) as exc:
            logger.debug("docker inspect %s failed: %s", self.container, exc)
            return None

    async def is_process_running(self) -> bool:
        pattern = shlex.quote(self.process_pattern)
        checks = (
            f"pgrep -af {pattern} || true",
            f"ps aux | grep -i {pattern} | grep -v grep || true",
        )
        for command in checks:
            try:
                out = await self._exec_shell(command)
            except ProbeError as exc:
                logger.debug("Process check %r failed: %s", command, exc)
                continue
            if out.strip():
                return True
        return False
