"""Supervised converter subprocess.

Runs one external command, collects its stderr, and enforces a wall-clock
timeout. Exactly one of spawn failure, timeout, non-zero exit or clean exit
decides the outcome.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Sequence

from ogrexport.services.export_errors import (
    ProcessExitError,
    ProcessSpawnError,
    ProcessTimeoutError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessResult:
    returncode: int
    diagnostics: str
    duration_seconds: float


async def _read_all(stream: asyncio.StreamReader | None) -> str:
    if stream is None:
        return ""
    data = await stream.read()
    return data.decode("utf-8", errors="replace")


class OgrProcessRunner:
    """Spawns the converter and waits for it under a timeout."""

    async def run(self, command: str, args: Sequence[str], timeout_ms: int = 0) -> ProcessResult:
        """
        Run `command` with `args` and wait for it to exit.

        Args:
            command: Executable name or path
            args: Arguments, passed without a shell
            timeout_ms: Kill the process after this many milliseconds (<= 0 disables)

        Returns:
            ProcessResult for a clean (code 0) exit

        Raises:
            ProcessSpawnError: The executable could not be started
            ProcessTimeoutError: The timeout fired; the process was killed
            ProcessExitError: The process exited non-zero
        """
        started = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                command,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise ProcessSpawnError(f"Could not start {command}: {exc}") from exc

        logger.info(f"Started {command} (pid {proc.pid}, timeout {timeout_ms}ms)")
        stderr_task = asyncio.ensure_future(_read_all(proc.stderr))

        timed_out = False
        try:
            if timeout_ms > 0:
                await asyncio.wait_for(proc.wait(), timeout=timeout_ms / 1000)
            else:
                await proc.wait()
        except asyncio.TimeoutError:
            timed_out = True
            self._kill(proc)
            await proc.wait()
        except asyncio.CancelledError:
            self._kill(proc)
            stderr_task.cancel()
            # Reap the child even if the caller cancels again.
            await asyncio.shield(proc.wait())
            raise

        duration = time.monotonic() - started

        if timed_out:
            # The killed process may leave stderr open in a grandchild.
            stderr_task.cancel()
            logger.warning(f"{command} (pid {proc.pid}) killed after {timeout_ms}ms")
            raise ProcessTimeoutError()

        diagnostics = await stderr_task
        if proc.returncode != 0:
            logger.warning(f"{command} (pid {proc.pid}) exited with code {proc.returncode}")
            raise ProcessExitError(command, proc.returncode, diagnostics)

        logger.info(f"{command} (pid {proc.pid}) finished in {duration:.2f}s")
        return ProcessResult(returncode=0, diagnostics=diagnostics, duration_seconds=duration)

    @staticmethod
    def _kill(proc: asyncio.subprocess.Process) -> None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
