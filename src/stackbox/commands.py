"""Command execution inside the sandbox."""

import asyncio
import logging
import time
from typing import Optional

from .config import SandboxConfig
from .errors import SandboxTimeoutError
from .logging_config import truncate
from .manager import SandboxManager
from .models import CommandResult, ProcessRef

logger = logging.getLogger("stackbox.commands")


class CommandRunner:
    """Runs shell commands through the manager's sandbox.

    A non-zero exit code is returned, not raised. Only the deadline is
    fatal: ``SandboxTimeoutError`` is raised when ``timeout_ms`` passes.
    """

    def __init__(self, manager: SandboxManager, config: Optional[SandboxConfig] = None):
        self.manager = manager
        self.config = config or manager.config

    async def run(
        self,
        command: str,
        cwd: Optional[str] = None,
        timeout_ms: Optional[int] = None,
    ) -> CommandResult:
        """Run ``command`` and wait for it to finish.

        Args:
            command: Shell command line.
            cwd: Working directory, ``/home`` by default.
            timeout_ms: Deadline in milliseconds (60s by default).
        """
        return await self._run(
            command,
            cwd or self.config.default_cwd,
            timeout_ms or self.config.command_timeout_ms,
        )

    async def run_long(
        self,
        command: str,
        cwd: Optional[str] = None,
        timeout_ms: Optional[int] = None,
    ) -> CommandResult:
        """Same as :meth:`run` with the long default deadline (10 minutes)."""
        return await self._run(
            command,
            cwd or self.config.default_cwd,
            timeout_ms or self.config.long_command_timeout_ms,
        )

    async def _run(self, command: str, cwd: str, timeout_ms: int) -> CommandResult:
        handle = await self.manager.acquire()
        logger.info("$ %s (cwd=%s, timeout=%dms)", command, cwd, timeout_ms)
        started = time.monotonic()
        timeout_s = timeout_ms / 1000

        try:
            result = await asyncio.wait_for(
                handle.remote.run(command, cwd=cwd, timeout_s=timeout_s),
                timeout=timeout_s,
            )
        except SandboxTimeoutError:
            logger.error("Command timed out after %dms: %s", timeout_ms, command)
            raise
        except asyncio.TimeoutError as e:
            logger.error("Command timed out after %dms: %s", timeout_ms, command)
            raise SandboxTimeoutError("run", timeout_ms, command) from e

        elapsed_ms = int((time.monotonic() - started) * 1000)
        if result.ok:
            logger.debug(
                "exit=0 in %dms stdout=%s",
                elapsed_ms,
                truncate(result.stdout),
            )
        else:
            logger.warning(
                "exit=%d in %dms: %s stderr=%s stdout=%s",
                result.exit_code,
                elapsed_ms,
                command,
                truncate(result.stderr),
                truncate(result.stdout),
            )
        return result

    async def run_background(self, command: str, cwd: Optional[str] = None) -> ProcessRef:
        """Launch ``command`` without waiting for it to exit."""
        cwd = cwd or self.config.default_cwd
        handle = await self.manager.acquire()
        logger.info("$ %s & (cwd=%s)", command, cwd)
        ref = await handle.remote.run_background(command, cwd=cwd)
        logger.info("Background process started: pid=%s", ref.pid)
        return ref

    async def kill_process(self, pid: int) -> bool:
        handle = await self.manager.acquire()
        killed = await handle.remote.kill_process(pid)
        logger.info("Kill pid=%s: %s", pid, "ok" if killed else "not running")
        return killed
