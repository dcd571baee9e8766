"""Launching long-running services and waiting until they answer."""

import asyncio
import logging
import shlex
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from .commands import CommandRunner
from .config import ReadinessConfig
from .diagnostics import Diagnostics, is_ready_status
from .errors import ServiceStartupError, StackboxError
from .manager import SandboxManager
from .models import ProcessRef

logger = logging.getLogger("stackbox.readiness")

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


@dataclass
class ServiceHandle:
    """A running service. It does not own the sandbox it runs in."""
    process: ProcessRef
    url: str
    port: int
    command: str
    cwd: str
    sandbox_id: str
    process_pattern: Optional[str] = None
    # None falls back to the health config's path
    health_path: Optional[str] = None
    log_path: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "pid": self.process.pid,
            "url": self.url,
            "port": self.port,
            "command": self.command,
            "cwd": self.cwd,
            "sandbox_id": self.sandbox_id,
            "health_path": self.health_path,
            "log_path": self.log_path,
        }


@dataclass
class ReadinessState:
    """Progress of one readiness probe."""
    port: int
    attempts: int = 0
    elapsed_s: float = 0.0
    process_present: Optional[bool] = None
    port_listening: bool = False
    http_status: Optional[int] = None
    last_error: Optional[str] = None
    history: list[str] = field(default_factory=list)

    @property
    def ready(self) -> bool:
        return self.port_listening and is_ready_status(self.http_status)


class ServiceLauncher:
    """Starts a background process and gates on port + HTTP readiness.

    ``clock`` and ``sleep`` default to ``time.monotonic`` and
    ``asyncio.sleep``; tests pass a virtual clock.
    """

    def __init__(
        self,
        manager: SandboxManager,
        runner: CommandRunner,
        diagnostics: Diagnostics,
        config: Optional[ReadinessConfig] = None,
        clock: Optional[Clock] = None,
        sleep: Optional[Sleep] = None,
    ):
        self.manager = manager
        self.runner = runner
        self.diagnostics = diagnostics
        self.config = config or ReadinessConfig()
        self.clock = clock or time.monotonic
        self.sleep = sleep or asyncio.sleep

    async def start_service(
        self,
        command: str,
        port: int,
        cwd: str = "/home",
        probe_path: str = "/",
        timeout_s: Optional[float] = None,
        process_pattern: Optional[str] = None,
        health_path: Optional[str] = None,
        log_path: Optional[str] = None,
    ) -> ServiceHandle:
        """Launch ``command`` in the background and wait until it serves HTTP.

        With ``log_path`` the service's output is redirected there, and the
        recorded command keeps the redirect so a restart logs to the same file.

        Raises:
            ServiceStartupError: the service did not become ready in time.
        """
        if log_path:
            command = f"{command} > {shlex.quote(log_path)} 2>&1"
        handle = await self.manager.acquire()
        process = await self.runner.run_background(command, cwd=cwd)
        url = handle.url_for(port)
        logger.info("Service launched on port %d (pid=%s) url=%s", port, process.pid, url)

        service = ServiceHandle(
            process=process,
            url=url,
            port=port,
            command=command,
            cwd=cwd,
            sandbox_id=handle.id,
            process_pattern=process_pattern,
            health_path=health_path,
            log_path=log_path,
        )
        await self.wait_until_ready(
            port,
            probe_path=probe_path,
            timeout_s=timeout_s,
            process_pattern=process_pattern,
            log_paths=[log_path] if log_path else None,
        )
        return service

    async def probe_once(self, state: ReadinessState, probe_path: str = "/", process_pattern: Optional[str] = None) -> bool:
        """One probe tick: process (recorded only), then port, then HTTP."""
        if process_pattern:
            state.process_present = await self.diagnostics.process_running(process_pattern)

        state.port_listening = await self.diagnostics.is_port_listening(state.port)
        if not state.port_listening:
            state.http_status = None
            return False

        state.http_status = await self.diagnostics.http_status(state.port, probe_path)
        return is_ready_status(state.http_status)

    async def wait_until_ready(
        self,
        port: int,
        probe_path: str = "/",
        timeout_s: Optional[float] = None,
        interval_s: Optional[float] = None,
        process_pattern: Optional[str] = None,
        log_paths: Optional[List[str]] = None,
    ) -> ReadinessState:
        timeout_s = self.config.timeout_s if timeout_s is None else timeout_s
        interval_s = self.config.interval_s if interval_s is None else interval_s
        state = ReadinessState(port=port)
        started = self.clock()

        while True:
            state.attempts += 1
            try:
                if await self.probe_once(state, probe_path, process_pattern):
                    state.elapsed_s = self.clock() - started
                    logger.info(
                        "Port %d ready after %.1fs (%d attempts, HTTP %s)",
                        port, state.elapsed_s, state.attempts, state.http_status,
                    )
                    return state
                state.last_error = None
            except StackboxError as e:
                state.last_error = str(e)
                logger.warning("Readiness probe %d for port %d failed: %s", state.attempts, port, e)

            state.elapsed_s = self.clock() - started
            state.history.append(
                f"#{state.attempts} t={state.elapsed_s:.1f}s listening={state.port_listening} "
                f"http={state.http_status}"
            )
            remaining = timeout_s - state.elapsed_s
            if remaining <= 0:
                break
            logger.debug(
                "Waiting for port %d (attempt %d, listening=%s, http=%s)",
                port, state.attempts, state.port_listening, state.http_status,
            )
            await self.sleep(min(interval_s, remaining))

        snapshot = await self.diagnostics.collect(port=port, log_paths=log_paths)
        logger.error(
            "Service on port %d not ready after %.0fs (%d attempts)\n%s",
            port, timeout_s, state.attempts, snapshot.summary(),
        )
        raise ServiceStartupError(
            f"Service on port {port} failed to become ready within {timeout_s:.0f}s",
            port=port,
            timeout_s=timeout_s,
            state=state,
            diagnostics=snapshot,
        )
