"""Health polling and automatic restart of a running service."""

import asyncio
import logging
import shlex
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

import httpx

from .commands import CommandRunner
from .config import HealthConfig
from .diagnostics import PROBE_CWD, Diagnostics, ProcessEntry, self_safe_pattern
from .errors import StackboxError
from .readiness import Clock, ServiceHandle, Sleep

logger = logging.getLogger("stackbox.health")

DEFAULT_PROCESS_PATTERN = "uvicorn"


@dataclass
class HealthCheckResult:
    """Result of one HTTP health probe."""
    is_healthy: bool
    response_time_ms: Optional[float] = None
    status_code: Optional[int] = None
    error: Optional[str] = None
    url: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"is_healthy": self.is_healthy, "response_time_ms": self.response_time_ms}
        if self.status_code is not None:
            data["status_code"] = self.status_code
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class ServiceStatus:
    is_running: bool
    port_status: str = ""
    process_info: List[ProcessEntry] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "is_running": self.is_running,
            "port_status": self.port_status,
            "processes": [f"{p.pid} {p.command}" for p in self.process_info],
        }


@dataclass
class RestartOutcome:
    pid: Optional[int]
    process_running: bool
    port_listening: bool
    restarted_at: datetime = field(default_factory=datetime.now)

    @property
    def success(self) -> bool:
        return self.process_running and self.port_listening

    def to_dict(self) -> dict:
        return {
            "pid": self.pid,
            "process_running": self.process_running,
            "port_listening": self.port_listening,
            "restarted_at": self.restarted_at.isoformat(),
        }


@dataclass
class PollEntry:
    """One line of the polling log.

    ``event`` is ``check``, ``restart``, ``restart_skipped`` or ``error``.
    """
    event: str
    timestamp: datetime = field(default_factory=datetime.now)
    health: Optional[HealthCheckResult] = None
    service: Optional[ServiceStatus] = None
    restart: Optional[RestartOutcome] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        data: dict = {"timestamp": self.timestamp.isoformat(), "event": self.event}
        if self.health is not None or self.service is not None:
            data["status"] = {
                "health": self.health.to_dict() if self.health else None,
                "service": self.service.to_dict() if self.service else None,
            }
        if self.restart is not None:
            data["restart"] = self.restart.to_dict()
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class PollReport:
    entries: List[PollEntry] = field(default_factory=list)
    restarts: int = 0

    @property
    def checks(self) -> List[PollEntry]:
        return [e for e in self.entries if e.event == "check"]

    @property
    def healthy(self) -> bool:
        checks = self.checks
        return bool(checks) and bool(checks[-1].health and checks[-1].health.is_healthy)

    def to_dict(self) -> dict:
        return {
            "polling": False,
            "restarts": self.restarts,
            "logs": [e.to_dict() for e in self.entries],
        }


class HealthMonitor:
    """Watches one service and restarts it when it stops answering."""

    def __init__(
        self,
        service: ServiceHandle,
        runner: CommandRunner,
        diagnostics: Diagnostics,
        config: Optional[HealthConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Optional[Clock] = None,
        sleep: Optional[Sleep] = None,
    ):
        self.service = service
        self.runner = runner
        self.diagnostics = diagnostics
        self.config = config or HealthConfig()
        self.transport = transport
        self.clock = clock or time.monotonic
        self.sleep = sleep or asyncio.sleep
        self.restart_count = 0

    @property
    def process_pattern(self) -> str:
        return self.service.process_pattern or DEFAULT_PROCESS_PATTERN

    async def check_health(self, url: Optional[str] = None) -> HealthCheckResult:
        """GET the service's health path; healthy only on a 2xx response.

        The path comes from the service itself when it has one (a Next.js
        app has no ``/health``), otherwise from the config.
        """
        base = (url or self.service.url).rstrip("/")
        target = f"{base}{self.service.health_path or self.config.health_path}"
        started = time.monotonic()
        try:
            async with httpx.AsyncClient(
                timeout=self.config.request_timeout_s,
                transport=self.transport,
            ) as client:
                resp = await client.get(target)
        # InvalidURL is not an HTTPError
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            elapsed = (time.monotonic() - started) * 1000
            logger.warning("Health check %s failed: %s", target, e)
            return HealthCheckResult(
                is_healthy=False,
                response_time_ms=round(elapsed, 1),
                error=str(e) or type(e).__name__,
                url=target,
            )

        elapsed = (time.monotonic() - started) * 1000
        healthy = resp.is_success
        if not healthy:
            logger.warning("Health check %s returned HTTP %d", target, resp.status_code)
        return HealthCheckResult(
            is_healthy=healthy,
            response_time_ms=round(elapsed, 1),
            status_code=resp.status_code,
            url=target,
        )

    async def check_service_status(self, port: Optional[int] = None) -> ServiceStatus:
        port = port or self.service.port
        port_status = await self.diagnostics.port_status(port)
        if not port_status:
            return ServiceStatus(is_running=False)
        processes = await self.diagnostics.find_processes(self.process_pattern)
        return ServiceStatus(is_running=True, port_status=port_status, process_info=processes)

    async def restart(self) -> RestartOutcome:
        """Kill the tracked pid, kill by name, free the port, relaunch, settle, then verify."""
        port = self.service.port
        pattern = self_safe_pattern(self.process_pattern)
        logger.warning("Restarting service on port %d (%s)", port, self.service.command)

        pid = self.service.process.pid
        if pid is not None:
            try:
                await self.runner.kill_process(pid)
            except StackboxError as e:
                logger.warning("Could not kill pid %s, falling back to pkill: %s", pid, e)
        await self.runner.run(f"pkill -f {shlex.quote(pattern)} || true", cwd=PROBE_CWD)
        await self.sleep(self.config.kill_grace_s)
        await self.runner.run(f"fuser -k {port}/tcp || true", cwd=PROBE_CWD)
        await self.sleep(self.config.port_release_grace_s)

        process = await self.runner.run_background(self.service.command, cwd=self.service.cwd)
        self.service.process = process
        await self.sleep(self.config.settle_s)

        outcome = RestartOutcome(
            pid=process.pid,
            process_running=await self.diagnostics.process_running(self.process_pattern),
            port_listening=await self.diagnostics.is_port_listening(port),
        )
        self.restart_count += 1
        if outcome.success:
            logger.info("Service on port %d restarted (pid=%s)", port, process.pid)
        else:
            logger.error(
                "Service on port %d still down after restart (process=%s, listening=%s)",
                port, outcome.process_running, outcome.port_listening,
            )
        return outcome

    async def _log_metrics(self) -> None:
        try:
            await self.runner.manager.log_metrics()
        except StackboxError as e:
            logger.debug("Metrics unavailable: %s", e)

    def _may_restart(self) -> bool:
        limit = self.config.max_restarts
        return limit is None or self.restart_count < limit

    async def poll_status(
        self,
        url: Optional[str] = None,
        duration_s: Optional[float] = None,
        interval_s: Optional[float] = None,
    ) -> PollReport:
        """Check health and service status every ``interval_s`` for ``duration_s``.

        A failed tick triggers :meth:`restart` and then waits out the
        remainder of that tick.
        """
        duration_s = self.config.poll_duration_s if duration_s is None else duration_s
        interval_s = self.config.poll_interval_s if interval_s is None else interval_s
        if interval_s <= 0:
            raise ValueError("interval_s must be positive")

        report = PollReport()
        started = self.clock()
        logger.info("Polling %s for %.0fs every %.0fs", url or self.service.url, duration_s, interval_s)

        while self.clock() - started < duration_s:
            tick = self.clock()
            try:
                health = await self.check_health(url)
                status = await self.check_service_status()
                report.entries.append(PollEntry(event="check", health=health, service=status))

                if not (health.is_healthy and status.is_running):
                    if self._may_restart():
                        outcome = await self.restart()
                        report.restarts += 1
                        report.entries.append(PollEntry(event="restart", restart=outcome))
                    else:
                        logger.warning(
                            "Service unhealthy but restart limit (%s) reached", self.config.max_restarts
                        )
                        report.entries.append(PollEntry(
                            event="restart_skipped",
                            error=f"restart limit {self.config.max_restarts} reached",
                        ))
            except StackboxError as e:
                logger.warning("Polling tick failed: %s", e)
                report.entries.append(PollEntry(event="error", error=str(e)))

            if self.clock() - started >= self.config.metrics_after_s:
                await self._log_metrics()

            now = self.clock()
            wait = min(interval_s - (now - tick), duration_s - (now - started))
            if wait > 0:
                await self.sleep(wait)

        logger.info("Polling finished: %d checks, %d restarts", len(report.checks), report.restarts)
        return report
