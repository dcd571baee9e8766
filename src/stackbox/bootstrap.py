"""Generic write -> install -> launch -> probe bootstrap for a service."""

import logging
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Union

from .commands import CommandRunner
from .errors import DependencyInstallError
from .files import FileOperations
from .models import CommandResult
from .readiness import ServiceHandle, ServiceLauncher

logger = logging.getLogger("stackbox.bootstrap")


@dataclass(frozen=True)
class ServiceKind:
    """How to install and start one kind of service."""
    name: str
    port: int
    start_command: str
    install_command: Optional[str] = None
    fallback_install_command: Optional[str] = None
    install_timeout_ms: int = 180_000
    probe_path: str = "/"
    health_path: str = "/health"
    # stdout and stderr of the running service
    log_path: Optional[str] = None
    process_pattern: Optional[str] = None


SERVICE_KINDS: Dict[str, ServiceKind] = {
    "fastapi": ServiceKind(
        name="fastapi",
        port=8000,
        install_command="python3 -m pip install -r requirements.txt",
        install_timeout_ms=180_000,
        start_command="python3 -m uvicorn main:app --host 0.0.0.0 --port 8000",
        log_path="/tmp/fastapi.log",
        process_pattern="uvicorn",
    ),
    "nextjs": ServiceKind(
        name="nextjs",
        port=3000,
        install_command="npm install",
        fallback_install_command="npm install --legacy-peer-deps",
        install_timeout_ms=300_000,
        start_command="npm run dev -- --port 3000 --hostname 0.0.0.0",
        health_path="/",
        log_path="/tmp/nextjs.log",
        process_pattern="next",
    ),
    "react": ServiceKind(
        name="react",
        port=3000,
        install_command="npm install",
        fallback_install_command="npm install --legacy-peer-deps",
        install_timeout_ms=300_000,
        start_command="npm start -- --port 3000 --host 0.0.0.0",
        health_path="/",
        log_path="/tmp/react.log",
        process_pattern="react-scripts",
    ),
}


def get_service_kind(kind: Union[str, ServiceKind]) -> ServiceKind:
    if isinstance(kind, ServiceKind):
        return kind
    try:
        return SERVICE_KINDS[kind]
    except KeyError:
        raise ValueError(f"Unknown service kind: {kind} (known: {', '.join(SERVICE_KINDS)})") from None


class ServiceBootstrapper:
    """Brings up a service from a set of files."""

    def __init__(self, files: FileOperations, runner: CommandRunner, launcher: ServiceLauncher):
        self.files = files
        self.runner = runner
        self.launcher = launcher

    async def install(self, kind: ServiceKind, workdir: str) -> Optional[CommandResult]:
        """Run the kind's install command, then its fallback if that fails.

        Raises:
            DependencyInstallError: every install attempt exited non-zero.
        """
        if not kind.install_command:
            return None

        logger.info("Installing %s dependencies in %s", kind.name, workdir)
        result = await self.runner.run_long(kind.install_command, cwd=workdir, timeout_ms=kind.install_timeout_ms)
        if result.ok:
            return result

        command = kind.install_command
        if kind.fallback_install_command:
            logger.warning(
                "%s install failed (exit %d), retrying with: %s",
                kind.name, result.exit_code, kind.fallback_install_command,
            )
            command = kind.fallback_install_command
            result = await self.runner.run_long(command, cwd=workdir, timeout_ms=kind.install_timeout_ms)
            if result.ok:
                return result

        raise DependencyInstallError(kind.name, command, result)

    async def bootstrap(
        self,
        kind: Union[str, ServiceKind],
        workdir: str,
        files: Mapping[str, str],
        timeout_s: Optional[float] = None,
    ) -> ServiceHandle:
        """Write ``files`` into ``workdir``, install, launch and wait until ready."""
        kind = get_service_kind(kind)

        await self.files.write_tree(workdir, files)
        await self.install(kind, workdir)

        logger.info("Starting %s: %s", kind.name, kind.start_command)
        service = await self.launcher.start_service(
            kind.start_command,
            port=kind.port,
            cwd=workdir,
            probe_path=kind.probe_path,
            timeout_s=timeout_s,
            process_pattern=kind.process_pattern,
            health_path=kind.health_path,
            log_path=kind.log_path,
        )
        logger.info("%s ready at %s", kind.name, service.url)
        return service
