"""Deploy a generated full-stack project into a sandbox."""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

import httpx

from .bootstrap import SERVICE_KINDS, ServiceBootstrapper, ServiceKind
from .commands import CommandRunner
from .config import StackboxConfig
from .diagnostics import NO_LOGS, DiagnosticSnapshot, Diagnostics
from .errors import ServiceStartupError, StackboxError
from .files import FileOperations
from .health import HealthMonitor
from .manager import SandboxManager
from .mongodb import ConnectionInfo, MongoBootstrapper
from .project import FullStackProject
from .readiness import Clock, ServiceHandle, ServiceLauncher, Sleep
from .templates import nextjs_scaffold, package_json

logger = logging.getLogger("stackbox.deploy")

LogCallback = Callable[[str, str], None]


@dataclass
class DeployLogEntry:
    type: str
    message: str
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {"type": self.type, "message": self.message, "timestamp": self.timestamp.isoformat()}


@dataclass
class DeploymentResult:
    """Outcome of :meth:`Deployer.deploy`; failures are reported, not raised."""
    success: bool
    project_name: str
    backend_url: Optional[str] = None
    frontend_url: Optional[str] = None
    database: Optional[ConnectionInfo] = None
    backend: Optional[ServiceHandle] = None
    frontend: Optional[ServiceHandle] = None
    sandbox_id: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    diagnostics: Optional[DiagnosticSnapshot] = None
    logs: List[DeployLogEntry] = field(default_factory=list)

    @property
    def status(self) -> str:
        return "success" if self.success else "failed"

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "project_name": self.project_name,
            "sandbox_id": self.sandbox_id,
            "backend_url": self.backend_url,
            "frontend_url": self.frontend_url,
            "database": self.database.to_dict() if self.database else None,
            "error": self.error,
            "error_type": self.error_type,
            "diagnostics": self.diagnostics.to_dict() if self.diagnostics else None,
            "logs": [entry.to_dict() for entry in self.logs],
        }


def next_app_path(path: str) -> str:
    """Generated ``app/*.js`` pages become ``.tsx`` in the scaffolded app router."""
    if path.startswith("app/") and path.endswith(".js"):
        return path[: -len(".js")] + ".tsx"
    return path


def valid_package_json(content: str, framework: str) -> bool:
    try:
        data = json.loads(content)
    except (TypeError, ValueError):
        return False
    if not isinstance(data, dict):
        return False
    deps = {**(data.get("dependencies") or {}), **(data.get("devDependencies") or {})}
    required = "next" if framework == "next" else "react"
    return required in deps


class Deployer:
    """Database, then backend, then frontend, all in one sandbox."""

    def __init__(
        self,
        manager: SandboxManager,
        config: Optional[StackboxConfig] = None,
        on_log: Optional[LogCallback] = None,
        clock: Optional[Clock] = None,
        sleep: Optional[Sleep] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.manager = manager
        self.config = config or StackboxConfig(sandbox=manager.config)
        self.on_log = on_log
        self.clock = clock
        self.sleep = sleep
        self.transport = transport

        self.runner = CommandRunner(manager, self.config.sandbox)
        self.files = FileOperations(manager)
        self.diagnostics = Diagnostics(self.runner, self.config.readiness)
        self.launcher = ServiceLauncher(
            manager, self.runner, self.diagnostics, self.config.readiness, clock=clock, sleep=sleep,
        )
        self.bootstrapper = ServiceBootstrapper(self.files, self.runner, self.launcher)
        self.mongo = MongoBootstrapper(self.runner, self.diagnostics, self.config.mongodb, sleep=sleep)

    def _log(self, result: DeploymentResult, type_: str, message: str) -> None:
        result.logs.append(DeployLogEntry(type=type_, message=message))
        level = {"error": logging.ERROR, "warning": logging.WARNING}.get(type_, logging.INFO)
        logger.log(level, message)
        if self.on_log:
            self.on_log(message, type_)

    async def deploy(self, project: FullStackProject) -> DeploymentResult:
        result = DeploymentResult(success=False, project_name=project.project_name)
        self._log(result, "info", f"Starting deployment of {project.project_name}")

        try:
            handle = await self.manager.acquire()
            result.sandbox_id = handle.id

            if project.uses_mongodb:
                result.database = await self.deploy_database(result)

            result.backend = await self.deploy_backend(project, result)
            result.backend_url = result.backend.url

            result.frontend = await self.deploy_frontend(project, result.backend_url, result)
            result.frontend_url = result.frontend.url
        except StackboxError as e:
            result.error = str(e)
            result.error_type = type(e).__name__
            if isinstance(e, ServiceStartupError):
                result.diagnostics = e.diagnostics
            self._log(result, "error", f"Deployment failed: {e}")
            return result

        result.success = True
        self._log(result, "success", "Full-stack deployment completed successfully")
        return result

    async def deploy_database(self, result: DeploymentResult) -> Optional[ConnectionInfo]:
        """Start MongoDB; a failure is logged as a warning and deployment goes on."""
        self._log(result, "info", "Starting MongoDB service...")
        try:
            outcome = await self.mongo.ensure_running()
        except StackboxError as e:
            self._log(result, "warning", f"MongoDB setup failed: {e}")
            return None
        self._log(result, "success", outcome.stdout)
        if self.mongo.degraded:
            self._log(result, "warning", "MongoDB shell unavailable: seed data skipped")
        return self.mongo.connection_info()

    async def deploy_backend(self, project: FullStackProject, result: DeploymentResult) -> ServiceHandle:
        files = project.backend_files()
        if result.database is not None and ".env" not in files:
            files[".env"] = self.mongo.env_file()
        self._log(result, "info", f"Deploying backend ({len(files)} files) to {self.config.backend_dir}")

        service = await self.bootstrapper.bootstrap(
            SERVICE_KINDS["fastapi"],
            self.config.backend_dir,
            files,
        )
        self._log(result, "success", f"Backend service started at {service.url}")
        await self.check_backend(service, result)
        return service

    def frontend_files(self, project: FullStackProject, backend_url: str) -> Dict[str, str]:
        framework = project.code.frontend.framework
        generated = project.frontend_files()

        if framework == "next":
            files = nextjs_scaffold(project.project_name, project.project_description)
            for path, content in generated.items():
                if path == "package.json" and not valid_package_json(content, "next"):
                    logger.warning("Generated package.json is unusable, keeping scaffold")
                    continue
                files[next_app_path(path)] = content
            files[".env.local"] = f"NEXT_PUBLIC_BACKEND_URL={backend_url}\nNEXT_PUBLIC_API_URL={backend_url}\n"
            return files

        files = dict(generated)
        if not valid_package_json(files.get("package.json", ""), "react"):
            logger.warning("Generated package.json is missing or invalid, using fallback")
            files["package.json"] = json.dumps(package_json("react", project.project_name), indent=2)
        files[".env"] = f"REACT_APP_BACKEND_URL={backend_url}\nREACT_APP_API_URL={backend_url}\n"
        return files

    def frontend_kind(self, project: FullStackProject) -> ServiceKind:
        return SERVICE_KINDS["nextjs" if project.code.frontend.framework == "next" else "react"]

    async def deploy_frontend(
        self,
        project: FullStackProject,
        backend_url: str,
        result: DeploymentResult,
    ) -> ServiceHandle:
        files = self.frontend_files(project, backend_url)
        kind = self.frontend_kind(project)
        self._log(result, "info", f"Deploying {kind.name} frontend ({len(files)} files) to {self.config.frontend_dir}")

        service = await self.bootstrapper.bootstrap(kind, self.config.frontend_dir, files)
        self._log(result, "success", f"Frontend service started at {service.url}")
        return service

    def monitor(self, service: ServiceHandle) -> HealthMonitor:
        """Health monitor for a service started by this deployer."""
        return HealthMonitor(
            service,
            self.runner,
            self.diagnostics,
            self.config.health,
            transport=self.transport,
            clock=self.clock,
            sleep=self.sleep,
        )

    async def check_backend(self, service: ServiceHandle, result: DeploymentResult) -> bool:
        """Hit the backend's public URL once; a failure is only a warning."""
        health = await self.monitor(service).check_health()
        if health.is_healthy:
            self._log(result, "success", "Backend health check passed")
        else:
            reason = health.error or f"HTTP {health.status_code}"
            self._log(result, "warning", f"Backend health check failed ({reason}), continuing")
        return health.is_healthy

    async def service_logs(self, service: ServiceHandle, lines: int = 50) -> str:
        """Tail of the service's own log file."""
        if not service.log_path:
            return NO_LOGS
        return await self.diagnostics.service_log(service.log_path, lines=lines)
