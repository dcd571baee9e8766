"""stackbox – deploy generated full-stack projects into remote e2b sandboxes"""

__version__ = "0.1.0"

from .config import (
    HealthConfig,
    MongoConfig,
    ReadinessConfig,
    SandboxConfig,
    StackboxConfig,
    load_config,
)
from .errors import (
    ConfigurationError,
    DependencyInstallError,
    NotFoundError,
    ProvisioningError,
    RemoteOperationError,
    SandboxTimeoutError,
    ServiceStartupError,
    StackboxError,
)
from .models import CommandResult, FileEntry, MetricSample, ProcessRef
from .manager import SandboxHandle, SandboxManager
from .commands import CommandRunner
from .files import FileOperations
from .diagnostics import DiagnosticSnapshot, Diagnostics
from .readiness import ReadinessState, ServiceHandle, ServiceLauncher
from .health import HealthCheckResult, HealthMonitor, PollReport, RestartOutcome, ServiceStatus
from .bootstrap import SERVICE_KINDS, ServiceBootstrapper, ServiceKind
from .mongodb import ConnectionInfo, MongoBootstrapper
from .project import FullStackProject, load_project
from .deploy import Deployer, DeploymentResult

__all__ = [
    "__version__",
    "HealthConfig",
    "MongoConfig",
    "ReadinessConfig",
    "SandboxConfig",
    "StackboxConfig",
    "load_config",
    "ConfigurationError",
    "DependencyInstallError",
    "NotFoundError",
    "ProvisioningError",
    "RemoteOperationError",
    "SandboxTimeoutError",
    "ServiceStartupError",
    "StackboxError",
    "CommandResult",
    "FileEntry",
    "MetricSample",
    "ProcessRef",
    "SandboxHandle",
    "SandboxManager",
    "CommandRunner",
    "FileOperations",
    "DiagnosticSnapshot",
    "Diagnostics",
    "ReadinessState",
    "ServiceHandle",
    "ServiceLauncher",
    "HealthCheckResult",
    "HealthMonitor",
    "PollReport",
    "RestartOutcome",
    "ServiceStatus",
    "SERVICE_KINDS",
    "ServiceBootstrapper",
    "ServiceKind",
    "ConnectionInfo",
    "MongoBootstrapper",
    "FullStackProject",
    "load_project",
    "Deployer",
    "DeploymentResult",
]
