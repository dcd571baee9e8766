"""Exception taxonomy for stackbox.

Non-zero command exits are reported as data (``CommandResult.exit_code``),
never raised. The classes below cover the failures a caller must react to.
"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .diagnostics import DiagnosticSnapshot
    from .models import CommandResult
    from .readiness import ReadinessState


class StackboxError(Exception):
    """Base class for every error raised by stackbox."""


class ConfigurationError(StackboxError, ValueError):
    """Missing or invalid configuration (template id, API key, config file)."""


class ProvisioningError(StackboxError):
    """The remote sandbox could not be created."""


class RemoteOperationError(StackboxError):
    """A provider call failed for a reason other than timeout or missing path."""


class NotFoundError(StackboxError, FileNotFoundError):
    """A remote path does not exist."""

    def __init__(self, path: str, message: Optional[str] = None):
        self.path = path
        super().__init__(message or f"Remote path not found: {path}")


class SandboxTimeoutError(StackboxError, TimeoutError):
    """A remote operation exceeded its deadline."""

    def __init__(self, operation: str, limit_ms: int, detail: str = ""):
        self.operation = operation
        self.limit_ms = limit_ms
        msg = f"{operation} timed out after {limit_ms}ms"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)


class DependencyInstallError(StackboxError):
    """Installing a service's dependencies exited non-zero."""

    def __init__(self, service: str, command: str, result: "CommandResult"):
        self.service = service
        self.command = command
        self.result = result
        tail = (result.stderr or result.stdout or "").strip()[-500:]
        super().__init__(
            f"Dependency install for {service} failed (exit {result.exit_code}): {command}"
            + (f"\n{tail}" if tail else "")
        )


class ServiceStartupError(StackboxError):
    """A launched service never became ready within its deadline.

    Carries the last probe state and a diagnostic snapshot taken at the
    moment the deadline expired.
    """

    def __init__(
        self,
        message: str,
        port: Optional[int] = None,
        timeout_s: Optional[float] = None,
        state: Optional["ReadinessState"] = None,
        diagnostics: Optional["DiagnosticSnapshot"] = None,
    ):
        self.port = port
        self.timeout_s = timeout_s
        self.state = state
        self.diagnostics = diagnostics
        super().__init__(message)
