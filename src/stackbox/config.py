"""Configuration models for stackbox."""

import os

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Mapping, Optional

import yaml
from dotenv import load_dotenv

from .errors import ConfigurationError


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    v = str(value).strip()
    return v or None


def _known(cls, data: Mapping) -> dict:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in (data or {}).items() if k in names}


@dataclass
class SandboxConfig:
    """Credentials and command defaults for the remote sandbox."""
    template_id: str = ""
    api_key: str = field(default="", repr=False)
    default_cwd: str = "/home"
    command_timeout_ms: int = 60_000
    long_command_timeout_ms: int = 600_000
    # Lifetime requested from the provider; the sandbox dies on its own afterwards.
    sandbox_timeout_s: int = 1800

    def validate(self) -> None:
        if not self.template_id:
            raise ConfigurationError("E2B_TEMPLATE_ID is not configured")
        if not self.api_key:
            raise ConfigurationError("E2B_API_KEY is not configured")
        if self.command_timeout_ms <= 0 or self.long_command_timeout_ms <= 0:
            raise ConfigurationError("command timeouts must be positive")

    @classmethod
    def from_dict(cls, data: Mapping) -> "SandboxConfig":
        return cls(**_known(cls, data))

    @classmethod
    def from_env(
        cls,
        env: Optional[Mapping[str, str]] = None,
        dotenv_path: Optional[Path] = None,
    ) -> "SandboxConfig":
        """Read credentials from the environment.

        ``E2B_TEMPLATE_ID`` and ``E2B_API_KEY`` are required by
        :meth:`validate`; ``STACKBOX_*`` variables override the defaults.
        When ``dotenv_path`` is given (and ``env`` is not) the file is
        loaded into ``os.environ`` first without overriding set values.
        """
        if env is None:
            if dotenv_path is not None:
                load_dotenv(dotenv_path, override=False)
            src: Mapping[str, str] = os.environ
        else:
            src = env

        defaults = cls()
        return cls(
            template_id=_clean(src.get("STACKBOX_TEMPLATE_ID") or src.get("E2B_TEMPLATE_ID")) or "",
            api_key=_clean(src.get("STACKBOX_API_KEY") or src.get("E2B_API_KEY")) or "",
            default_cwd=_clean(src.get("STACKBOX_DEFAULT_CWD")) or defaults.default_cwd,
            command_timeout_ms=int(
                _clean(src.get("STACKBOX_COMMAND_TIMEOUT_MS")) or defaults.command_timeout_ms
            ),
            long_command_timeout_ms=int(
                _clean(src.get("STACKBOX_LONG_COMMAND_TIMEOUT_MS")) or defaults.long_command_timeout_ms
            ),
            sandbox_timeout_s=int(
                _clean(src.get("STACKBOX_SANDBOX_TIMEOUT_S")) or defaults.sandbox_timeout_s
            ),
        )


@dataclass
class ReadinessConfig:
    """Probe loop used after a service has been launched."""
    interval_s: float = 2.0
    timeout_s: float = 60.0
    port_check_timeout_ms: int = 5_000
    http_check_timeout_ms: int = 15_000
    log_glob_dir: str = "/tmp"

    @classmethod
    def from_dict(cls, data: Mapping) -> "ReadinessConfig":
        return cls(**_known(cls, data))


@dataclass
class HealthConfig:
    """Health polling and restart behaviour for a running service."""
    health_path: str = "/health"
    request_timeout_s: float = 10.0
    poll_duration_s: float = 60.0
    poll_interval_s: float = 5.0
    kill_grace_s: float = 3.0
    port_release_grace_s: float = 2.0
    settle_s: float = 8.0
    # None keeps restarting for as long as polling runs.
    max_restarts: Optional[int] = None
    # Resource usage is logged on every tick once polling has run this long.
    metrics_after_s: float = 10.0

    @classmethod
    def from_dict(cls, data: Mapping) -> "HealthConfig":
        return cls(**_known(cls, data))


@dataclass
class MongoConfig:
    data_path: str = "/tmp/mongodb-data"
    log_path: str = "/tmp/mongodb.log"
    bind_ip: str = "0.0.0.0"
    port: int = 27017
    database: str = "myapp"
    max_attempts: int = 15
    interval_s: float = 2.0
    install_timeout_ms: int = 180_000
    seed: bool = True
    extra_args: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping) -> "MongoConfig":
        return cls(**_known(cls, data))


@dataclass
class StackboxConfig:
    """Complete configuration: sandbox credentials plus tuning sections."""
    sandbox: SandboxConfig = field(default_factory=SandboxConfig)
    readiness: ReadinessConfig = field(default_factory=ReadinessConfig)
    health: HealthConfig = field(default_factory=HealthConfig)
    mongodb: MongoConfig = field(default_factory=MongoConfig)
    backend_dir: str = "/home/backend"
    frontend_dir: str = "/home/frontend"

    @classmethod
    def from_dict(cls, data: Optional[Mapping], env: Optional[Mapping[str, str]] = None) -> "StackboxConfig":
        """Create configuration from a dictionary.

        Credentials missing from ``data['sandbox']`` are taken from the
        environment.
        """
        data = data or {}
        sandbox_env = SandboxConfig.from_env(env)
        sandbox_data = dict(data.get("sandbox") or {})
        sandbox_data.setdefault("template_id", sandbox_env.template_id)
        sandbox_data.setdefault("api_key", sandbox_env.api_key)

        return cls(
            sandbox=SandboxConfig.from_dict(sandbox_data),
            readiness=ReadinessConfig.from_dict(data.get("readiness") or {}),
            health=HealthConfig.from_dict(data.get("health") or {}),
            mongodb=MongoConfig.from_dict(data.get("mongodb") or {}),
            backend_dir=data.get("backend_dir", "/home/backend"),
            frontend_dir=data.get("frontend_dir", "/home/frontend"),
        )

    @classmethod
    def from_yaml(cls, path: Path, env: Optional[Mapping[str, str]] = None) -> "StackboxConfig":
        """Load configuration from YAML file."""
        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
        if data is not None and not isinstance(data, dict):
            raise ConfigurationError(f"{path} must contain a mapping at top level")
        return cls.from_dict(data, env=env)


def load_config(path: Optional[str | Path] = None, dotenv_path: Optional[Path] = None) -> StackboxConfig:
    """Load configuration from ``path`` (YAML) or from the environment only."""
    if dotenv_path is not None:
        load_dotenv(dotenv_path, override=False)
    if path is None:
        return StackboxConfig(sandbox=SandboxConfig.from_env())
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")
    return StackboxConfig.from_yaml(path)
