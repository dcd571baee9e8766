"""MongoDB inside the sandbox: install, start, wait, seed."""

import asyncio
import logging
import shlex
from dataclasses import dataclass
from typing import Optional, Tuple

from .commands import CommandRunner
from .config import MongoConfig
from .diagnostics import PROBE_CWD, Diagnostics
from .errors import DependencyInstallError, ServiceStartupError, StackboxError
from .models import CommandResult
from .readiness import Sleep

logger = logging.getLogger("stackbox.mongodb")

APT_SERVER_INSTALL = [
    ("apt-get update", 60_000),
    ("apt-get install -y curl gnupg lsb-release", 60_000),
    ("curl -fsSL https://www.mongodb.org/static/pgp/server-7.0.asc | apt-key add -", 30_000),
    (
        'echo "deb [ arch=amd64,arm64 ] https://repo.mongodb.org/apt/ubuntu jammy/mongodb-org/7.0 multiverse"'
        " | tee /etc/apt/sources.list.d/mongodb-org-7.0.list",
        10_000,
    ),
    ("apt-get update", 60_000),
]
SERVER_PACKAGES = "mongodb-org-server mongodb-org-tools"
SHELL_BINARIES = ("mongosh", "mongo")
SHELL_PACKAGES = ("mongodb-mongosh", "mongodb-org-shell")

SEED_SCRIPT = """db.users.insertMany([
  { name: "John Doe", email: "john@example.com", createdAt: new Date() },
  { name: "Jane Smith", email: "jane@example.com", createdAt: new Date() }
])"""


@dataclass
class ConnectionInfo:
    host: str
    port: int
    database_name: str
    connection_string: str
    data_path: str
    log_path: str

    def to_dict(self) -> dict:
        return {
            "host": self.host,
            "port": self.port,
            "database": self.database_name,
            "connection_string": self.connection_string,
            "data_path": self.data_path,
            "log_path": self.log_path,
        }


class MongoBootstrapper:
    """Idempotent MongoDB bring-up.

    When no client shell can be installed the bootstrapper runs in a
    degraded mode: readiness falls back to a raw TCP connect and seeding
    is skipped.
    """

    def __init__(
        self,
        runner: CommandRunner,
        diagnostics: Diagnostics,
        config: Optional[MongoConfig] = None,
        sleep: Optional[Sleep] = None,
    ):
        self.runner = runner
        self.diagnostics = diagnostics
        self.config = config or MongoConfig()
        self.sleep = sleep or asyncio.sleep
        self.shell: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return self.shell is None

    @property
    def start_command(self) -> str:
        cfg = self.config
        parts = [
            "mongod",
            "--dbpath", cfg.data_path,
            "--logpath", cfg.log_path,
            "--bind_ip", cfg.bind_ip,
            "--port", str(cfg.port),
            *cfg.extra_args,
        ]
        return " ".join(shlex.quote(p) for p in parts)

    def connection_info(self) -> ConnectionInfo:
        cfg = self.config
        return ConnectionInfo(
            host=cfg.bind_ip,
            port=cfg.port,
            database_name=cfg.database,
            connection_string=f"mongodb://{cfg.bind_ip}:{cfg.port}/{cfg.database}",
            data_path=cfg.data_path,
            log_path=cfg.log_path,
        )

    def env_file(self) -> str:
        """``.env`` contents pointing a backend at this database."""
        info = self.connection_info()
        return (
            f"DATABASE_URL={info.connection_string}\n"
            f"MONGO_URL={info.connection_string}\n"
            f"DB_HOST={info.host}\n"
            f"DB_PORT={info.port}\n"
            f"DB_NAME={info.database_name}\n"
        )

    async def is_running(self) -> bool:
        result = await self.runner.run("pgrep mongod", cwd=PROBE_CWD, timeout_ms=5_000)
        return result.ok

    async def ensure_running(self) -> CommandResult:
        """Start MongoDB unless it is already running.

        Raises:
            DependencyInstallError: ``mongod`` could not be installed.
            ServiceStartupError: the daemon never became ready.
        """
        if await self.is_running():
            logger.info("MongoDB is already running")
            if self.shell is None:
                self.shell = await self._which_shell()
            return CommandResult(stdout="MongoDB already running", stderr="", exit_code=0)

        logger.info("Starting MongoDB service...")
        data_path = shlex.quote(self.config.data_path)
        await self.runner.run(f"mkdir -p {data_path}", cwd=PROBE_CWD, timeout_ms=10_000)
        await self.runner.run(f"chmod 755 {data_path}", cwd=PROBE_CWD, timeout_ms=5_000)

        await self.install_server()
        self.shell = await self.ensure_shell()
        if self.shell is None:
            logger.warning("No MongoDB shell available; using raw TCP checks and skipping seed data")

        process = await self.runner.run_background(self.start_command, cwd=PROBE_CWD)
        logger.info("MongoDB process started with PID: %s", process.pid or "unknown")

        if not await self.wait_until_ready():
            timeout_s = self.config.max_attempts * self.config.interval_s
            snapshot = await self.diagnostics.collect(
                port=self.config.port,
                log_paths=[self.config.log_path],
                log_lines=50,
            )
            logger.error("MongoDB failed to start\n%s", snapshot.summary())
            raise ServiceStartupError(
                f"MongoDB failed to start within {timeout_s:.0f}s",
                port=self.config.port,
                timeout_s=timeout_s,
                diagnostics=snapshot,
            )

        if self.shell and self.config.seed:
            await self.seed()
        return CommandResult(stdout="MongoDB started successfully", stderr="", exit_code=0)

    async def install_server(self) -> None:
        check = await self.runner.run("which mongod", cwd=PROBE_CWD, timeout_ms=5_000)
        if check.ok:
            return

        logger.info("Installing MongoDB server...")
        for command, timeout_ms in APT_SERVER_INSTALL:
            await self.runner.run(command, cwd=PROBE_CWD, timeout_ms=timeout_ms)
        install_cmd = f"apt-get install -y {SERVER_PACKAGES}"
        result = await self.runner.run_long(install_cmd, cwd=PROBE_CWD, timeout_ms=self.config.install_timeout_ms)

        check = await self.runner.run("which mongod", cwd=PROBE_CWD, timeout_ms=5_000)
        if not check.ok:
            raise DependencyInstallError("mongodb", install_cmd, result)

    async def _which_shell(self) -> Optional[str]:
        for binary in SHELL_BINARIES:
            result = await self.runner.run(f"which {binary}", cwd=PROBE_CWD, timeout_ms=5_000)
            if result.ok:
                return binary
        return None

    async def ensure_shell(self) -> Optional[str]:
        """Best effort: find or install ``mongosh`` (or the legacy ``mongo``)."""
        shell = await self._which_shell()
        if shell:
            return shell

        for package in SHELL_PACKAGES:
            logger.info("Installing MongoDB shell package %s", package)
            result = await self.runner.run_long(
                f"apt-get install -y {package}",
                cwd=PROBE_CWD,
                timeout_ms=self.config.install_timeout_ms,
            )
            if not result.ok:
                logger.warning("Could not install %s (exit %d)", package, result.exit_code)
                continue
            shell = await self._which_shell()
            if shell:
                return shell
        return None

    async def ping(self) -> bool:
        if self.shell:
            result = await self.runner.run(
                f'{self.shell} --port {self.config.port} --quiet --eval "db.adminCommand(\'ping\').ok"',
                cwd=PROBE_CWD,
                timeout_ms=15_000,
            )
            return result.ok
        return await self.diagnostics.tcp_connect(self.config.port)

    async def wait_until_ready(self) -> bool:
        """Poll process, port and ping; at most ``max_attempts`` times."""
        for attempt in range(1, self.config.max_attempts + 1):
            try:
                if (
                    await self.is_running()
                    and await self.diagnostics.is_port_listening(self.config.port)
                    and await self.ping()
                ):
                    logger.info("MongoDB is ready and accepting connections (attempt %d)", attempt)
                    return True
            except StackboxError as e:
                logger.warning("MongoDB readiness check %d failed: %s", attempt, e)
            if attempt < self.config.max_attempts:
                await self.sleep(self.config.interval_s)
        return False

    async def seed(self) -> None:
        """Insert example documents; failures are logged, never raised."""
        script = f"db = db.getSiblingDB('{self.config.database}'); {SEED_SCRIPT}"
        try:
            result = await self.execute(script, database=None)
        except StackboxError as e:
            logger.warning("Seeding MongoDB failed: %s", e)
            return
        if result.ok:
            logger.info("Seeded example data into %s", self.config.database)
        else:
            logger.warning("Seeding MongoDB failed (exit %d): %s", result.exit_code, result.output)

    async def execute(self, script: str, database: Optional[str] = "") -> CommandResult:
        """Run a JavaScript snippet through the MongoDB shell.

        ``database`` defaults to the configured one; pass None to connect
        without selecting a database.
        """
        if self.shell is None:
            self.shell = await self._which_shell()
        if self.shell is None:
            return CommandResult(stdout="", stderr="No MongoDB shell available", exit_code=127)

        db = self.config.database if database == "" else database
        target = f" {shlex.quote(db)}" if db else ""
        return await self.runner.run(
            f"{self.shell}{target} --port {self.config.port} --quiet --eval {shlex.quote(script)}",
            cwd=PROBE_CWD,
            timeout_ms=30_000,
        )

    async def test_connection(self) -> Tuple[bool, str]:
        try:
            if not await self.is_running():
                await self.ensure_running()
            if self.shell is None:
                self.shell = await self._which_shell()
            if await self.ping():
                return True, "MongoDB connection successful"
            return False, "MongoDB did not answer ping"
        except StackboxError as e:
            return False, f"Connection test failed: {e}"

    async def stop(self) -> CommandResult:
        result = await self.runner.run("pkill mongod", cwd=PROBE_CWD, timeout_ms=10_000)
        logger.info("MongoDB stop requested (exit %d)", result.exit_code)
        return result
