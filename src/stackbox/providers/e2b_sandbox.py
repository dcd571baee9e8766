"""e2b.dev adapter for the :class:`RemoteSandbox` protocol."""

import logging
from typing import Optional

from e2b import AsyncSandbox, CommandExitException, FileType
from e2b.exceptions import (
    AuthenticationException,
    NotFoundException,
    SandboxException,
    TimeoutException,
)

from ..errors import NotFoundError, ProvisioningError, RemoteOperationError, SandboxTimeoutError
from ..models import CommandResult, FileEntry, MetricSample, ProcessRef

logger = logging.getLogger("stackbox.providers.e2b")


class E2BRemoteSandbox:
    """Wraps one live ``e2b.AsyncSandbox``."""

    def __init__(self, sandbox: AsyncSandbox):
        self._sandbox = sandbox
        self.sandbox_id: str = sandbox.sandbox_id

    async def run(self, command: str, cwd: str, timeout_s: float) -> CommandResult:
        try:
            result = await self._sandbox.commands.run(command, cwd=cwd, timeout=timeout_s)
        except CommandExitException as e:
            return CommandResult(stdout=e.stdout or "", stderr=e.stderr or "", exit_code=e.exit_code)
        except TimeoutException as e:
            raise SandboxTimeoutError("run", int(timeout_s * 1000), command) from e
        except SandboxException as e:
            raise RemoteOperationError(f"Command failed to execute: {command}: {e}") from e
        return CommandResult(
            stdout=result.stdout or "",
            stderr=result.stderr or "",
            exit_code=result.exit_code,
        )

    async def run_background(self, command: str, cwd: str) -> ProcessRef:
        try:
            # timeout=0 keeps the connection open for the lifetime of the process
            handle = await self._sandbox.commands.run(command, cwd=cwd, background=True, timeout=0)
        except SandboxException as e:
            raise RemoteOperationError(f"Failed to launch background command: {command}: {e}") from e
        return ProcessRef(pid=getattr(handle, "pid", None), command=command, cwd=cwd)

    async def kill_process(self, pid: int) -> bool:
        try:
            return bool(await self._sandbox.commands.kill(pid))
        except SandboxException as e:
            raise RemoteOperationError(f"Failed to kill pid {pid}: {e}") from e

    async def write_file(self, path: str, content: str) -> None:
        try:
            await self._sandbox.files.write(path, content)
        except NotFoundException as e:
            raise NotFoundError(path) from e
        except SandboxException as e:
            raise RemoteOperationError(f"Failed to write {path}: {e}") from e

    async def read_file(self, path: str) -> str:
        try:
            return await self._sandbox.files.read(path)
        except NotFoundException as e:
            raise NotFoundError(path) from e
        except SandboxException as e:
            raise RemoteOperationError(f"Failed to read {path}: {e}") from e

    async def make_dir(self, path: str) -> bool:
        try:
            return bool(await self._sandbox.files.make_dir(path))
        except SandboxException as e:
            raise RemoteOperationError(f"Failed to create directory {path}: {e}") from e

    async def list_dir(self, path: str) -> list[FileEntry]:
        try:
            entries = await self._sandbox.files.list(path)
        except NotFoundException as e:
            raise NotFoundError(path) from e
        except SandboxException as e:
            raise RemoteOperationError(f"Failed to list {path}: {e}") from e
        return [
            FileEntry(name=entry.name, path=entry.path, is_dir=entry.type == FileType.DIR)
            for entry in entries
        ]

    def get_host(self, port: int) -> str:
        return self._sandbox.get_host(port)

    async def get_metrics(self) -> list[MetricSample]:
        try:
            samples = await self._sandbox.get_metrics()
        except SandboxException as e:
            raise RemoteOperationError(f"Failed to read sandbox metrics: {e}") from e
        return [
            MetricSample(
                timestamp=s.timestamp,
                cpu_count=s.cpu_count,
                cpu_used_pct=s.cpu_used_pct,
                mem_used=s.mem_used,
                mem_total=s.mem_total,
                disk_used=s.disk_used,
                disk_total=s.disk_total,
            )
            for s in samples
        ]

    async def kill(self) -> None:
        try:
            await self._sandbox.kill()
        except SandboxException as e:
            raise RemoteOperationError(f"Failed to kill sandbox {self.sandbox_id}: {e}") from e


class E2BProvider:
    """Creates sandboxes from an e2b template."""

    name = "e2b"

    def __init__(self, request_timeout_s: Optional[float] = None):
        self.request_timeout_s = request_timeout_s

    async def create(self, template_id: str, api_key: str, timeout_s: int) -> E2BRemoteSandbox:
        logger.info("Creating e2b sandbox from template %s", template_id)
        try:
            sandbox = await AsyncSandbox.create(
                template=template_id,
                api_key=api_key,
                timeout=timeout_s,
                request_timeout=self.request_timeout_s,
            )
        except (AuthenticationException, SandboxException) as e:
            raise ProvisioningError(f"Failed to create e2b sandbox from {template_id}: {e}") from e
        logger.info("e2b sandbox ready: %s", sandbox.sandbox_id)
        return E2BRemoteSandbox(sandbox)

    async def connect(self, sandbox_id: str, api_key: str) -> E2BRemoteSandbox:
        logger.info("Connecting to e2b sandbox %s", sandbox_id)
        try:
            sandbox = await AsyncSandbox.connect(sandbox_id, api_key=api_key)
        except (AuthenticationException, SandboxException) as e:
            raise ProvisioningError(f"Failed to connect to e2b sandbox {sandbox_id}: {e}") from e
        return E2BRemoteSandbox(sandbox)
