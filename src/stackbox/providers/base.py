"""Interface the core expects from a remote sandbox provider.

Adapters translate provider-specific failures into the stackbox taxonomy:
a non-zero exit is returned as a ``CommandResult``, a provider timeout is
raised as ``SandboxTimeoutError``, a missing path as ``NotFoundError`` and
any other failure as ``RemoteOperationError``.
"""

from __future__ import annotations

from typing import Protocol, Sequence

from ..models import CommandResult, FileEntry, MetricSample, ProcessRef


class RemoteSandbox(Protocol):
    sandbox_id: str

    async def run(self, command: str, cwd: str, timeout_s: float) -> CommandResult:
        ...

    async def run_background(self, command: str, cwd: str) -> ProcessRef:
        ...

    async def kill_process(self, pid: int) -> bool:
        ...

    async def write_file(self, path: str, content: str) -> None:
        ...

    async def read_file(self, path: str) -> str:
        ...

    async def make_dir(self, path: str) -> bool:
        """Create one directory; return False when it already exists."""
        ...

    async def list_dir(self, path: str) -> Sequence[FileEntry]:
        ...

    def get_host(self, port: int) -> str:
        ...

    async def get_metrics(self) -> Sequence[MetricSample]:
        ...

    async def kill(self) -> None:
        ...


class SandboxProvider(Protocol):
    name: str

    async def create(self, template_id: str, api_key: str, timeout_s: int) -> RemoteSandbox:
        ...

    async def connect(self, sandbox_id: str, api_key: str) -> RemoteSandbox:
        ...
