"""In-memory stand-ins for a remote sandbox and a clock."""

from __future__ import annotations

import asyncio
import posixpath
from typing import Callable, Optional, Union

from stackbox.errors import NotFoundError
from stackbox.models import CommandResult, FileEntry, MetricSample, ProcessRef

Response = Union[CommandResult, Callable[[str], CommandResult]]

LISTEN_LINE = 'LISTEN 0      128    0.0.0.0:{port}    0.0.0.0:*    users:(("python3",pid=42,fd=3))'


def listening(*ports: int) -> CommandResult:
    return CommandResult(stdout="\n".join(LISTEN_LINE.format(port=p) for p in ports) + "\n")


NOT_FOUND = CommandResult(exit_code=1)


class FakeClock:
    """Virtual monotonic clock; ``sleep`` advances it instantly."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class FakeRemote:
    """Scriptable remote sandbox.

    Command responses are matched against registered rules, most recent
    rule first. Unmatched commands succeed with empty output.
    """

    def __init__(self, sandbox_id: str = "sbx-1"):
        self.sandbox_id = sandbox_id
        self.rules: list[tuple[Callable[[str], bool], Response]] = []
        self.events: list[tuple[str, str, str]] = []
        self.timeouts: list[float] = []
        self.files: dict[str, str] = {}
        self.dirs: set[str] = {"/", "/home", "/tmp"}
        self.metrics: list[MetricSample] = []
        self.run_delay = 0.0
        self.killed = False
        self.killed_pids: list[int] = []
        self.metrics_error: Optional[Exception] = None
        self._next_pid = 100

    def on(self, pattern: str, response: Response, exact: bool = False) -> None:
        if exact:
            self.rules.insert(0, (lambda cmd: cmd == pattern, response))
        else:
            self.rules.insert(0, (lambda cmd: pattern in cmd, response))

    @property
    def commands(self) -> list[str]:
        return [cmd for kind, cmd, _ in self.events if kind == "run"]

    @property
    def background(self) -> list[tuple[str, str]]:
        return [(cmd, cwd) for kind, cmd, cwd in self.events if kind == "bg"]

    def index_of(self, fragment: str) -> int:
        for i, (_, cmd, _) in enumerate(self.events):
            if fragment in cmd:
                return i
        raise AssertionError(f"{fragment!r} never issued")

    async def run(self, command: str, cwd: str, timeout_s: float) -> CommandResult:
        self.events.append(("run", command, cwd))
        self.timeouts.append(timeout_s)
        if self.run_delay:
            await asyncio.sleep(self.run_delay)
        for matches, response in self.rules:
            if matches(command):
                return response(command) if callable(response) else response
        return CommandResult()

    async def run_background(self, command: str, cwd: str) -> ProcessRef:
        self.events.append(("bg", command, cwd))
        self._next_pid += 1
        return ProcessRef(pid=self._next_pid, command=command, cwd=cwd)

    async def kill_process(self, pid: int) -> bool:
        self.events.append(("kill", str(pid), ""))
        self.killed_pids.append(pid)
        return True

    async def write_file(self, path: str, content: str) -> None:
        parent = posixpath.dirname(path)
        if parent not in self.dirs:
            raise NotFoundError(parent)
        self.files[path] = content

    async def read_file(self, path: str) -> str:
        if path not in self.files:
            raise NotFoundError(path)
        return self.files[path]

    async def make_dir(self, path: str) -> bool:
        if path in self.dirs:
            return False
        parent = posixpath.dirname(path)
        if parent not in self.dirs:
            raise NotFoundError(parent)
        self.dirs.add(path)
        return True

    async def list_dir(self, path: str) -> list[FileEntry]:
        if path not in self.dirs:
            raise NotFoundError(path)
        entries = [
            FileEntry(name=posixpath.basename(d), path=d, is_dir=True)
            for d in sorted(self.dirs)
            if d != path and posixpath.dirname(d) == path
        ]
        entries += [
            FileEntry(name=posixpath.basename(f), path=f)
            for f in sorted(self.files)
            if posixpath.dirname(f) == path
        ]
        return entries

    def get_host(self, port: int) -> str:
        return f"{port}-{self.sandbox_id}.e2b.app"

    async def get_metrics(self) -> list[MetricSample]:
        if self.metrics_error is not None:
            raise self.metrics_error
        return list(self.metrics)

    async def kill(self) -> None:
        self.killed = True


class FakeProvider:
    name = "fake"

    def __init__(self, remote: Optional[FakeRemote] = None, delay: float = 0.0):
        self.first = remote
        self.delay = delay
        self.error: Optional[Exception] = None
        self.created = 0
        self.connected: list[str] = []
        self.remotes: list[FakeRemote] = []

    async def create(self, template_id: str, api_key: str, timeout_s: int) -> FakeRemote:
        self.created += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.first is not None and not self.remotes:
            remote = self.first
        else:
            remote = FakeRemote(f"sbx-{self.created}")
        self.remotes.append(remote)
        return remote

    async def connect(self, sandbox_id: str, api_key: str) -> FakeRemote:
        self.connected.append(sandbox_id)
        if self.first is not None and self.first.sandbox_id == sandbox_id:
            remote = self.first
        else:
            remote = FakeRemote(sandbox_id)
        self.remotes.append(remote)
        return remote
