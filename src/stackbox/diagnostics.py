"""Probes and diagnostic snapshots taken inside the sandbox.

Every probe used by the readiness loop, the health monitor and the
database bootstrapper lives here, so the shell incantations exist once.
"""

import logging
import re
import shlex
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from .commands import CommandRunner
from .config import ReadinessConfig
from .errors import StackboxError

logger = logging.getLogger("stackbox.diagnostics")

_ADDR_RE = re.compile(r"^(?P<host>.*):(?P<port>\d+)$")
_SS_PROC_RE = re.compile(r'users:\(\("(?P<name>[^"]+)",pid=(?P<pid>\d+)')
_NETSTAT_PROC_RE = re.compile(r"^(?P<pid>\d+)/(?P<name>\S+)$")
_TAIL_HEADER_RE = re.compile(r"^==> (?P<path>.+) <==$")

PROBE_CWD = "/tmp"
NO_LOGS = "No logs available"


def self_safe_pattern(pattern: str) -> str:
    """``uvicorn`` -> ``[u]vicorn``.

    The shell running ``pgrep -f`` or ``pkill -f`` carries the pattern in its
    own command line; the bracket form still matches the target but not
    that shell.
    """
    if pattern and pattern[0].isalnum():
        return f"[{pattern[0]}]{pattern[1:]}"
    return pattern


@dataclass
class SocketEntry:
    """One row of the listening-socket table."""
    host: str
    port: int
    process: Optional[str] = None
    pid: Optional[int] = None


@dataclass
class ProcessEntry:
    """One row of ``ps aux``."""
    user: str
    pid: int
    cpu: float
    mem: float
    command: str


@dataclass
class DiagnosticSnapshot:
    """What the sandbox looked like when something went wrong."""
    port: Optional[int] = None
    listening_sockets: List[SocketEntry] = field(default_factory=list)
    processes: List[ProcessEntry] = field(default_factory=list)
    log_tails: Dict[str, str] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    collected_at: datetime = field(default_factory=datetime.now)

    @property
    def listening_ports(self) -> List[int]:
        return sorted({s.port for s in self.listening_sockets})

    def to_dict(self) -> dict:
        data = asdict(self)
        data["collected_at"] = self.collected_at.isoformat()
        data["listening_ports"] = self.listening_ports
        return data

    def summary(self) -> str:
        lines = [f"Listening ports: {', '.join(map(str, self.listening_ports)) or 'none'}"]
        if self.port is not None:
            state = "listening" if self.port in self.listening_ports else "NOT listening"
            lines.append(f"Port {self.port}: {state}")
        if self.processes:
            lines.append("Processes:")
            lines.extend(f"  {p.pid:>6} {p.command[:120]}" for p in self.processes)
        for path, tail in self.log_tails.items():
            lines.append(f"--- {path} ---")
            lines.append(tail.rstrip())
        for err in self.errors:
            lines.append(f"(diagnostics error) {err}")
        return "\n".join(lines)


def parse_listening_sockets(output: str) -> List[SocketEntry]:
    """Parse ``ss -tlnp`` or ``netstat -tlnp`` output."""
    entries: List[SocketEntry] = []
    for line in output.splitlines():
        tokens = line.split()
        if not tokens or tokens[0] in ("State", "Proto", "Active"):
            continue
        local = None
        for token in tokens[1:]:
            match = _ADDR_RE.match(token)
            if match:
                local = match
                break
        if local is None:
            continue

        process = None
        pid = None
        ss_proc = _SS_PROC_RE.search(line)
        if ss_proc:
            process, pid = ss_proc.group("name"), int(ss_proc.group("pid"))
        else:
            ns_proc = _NETSTAT_PROC_RE.match(tokens[-1])
            if ns_proc:
                process, pid = ns_proc.group("name"), int(ns_proc.group("pid"))

        entries.append(SocketEntry(
            host=local.group("host").strip("[]") or "*",
            port=int(local.group("port")),
            process=process,
            pid=pid,
        ))
    return entries


def parse_process_table(output: str) -> List[ProcessEntry]:
    """Parse ``ps aux`` output; the header line and malformed rows are skipped."""
    entries: List[ProcessEntry] = []
    for line in output.splitlines():
        cols = line.split(None, 10)
        if len(cols) < 11 or cols[0] == "USER":
            continue
        try:
            entries.append(ProcessEntry(
                user=cols[0],
                pid=int(cols[1]),
                cpu=float(cols[2]),
                mem=float(cols[3]),
                command=cols[10],
            ))
        except ValueError:
            continue
    return entries


def parse_log_tails(output: str) -> Dict[str, str]:
    """Split ``tail`` output with ``==> file <==`` headers into a mapping."""
    tails: Dict[str, str] = {}
    current: Optional[str] = None
    buf: List[str] = []
    for line in output.splitlines():
        header = _TAIL_HEADER_RE.match(line.strip())
        if header:
            if current is not None:
                tails[current] = "\n".join(buf).strip()
            current, buf = header.group("path"), []
            continue
        buf.append(line)
    if current is not None:
        tails[current] = "\n".join(buf).strip()
    elif "\n".join(buf).strip():
        tails["(unknown)"] = "\n".join(buf).strip()
    return tails


def parse_http_status(output: str) -> Optional[int]:
    """Status code printed by ``curl -w %{http_code}``; None if curl failed."""
    text = output.strip()
    if not text or "curl_failed" in text:
        return None
    head = text.split(":", 1)[0].strip()
    if not head.isdigit():
        return None
    return int(head)


def is_ready_status(code: Optional[int]) -> bool:
    return code is not None and 0 < code < 500


class Diagnostics:
    """Probes run through a :class:`CommandRunner`."""

    def __init__(self, runner: CommandRunner, config: Optional[ReadinessConfig] = None):
        self.runner = runner
        self.config = config or ReadinessConfig()

    async def listening_sockets(self) -> List[SocketEntry]:
        result = await self.runner.run(
            "ss -tlnp 2>/dev/null || netstat -tlnp 2>/dev/null",
            cwd=PROBE_CWD,
            timeout_ms=self.config.port_check_timeout_ms,
        )
        return parse_listening_sockets(result.stdout)

    async def port_status(self, port: int) -> str:
        """Raw socket-table line(s) for ``port``, empty when not listening."""
        result = await self.runner.run(
            f'ss -tlnp | grep ":{port} " || netstat -tlnp | grep ":{port} "',
            cwd=PROBE_CWD,
            timeout_ms=self.config.port_check_timeout_ms,
        )
        return result.stdout.strip() if f":{port}" in result.stdout else ""

    async def is_port_listening(self, port: int) -> bool:
        return bool(await self.port_status(port))

    async def http_status(self, port: int, path: str = "/") -> Optional[int]:
        """Status code of a loopback GET, or None when nothing answered."""
        path = path if path.startswith("/") else f"/{path}"
        result = await self.runner.run(
            'curl -s -o /dev/null -w "%{http_code}" --max-time 10 '
            f'http://127.0.0.1:{port}{path} || echo "curl_failed"',
            cwd=PROBE_CWD,
            timeout_ms=self.config.http_check_timeout_ms,
        )
        return parse_http_status(result.stdout)

    async def process_running(self, pattern: str) -> bool:
        result = await self.runner.run(
            f"pgrep -f {shlex.quote(self_safe_pattern(pattern))}",
            cwd=PROBE_CWD,
            timeout_ms=self.config.port_check_timeout_ms,
        )
        return result.ok and bool(result.stdout.strip())

    async def find_processes(self, pattern: str) -> List[ProcessEntry]:
        result = await self.runner.run(
            f"ps aux | grep -E {shlex.quote(pattern)} | grep -v grep",
            cwd=PROBE_CWD,
            timeout_ms=self.config.port_check_timeout_ms,
        )
        return parse_process_table(result.stdout)

    async def process_table(self, limit: int = 20) -> List[ProcessEntry]:
        result = await self.runner.run(
            f"ps aux | head -{limit}",
            cwd=PROBE_CWD,
            timeout_ms=self.config.port_check_timeout_ms,
        )
        return parse_process_table(result.stdout)

    async def tcp_connect(self, port: int, host: str = "127.0.0.1") -> bool:
        """Raw TCP connect, for services without a client to ping them with."""
        result = await self.runner.run(
            f'timeout 3 bash -c "</dev/tcp/{host}/{port}"',
            cwd=PROBE_CWD,
            timeout_ms=self.config.port_check_timeout_ms,
        )
        if result.ok:
            return True
        script = (
            "import socket; s = socket.socket(); s.settimeout(3); "
            f"s.connect(('{host}', {port})); s.close()"
        )
        result = await self.runner.run(
            f'python3 -c "{script}"',
            cwd=PROBE_CWD,
            timeout_ms=self.config.port_check_timeout_ms,
        )
        return result.ok

    async def log_tails(self, paths: Optional[List[str]] = None, lines: int = 5) -> Dict[str, str]:
        if paths:
            quoted = " ".join(shlex.quote(p) for p in paths)
            command = f"tail -n {lines} -v {quoted} 2>/dev/null"
        else:
            command = (
                f'find {shlex.quote(self.config.log_glob_dir)} -name "*.log" -type f '
                f"-exec tail -v -n {lines} {{}} + 2>/dev/null"
            )
        result = await self.runner.run(command, cwd=PROBE_CWD, timeout_ms=self.config.port_check_timeout_ms)
        return parse_log_tails(result.stdout)

    async def service_log(self, path: str, lines: int = 50) -> str:
        """Last ``lines`` of one service log, or ``NO_LOGS`` when there is nothing to show."""
        result = await self.runner.run(
            f"tail -n {lines} {shlex.quote(path)}",
            cwd=PROBE_CWD,
            timeout_ms=self.config.port_check_timeout_ms,
        )
        if not result.ok or not result.stdout.strip():
            return NO_LOGS
        return result.stdout

    async def collect(
        self,
        port: Optional[int] = None,
        log_paths: Optional[List[str]] = None,
        log_lines: int = 5,
    ) -> DiagnosticSnapshot:
        """Gather sockets, processes and log tails.

        Each part is collected independently; a failing probe is recorded
        in ``errors`` so that the snapshot never masks the failure being diagnosed.
        """
        snapshot = DiagnosticSnapshot(port=port)
        try:
            snapshot.listening_sockets = await self.listening_sockets()
        except StackboxError as e:
            snapshot.errors.append(f"listening sockets: {e}")
        try:
            snapshot.processes = await self.process_table()
        except StackboxError as e:
            snapshot.errors.append(f"process table: {e}")
        try:
            snapshot.log_tails = await self.log_tails(log_paths, lines=log_lines)
        except StackboxError as e:
            snapshot.errors.append(f"log tails: {e}")
        return snapshot
