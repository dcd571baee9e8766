"""Plain records exchanged between the provider adapter and the core."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a completed foreground command."""
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def output(self) -> str:
        """stdout and stderr joined, stripped."""
        return "\n".join(p for p in (self.stdout.strip(), self.stderr.strip()) if p)

    def to_dict(self) -> dict:
        return {"stdout": self.stdout, "stderr": self.stderr, "exit_code": self.exit_code}


@dataclass(frozen=True)
class ProcessRef:
    """Reference to a process started in the background inside a sandbox."""
    pid: Optional[int]
    command: str
    cwd: str


@dataclass(frozen=True)
class FileEntry:
    name: str
    path: str
    is_dir: bool = False


@dataclass
class MetricSample:
    """One resource usage sample reported by the sandbox."""
    timestamp: datetime = field(default_factory=datetime.now)
    cpu_count: int = 0
    cpu_used_pct: float = 0.0
    mem_used: int = 0
    mem_total: int = 0
    disk_used: int = 0
    disk_total: int = 0

    @property
    def mem_used_pct(self) -> float:
        return (self.mem_used / self.mem_total * 100) if self.mem_total else 0.0

    @property
    def disk_used_pct(self) -> float:
        return (self.disk_used / self.disk_total * 100) if self.disk_total else 0.0

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "cpu_count": self.cpu_count,
            "cpu_used_pct": round(self.cpu_used_pct, 2),
            "mem_used": self.mem_used,
            "mem_total": self.mem_total,
            "mem_used_pct": round(self.mem_used_pct, 2),
            "disk_used": self.disk_used,
            "disk_total": self.disk_total,
            "disk_used_pct": round(self.disk_used_pct, 2),
        }


def format_bytes(num: float) -> str:
    """Human readable byte count: ``format_bytes(1536) == '1.5 KB'``."""
    if num <= 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB", "TB"]
    idx = 0
    value = float(num)
    while value >= 1024 and idx < len(units) - 1:
        value /= 1024
        idx += 1
    if idx == 0:
        return f"{int(value)} B"
    return f"{value:.1f} {units[idx]}".replace(".0 ", " ")
