"""CLI for stackbox."""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .commands import CommandRunner
from .config import StackboxConfig, load_config
from .deploy import Deployer, DeploymentResult
from .diagnostics import Diagnostics
from .errors import StackboxError
from .logging_config import setup_logging
from .manager import SandboxManager
from .models import ProcessRef, format_bytes
from .mongodb import MongoBootstrapper
from .project import load_project
from .readiness import ServiceHandle


console = Console()


def _load(config_path: Optional[str], env_file: Optional[str]) -> StackboxConfig:
    return load_config(config_path, dotenv_path=Path(env_file) if env_file else None)


def _fail(e: Exception) -> None:
    console.print(f"[red]Error: {escape(str(e))}[/red]")
    sys.exit(1)


def _print_result(result: DeploymentResult) -> None:
    table = Table(title=f"Deployment: {result.project_name}")
    table.add_column("Item", style="cyan")
    table.add_column("Value")
    table.add_row("Status", "[green]success[/green]" if result.success else "[red]failed[/red]")
    table.add_row("Sandbox", result.sandbox_id or "-")
    table.add_row("Backend", result.backend_url or "-")
    table.add_row("Frontend", result.frontend_url or "-")
    if result.database:
        table.add_row("Database", result.database.connection_string)
    console.print(table)

    if result.error:
        console.print(Panel(escape(result.error), title=result.error_type or "Error", border_style="red"))
    if result.diagnostics:
        console.print(Panel(escape(result.diagnostics.summary()), title="Diagnostics", border_style="yellow"))


@click.group()
@click.version_option(version=__version__, prog_name="stackbox")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging on the console")
def cli(verbose: bool):
    """stackbox – deploy generated full-stack projects into e2b sandboxes."""
    setup_logging(level=logging.DEBUG if verbose else logging.WARNING, console=console)


@cli.command()
@click.argument("project_file", type=click.Path(exists=True))
@click.option("--config", "-c", "config_path", type=click.Path(exists=True), help="stackbox YAML config")
@click.option("--env-file", type=click.Path(exists=True), help=".env file with E2B credentials")
@click.option("--release/--keep", default=False, help="Kill the sandbox when done (default: keep it running)")
@click.option("--monitor", "monitor_s", type=float, default=0, help="Poll backend health for N seconds after deploy")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
def deploy(
    project_file: str,
    config_path: Optional[str],
    env_file: Optional[str],
    release: bool,
    monitor_s: float,
    as_json: bool,
):
    """Deploy a generated project descriptor (JSON) into a new sandbox."""
    try:
        config = _load(config_path, env_file)
        project = load_project(Path(project_file))
        manager = SandboxManager(config.sandbox)
    except StackboxError as e:
        _fail(e)

    def on_log(message: str, level: str) -> None:
        if not as_json:
            style = {"error": "red", "warning": "yellow", "success": "green"}.get(level, "dim")
            console.print(f"[{style}]{escape(message)}[/{style}]")

    async def _deploy():
        deployer = Deployer(manager, config, on_log=on_log)
        try:
            result = await deployer.deploy(project)
            report = None
            if result.success and monitor_s > 0 and result.backend:
                report = await deployer.monitor(result.backend).poll_status(duration_s=monitor_s)
            return result, report
        finally:
            if release:
                await manager.release()

    try:
        result, report = asyncio.run(_deploy())
    except StackboxError as e:
        _fail(e)

    if as_json:
        data = result.to_dict()
        if report is not None:
            data["monitor"] = report.to_dict()
        click.echo(json.dumps(data, indent=2))
    else:
        _print_result(result)
        if report is not None:
            console.print(f"Monitor: {len(report.checks)} checks, {report.restarts} restarts")
        if result.success and not release:
            console.print(f"\n[dim]Sandbox {result.sandbox_id} left running[/dim]")

    if not result.success:
        sys.exit(1)


@cli.command("exec")
@click.argument("command")
@click.option("--sandbox-id", "-s", help="Existing sandbox (default: create one)")
@click.option("--cwd", default=None, help="Working directory (default: /home)")
@click.option("--timeout-ms", type=int, default=None, help="Command deadline in milliseconds")
@click.option("--long", "long_", is_flag=True, help="Use the long-running command deadline")
@click.option("--env-file", type=click.Path(exists=True))
def exec_command(
    command: str,
    sandbox_id: Optional[str],
    cwd: Optional[str],
    timeout_ms: Optional[int],
    long_: bool,
    env_file: Optional[str],
):
    """Run a shell command inside a sandbox."""

    async def _exec():
        config = _load(None, env_file)
        manager = SandboxManager(config.sandbox, sandbox_id=sandbox_id)
        runner = CommandRunner(manager)
        try:
            if long_:
                return await runner.run_long(command, cwd=cwd, timeout_ms=timeout_ms)
            return await runner.run(command, cwd=cwd, timeout_ms=timeout_ms)
        finally:
            if not sandbox_id:
                await manager.release()

    try:
        result = asyncio.run(_exec())
    except StackboxError as e:
        _fail(e)

    if result.stdout:
        click.echo(result.stdout.rstrip())
    if result.stderr:
        click.echo(result.stderr.rstrip(), err=True)
    sys.exit(result.exit_code)


@cli.command()
@click.option("--sandbox-id", "-s", help="Existing sandbox (default: create one)")
@click.option("--config", "-c", "config_path", type=click.Path(exists=True))
@click.option("--env-file", type=click.Path(exists=True))
@click.option("--seed/--no-seed", default=True, help="Insert example documents")
def mongo(sandbox_id: Optional[str], config_path: Optional[str], env_file: Optional[str], seed: bool):
    """Start MongoDB inside a sandbox and print connection info."""

    async def _mongo():
        config = _load(config_path, env_file)
        config.mongodb.seed = seed
        manager = SandboxManager(config.sandbox, sandbox_id=sandbox_id)
        runner = CommandRunner(manager)
        bootstrapper = MongoBootstrapper(runner, Diagnostics(runner, config.readiness), config.mongodb)
        outcome = await bootstrapper.ensure_running()
        handle = await manager.acquire()
        return handle.id, outcome, bootstrapper

    try:
        sid, outcome, bootstrapper = asyncio.run(_mongo())
    except StackboxError as e:
        _fail(e)

    info = bootstrapper.connection_info()
    table = Table(title="MongoDB")
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    table.add_row("Sandbox", sid)
    table.add_row("Status", outcome.stdout)
    table.add_row("Connection", info.connection_string)
    table.add_row("Data", info.data_path)
    table.add_row("Log", info.log_path)
    table.add_row("Shell", bootstrapper.shell or "[yellow]none (degraded)[/yellow]")
    console.print(table)


@cli.command()
@click.option("--sandbox-id", "-s", required=True, help="Sandbox running the service")
@click.option("--port", type=int, default=8000)
@click.option("--command", "start_command", default="python3 -m uvicorn main:app --host 0.0.0.0 --port 8000")
@click.option("--cwd", default="/home/backend")
@click.option("--pattern", default="uvicorn", help="Process name pattern used for restart")
@click.option("--health-path", default=None, help="Path checked on the public URL (default: /health)")
@click.option("--duration", type=float, default=60.0, help="Seconds to poll")
@click.option("--interval", type=float, default=5.0, help="Seconds between checks")
@click.option("--max-restarts", type=int, default=None)
@click.option("--env-file", type=click.Path(exists=True))
def monitor(
    sandbox_id: str,
    port: int,
    start_command: str,
    cwd: str,
    pattern: str,
    health_path: Optional[str],
    duration: float,
    interval: float,
    max_restarts: Optional[int],
    env_file: Optional[str],
):
    """Poll a service's health and restart it when it fails."""

    async def _monitor():
        config = _load(None, env_file)
        config.health.max_restarts = max_restarts
        manager = SandboxManager(config.sandbox, sandbox_id=sandbox_id)
        deployer = Deployer(manager, config)
        handle = await manager.acquire()
        service = ServiceHandle(
            process=ProcessRef(pid=None, command=start_command, cwd=cwd),
            url=handle.url_for(port),
            port=port,
            command=start_command,
            cwd=cwd,
            sandbox_id=handle.id,
            process_pattern=pattern,
            health_path=health_path,
        )
        return await deployer.monitor(service).poll_status(duration_s=duration, interval_s=interval)

    try:
        report = asyncio.run(_monitor())
    except StackboxError as e:
        _fail(e)

    table = Table(title="Health polling")
    table.add_column("Time", style="dim")
    table.add_column("Event")
    table.add_column("Detail")
    for entry in report.entries:
        if entry.health is not None:
            detail = (
                f"HTTP {entry.health.status_code or '-'} "
                f"{entry.health.response_time_ms or 0:.0f}ms, "
                f"port {'up' if entry.service and entry.service.is_running else 'down'}"
            )
            color = "green" if entry.health.is_healthy else "red"
            event = f"[{color}]{entry.event}[/{color}]"
        elif entry.restart is not None:
            detail = f"pid={entry.restart.pid} ok={entry.restart.success}"
            event = f"[yellow]{entry.event}[/yellow]"
        else:
            detail = entry.error or ""
            event = entry.event
        table.add_row(entry.timestamp.strftime("%H:%M:%S"), event, detail)
    console.print(table)


@cli.command()
@click.option("--sandbox-id", "-s", required=True)
@click.option("--env-file", type=click.Path(exists=True))
def metrics(sandbox_id: str, env_file: Optional[str]):
    """Show resource usage of a sandbox."""

    async def _metrics():
        config = _load(None, env_file)
        manager = SandboxManager(config.sandbox, sandbox_id=sandbox_id)
        return await manager.log_metrics()

    try:
        latest = asyncio.run(_metrics())
    except StackboxError as e:
        _fail(e)

    if latest is None:
        console.print("[yellow]No metrics reported yet[/yellow]")
        return
    table = Table(title=f"Sandbox {sandbox_id}")
    table.add_column("Resource", style="cyan")
    table.add_column("Used")
    table.add_column("Total")
    table.add_column("%")
    table.add_row("CPU", f"{latest.cpu_count} cores", "", f"{latest.cpu_used_pct:.1f}")
    table.add_row("Memory", format_bytes(latest.mem_used), format_bytes(latest.mem_total), f"{latest.mem_used_pct:.1f}")
    table.add_row("Disk", format_bytes(latest.disk_used), format_bytes(latest.disk_total), f"{latest.disk_used_pct:.1f}")
    console.print(table)


@cli.command()
@click.option("--sandbox-id", "-s", required=True)
@click.option("--env-file", type=click.Path(exists=True))
def release(sandbox_id: str, env_file: Optional[str]):
    """Kill a sandbox."""

    async def _release():
        config = _load(None, env_file)
        manager = SandboxManager(config.sandbox, sandbox_id=sandbox_id)
        await manager.acquire()
        await manager.release()

    try:
        asyncio.run(_release())
    except StackboxError as e:
        _fail(e)
    console.print(f"[green]✓ Sandbox {sandbox_id} released[/green]")


@cli.command()
@click.option("--env-file", type=click.Path(exists=True))
def check(env_file: Optional[str]):
    """Create a sandbox, run a couple of commands, and release it."""

    async def _check():
        config = _load(None, env_file)
        async with SandboxManager(config.sandbox) as manager:
            runner = CommandRunner(manager)
            info = await manager.info()
            results = {
                cmd: await runner.run(cmd)
                for cmd in ("echo ok", "python3 --version", "node --version")
            }
            return info, results

    try:
        info, results = asyncio.run(_check())
    except StackboxError as e:
        _fail(e)

    console.print(f"[bold]Sandbox {info['sandbox_id']}[/bold] (template {info['template_id']})")
    for cmd, result in results.items():
        mark = "[green]✓[/green]" if result.ok else "[red]✗[/red]"
        console.print(f"  {mark} {cmd}: {escape(result.output) or result.exit_code}")


def main():
    cli()


if __name__ == "__main__":
    main()
