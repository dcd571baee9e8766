from __future__ import annotations

import sys
from pathlib import Path

import pytest
from dotenv import load_dotenv

_PROJECT_ROOT = Path(__file__).resolve().parents[1]
_SRC = (_PROJECT_ROOT / "src").resolve()
if str(_SRC) not in sys.path:
    sys.path.insert(0, str(_SRC))

# Load .env from project root so E2B credentials are available to manual runs
load_dotenv(_PROJECT_ROOT / ".env", override=False)

from fakes import FakeClock, FakeProvider, FakeRemote  # noqa: E402

from stackbox.commands import CommandRunner  # noqa: E402
from stackbox.config import ReadinessConfig, SandboxConfig  # noqa: E402
from stackbox.diagnostics import Diagnostics  # noqa: E402
from stackbox.files import FileOperations  # noqa: E402
from stackbox.manager import SandboxManager  # noqa: E402
from stackbox.readiness import ServiceLauncher  # noqa: E402


@pytest.fixture(autouse=True)
def _log_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("STACKBOX_LOG_DIR", str(tmp_path / "logs"))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote("sbx-1")


@pytest.fixture
def provider(remote) -> FakeProvider:
    return FakeProvider(remote)


@pytest.fixture
def sandbox_config() -> SandboxConfig:
    return SandboxConfig(template_id="tmpl-test", api_key="e2b_test_key")


@pytest.fixture
def manager(sandbox_config, provider) -> SandboxManager:
    return SandboxManager(sandbox_config, provider)


@pytest.fixture
def runner(manager) -> CommandRunner:
    return CommandRunner(manager)


@pytest.fixture
def files(manager) -> FileOperations:
    return FileOperations(manager)


@pytest.fixture
def diagnostics(runner) -> Diagnostics:
    return Diagnostics(runner)


@pytest.fixture
def launcher(manager, runner, diagnostics, clock) -> ServiceLauncher:
    return ServiceLauncher(
        manager,
        runner,
        diagnostics,
        ReadinessConfig(interval_s=0.5, timeout_s=60.0),
        clock=clock,
        sleep=clock.sleep,
    )


@pytest.fixture
def project_data() -> dict:
    """A generated next+fastapi+mongodb descriptor as it arrives over the wire."""
    return {
        "projectName": "Task Board",
        "projectDescription": "Kanban board with a FastAPI backend",
        "template": "next+fastapi+mongodb",
        "code": {
            "frontend": {
                "framework": "next",
                "files": {
                    "app/page.js": {"purpose": "Home page", "code": "export default function Page() { return null }"},
                    "/components/Board.tsx": {"purpose": "Board", "code": "export const Board = () => null"},
                },
                "dependencies": {
                    "package.json": {"purpose": "deps", "code": {"name": "board", "dependencies": {"react": "^18"}}},
                },
            },
            "backend": {
                "framework": "fastapi",
                "files": {
                    "main.py": {"purpose": "API", "code": "from fastapi import FastAPI\napp = FastAPI()\n"},
                },
                "dependencies": {
                    "requirements.txt": {"purpose": "deps", "code": "fastapi\nuvicorn\nmotor\n"},
                },
            },
        },
        "projectStructure": {"frontend": "app/", "backend": "main.py"},
        "databaseSchema": {
            "collections": [
                {"name": "tasks", "purpose": "Board tasks", "schema": {"title": "string", "done": "bool"}},
            ],
        },
        "apiEndpoints": [
            {"method": "GET", "path": "/api/tasks", "purpose": "List tasks"},
        ],
    }
