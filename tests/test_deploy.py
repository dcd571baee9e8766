import json

import httpx
import pytest

from fakes import NOT_FOUND, listening

from stackbox.config import MongoConfig, ReadinessConfig, StackboxConfig
from stackbox.deploy import Deployer, next_app_path, valid_package_json
from stackbox.models import CommandResult
from stackbox.project import load_project

FOUND = CommandResult(stdout="/usr/bin/found\n")


@pytest.fixture
def deploy_config(sandbox_config):
    return StackboxConfig(
        sandbox=sandbox_config,
        readiness=ReadinessConfig(interval_s=1.0, timeout_s=5.0),
        mongodb=MongoConfig(max_attempts=2),
    )


@pytest.fixture
def log_lines():
    return []


@pytest.fixture
def backend_status():
    """Status the public backend URL answers with; None drops the connection."""
    return {"code": 200, "requests": []}


@pytest.fixture
def deployer(manager, deploy_config, clock, log_lines, backend_status):
    def handler(request):
        backend_status["requests"].append(str(request.url))
        if backend_status["code"] is None:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(backend_status["code"], json={"status": "ok"})

    return Deployer(
        manager,
        deploy_config,
        on_log=lambda message, level: log_lines.append((level, message)),
        clock=clock,
        sleep=clock.sleep,
        transport=httpx.MockTransport(handler),
    )


def serve(remote, port):
    remote.on(f'grep ":{port} "', listening(port))
    remote.on(f"http://127.0.0.1:{port}/", CommandResult(stdout="200"))


def mongo_ok(remote):
    def pgrep(cmd):
        launched = any(c.startswith("mongod ") for c, _ in remote.background)
        return CommandResult(stdout="4242\n") if launched else NOT_FOUND

    remote.on("pgrep mongod", pgrep, exact=True)
    remote.on("which mongod", FOUND, exact=True)
    remote.on("which mongosh", FOUND, exact=True)
    serve(remote, 27017)


def test_next_app_path():
    assert next_app_path("app/page.js") == "app/page.tsx"
    assert next_app_path("app/tasks/page.js") == "app/tasks/page.tsx"
    assert next_app_path("components/Board.js") == "components/Board.js"


def test_valid_package_json():
    assert valid_package_json('{"dependencies": {"next": "14"}}', "next")
    assert valid_package_json('{"devDependencies": {"react": "18"}}', "react")
    assert not valid_package_json('{"dependencies": {"react": "18"}}', "next")
    assert not valid_package_json("not json", "react")
    assert not valid_package_json("[]", "react")


@pytest.mark.asyncio
async def test_full_deploy(deployer, remote, project_data, log_lines):
    mongo_ok(remote)
    serve(remote, 8000)
    serve(remote, 3000)

    result = await deployer.deploy(load_project(project_data))

    assert result.success, result.error
    assert result.sandbox_id == "sbx-1"
    assert result.backend_url == "https://8000-sbx-1.e2b.app"
    assert result.frontend_url == "https://3000-sbx-1.e2b.app"
    assert result.database.connection_string == "mongodb://0.0.0.0:27017/myapp"

    launches = [cmd for cmd, _ in remote.background]
    assert launches[0].startswith("mongod ")
    assert "uvicorn main:app" in launches[1]
    assert launches[2] == "npm run dev -- --port 3000 --hostname 0.0.0.0 > /tmp/nextjs.log 2>&1"

    assert "DATABASE_URL=mongodb://0.0.0.0:27017/myapp" in remote.files["/home/backend/.env"]
    assert remote.files["/home/frontend/app/page.tsx"].startswith("export default function Page()")
    assert "/home/frontend/app/page.js" not in remote.files
    assert "/home/frontend/components/Board.tsx" in remote.files
    assert "NEXT_PUBLIC_BACKEND_URL=https://8000-sbx-1.e2b.app" in remote.files["/home/frontend/.env.local"]
    # generated package.json has no next dependency, so the scaffold's is kept
    assert json.loads(remote.files["/home/frontend/package.json"])["dependencies"]["next"] == "14.0.4"

    assert log_lines[-1] == ("success", "Full-stack deployment completed successfully")
    assert result.to_dict()["status"] == "success"


@pytest.mark.asyncio
async def test_backend_failure_is_reported_not_raised(deployer, remote, project_data, clock):
    mongo_ok(remote)
    serve(remote, 3000)

    result = await deployer.deploy(load_project(project_data))

    assert not result.success
    assert result.error_type == "ServiceStartupError"
    assert "8000" in result.error
    assert result.diagnostics is not None
    assert result.diagnostics.port == 8000
    assert result.frontend_url is None
    assert not any("npm run dev" in cmd for cmd, _ in remote.background)
    data = result.to_dict()
    assert data["status"] == "failed"
    assert data["diagnostics"]["port"] == 8000
    assert data["logs"][-1]["type"] == "error"


@pytest.mark.asyncio
async def test_database_failure_only_warns(deployer, remote, project_data):
    remote.on("pgrep mongod", NOT_FOUND, exact=True)
    remote.on("which mongod", NOT_FOUND, exact=True)
    remote.on("apt-get install -y mongodb-org-server", CommandResult(stderr="E: unable", exit_code=100))
    serve(remote, 8000)
    serve(remote, 3000)

    result = await deployer.deploy(load_project(project_data))

    assert result.success
    assert result.database is None
    assert "/home/backend/.env" not in remote.files
    assert any(entry.type == "warning" and "MongoDB setup failed" in entry.message for entry in result.logs)


@pytest.mark.asyncio
async def test_dependency_install_failure(deployer, remote, project_data):
    mongo_ok(remote)
    remote.on("pip install", CommandResult(stderr="ResolutionImpossible", exit_code=1))

    result = await deployer.deploy(load_project(project_data))

    assert not result.success
    assert result.error_type == "DependencyInstallError"
    assert result.diagnostics is None


@pytest.mark.asyncio
async def test_react_frontend_gets_fallback_package_json(deployer, remote, project_data):
    project_data["template"] = "react+fastapi+mongodb"
    frontend = project_data["code"]["frontend"]
    frontend["framework"] = "react"
    frontend["files"] = {"src/App.js": {"code": "export default function App() { return null }"}}
    frontend["dependencies"] = {"package.json": {"code": "{ not json"}}
    mongo_ok(remote)
    serve(remote, 8000)
    serve(remote, 3000)

    result = await deployer.deploy(load_project(project_data))

    assert result.success
    package = json.loads(remote.files["/home/frontend/package.json"])
    assert package["name"] == "task-board"
    assert "react-scripts" in package["dependencies"]
    assert "REACT_APP_BACKEND_URL=https://8000-sbx-1.e2b.app" in remote.files["/home/frontend/.env"]
    assert remote.background[-1] == ("npm start -- --port 3000 --host 0.0.0.0 > /tmp/react.log 2>&1", "/home/frontend")
    assert "/home/frontend/tsconfig.json" not in remote.files


@pytest.mark.asyncio
async def test_monitor_uses_deployer_clock(deployer, remote, clock):
    from stackbox.models import ProcessRef
    from stackbox.readiness import ServiceHandle

    service = ServiceHandle(
        process=ProcessRef(pid=1, command="x", cwd="/home/backend"),
        url="https://8000-sbx-1.e2b.app",
        port=8000,
        command="x",
        cwd="/home/backend",
        sandbox_id="sbx-1",
    )
    monitor = deployer.monitor(service)

    assert monitor.clock is clock
    assert monitor.config is deployer.config.health


@pytest.mark.asyncio
async def test_backend_public_check_passes(deployer, remote, project_data, backend_status, log_lines):
    mongo_ok(remote)
    serve(remote, 8000)
    serve(remote, 3000)

    result = await deployer.deploy(load_project(project_data))

    assert result.success
    assert backend_status["requests"] == ["https://8000-sbx-1.e2b.app/health"]
    assert ("success", "Backend health check passed") in log_lines


@pytest.mark.asyncio
async def test_unreachable_backend_only_warns(deployer, remote, project_data, backend_status):
    backend_status["code"] = None
    mongo_ok(remote)
    serve(remote, 8000)
    serve(remote, 3000)

    result = await deployer.deploy(load_project(project_data))

    assert result.success
    assert result.frontend_url == "https://3000-sbx-1.e2b.app"
    warnings = [e.message for e in result.logs if e.type == "warning"]
    assert any(m.startswith("Backend health check failed (connection refused)") for m in warnings)


@pytest.mark.asyncio
async def test_backend_check_reports_status_code(deployer, remote, project_data, backend_status):
    backend_status["code"] = 502
    mongo_ok(remote)
    serve(remote, 8000)
    serve(remote, 3000)

    result = await deployer.deploy(load_project(project_data))

    assert result.success
    assert any(e.message == "Backend health check failed (HTTP 502), continuing" for e in result.logs)


@pytest.mark.asyncio
async def test_service_logs_tail_the_service_log(deployer, remote, project_data):
    mongo_ok(remote)
    serve(remote, 8000)
    serve(remote, 3000)
    remote.on("tail -n 50 /tmp/fastapi.log", CommandResult(stdout="INFO: Application startup complete.\n"))

    result = await deployer.deploy(load_project(project_data))

    assert result.backend.log_path == "/tmp/fastapi.log"
    assert await deployer.service_logs(result.backend) == "INFO: Application startup complete.\n"
    assert await deployer.service_logs(result.frontend) == "No logs available"
