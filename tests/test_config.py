"""Tests for stackbox configuration."""

import tempfile
from pathlib import Path

import pytest

from stackbox.config import (
    HealthConfig,
    MongoConfig,
    ReadinessConfig,
    SandboxConfig,
    StackboxConfig,
    load_config,
)
from stackbox.errors import ConfigurationError


def test_sandbox_config_defaults():
    cfg = SandboxConfig(template_id="tmpl", api_key="key")
    assert cfg.default_cwd == "/home"
    assert cfg.command_timeout_ms == 60_000
    assert cfg.long_command_timeout_ms == 600_000
    assert "key" not in repr(cfg)


def test_sandbox_config_validate():
    with pytest.raises(ConfigurationError):
        SandboxConfig(api_key="key").validate()
    with pytest.raises(ConfigurationError):
        SandboxConfig(template_id="tmpl").validate()
    with pytest.raises(ConfigurationError):
        SandboxConfig(template_id="tmpl", api_key="key", command_timeout_ms=0).validate()
    SandboxConfig(template_id="tmpl", api_key="key").validate()


def test_sandbox_config_from_env_mapping():
    cfg = SandboxConfig.from_env({
        "E2B_TEMPLATE_ID": " tmpl-1 ",
        "E2B_API_KEY": "e2b_abc",
        "STACKBOX_COMMAND_TIMEOUT_MS": "30000",
    })
    assert cfg.template_id == "tmpl-1"
    assert cfg.api_key == "e2b_abc"
    assert cfg.command_timeout_ms == 30_000
    assert cfg.long_command_timeout_ms == 600_000


def test_sandbox_config_prefers_stackbox_prefixed_vars(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("E2B_TEMPLATE_ID", "global")
    monkeypatch.setenv("STACKBOX_TEMPLATE_ID", "local")
    monkeypatch.setenv("E2B_API_KEY", "key")

    cfg = SandboxConfig.from_env()
    assert cfg.template_id == "local"
    assert cfg.api_key == "key"


def test_sandbox_config_from_dotenv(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    # set then delete so the values loaded from the file are undone at teardown
    for name in ("E2B_TEMPLATE_ID", "STACKBOX_TEMPLATE_ID", "E2B_API_KEY", "STACKBOX_API_KEY"):
        monkeypatch.setenv(name, "unset")
        monkeypatch.delenv(name)
    env_file = tmp_path / ".env"
    env_file.write_text("E2B_TEMPLATE_ID=from-dotenv\nE2B_API_KEY=dotenv-key\n")

    cfg = SandboxConfig.from_env(dotenv_path=env_file)

    assert cfg.template_id == "from-dotenv"
    assert cfg.api_key == "dotenv-key"


def test_section_from_dict_ignores_unknown_keys():
    cfg = HealthConfig.from_dict({"poll_interval_s": 1.5, "max_restarts": 2, "bogus": True})
    assert cfg.poll_interval_s == 1.5
    assert cfg.max_restarts == 2
    assert cfg.health_path == "/health"


def test_stackbox_config_from_dict_takes_credentials_from_env():
    config = StackboxConfig.from_dict(
        {
            "readiness": {"interval_s": 1, "timeout_s": 30},
            "mongodb": {"port": 27018, "seed": False},
            "backend_dir": "/srv/api",
        },
        env={"E2B_TEMPLATE_ID": "tmpl", "E2B_API_KEY": "key"},
    )
    assert config.sandbox.template_id == "tmpl"
    assert config.readiness == ReadinessConfig(interval_s=1, timeout_s=30)
    assert config.mongodb.port == 27018
    assert config.mongodb.seed is False
    assert config.backend_dir == "/srv/api"
    assert config.frontend_dir == "/home/frontend"


def test_stackbox_config_file_credentials_win():
    config = StackboxConfig.from_dict(
        {"sandbox": {"template_id": "from-file"}},
        env={"E2B_TEMPLATE_ID": "from-env", "E2B_API_KEY": "key"},
    )
    assert config.sandbox.template_id == "from-file"
    assert config.sandbox.api_key == "key"


def test_stackbox_config_from_yaml():
    yaml_content = """
sandbox:
  template_id: yaml-tmpl
  api_key: yaml-key
  sandbox_timeout_s: 600
health:
  poll_duration_s: 30
  max_restarts: 3
mongodb:
  database: shop
  extra_args: ["--nojournal"]
"""
    with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
        f.write(yaml_content)
        f.flush()

        config = StackboxConfig.from_yaml(Path(f.name), env={})

    assert config.sandbox.template_id == "yaml-tmpl"
    assert config.sandbox.sandbox_timeout_s == 600
    assert config.health.max_restarts == 3
    assert config.mongodb == MongoConfig(database="shop", extra_args=["--nojournal"])


def test_from_yaml_rejects_non_mapping(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("- just\n- a list\n")
    with pytest.raises(ConfigurationError):
        StackboxConfig.from_yaml(path, env={})


def test_from_yaml_rejects_invalid_yaml(tmp_path):
    path = tmp_path / "broken.yaml"
    path.write_text("sandbox: [unclosed\n")
    with pytest.raises(ConfigurationError):
        StackboxConfig.from_yaml(path, env={})


def test_load_config_file_not_found():
    with pytest.raises(ConfigurationError):
        load_config("/nonexistent/path.yaml")


def test_load_config_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("E2B_TEMPLATE_ID", "env-tmpl")
    monkeypatch.setenv("E2B_API_KEY", "env-key")
    monkeypatch.delenv("STACKBOX_TEMPLATE_ID", raising=False)
    monkeypatch.delenv("STACKBOX_API_KEY", raising=False)

    config = load_config()

    assert config.sandbox.template_id == "env-tmpl"
    assert config.health == HealthConfig()
