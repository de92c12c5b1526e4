from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from agentcompose.core.config import ConfigService, HostFacts


def _write_yaml(path: Path, content: str) -> None:
    path.write_text(textwrap.dedent(content).strip() + "\n", encoding="utf-8")


@pytest.fixture
def host_facts() -> HostFacts:
    return HostFacts(os_family="debian", architecture="x86_64", loopback_address="127.0.0.1")


@pytest.fixture
def sample_config_dir(tmp_path: Path) -> Path:
    """
    Provide a temporary configuration directory for tests.
    """

    config_dir = tmp_path / "config"
    config_dir.mkdir()
    agent_yaml = f"""
    version: "1.0.0"
    install_method: "url"
    config_dir: "{(tmp_path / 'rendered').as_posix()}"
    restart_on_change: true
    pretty_config: false
    extra_groups: ["docker"]

    config_defaults:
      datacenter: "dc1"
      ports:
        rpc: 8400
        http: 8500
      retry_join: ["10.0.0.1", "10.0.0.2"]

    config_hash:
      data_dir: "/data"
      ui_dir: "/data/ui"
      ports:
        rpc: 8500
      retry_join: ["10.0.0.9"]

    services:
      web:
        port: 80
        tags: ["http", "edge"]
        checks:
          - http: "http://localhost/health"
            interval: "10s"
      db:
        port: 5432

    checks:
      disk:
        script: "/usr/local/bin/check_disk"
        interval: "30s"

    watches:
      leader:
        type: "key"
        key_path: "service/leader"
        handler: "/usr/local/bin/on-leader"

    acls:
      anonymous:
        rules:
          key_prefix:
            "config/":
              policy: "read"
    """
    secrets_yaml = """
    acls:
      ops:
        type: "management"
        token: "s3cr3t-token"
    """
    _write_yaml(config_dir / "agent.yaml", agent_yaml)
    _write_yaml(config_dir / "secrets.yaml", secrets_yaml)
    return config_dir


@pytest.fixture
def sample_config_service(sample_config_dir: Path, host_facts: HostFacts) -> ConfigService:
    """Return a ConfigService wired to the temporary configuration."""

    return ConfigService(config_dir=sample_config_dir, facts=host_facts)
