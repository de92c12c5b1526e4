from __future__ import annotations

import json
import logging
import logging.handlers
import textwrap
from pathlib import Path

import pytest

from agentcompose.entrypoint import build_orchestrator, main, parse_args


def _config_dir(tmp_path: Path, body: str) -> Path:
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    (config_dir / "agent.yaml").write_text(textwrap.dedent(body).strip() + "\n", encoding="utf-8")
    return config_dir


_AGENT_YAML = """
arch: "amd64"
pretty_config: true
pretty_config_indent: 2
config_defaults:
  ports:
    rpc: 8400
config_hash:
  data_dir: "/data"
  ports:
    rpc: 8500
"""


def test_parse_args_defaults() -> None:
    args = parse_args([])
    assert args.config_dir is None
    assert args.render_dir is None
    assert args.log_level == "INFO"
    assert args.print_config is False


def test_main_renders_configuration(tmp_path: Path) -> None:
    config_dir = _config_dir(tmp_path, _AGENT_YAML)
    render_dir = tmp_path / "rendered"

    exit_code = main(
        ["--config-dir", str(config_dir), "--render-dir", str(render_dir), "--os-family", "debian"]
    )

    assert exit_code == 0
    rendered = json.loads((render_dir / "config.json").read_text(encoding="utf-8"))
    assert rendered == {"data_dir": "/data", "ports": {"rpc": 8500}}


def test_print_config_writes_effective_json(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    config_dir = _config_dir(tmp_path, _AGENT_YAML)

    assert main(["--config-dir", str(config_dir), "--print-config"]) == 0

    output = capsys.readouterr().out
    assert json.loads(output) == {"data_dir": "/data", "ports": {"rpc": 8500}}
    assert output.startswith('{\n  "data_dir"')


def test_invalid_configuration_exits_with_two(tmp_path: Path) -> None:
    config_dir = _config_dir(tmp_path, 'arch: "amd64"\nrestart_on_change: "sometimes"\n')
    assert main(["--config-dir", str(config_dir)]) == 2


def test_missing_configuration_exits_with_two(tmp_path: Path) -> None:
    assert main(["--config-dir", str(tmp_path / "nowhere")]) == 2


def test_stage_failure_exits_with_one(tmp_path: Path) -> None:
    config_dir = _config_dir(tmp_path, _AGENT_YAML)
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")

    exit_code = main(
        ["--config-dir", str(config_dir), "--render-dir", str(blocker / "nested")]
    )

    assert exit_code == 1


def test_log_file_is_written(tmp_path: Path) -> None:
    config_dir = _config_dir(tmp_path, _AGENT_YAML)
    log_file = tmp_path / "logs" / "agentcompose.log"

    try:
        assert main(["--config-dir", str(config_dir), "--log-file", str(log_file)]) == 0
        assert log_file.exists()
    finally:
        root = logging.getLogger()
        for handler in list(root.handlers):
            if isinstance(handler, logging.handlers.RotatingFileHandler):
                root.removeHandler(handler)
                handler.close()


def test_build_orchestrator_uses_file_renderer_with_render_dir(tmp_path: Path) -> None:
    from agentcompose.collaborators import DryRunRenderer, JsonFileRenderer

    assert isinstance(build_orchestrator()._renderer, DryRunRenderer)
    assert isinstance(build_orchestrator(render_dir=tmp_path)._renderer, JsonFileRenderer)
