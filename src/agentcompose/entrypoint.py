"""
CLI entrypoint that composes the agent configuration and walks the lifecycle.

Settings are loaded from ``agent.yaml``/``secrets.yaml`` through Dynaconf.
Installation and service supervision are always dry-run here; the rendered
configuration is written to disk only when ``--render-dir`` is given.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import logging.handlers
import sys
from collections.abc import Sequence
from pathlib import Path

from .collaborators import (
    ActionLog,
    DryRunInstaller,
    DryRunReloadWatcher,
    DryRunRenderer,
    DryRunServiceManager,
    JsonFileRenderer,
)
from .core.bus import EventBus
from .core.config import CompositionResult, ConfigService, HostFacts
from .core.contracts import ConfigRenderer, StageCompleted
from .core.errors import ComposerError, StageError
from .core.orchestrator import STAGE_TOPIC, LifecycleOrchestrator, LifecycleReport

LOGGER = logging.getLogger(__name__)
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _ensure_rotating_file_handler(
    log_file: Path,
    *,
    max_mb: int = 10,
    backup_count: int = 3,
) -> None:
    """Attach a rotating file handler pointed at ``log_file`` if missing."""

    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        LOGGER.warning("Unable to create log directory %s: %s", log_file.parent, exc)
        return

    root_logger = logging.getLogger()
    for handler in root_logger.handlers:
        if isinstance(handler, logging.handlers.RotatingFileHandler):
            existing = getattr(handler, "baseFilename", None)
            if existing and Path(existing) == log_file.resolve():
                return

    handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=max_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(handler)


def configure_logging(level: str, log_file: Path | None = None) -> None:
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric_level,
        format=LOG_FORMAT,
    )
    if log_file is not None:
        _ensure_rotating_file_handler(log_file)


def build_orchestrator(
    *,
    render_dir: Path | None = None,
    log: ActionLog | None = None,
    bus: EventBus | None = None,
) -> LifecycleOrchestrator:
    """Wire dry-run collaborators, optionally rendering to ``render_dir``."""
    log = log or ActionLog()
    renderer: ConfigRenderer = (
        JsonFileRenderer(render_dir) if render_dir is not None else DryRunRenderer(log)
    )
    return LifecycleOrchestrator(
        installer=DryRunInstaller(log),
        renderer=renderer,
        service_manager=DryRunServiceManager(log),
        reloader=DryRunReloadWatcher(log),
        bus=bus,
    )


async def run_lifecycle(
    result: CompositionResult,
    *,
    render_dir: Path | None = None,
) -> LifecycleReport:
    bus = EventBus()

    async def _log_stage(topic: str, payload: StageCompleted) -> None:
        LOGGER.info(
            "Stage %s completed (changed=%s, notify=%s)",
            payload.stage,
            payload.changed,
            payload.notify,
        )

    bus.subscribe(STAGE_TOPIC, _log_stage)
    orchestrator = build_orchestrator(render_dir=render_dir, bus=bus)
    return await orchestrator.run(result)


def parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Compose the agent configuration and walk its lifecycle."
    )
    parser.add_argument(
        "--config-dir",
        type=Path,
        default=None,
        help="Directory that contains agent.yaml/secrets.yaml (default: repo config/).",
    )
    parser.add_argument(
        "--render-dir",
        type=Path,
        default=None,
        help="Write config.json here instead of only reporting the render.",
    )
    parser.add_argument(
        "--os-family",
        default=None,
        help="Override the detected OS family (e.g. debian, redhat, darwin).",
    )
    parser.add_argument(
        "--print-config",
        action="store_true",
        help="Print the effective configuration as JSON and exit.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Python logging level (default: INFO).",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Also log to this file with rotation.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level, args.log_file)
    try:
        facts = HostFacts.detect()
        if args.os_family:
            facts = facts.model_copy(update={"os_family": args.os_family})
        service = ConfigService(config_dir=args.config_dir, facts=facts)
        result = service.result
        for warning in result.warnings:
            LOGGER.warning("Policy warning: %s", warning.message)
        if args.print_config:
            indent = result.settings.pretty_config_indent if result.settings.pretty_config else 2
            sys.stdout.write(result.effective.to_json(indent=indent) + "\n")
            return 0
        report = asyncio.run(run_lifecycle(result, render_dir=args.render_dir))
    except KeyboardInterrupt:
        LOGGER.info("Interrupted by user.")
        return 0
    except StageError as exc:
        LOGGER.error("Lifecycle failed at %s: %s", exc.stage, exc.cause)
        return 1
    except ComposerError as exc:
        LOGGER.error("Configuration failed: %s", exc)
        return 2
    LOGGER.info(
        "Completed stages %s (restarted=%s)",
        ", ".join(report.completed),
        report.restarted,
    )
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())


__all__ = ["build_orchestrator", "main", "run_lifecycle"]
