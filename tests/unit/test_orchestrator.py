"""Tests for the lifecycle orchestrator driving dry-run collaborators."""

from __future__ import annotations

import asyncio

import pytest

from agentcompose.collaborators import (
    ActionLog,
    DryRunInstaller,
    DryRunReloadWatcher,
    DryRunRenderer,
    DryRunServiceManager,
)
from agentcompose.core.bus import EventBus
from agentcompose.core.config import CompositionResult, HostFacts, compose
from agentcompose.core.contracts import LifecycleStage, StageCompleted
from agentcompose.core.errors import StageError
from agentcompose.core.orchestrator import STAGE_TOPIC, LifecycleOrchestrator


class _FailingRenderer:
    async def render(self, request) -> bool:
        raise OSError("disk full")


class _FixedRenderer:
    def __init__(self, changed: bool) -> None:
        self.changed = changed

    async def render(self, request) -> bool:
        return self.changed


def _orchestrator(log: ActionLog, renderer=None, bus: EventBus | None = None):
    return LifecycleOrchestrator(
        installer=DryRunInstaller(log),
        renderer=renderer or DryRunRenderer(log),
        service_manager=DryRunServiceManager(log),
        reloader=DryRunReloadWatcher(log),
        bus=bus,
    )


def _result(**overrides) -> CompositionResult:
    return compose(overrides, HostFacts())


@pytest.mark.asyncio
async def test_end_to_end_changed_configuration_restarts_service() -> None:
    result = _result(
        config_defaults={"ports": {"rpc": 8400}},
        config_hash={"data_dir": "/data", "ports": {"rpc": 8500}},
        restart_on_change=True,
    )
    log = ActionLog()

    report = await _orchestrator(log).run(result)

    assert result.effective.rpc_port == 8500
    assert result.warnings == ()
    assert report.changed is True
    assert report.notify is True
    assert report.restarted is True
    assert report.completed == (
        LifecycleStage.INSTALL,
        LifecycleStage.CONFIGURE,
        LifecycleStage.RUN,
        LifecycleStage.RELOAD,
    )
    assert log.names() == [
        "installer.install",
        "renderer.render",
        "service.ensure",
        "service.restart",
        "reload.arm",
    ]


@pytest.mark.asyncio
async def test_unchanged_configuration_does_not_restart() -> None:
    result = _result(config_hash={"data_dir": "/data"})
    log = ActionLog()
    renderer = DryRunRenderer(log, previous_fingerprint=result.render_request().fingerprint())

    report = await _orchestrator(log, renderer).run(result)

    assert report.changed is False
    assert report.notify is False
    assert "service.restart" not in log.names()


@pytest.mark.asyncio
async def test_restart_on_change_disabled_suppresses_restart() -> None:
    log = ActionLog()
    orchestrator = _orchestrator(log, _FixedRenderer(True))

    report = await orchestrator.run(_result(restart_on_change=False))

    assert report.changed is True
    assert report.notify is False
    assert log.names() == ["installer.install", "service.ensure", "reload.arm"]


@pytest.mark.asyncio
async def test_stopped_service_is_not_restarted() -> None:
    log = ActionLog()
    report = await _orchestrator(log, _FixedRenderer(True)).run(
        _result(service_ensure="stopped")
    )
    assert report.notify is True
    assert report.restarted is False
    assert "service.restart" not in log.names()


@pytest.mark.asyncio
async def test_unmanaged_service_is_left_alone() -> None:
    log = ActionLog()
    report = await _orchestrator(log).run(_result(manage_service=False))

    assert not any(name.startswith("service.") for name in log.names())
    assert report.completed[-1] is LifecycleStage.RELOAD


@pytest.mark.asyncio
async def test_stage_failure_stops_the_lifecycle() -> None:
    log = ActionLog()
    orchestrator = _orchestrator(log, _FailingRenderer())

    with pytest.raises(StageError) as excinfo:
        await orchestrator.run(_result())

    assert excinfo.value.stage == LifecycleStage.CONFIGURE
    assert isinstance(excinfo.value.__cause__, OSError)
    assert log.names() == ["installer.install"]
    assert orchestrator.machine is not None
    assert orchestrator.machine.completed == (LifecycleStage.INSTALL,)


@pytest.mark.asyncio
async def test_reload_request_carries_endpoint_and_resources() -> None:
    log = ActionLog()
    reloader = DryRunReloadWatcher(log)
    orchestrator = LifecycleOrchestrator(
        installer=DryRunInstaller(log),
        renderer=DryRunRenderer(log),
        service_manager=DryRunServiceManager(log),
        reloader=reloader,
    )
    result = _result(
        config_hash={"client_addr": "0.0.0.0"},
        services={"web": {"port": 80}},
        watches={"all": {"type": "services", "handler": "/bin/h"}},
    )

    await orchestrator.run(result)

    (request,) = reloader.requests
    assert request.rpc_address == "0.0.0.0"
    assert request.rpc_port == 8400
    assert [service.id for service in request.services] == ["web"]
    assert len(request.watches) == 1


@pytest.mark.asyncio
async def test_stage_events_are_published_in_order() -> None:
    bus = EventBus(queue_size=8)
    events: list[StageCompleted] = []
    done = asyncio.Event()

    async def handler(topic: str, payload: StageCompleted) -> None:
        events.append(payload)
        if payload.stage is LifecycleStage.RELOAD:
            done.set()

    bus.subscribe(STAGE_TOPIC, handler)
    await _orchestrator(ActionLog(), _FixedRenderer(True), bus).run(_result())
    await asyncio.wait_for(done.wait(), timeout=0.5)

    assert [event.stage for event in events] == list(LifecycleStage)
    configure = events[1]
    assert configure.changed is True
    assert configure.notify is True
    assert events[0].changed is None
    assert not bus.running


@pytest.mark.asyncio
async def test_dry_run_records_resource_files_and_acl_payloads() -> None:
    log = ActionLog()
    result = _result(
        services={"web": {"port": 80}},
        acls={"ops": {"type": "management", "rules": {"key_prefix": {}}}},
    )

    await _orchestrator(log).run(result)

    render = next(action for action in log.actions if action.action == "render")
    assert render.detail["files"] == ["service_web.json"]
    acl = next(action for action in log.actions if action.action == "acl")
    assert acl.detail == {"Name": "ops", "Type": "management", "Rules": {"key_prefix": {}}}
    assert log.names()[-2:] == ["reload.arm", "reload.acl"]
