"""
Lifecycle coordinator for one composition result.

The orchestrator walks a fixed install -> configure -> run -> reload sequence,
awaiting each collaborator before advancing. The restart signal is first-class
state on `LifecycleMachine` so the gating can be exercised without any
collaborator at all.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import ClassVar

from pydantic import BaseModel, ConfigDict

from .bus import EventBus
from .config import CompositionResult
from .contracts import (
    ConfigRenderer,
    Installer,
    LifecycleStage,
    ReloadWatcher,
    ServiceManager,
    StageCompleted,
)
from .errors import LifecycleStateError, StageError

logger = logging.getLogger(__name__)

STAGE_TOPIC = "lifecycle.stage.completed"


def restart_signal(changed: bool, restart_on_change: bool) -> bool:
    """Restart only when the configuration changed and the policy allows it."""
    return bool(changed) and bool(restart_on_change)


class LifecycleMachine:
    """
    Strictly linear state machine over `LifecycleStage`.

    State transitions:
        INSTALL -> CONFIGURE: unconditional
        CONFIGURE -> RUN: carries notify = changed AND restart_on_change
        RUN -> RELOAD: unconditional
        RELOAD: terminal
    """

    ORDER: ClassVar[tuple[LifecycleStage, ...]] = (
        LifecycleStage.INSTALL,
        LifecycleStage.CONFIGURE,
        LifecycleStage.RUN,
        LifecycleStage.RELOAD,
    )
    VALID_TRANSITIONS: ClassVar[dict[LifecycleStage, LifecycleStage | None]] = {
        LifecycleStage.INSTALL: LifecycleStage.CONFIGURE,
        LifecycleStage.CONFIGURE: LifecycleStage.RUN,
        LifecycleStage.RUN: LifecycleStage.RELOAD,
        LifecycleStage.RELOAD: None,
    }

    def __init__(self, *, restart_on_change: bool) -> None:
        self._restart_on_change = restart_on_change
        self._stage = LifecycleStage.INSTALL
        self._completed: list[LifecycleStage] = []
        self._changed: bool | None = None
        self._notify = False
        self._finished = False

    @property
    def stage(self) -> LifecycleStage:
        return self._stage

    @property
    def notify(self) -> bool:
        return self._notify

    @property
    def changed(self) -> bool | None:
        return self._changed

    @property
    def completed(self) -> tuple[LifecycleStage, ...]:
        return tuple(self._completed)

    def is_finished(self) -> bool:
        return self._finished

    def can_transition(self, to_stage: LifecycleStage) -> bool:
        return not self._finished and self.VALID_TRANSITIONS[self._stage] == to_stage

    def transition(self, to_stage: LifecycleStage) -> None:
        if not self.can_transition(to_stage):
            raise LifecycleStateError(self._stage, to_stage)
        self._stage = to_stage

    def complete(self, *, changed: bool | None = None) -> LifecycleStage | None:
        """
        Mark the current stage as done and advance to the next one.

        Only the configure stage reports ``changed``; it is required there and
        rejected everywhere else. Returns the new stage, or ``None`` once the
        terminal reload stage completes.
        """
        if self._finished:
            raise LifecycleStateError(self._stage, None)
        stage = self._stage
        if stage is LifecycleStage.CONFIGURE:
            if changed is None:
                raise ValueError("configure stage must report whether the configuration changed")
            self._changed = changed
            self._notify = restart_signal(changed, self._restart_on_change)
        elif changed is not None:
            raise ValueError(f"{stage} stage does not report configuration changes")
        self._completed.append(stage)
        next_stage = self.VALID_TRANSITIONS[stage]
        if next_stage is None:
            self._finished = True
            return None
        self.transition(next_stage)
        return next_stage


class LifecycleReport(BaseModel):
    """Outcome of a full lifecycle pass."""

    model_config = ConfigDict(frozen=True)

    completed: tuple[LifecycleStage, ...]
    changed: bool
    notify: bool
    restarted: bool
    fingerprint: str


StageHandler = Callable[[CompositionResult, LifecycleMachine], Awaitable[bool | None]]


class LifecycleOrchestrator:
    """Drive install, configure, run and reload against the platform collaborators."""

    def __init__(
        self,
        *,
        installer: Installer,
        renderer: ConfigRenderer,
        service_manager: ServiceManager,
        reloader: ReloadWatcher,
        bus: EventBus | None = None,
        stage_topic: str = STAGE_TOPIC,
    ) -> None:
        self._installer = installer
        self._renderer = renderer
        self._service_manager = service_manager
        self._reloader = reloader
        self.bus = bus
        self._stage_topic = stage_topic
        self._machine: LifecycleMachine | None = None
        self._restarted = False
        self._handlers: dict[LifecycleStage, StageHandler] = {
            LifecycleStage.INSTALL: self._install,
            LifecycleStage.CONFIGURE: self._configure,
            LifecycleStage.RUN: self._run_service,
            LifecycleStage.RELOAD: self._arm_reload,
        }

    @property
    def machine(self) -> LifecycleMachine | None:
        """State machine of the most recent pass, including a failed one."""
        return self._machine

    async def run(self, result: CompositionResult) -> LifecycleReport:
        """
        Execute every stage in order for ``result``.

        A collaborator failure raises `StageError` tagged with the stage name;
        earlier stages are neither retried nor rolled back and later stages
        never run.
        """
        machine = LifecycleMachine(restart_on_change=result.settings.restart_on_change)
        self._machine = machine
        self._restarted = False
        owns_bus = self.bus is not None and not self.bus.running
        if owns_bus:
            await self.bus.start()
        try:
            while not machine.is_finished():
                stage = machine.stage
                logger.info("Entering lifecycle stage %s", stage)
                try:
                    changed = await self._handlers[stage](result, machine)
                except Exception as exc:
                    logger.error("Lifecycle stage %s failed: %s", stage, exc)
                    raise StageError(stage, exc) from exc
                machine.complete(changed=changed)
                await self._publish(stage, machine)
        finally:
            if owns_bus:
                await self.bus.stop()
        logger.info(
            "Lifecycle complete (changed=%s, restarted=%s)", machine.changed, self._restarted
        )
        return LifecycleReport(
            completed=machine.completed,
            changed=bool(machine.changed),
            notify=machine.notify,
            restarted=self._restarted,
            fingerprint=result.effective.fingerprint(),
        )

    async def _install(self, result: CompositionResult, machine: LifecycleMachine) -> None:
        plan = result.install_plan
        logger.debug("Installing %s via %s", plan.version, plan.install_method)
        await self._installer.install(plan)

    async def _configure(self, result: CompositionResult, machine: LifecycleMachine) -> bool:
        changed = await self._renderer.render(result.render_request())
        logger.info(
            "Configuration %s (restart_on_change=%s)",
            "changed" if changed else "unchanged",
            result.settings.restart_on_change,
        )
        return bool(changed)

    async def _run_service(self, result: CompositionResult, machine: LifecycleMachine) -> None:
        state = result.service_state
        if not result.settings.manage_service:
            logger.info("Service management disabled; leaving %s untouched.", state.name)
            return
        await self._service_manager.ensure(state)
        if machine.notify and state.ensure == "running":
            logger.info("Restarting %s after configuration change.", state.name)
            await self._service_manager.restart(state)
            self._restarted = True

    async def _arm_reload(self, result: CompositionResult, machine: LifecycleMachine) -> None:
        request = result.reload_request()
        logger.debug("Arming reload watcher: %s", " ".join(request.command()))
        await self._reloader.arm(request)

    async def _publish(self, stage: LifecycleStage, machine: LifecycleMachine) -> None:
        if self.bus is None:
            return
        configure = stage is LifecycleStage.CONFIGURE
        payload = StageCompleted(
            stage=stage,
            changed=machine.changed if configure else None,
            notify=machine.notify if configure else False,
        )
        await self.bus.publish(self._stage_topic, payload)


__all__ = [
    "STAGE_TOPIC",
    "LifecycleMachine",
    "LifecycleOrchestrator",
    "LifecycleReport",
    "restart_signal",
]
