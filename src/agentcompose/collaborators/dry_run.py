"""
Collaborators that log and record what they would do instead of doing it.

Every dry-run collaborator appends to a shared `ActionLog`, so the full
sequence of requests across stages can be inspected in order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from ..core.contracts import InstallPlan, ReloadRequest, RenderRequest, ServiceState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Action:
    collaborator: str
    action: str
    detail: dict[str, Any] = field(default_factory=dict)


@dataclass
class ActionLog:
    actions: list[Action] = field(default_factory=list)

    def record(self, collaborator: str, action: str, **detail: Any) -> None:
        self.actions.append(Action(collaborator, action, detail))
        logger.info("[dry-run] %s.%s %s", collaborator, action, detail or "")

    def names(self) -> list[str]:
        return [f"{entry.collaborator}.{entry.action}" for entry in self.actions]


class DryRunInstaller:
    name = "installer"

    def __init__(self, log: ActionLog | None = None) -> None:
        self.log = log or ActionLog()
        self.plans: list[InstallPlan] = []

    async def install(self, plan: InstallPlan) -> None:
        self.plans.append(plan)
        self.log.record(
            self.name,
            "install",
            method=plan.install_method,
            version=plan.version,
            source=plan.download_url or plan.package_name,
        )


class DryRunRenderer:
    """Reports a change whenever the config or resource files differ from the last render."""

    name = "renderer"

    def __init__(
        self, log: ActionLog | None = None, *, previous_fingerprint: str | None = None
    ) -> None:
        self.log = log or ActionLog()
        self.requests: list[RenderRequest] = []
        self._previous = previous_fingerprint

    async def render(self, request: RenderRequest) -> bool:
        self.requests.append(request)
        fingerprint = request.fingerprint()
        changed = fingerprint != self._previous
        self._previous = fingerprint
        self.log.record(
            self.name,
            "render",
            config_dir=request.config_dir,
            fingerprint=fingerprint[:12],
            files=sorted(request.resources.agent_files()),
            changed=changed,
        )
        return changed


class DryRunServiceManager:
    name = "service"

    def __init__(self, log: ActionLog | None = None) -> None:
        self.log = log or ActionLog()
        self.ensured: list[ServiceState] = []
        self.restarted: list[ServiceState] = []

    async def ensure(self, state: ServiceState) -> None:
        self.ensured.append(state)
        self.log.record(
            self.name, "ensure", service=state.name, ensure=state.ensure, enabled=state.enabled
        )

    async def restart(self, state: ServiceState) -> None:
        self.restarted.append(state)
        self.log.record(self.name, "restart", service=state.name)


class DryRunReloadWatcher:
    name = "reload"

    def __init__(self, log: ActionLog | None = None) -> None:
        self.log = log or ActionLog()
        self.requests: list[ReloadRequest] = []

    async def arm(self, request: ReloadRequest) -> None:
        self.requests.append(request)
        self.log.record(
            self.name,
            "arm",
            command=" ".join(request.command()),
            services=len(request.services),
            checks=len(request.checks),
            watches=len(request.watches),
        )
        for payload in request.acl_payloads():
            self.log.record(self.name, "acl", **payload)


__all__ = [
    "Action",
    "ActionLog",
    "DryRunInstaller",
    "DryRunReloadWatcher",
    "DryRunRenderer",
    "DryRunServiceManager",
]
