"""
Contracts shared between the composer, the lifecycle driver and collaborators.

Resource declarations are a tagged variant: one frozen model per kind, built
from a keyed map entry and carrying that key as its identity. Collaborators
are expressed as protocols so the core never depends on how packages are
installed, files are written or services are supervised.
"""

from __future__ import annotations

import datetime as dt
import hashlib
import json
import re
from abc import ABC, abstractmethod
from copy import deepcopy
from enum import StrEnum
from typing import Any, ClassVar, Literal, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .errors import PolicyWarning, ResourceValidationError

_UNSAFE_FILENAME = re.compile(r"[^A-Za-z0-9_.-]")


class ResourceKind(StrEnum):
    SERVICE = "service"
    CHECK = "check"
    WATCH = "watch"
    ACL = "acl"


class LifecycleStage(StrEnum):
    INSTALL = "install"
    CONFIGURE = "configure"
    RUN = "run"
    RELOAD = "reload"


class BasePayload(BaseModel):
    """Base class for all bus payloads."""

    model_config = ConfigDict(extra="allow", frozen=True)

    schema_version: str = Field(
        default="1.0.0", description="Semantic version of the payload schema."
    )


class StageCompleted(BasePayload):
    """Published on `lifecycle.stage.completed` after each stage returns."""

    stage: LifecycleStage
    changed: bool | None = Field(
        default=None, description="Set by the configure stage only."
    )
    notify: bool = Field(default=False, description="Restart signal carried to the next stage.")
    timestamp_utc: dt.datetime = Field(default_factory=lambda: dt.datetime.now(tz=dt.UTC))


class ResourceDeclaration(BaseModel, ABC):
    """Common base for validated resource instances."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: ClassVar[ResourceKind]

    key: str = Field(min_length=1, description="Map key the declaration was expanded from.")

    @model_validator(mode="before")
    @classmethod
    def _default_identity(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        key = data.get("key")
        for field in cls.IDENTITY_FIELDS:
            if data.get(field) is None and key is not None:
                data = {**data, field: key}
        return data

    IDENTITY_FIELDS: ClassVar[tuple[str, ...]] = ()

    def agent_filename(self) -> str:
        return f"{self.kind}_{_UNSAFE_FILENAME.sub('_', self.key)}.json"

    @abstractmethod
    def to_agent_payload(self) -> dict[str, Any]:
        """JSON-ready mapping in the shape the agent consumes."""


def _compact(data: dict[str, Any]) -> dict[str, Any]:
    return {name: value for name, value in data.items() if value is not None}


class CheckDefinition(BaseModel):
    """Health-check fields shared by standalone checks and checks embedded in services."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str | None = None
    name: str | None = None
    ttl: str | None = None
    http: str | None = None
    script: str | None = None
    tcp: str | None = None
    interval: str | None = None
    timeout: str | None = None
    service_id: str | None = None
    notes: str | None = None
    token: str | None = None
    status: Literal["passing", "warning", "critical"] | None = None

    @model_validator(mode="after")
    def _validate_check_type(self) -> CheckDefinition:
        if self.ttl is not None:
            if self.http or self.script or self.tcp or self.interval:
                raise ValueError("ttl must not be combined with interval, script, http or tcp")
        elif self.http is not None:
            if self.interval is None:
                raise ValueError("http checks require an interval")
            if self.script or self.tcp:
                raise ValueError("http must not be combined with script or tcp")
        elif self.tcp is not None:
            if self.interval is None:
                raise ValueError("tcp checks require an interval")
            if self.script:
                raise ValueError("tcp must not be combined with script")
        elif self.script is not None:
            if self.interval is None:
                raise ValueError("script checks require an interval")
        else:
            raise ValueError("one of ttl, script, http or tcp must be defined")
        return self

    def check_payload(self) -> dict[str, Any]:
        return _compact(self.model_dump(exclude={"key"}))


class ServiceResource(ResourceDeclaration):
    kind: ClassVar[ResourceKind] = ResourceKind.SERVICE
    IDENTITY_FIELDS: ClassVar[tuple[str, ...]] = ("service_name", "id")

    service_name: str
    id: str
    tags: tuple[str, ...] = ()
    address: str | None = None
    port: int | None = Field(default=None, ge=0)
    checks: tuple[CheckDefinition, ...] = ()
    token: str | None = None
    enable_tag_override: bool = False

    def to_agent_payload(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "id": self.id,
            "name": self.service_name,
            "tags": list(self.tags),
            "address": self.address,
            "port": self.port,
            "token": self.token,
            "enable_tag_override": self.enable_tag_override,
        }
        if self.checks:
            body["checks"] = [check.check_payload() for check in self.checks]
        return {"service": _compact(body)}


class CheckResource(CheckDefinition, ResourceDeclaration):
    kind: ClassVar[ResourceKind] = ResourceKind.CHECK
    IDENTITY_FIELDS: ClassVar[tuple[str, ...]] = ("id", "name")

    def to_agent_payload(self) -> dict[str, Any]:
        return {"check": self.check_payload()}


WatchType = Literal["key", "keyprefix", "service", "nodes", "services", "checks", "event"]


class WatchResource(ResourceDeclaration):
    kind: ClassVar[ResourceKind] = ResourceKind.WATCH

    REQUIRED_BY_TYPE: ClassVar[dict[str, str]] = {
        "key": "key_path",
        "keyprefix": "prefix",
        "service": "service",
    }

    type: WatchType
    handler: str = Field(min_length=1)
    key_path: str | None = None
    prefix: str | None = None
    service: str | None = None
    state: str | None = None
    event_name: str | None = None
    passingonly: bool | None = None
    datacenter: str | None = None
    token: str | None = None

    @model_validator(mode="after")
    def _validate_type_fields(self) -> WatchResource:
        required = self.REQUIRED_BY_TYPE.get(self.type)
        if required is not None and not getattr(self, required):
            raise ValueError(f"{self.type} watches require {required}")
        if self.passingonly is not None and self.type != "service":
            raise ValueError("passingonly is only valid for service watches")
        return self

    def to_agent_payload(self) -> dict[str, Any]:
        body = {
            "type": self.type,
            "handler": self.handler,
            "key": self.key_path,
            "prefix": self.prefix,
            "service": self.service,
            "state": self.state,
            "name": self.event_name,
            "passingonly": self.passingonly,
            "datacenter": self.datacenter,
            "token": self.token,
        }
        return {"watches": [_compact(body)]}


class AclResource(ResourceDeclaration):
    kind: ClassVar[ResourceKind] = ResourceKind.ACL
    IDENTITY_FIELDS: ClassVar[tuple[str, ...]] = ("name",)

    name: str
    type: Literal["client", "management"] = "client"
    rules: dict[str, Any] = Field(default_factory=dict)
    id: str | None = None
    token: str | None = None

    def to_agent_payload(self) -> dict[str, Any]:
        return _compact(
            {"ID": self.id, "Name": self.name, "Type": self.type, "Rules": self.rules}
        )


RESOURCE_MODELS: dict[ResourceKind, type[ResourceDeclaration]] = {
    ResourceKind.SERVICE: ServiceResource,
    ResourceKind.CHECK: CheckResource,
    ResourceKind.WATCH: WatchResource,
    ResourceKind.ACL: AclResource,
}


class ResourceSet(BaseModel):
    """Validated resources of every kind produced by one composition pass."""

    model_config = ConfigDict(frozen=True)

    services: tuple[ServiceResource, ...] = ()
    checks: tuple[CheckResource, ...] = ()
    watches: tuple[WatchResource, ...] = ()
    acls: tuple[AclResource, ...] = ()

    def __len__(self) -> int:
        return len(self.services) + len(self.checks) + len(self.watches) + len(self.acls)

    def agent_files(self) -> dict[str, dict[str, Any]]:
        """
        Agent config file name to payload for every service, check and watch.

        ACLs are applied through the agent API, not config files, and travel
        with the reload request instead. Two keys that sanitize to the same
        file name raise `ResourceValidationError`.
        """
        files: dict[str, dict[str, Any]] = {}
        owners: dict[str, str] = {}
        for resource in (*self.services, *self.checks, *self.watches):
            name = resource.agent_filename()
            if name in files:
                raise ResourceValidationError(
                    resource.kind, resource.key, f"file name {name} is taken by '{owners[name]}'"
                )
            files[name] = resource.to_agent_payload()
            owners[name] = resource.key
        return files


class InstallPlan(BaseModel):
    """Coordinates forwarded to the install collaborator."""

    model_config = ConfigDict(frozen=True)

    version: str
    os: str
    arch: str
    install_method: Literal["url", "package", "none"]
    download_url: str | None = None
    ui_download_url: str | None = None
    package_name: str | None = None
    package_ensure: str = "latest"
    ui_package_name: str | None = None
    ui_package_ensure: str | None = None
    bin_dir: str


class EffectiveConfig(BaseModel):
    """
    Merged configuration tree plus the fields derived from it.

    Frozen once built; `tree` must be treated as read-only and `as_dict`
    hands out an independent copy for callers that need to mutate.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    DEFAULT_RPC_PORT: ClassVar[int] = 8400

    tree: dict[str, Any] = Field(default_factory=dict)
    data_dir: str | None = None
    ui_dir: str | None = None
    rpc_port: int = DEFAULT_RPC_PORT
    rpc_bind_address: str
    warnings: tuple[PolicyWarning, ...] = ()

    def as_dict(self) -> dict[str, Any]:
        return deepcopy(self.tree)

    def to_json(self, *, indent: int | None = None) -> str:
        """Canonical JSON with sorted keys; compact unless ``indent`` is given."""
        separators = (",", ":") if indent is None else (",", ": ")
        return json.dumps(self.tree, sort_keys=True, indent=indent, separators=separators)

    def fingerprint(self) -> str:
        return hashlib.sha256(self.to_json().encode("utf-8")).hexdigest()


class RenderRequest(BaseModel):
    """Everything the config-rendering collaborator needs for one write."""

    model_config = ConfigDict(frozen=True)

    config: EffectiveConfig
    config_dir: str
    purge_config_dir: bool = True
    pretty_config: bool = False
    pretty_config_indent: int = Field(default=4, ge=0)
    resources: ResourceSet = Field(default_factory=ResourceSet)

    def fingerprint(self) -> str:
        """Digest of the main config plus every resource file it brings along."""
        digest = hashlib.sha256(self.config.to_json().encode("utf-8"))
        for name, payload in sorted(self.resources.agent_files().items()):
            digest.update(name.encode("utf-8"))
            digest.update(json.dumps(payload, sort_keys=True).encode("utf-8"))
        return digest.hexdigest()


class ServiceState(BaseModel):
    """Desired state of the supervised agent service."""

    model_config = ConfigDict(frozen=True)

    name: str = "consul"
    enabled: bool = True
    ensure: Literal["running", "stopped"] = "running"
    init_style: str | None = None


class ReloadRequest(BaseModel):
    """Arms the reload watcher with the agent's RPC endpoint and live resources."""

    model_config = ConfigDict(frozen=True)

    rpc_address: str
    rpc_port: int
    binary: str = "consul"
    services: tuple[ServiceResource, ...] = ()
    checks: tuple[CheckResource, ...] = ()
    watches: tuple[WatchResource, ...] = ()
    acls: tuple[AclResource, ...] = ()

    def command(self) -> list[str]:
        return [self.binary, "reload", f"-rpc-addr={self.rpc_address}:{self.rpc_port}"]

    def acl_payloads(self) -> list[dict[str, Any]]:
        return [acl.to_agent_payload() for acl in self.acls]


@runtime_checkable
class Installer(Protocol):
    async def install(self, plan: InstallPlan) -> None: ...


@runtime_checkable
class ConfigRenderer(Protocol):
    async def render(self, request: RenderRequest) -> bool:
        """Persist the configuration and report whether it differed from before."""
        ...


@runtime_checkable
class ServiceManager(Protocol):
    async def ensure(self, state: ServiceState) -> None: ...

    async def restart(self, state: ServiceState) -> None: ...


@runtime_checkable
class ReloadWatcher(Protocol):
    async def arm(self, request: ReloadRequest) -> None: ...


__all__ = [
    "RESOURCE_MODELS",
    "AclResource",
    "BasePayload",
    "CheckDefinition",
    "CheckResource",
    "ConfigRenderer",
    "EffectiveConfig",
    "InstallPlan",
    "Installer",
    "LifecycleStage",
    "ReloadRequest",
    "ReloadWatcher",
    "RenderRequest",
    "ResourceDeclaration",
    "ResourceKind",
    "ResourceSet",
    "ServiceManager",
    "ServiceResource",
    "ServiceState",
    "StageCompleted",
    "WatchResource",
    "WatchType",
]
