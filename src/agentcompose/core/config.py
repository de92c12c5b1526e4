"""
Dynaconf-powered settings loader with Pydantic validation.

The configuration service loads the layered YAML files (``agent.yaml`` plus an
optional ``secrets.yaml``), validates every flag, deep-merges the agent
configuration defaults with the user's overrides, derives the dependent fields
and expands the resource maps. The result is a `CompositionResult` the
lifecycle orchestrator can drive without looking at raw dictionaries again.
"""

from __future__ import annotations

import logging
import platform
import socket
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, ClassVar, Literal

from dynaconf import Dynaconf
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .contracts import (
    EffectiveConfig,
    InstallPlan,
    ReloadRequest,
    RenderRequest,
    ResourceSet,
    ServiceState,
)
from .errors import ComposerError, PolicyWarning, ValidationError
from .merge import ConfigTree, deep_merge
from .resources import expand_all
from .validation import validate_inputs, validate_json_tree, validate_non_negative_int

logger = logging.getLogger(__name__)

CONFIG_FILENAMES = ("agent.yaml", "secrets.yaml")
_REPO_ROOT = Path(__file__).resolve().parents[3]
DEFAULT_CONFIG_DIR = _REPO_ROOT / "config"

UI_WITHOUT_DATA_DIR = "uiDir requires dataDir to be set"


class ConfigError(ComposerError):
    """Raised when configuration files are missing or unreadable."""

    component = "config_service"


class HostFacts(BaseModel):
    """Facts about the host supplied by the platform."""

    model_config = ConfigDict(frozen=True)

    os_family: str = "linux"
    architecture: str = "x86_64"
    loopback_address: str = "127.0.0.1"

    OS_RELEASE_FAMILIES: ClassVar[dict[str, str]] = {
        "rhel": "redhat",
        "arch": "archlinux",
        "sles": "suse",
        "opensuse": "suse",
        "opensuse-leap": "suse",
        "opensuse-tumbleweed": "suse",
    }

    @classmethod
    def detect(cls) -> HostFacts:
        system = platform.system().lower() or "linux"
        os_family = system
        if system == "linux":
            try:
                release_id = platform.freedesktop_os_release().get("ID", "linux")
            except OSError:
                release_id = "linux"
            os_family = cls.OS_RELEASE_FAMILIES.get(release_id, release_id)
            if os_family not in PLATFORM_DEFAULTS:
                os_family = "linux"
        try:
            loopback = socket.gethostbyname("localhost")
        except OSError:
            loopback = "127.0.0.1"
        return cls(
            os_family=os_family,
            architecture=platform.machine() or "x86_64",
            loopback_address=loopback,
        )


@dataclass(frozen=True)
class PlatformDefaults:
    """Per-platform values used where settings leave a field unset."""

    os: str
    init_style: str
    config_dir: str
    bin_dir: str
    package_provider: str | None = None


def _linux(init_style: str, provider: str | None) -> PlatformDefaults:
    return PlatformDefaults(
        os="linux",
        init_style=init_style,
        config_dir="/etc/consul",
        bin_dir="/usr/local/bin",
        package_provider=provider,
    )


PLATFORM_DEFAULTS: dict[str, PlatformDefaults] = {
    "debian": _linux("systemd", "apt"),
    "ubuntu": _linux("systemd", "apt"),
    "redhat": _linux("systemd", "yum"),
    "centos": _linux("systemd", "yum"),
    "fedora": _linux("systemd", "dnf"),
    "suse": _linux("sles", "zypper"),
    "archlinux": _linux("systemd", "pacman"),
    "linux": _linux("systemd", None),
    "darwin": PlatformDefaults(
        os="darwin",
        init_style="launchd",
        config_dir="/usr/local/etc/consul",
        bin_dir="/usr/local/bin",
        package_provider="brew",
    ),
    "freebsd": PlatformDefaults(
        os="freebsd",
        init_style="freebsd",
        config_dir="/usr/local/etc/consul.d",
        bin_dir="/usr/local/bin",
        package_provider="pkgng",
    ),
}

ARCHITECTURES: dict[str, str] = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "i386": "386",
    "i686": "386",
    "armv6l": "arm",
    "armv7l": "arm",
    "aarch64": "arm64",
    "arm64": "arm64",
}


def platform_defaults(os_family: str) -> PlatformDefaults:
    try:
        return PLATFORM_DEFAULTS[os_family.lower()]
    except KeyError:
        raise ValidationError(
            "os_family", f"one of {', '.join(sorted(PLATFORM_DEFAULTS))}", os_family
        ) from None


def normalize_arch(architecture: str) -> str:
    try:
        return ARCHITECTURES[architecture.lower()]
    except KeyError:
        raise ValidationError(
            "arch", f"one of {', '.join(sorted(ARCHITECTURES))}", architecture
        ) from None


class AgentSettings(BaseModel):
    """Validated scalar flags and raw configuration inputs."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    version: str = Field(default="0.7.4")
    arch: str | None = Field(default=None, description="Defaults to the host architecture.")
    os_family: str | None = Field(default=None, description="Defaults to the host OS family.")
    install_method: Literal["url", "package", "none"] = Field(default="url")
    download_url: str | None = Field(default=None)
    download_url_base: str = Field(default="https://releases.hashicorp.com/consul/")
    download_extension: str = Field(default="zip")
    package_name: str = Field(default="consul")
    package_ensure: str = Field(default="latest")
    ui_package_name: str = Field(default="consul_ui")
    ui_package_ensure: str = Field(default="latest")
    bin_dir: str | None = Field(default=None)
    config_dir: str | None = Field(default=None)
    binary_name: str = Field(default="consul")
    user: str = Field(default="consul")
    group: str = Field(default="consul")
    manage_user: bool = Field(default=True)
    manage_group: bool = Field(default=True)
    extra_groups: list[str] = Field(default_factory=list)
    purge_config_dir: bool = Field(default=True)
    manage_service: bool = Field(default=True)
    service_name: str = Field(default="consul")
    service_enable: bool = Field(default=True)
    service_ensure: Literal["running", "stopped"] = Field(default="running")
    restart_on_change: bool = Field(default=True)
    pretty_config: bool = Field(default=False)
    pretty_config_indent: int = Field(default=4, ge=0)
    init_style: str | None = Field(default=None)
    config_hash: dict[str, Any] = Field(default_factory=dict)
    config_defaults: dict[str, Any] = Field(default_factory=dict)
    services: dict[str, Any] = Field(default_factory=dict)
    checks: dict[str, Any] = Field(default_factory=dict)
    watches: dict[str, Any] = Field(default_factory=dict)
    acls: dict[str, Any] = Field(default_factory=dict)


def validate_settings(raw: Mapping[str, Any]) -> AgentSettings:
    """Run the explicit shape checks, then build the typed settings model."""
    validate_inputs(raw)
    try:
        return AgentSettings.model_validate(dict(raw))
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or "<settings>"
        raise ValidationError(field, first.get("type", "valid value"), first.get("input")) from exc


def _lookup(tree: ConfigTree, *path: str) -> Any:
    node: Any = tree
    for part in path:
        if not isinstance(node, Mapping) or part not in node:
            return None
        node = node[part]
    return node


def derive_effective_config(merged: ConfigTree, facts: HostFacts | None = None) -> EffectiveConfig:
    """
    Compute the derived fields of the merged configuration tree.

    ``data_dir`` and ``ui_dir`` are read verbatim. A UI directory without a
    data directory only yields a `PolicyWarning`. The RPC port falls back to
    8400 when unset or falsy, and the RPC bind address falls back from
    ``addresses.rpc`` to ``client_addr`` to the host loopback address.
    Host facts are detected when not given. Leaves JSON cannot carry, such as
    unquoted YAML dates, raise `ValidationError` naming their dotted path.
    """
    facts = facts or HostFacts.detect()
    validate_json_tree("", merged)
    data_dir = _lookup(merged, "data_dir")
    ui_dir = _lookup(merged, "ui_dir")

    warnings: list[PolicyWarning] = []
    if ui_dir is not None and data_dir is None:
        warning = PolicyWarning(UI_WITHOUT_DATA_DIR, field="ui_dir")
        logger.warning("%s (ui_dir=%s)", warning.message, ui_dir)
        warnings.append(warning)

    rpc_port = _lookup(merged, "ports", "rpc") or EffectiveConfig.DEFAULT_RPC_PORT
    validate_non_negative_int("ports.rpc", rpc_port)

    rpc_bind_address = _lookup(merged, "addresses", "rpc")
    if rpc_bind_address is None:
        rpc_bind_address = _lookup(merged, "client_addr")
    if rpc_bind_address is None:
        rpc_bind_address = facts.loopback_address
        logger.debug("No rpc or client address configured; using %s", rpc_bind_address)

    return EffectiveConfig(
        tree=deep_merge({}, merged),
        data_dir=None if data_dir is None else str(data_dir),
        ui_dir=None if ui_dir is None else str(ui_dir),
        rpc_port=rpc_port,
        rpc_bind_address=str(rpc_bind_address),
        warnings=tuple(warnings),
    )


def select_install_plan(
    settings: AgentSettings,
    facts: HostFacts,
    effective: EffectiveConfig,
) -> InstallPlan:
    """Pick the package/binary coordinates forwarded to the installer."""
    defaults = platform_defaults(settings.os_family or facts.os_family)
    arch = normalize_arch(settings.arch or facts.architecture)
    download_url: str | None = None
    ui_download_url: str | None = None
    package_name: str | None = None
    ui_package_name: str | None = None
    ui_package_ensure: str | None = None
    base = settings.download_url_base
    if settings.install_method == "url":
        download_url = settings.download_url or (
            f"{base}{settings.version}/consul_{settings.version}_{defaults.os}_{arch}"
            f".{settings.download_extension}"
        )
        if effective.ui_dir is not None and effective.data_dir is not None:
            ui_download_url = f"{base}{settings.version}/consul_{settings.version}_web_ui.zip"
    elif settings.install_method == "package":
        package_name = settings.package_name
        if effective.ui_dir is not None:
            ui_package_name = settings.ui_package_name
            ui_package_ensure = settings.ui_package_ensure
    return InstallPlan(
        version=settings.version,
        os=defaults.os,
        arch=arch,
        install_method=settings.install_method,
        download_url=download_url,
        ui_download_url=ui_download_url,
        package_name=package_name,
        package_ensure=settings.package_ensure,
        ui_package_name=ui_package_name,
        ui_package_ensure=ui_package_ensure,
        bin_dir=settings.bin_dir or defaults.bin_dir,
    )


class CompositionResult(BaseModel):
    """Everything one composition pass hands to the lifecycle orchestrator."""

    model_config = ConfigDict(frozen=True)

    settings: AgentSettings
    effective: EffectiveConfig
    resources: ResourceSet
    install_plan: InstallPlan
    service_state: ServiceState
    config_dir: str

    @property
    def warnings(self) -> tuple[PolicyWarning, ...]:
        return self.effective.warnings

    def render_request(self) -> RenderRequest:
        return RenderRequest(
            config=self.effective,
            config_dir=self.config_dir,
            purge_config_dir=self.settings.purge_config_dir,
            pretty_config=self.settings.pretty_config,
            pretty_config_indent=self.settings.pretty_config_indent,
            resources=self.resources,
        )

    def reload_request(self) -> ReloadRequest:
        return ReloadRequest(
            rpc_address=self.effective.rpc_bind_address,
            rpc_port=self.effective.rpc_port,
            binary=str(Path(self.install_plan.bin_dir) / self.settings.binary_name),
            services=self.resources.services,
            checks=self.resources.checks,
            watches=self.resources.watches,
            acls=self.resources.acls,
        )


def compose(raw: Mapping[str, Any], facts: HostFacts | None = None) -> CompositionResult:
    """
    Run one pure composition pass over raw settings.

    Validation errors abort before anything else runs; resource maps are
    expanded concurrently and fail the whole pass on the first invalid entry.
    """
    facts = facts or HostFacts.detect()
    settings = validate_settings(raw)
    merged = deep_merge(settings.config_defaults, settings.config_hash)
    effective = derive_effective_config(merged, facts)
    resources = expand_all(
        services=settings.services,
        checks=settings.checks,
        watches=settings.watches,
        acls=settings.acls,
    )
    defaults = platform_defaults(settings.os_family or facts.os_family)
    install_plan = select_install_plan(settings, facts, effective)
    service_state = ServiceState(
        name=settings.service_name,
        enabled=settings.service_enable,
        ensure=settings.service_ensure,
        init_style=settings.init_style or defaults.init_style,
    )
    result = CompositionResult(
        settings=settings,
        effective=effective,
        resources=resources,
        install_plan=install_plan,
        service_state=service_state,
        config_dir=settings.config_dir or defaults.config_dir,
    )
    logger.info(
        "Composed configuration %s with %d resource(s) and %d warning(s)",
        effective.fingerprint()[:12],
        len(resources),
        len(effective.warnings),
    )
    return result


class ConfigService:
    """
    Runtime facade for loading settings files and producing composition results.
    """

    def __init__(
        self,
        *,
        config_dir: str | Path | None = None,
        settings: Dynaconf | None = None,
        facts: HostFacts | None = None,
    ) -> None:
        self._config_dir = Path(config_dir) if config_dir else DEFAULT_CONFIG_DIR
        self._facts = facts or HostFacts.detect()
        if settings is None:
            settings_files = [self._config_dir / name for name in CONFIG_FILENAMES]
            existing_files = [str(path) for path in settings_files if path.exists()]
            if not existing_files:
                raise ConfigError(
                    f"No configuration files found in {self._config_dir}. "
                    "Expected at least agent.yaml."
                )
            settings = Dynaconf(
                envvar_prefix="AGENTCOMPOSE",
                settings_files=existing_files,
                load_dotenv=True,
                environments=False,
                merge_enabled=True,
            )
        self._settings = settings
        self._result = compose(self._raw(), self._facts)

    @property
    def result(self) -> CompositionResult:
        """Latest composition result."""
        return self._result

    @property
    def facts(self) -> HostFacts:
        return self._facts

    def refresh(self) -> CompositionResult:
        """Reload settings files and compose again."""
        self._settings.reload()
        self._result = compose(self._raw(), self._facts)
        return self._result

    def apply_changes(self, changes: Mapping[str, Any]) -> CompositionResult:
        """
        Merge ``changes`` into the loaded settings and compose again.

        Nothing is written back to disk.
        """
        merged = deep_merge(self._raw(), changes)
        self._result = compose(merged, self._facts)
        return self._result

    def _raw(self) -> dict[str, Any]:
        return {str(key).lower(): value for key, value in self._settings.as_dict().items()}


__all__ = [
    "ARCHITECTURES",
    "CONFIG_FILENAMES",
    "DEFAULT_CONFIG_DIR",
    "PLATFORM_DEFAULTS",
    "UI_WITHOUT_DATA_DIR",
    "AgentSettings",
    "CompositionResult",
    "ConfigError",
    "ConfigService",
    "HostFacts",
    "PlatformDefaults",
    "compose",
    "derive_effective_config",
    "normalize_arch",
    "platform_defaults",
    "select_install_plan",
    "validate_settings",
]
