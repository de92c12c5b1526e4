"""
Reference collaborators for the lifecycle stages.

Real installers and service supervisors live outside this package; these
implementations record intent or write the rendered configuration locally.
"""

from .dry_run import (
    ActionLog,
    DryRunInstaller,
    DryRunReloadWatcher,
    DryRunRenderer,
    DryRunServiceManager,
)
from .render import JsonFileRenderer

__all__ = [
    "ActionLog",
    "DryRunInstaller",
    "DryRunReloadWatcher",
    "DryRunRenderer",
    "DryRunServiceManager",
    "JsonFileRenderer",
]
