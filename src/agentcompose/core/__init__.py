"""
Core of the composer: validation, merge, derivation, resource expansion and
the lifecycle state machine.
"""

from .bus import EventBus, Subscription
from .config import (
    AgentSettings,
    CompositionResult,
    ConfigError,
    ConfigService,
    HostFacts,
    compose,
    derive_effective_config,
)
from .contracts import (
    EffectiveConfig,
    LifecycleStage,
    ResourceDeclaration,
    ResourceKind,
    ResourceSet,
    StageCompleted,
)
from .errors import (
    ComposerError,
    PolicyWarning,
    ResourceValidationError,
    StageError,
    ValidationError,
)
from .merge import deep_merge, merge_layers
from .orchestrator import LifecycleMachine, LifecycleOrchestrator, LifecycleReport
from .resources import expand, expand_all

__all__ = [
    "AgentSettings",
    "ComposerError",
    "CompositionResult",
    "ConfigError",
    "ConfigService",
    "EffectiveConfig",
    "EventBus",
    "HostFacts",
    "LifecycleMachine",
    "LifecycleOrchestrator",
    "LifecycleReport",
    "LifecycleStage",
    "PolicyWarning",
    "ResourceDeclaration",
    "ResourceKind",
    "ResourceSet",
    "ResourceValidationError",
    "StageCompleted",
    "StageError",
    "Subscription",
    "ValidationError",
    "compose",
    "deep_merge",
    "derive_effective_config",
    "expand",
    "expand_all",
    "merge_layers",
]
