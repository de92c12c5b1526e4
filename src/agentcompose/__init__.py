"""
agentcompose - declarative configuration composer for a clustered service agent.

Merges default and override configuration trees, derives dependent settings,
expands service/check/watch/ACL declarations and drives the
install -> configure -> run -> reload lifecycle.
"""

__version__ = "0.1.0"

from agentcompose.core import (
    CompositionResult,
    ConfigService,
    EffectiveConfig,
    LifecycleOrchestrator,
    compose,
    deep_merge,
)

__all__ = [
    "CompositionResult",
    "ConfigService",
    "EffectiveConfig",
    "LifecycleOrchestrator",
    "compose",
    "deep_merge",
]
