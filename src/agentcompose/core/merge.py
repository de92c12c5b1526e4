"""
Deep merge of nested configuration trees.

Overrides win key by key. Nested mappings merge recursively while every other
value, sequences included, is replaced wholesale. Inputs are never mutated and
the result shares no containers with them.
"""

from __future__ import annotations

from collections.abc import Mapping
from copy import deepcopy
from typing import Any

from .errors import ValidationError

ConfigTree = Mapping[str, Any]


def deep_merge(defaults: ConfigTree, overrides: ConfigTree) -> dict[str, Any]:
    """Recursively merge ``overrides`` on top of ``defaults``."""
    return _merge(defaults, overrides, path=(), base_seen=frozenset(), update_seen=frozenset())


def merge_layers(*layers: ConfigTree | None) -> dict[str, Any]:
    """Fold layers from lowest to highest precedence, skipping ``None``."""
    result: dict[str, Any] = {}
    for layer in layers:
        if layer is None:
            continue
        result = deep_merge(result, layer)
    return result


def _enter(tree: ConfigTree, path: tuple[str, ...], seen: frozenset[int]) -> frozenset[int]:
    # A mapping is cyclic only if it reappears among its own tree's ancestors.
    if id(tree) in seen:
        raise ValidationError(_dotted(path), "acyclic mapping", "<cycle>")
    return seen | {id(tree)}


def _merge(
    base: ConfigTree,
    updates: ConfigTree,
    *,
    path: tuple[str, ...],
    base_seen: frozenset[int],
    update_seen: frozenset[int],
) -> dict[str, Any]:
    base_seen = _enter(base, path, base_seen)
    update_seen = _enter(updates, path, update_seen)

    result: dict[str, Any] = {}
    for key, value in base.items():
        child = path + (str(key),)
        if key not in updates:
            result[key] = _copy(value, child, base_seen)
            continue
        override = updates[key]
        if isinstance(value, Mapping) and isinstance(override, Mapping):
            result[key] = _merge(
                value, override, path=child, base_seen=base_seen, update_seen=update_seen
            )
        else:
            result[key] = _copy(override, child, update_seen)
    for key, value in updates.items():
        if key not in result:
            result[key] = _copy(value, path + (str(key),), update_seen)
    return result


def _copy(value: Any, path: tuple[str, ...], seen: frozenset[int]) -> Any:
    if isinstance(value, Mapping):
        seen = _enter(value, path, seen)
        return {key: _copy(item, path + (str(key),), seen) for key, item in value.items()}
    return deepcopy(value)


def _dotted(path: tuple[str, ...]) -> str:
    return ".".join(path) if path else "<root>"


__all__ = ["ConfigTree", "deep_merge", "merge_layers"]
