"""
Shape checks for every scalar flag and mapping handed to the composer.

Each helper returns the value untouched so checks can be chained inline.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from enum import StrEnum
from typing import Any

from .errors import ValidationError


class Expectation(StrEnum):
    BOOLEAN = "boolean"
    STRING_LIST = "sequence of strings"
    MAPPING = "mapping"
    NON_NEGATIVE_INTEGER = "non-negative integer"
    JSON_VALUE = "JSON scalar, array or object"
    STRING_KEY = "string key"


def validate_bool(field: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValidationError(field, Expectation.BOOLEAN, value)
    return value


def validate_string_list(field: str, value: Any) -> Sequence[str]:
    # A bare string is a sequence of strings too; reject it explicitly.
    if isinstance(value, str | bytes) or not isinstance(value, Sequence):
        raise ValidationError(field, Expectation.STRING_LIST, value)
    for item in value:
        if not isinstance(item, str):
            raise ValidationError(field, Expectation.STRING_LIST, value)
    return value


def validate_mapping(field: str, value: Any) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ValidationError(field, Expectation.MAPPING, value)
    return value


def validate_non_negative_int(field: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(field, Expectation.NON_NEGATIVE_INTEGER, value)
    return value


_JSON_SCALARS = (str, int, float, bool, type(None))


def validate_json_tree(field: str, value: Any) -> Any:
    """Check that ``value`` only holds what the agent's JSON config can express.

    Mappings need string keys, lists and tuples are walked, and every leaf must
    be a JSON scalar. Errors name the dotted path of the offending entry.
    """
    _walk_json(field, value, frozenset())
    return value


def _walk_json(path: str, value: Any, seen: frozenset[int]) -> None:
    if isinstance(value, _JSON_SCALARS):
        return
    if not isinstance(value, Mapping | list | tuple):
        raise ValidationError(path, Expectation.JSON_VALUE, value)
    if id(value) in seen:
        raise ValidationError(path, Expectation.JSON_VALUE, "<cycle>")
    seen = seen | {id(value)}
    if isinstance(value, Mapping):
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValidationError(path, Expectation.STRING_KEY, key)
            _walk_json(f"{path}.{key}" if path else key, item, seen)
        return
    for index, item in enumerate(value):
        _walk_json(f"{path}[{index}]", item, seen)


_CHECKS = {
    Expectation.BOOLEAN: validate_bool,
    Expectation.STRING_LIST: validate_string_list,
    Expectation.MAPPING: validate_mapping,
    Expectation.NON_NEGATIVE_INTEGER: validate_non_negative_int,
}


def validate(field: str, expectation: Expectation, value: Any) -> Any:
    """Validate ``value`` for ``field`` against ``expectation``.

    Returns the value unchanged; raises `ValidationError` on mismatch.
    """
    return _CHECKS[expectation](field, value)


SETTINGS_EXPECTATIONS: dict[str, Expectation] = {
    "purge_config_dir": Expectation.BOOLEAN,
    "manage_user": Expectation.BOOLEAN,
    "manage_group": Expectation.BOOLEAN,
    "extra_groups": Expectation.STRING_LIST,
    "manage_service": Expectation.BOOLEAN,
    "restart_on_change": Expectation.BOOLEAN,
    "pretty_config": Expectation.BOOLEAN,
    "pretty_config_indent": Expectation.NON_NEGATIVE_INTEGER,
    "config_hash": Expectation.MAPPING,
    "config_defaults": Expectation.MAPPING,
    "services": Expectation.MAPPING,
    "watches": Expectation.MAPPING,
    "checks": Expectation.MAPPING,
    "acls": Expectation.MAPPING,
}


def validate_inputs(raw: Mapping[str, Any]) -> Mapping[str, Any]:
    """Apply `SETTINGS_EXPECTATIONS` to the fields present in ``raw``.

    Stops at the first failing field.
    """
    for field, expectation in SETTINGS_EXPECTATIONS.items():
        if field in raw:
            validate(field, expectation, raw[field])
    return raw


__all__ = [
    "SETTINGS_EXPECTATIONS",
    "Expectation",
    "validate",
    "validate_bool",
    "validate_inputs",
    "validate_json_tree",
    "validate_mapping",
    "validate_non_negative_int",
    "validate_string_list",
]
