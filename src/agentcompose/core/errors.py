"""
Error taxonomy shared by the composition pass and the lifecycle driver.

Fatal errors derive from `ComposerError` and always reach the caller with
their kind intact. `PolicyWarning` is advisory only and never raised by the
composer itself.
"""

from __future__ import annotations

from typing import Any


class ComposerError(Exception):
    """Base class for every fatal composition or lifecycle failure."""

    component: str = "composer"


class ValidationError(ComposerError):
    """An input value does not have the expected type or shape."""

    component = "validator"

    def __init__(self, field: str, expected_type: str, actual_value: Any) -> None:
        self.field = field
        self.expected_type = expected_type
        self.actual_value = actual_value
        super().__init__(
            f"{field}: expected {expected_type}, got {type(actual_value).__name__} "
            f"({actual_value!r})"
        )


class ResourceValidationError(ComposerError):
    """A keyed resource declaration failed its schema."""

    component = "resource_expander"

    def __init__(self, kind: str, key: str, cause: Exception | str) -> None:
        self.kind = kind
        self.key = key
        self.cause = cause
        super().__init__(f"Invalid {kind} '{key}': {cause}")


class StageError(ComposerError):
    """A lifecycle collaborator failed; the pass stops at this stage."""

    component = "lifecycle"

    def __init__(self, stage: str, cause: Exception) -> None:
        self.stage = stage
        self.cause = cause
        super().__init__(f"Lifecycle stage '{stage}' failed: {cause}")


class LifecycleStateError(RuntimeError):
    """Raised when the lifecycle machine is asked for an illegal transition."""

    def __init__(self, from_stage: str | None, to_stage: str | None) -> None:
        self.from_stage = from_stage
        self.to_stage = to_stage
        super().__init__(f"Invalid lifecycle transition: {from_stage} -> {to_stage}")


class PolicyWarning(UserWarning):
    """Non-fatal advisory produced while deriving the effective configuration."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        self.message = message
        self.field = field
        super().__init__(message)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PolicyWarning):
            return NotImplemented
        return (self.message, self.field) == (other.message, other.field)

    def __hash__(self) -> int:
        return hash((self.message, self.field))


__all__ = [
    "ComposerError",
    "LifecycleStateError",
    "PolicyWarning",
    "ResourceValidationError",
    "StageError",
    "ValidationError",
]
