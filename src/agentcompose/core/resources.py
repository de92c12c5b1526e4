"""
Expansion of keyed resource maps into validated, typed declarations.

Each map entry becomes exactly one declaration whose identity is the map key.
Expansion is fail-fast: the first invalid entry aborts its kind, and a failure
in any kind aborts the whole resource set.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from .contracts import RESOURCE_MODELS, ResourceDeclaration, ResourceKind, ResourceSet
from .errors import ResourceValidationError

logger = logging.getLogger(__name__)

RawResource = Mapping[str, Any]

_IDENTITY_FIELD = "key"
_KIND_ORDER: tuple[tuple[str, ResourceKind], ...] = (
    ("services", ResourceKind.SERVICE),
    ("checks", ResourceKind.CHECK),
    ("watches", ResourceKind.WATCH),
    ("acls", ResourceKind.ACL),
)


def _describe(exc: PydanticValidationError) -> str:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "<entry>"
    return f"{location}: {first.get('msg', 'invalid value')}"


def build_resource(kind: ResourceKind, key: str, entry: Any) -> ResourceDeclaration:
    """Validate a single map entry against the schema for ``kind``."""
    kind = ResourceKind(kind)
    if not isinstance(entry, Mapping):
        raise ResourceValidationError(
            kind, key, f"expected a mapping, got {type(entry).__name__}"
        )
    if _IDENTITY_FIELD in entry:
        raise ResourceValidationError(
            kind, key, f"'{_IDENTITY_FIELD}' is reserved for the map key"
        )
    model = RESOURCE_MODELS[kind]
    try:
        return model.model_validate({**entry, _IDENTITY_FIELD: str(key)})
    except PydanticValidationError as exc:
        raise ResourceValidationError(kind, key, _describe(exc)) from exc


def expand(
    kind: ResourceKind | str, declarations: Mapping[str, RawResource] | None
) -> list[ResourceDeclaration]:
    """
    Instantiate one declaration per entry of ``declarations``.

    Raises `ResourceValidationError` for the first invalid entry; nothing is
    returned for the kind in that case.
    """
    kind = ResourceKind(kind)
    if not declarations:
        return []
    expanded = [build_resource(kind, str(key), entry) for key, entry in declarations.items()]
    logger.debug("Expanded %d %s declaration(s)", len(expanded), kind)
    return expanded


def expand_all(
    *,
    services: Mapping[str, RawResource] | None = None,
    checks: Mapping[str, RawResource] | None = None,
    watches: Mapping[str, RawResource] | None = None,
    acls: Mapping[str, RawResource] | None = None,
    max_workers: int = len(_KIND_ORDER),
) -> ResourceSet:
    """
    Expand the four resource maps concurrently.

    All kinds run to completion; if any failed, the error from the first
    failing kind in services/checks/watches/acls order is raised and no
    partial set is returned.
    """
    maps = {"services": services, "checks": checks, "watches": watches, "acls": acls}
    futures: dict[str, Future[list[ResourceDeclaration]]] = {}
    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="expand") as pool:
        for field, kind in _KIND_ORDER:
            futures[field] = pool.submit(expand, kind, maps[field])

    results: dict[str, tuple[Any, ...]] = {}
    for field, kind in _KIND_ORDER:
        exc = futures[field].exception()
        if exc is not None:
            logger.error("Resource expansion failed for %s: %s", kind, exc)
            raise exc
        results[field] = tuple(futures[field].result())
    resources = ResourceSet(**results)
    # File name clashes are composition errors, not render failures.
    resources.agent_files()
    return resources


__all__ = ["RawResource", "build_resource", "expand", "expand_all"]
