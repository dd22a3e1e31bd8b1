"""
JSON-Patch (RFC 6902) primitives for the version engine.

Thin wrapper over python-json-patch that gives the engine:
- diff(a, b): ordered patch operations turning a into b
- apply(doc, patches): a new document with patches applied
- replay(base, patch_sets): sequential application of many patch sets

Invariants:
    - diff(a, a) == []
    - apply(a, diff(a, b)) == b for any JSON values a, b
    - apply() never mutates its inputs
    - Any failure to apply surfaces as PatchApplyError

How to change safely:
    - Patches are persisted in the event log; the operation shape
      {"op", "path", "value"?, "from"?} must stay RFC 6902 compatible
    - Never catch PatchApplyError inside this module's callers to
      "repair" a document; it signals a corrupt log
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Iterable
from typing import Any

import jsonpatch
from jsonpointer import JsonPointerException

from .errors import PatchApplyError

logger = logging.getLogger(__name__)

VALID_OPS = frozenset({"add", "remove", "replace", "move", "copy", "test"})


def diff(source: Any, target: Any) -> list[dict[str, Any]]:
    """Compute the patch operations that transform source into target.

    Args:
        source: Original JSON document
        target: Desired JSON document

    Returns:
        List of RFC 6902 operations (empty if documents are equal)
    """
    patch = jsonpatch.make_patch(source, target)
    # make_patch may share value objects with target
    return copy.deepcopy(list(patch.patch))


def validate_patches(patches: Any) -> list[str]:
    """Validate the shape of a patch list.

    Args:
        patches: Candidate patch list

    Returns:
        List of validation errors (empty if valid)
    """
    if not isinstance(patches, list):
        return ["patches must be a list"]

    errors = []
    for i, op in enumerate(patches):
        if not isinstance(op, dict):
            errors.append(f"Operation {i}: must be an object")
            continue
        if op.get("op") not in VALID_OPS:
            errors.append(f"Operation {i}: invalid op {op.get('op')!r}")
        if not isinstance(op.get("path"), str):
            errors.append(f"Operation {i}: missing 'path'")
        if op.get("op") in ("add", "replace", "test") and "value" not in op:
            errors.append(f"Operation {i}: missing 'value'")
        if op.get("op") in ("move", "copy") and not isinstance(op.get("from"), str):
            errors.append(f"Operation {i}: missing 'from'")
    return errors


def apply(
    document: Any,
    patches: list[dict[str, Any]],
    event_version: int | None = None,
) -> Any:
    """Apply patch operations to a document.

    Args:
        document: JSON document (not modified)
        patches: RFC 6902 operations
        event_version: Event the patches belong to, for error context

    Returns:
        New document with all operations applied

    Raises:
        PatchApplyError: If patches are malformed or do not apply
    """
    errors = validate_patches(patches)
    if errors:
        raise PatchApplyError("; ".join(errors), event_version=event_version)

    if not patches:
        return copy.deepcopy(document)

    try:
        return jsonpatch.JsonPatch(copy.deepcopy(patches)).apply(document, in_place=False)
    except (jsonpatch.JsonPatchException, JsonPointerException) as e:
        raise PatchApplyError(
            f"Failed to apply patch: {e}",
            event_version=event_version,
        ) from e
    except (KeyError, IndexError, TypeError) as e:
        raise PatchApplyError(
            f"Patch path does not resolve: {e}",
            event_version=event_version,
        ) from e


def replay(
    base: Any,
    patch_sets: Iterable[tuple[int, list[dict[str, Any]]]],
) -> Any:
    """Apply a sequence of versioned patch sets to a base document.

    Args:
        base: Starting document (not modified)
        patch_sets: (event_version, patches) pairs in ascending order

    Returns:
        Resulting document

    Raises:
        PatchApplyError: If any patch set fails to apply
    """
    state = copy.deepcopy(base)
    for event_version, patches in patch_sets:
        try:
            state = apply(state, patches, event_version=event_version)
        except PatchApplyError:
            logger.error(
                "Replay failed",
                extra={"event_version": event_version, "patch_count": len(patches)},
            )
            raise
    return state
