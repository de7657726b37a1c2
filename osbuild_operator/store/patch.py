"""JSON merge patch (RFC 7386) helpers used for store writes."""

import copy
from typing import Any

__all__ = ["create_merge_patch", "apply_merge_patch"]


def create_merge_patch(before: dict[str, Any], after: dict[str, Any]) -> dict[str, Any]:
    """Return the merge patch that transforms `before` into `after`.

    Keys removed in `after` are set to None. Lists are replaced wholesale.
    """
    patch: dict[str, Any] = {}
    for key in before.keys() - after.keys():
        patch[key] = None
    for key, value in after.items():
        if key not in before:
            patch[key] = copy.deepcopy(value)
            continue
        old = before[key]
        if isinstance(old, dict) and isinstance(value, dict):
            if sub := create_merge_patch(old, value):
                patch[key] = sub
        elif old != value:
            patch[key] = copy.deepcopy(value)
    return patch


def apply_merge_patch(target: Any, patch: Any) -> Any:
    """Apply a merge patch to a document and return the result."""
    if not isinstance(patch, dict):
        return copy.deepcopy(patch)
    result = copy.deepcopy(target) if isinstance(target, dict) else {}
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        else:
            result[key] = apply_merge_patch(result.get(key), value)
    return result
