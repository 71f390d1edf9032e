"""Structural comparison of node properties.

The reconciler only mutates a runtime instance when a node's properties
actually changed. Handlers and callbacks are compared by identity in the
host language, so they are excluded here: a component that rebuilds a tool
with a fresh closure on every render must not cause the tool to be
re-registered.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field, fields, is_dataclass
from typing import Any

RESERVED_PROPS = frozenset(
    {
        "children",
        "key",
        "ref",
        "on_message",
        "on_complete",
        "on_error",
        "on_step_finish",
    }
)


def _is_function(value: Any) -> bool:
    return callable(value) and not isinstance(value, type)


@dataclass
class PropsDiff:
    """Outcome of comparing two property mappings."""

    has_changes: bool = False
    changed: dict[str, Any] = field(default_factory=dict)


def deep_equal(a: Any, b: Any) -> bool:
    """Compare two values by structure rather than identity.

    Callables compare equal to each other. Dataclasses compare field-wise
    (skipping fields declared with ``compare=False``), mappings key-wise and
    sequences element-wise, so a length change is a difference.

    Args:
        a: First value
        b: Second value

    Returns:
        True if both values have the same structure and content
    """
    if a is b:
        return True
    if _is_function(a) and _is_function(b):
        return True

    if is_dataclass(a) and not isinstance(a, type):
        if type(a) is not type(b):
            return False
        return all(
            deep_equal(getattr(a, f.name), getattr(b, f.name))
            for f in fields(a)
            if f.compare
        )

    if isinstance(a, Mapping):
        if not isinstance(b, Mapping) or a.keys() != b.keys():
            return False
        return all(deep_equal(a[key], b[key]) for key in a)

    if isinstance(a, (list, tuple)):
        if not isinstance(b, (list, tuple)) or type(a) is not type(b) or len(a) != len(b):
            return False
        return all(deep_equal(x, y) for x, y in zip(a, b))

    if isinstance(a, (set, frozenset)):
        return isinstance(b, (set, frozenset)) and a == b

    if type(a) is not type(b) and not (
        isinstance(a, (int, float)) and isinstance(b, (int, float))
    ):
        return False

    try:
        return bool(a == b)
    except Exception:
        return False


def diff_props(old: Mapping[str, Any], new: Mapping[str, Any]) -> PropsDiff:
    """Compute which non-reserved, non-callable properties changed.

    Args:
        old: Properties from the previous render
        new: Properties from the current render

    Returns:
        PropsDiff with the new value of every changed key. Keys that were
        removed are recorded with a value of None.
    """
    result = PropsDiff()

    for key, value in new.items():
        if key in RESERVED_PROPS or _is_function(value):
            continue
        if key not in old or not deep_equal(old[key], value):
            result.changed[key] = value
            result.has_changes = True

    for key, value in old.items():
        if key in RESERVED_PROPS or _is_function(value):
            continue
        if key not in new:
            result.changed[key] = None
            result.has_changes = True

    return result
