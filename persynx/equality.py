"""
Persynx Equality - Structural Diff Engine
=========================================

Deep structural comparison over the value shapes persynx stores: primitives,
ordered sequences, string-keyed mappings and sets. Every write and every
storage-driven observable update goes through `is_different` so redundant
propagation stops here.

The module also owns `deep_copy`, the one copy helper used wherever persynx
hands out or snapshots container values.
"""

from typing import Any, List, Mapping, Tuple

_SEQUENCE_TYPES = (list, tuple)
_SET_TYPES = (set, frozenset)


def is_different(a: Any, b: Any) -> bool:
    """
    Return True when ``a`` and ``b`` differ structurally.

    Identical objects are never different, ``None`` only equals ``None``,
    sequences compare element-wise, mappings compare key sets then values,
    sets compare by membership, a bool never equals a number and everything
    else falls back to ``!=``.
    The walk is iterative so deeply nested payloads can't exhaust the stack.
    """
    # Work stack of pairs still to compare
    pending: List[Tuple[Any, Any]] = [(a, b)]

    while pending:
        left, right = pending.pop()

        if left is right:
            continue
        if left is None or right is None:
            return True

        if isinstance(left, _SEQUENCE_TYPES) and isinstance(right, _SEQUENCE_TYPES):
            if len(left) != len(right):
                return True
            pending.extend(zip(left, right))
            continue

        if isinstance(left, Mapping) and isinstance(right, Mapping):
            if len(left) != len(right) or set(left.keys()) != set(right.keys()):
                return True
            pending.extend((left[k], right[k]) for k in left)
            continue

        if isinstance(left, _SET_TYPES) and isinstance(right, _SET_TYPES):
            if left != right:
                return True
            continue

        # Mixed container/scalar shapes are always different
        if _is_container(left) or _is_container(right):
            return True

        # Booleans never equal numbers, even though True == 1 in Python
        if isinstance(left, bool) != isinstance(right, bool):
            return True

        try:
            if left != right:
                return True
        except Exception:
            # Objects whose comparison raises are treated as different
            return True

    return False


def is_same(a: Any, b: Any) -> bool:
    """Negation of `is_different`."""
    return not is_different(a, b)


def deep_copy(value: Any) -> Any:
    """
    Copy nested lists, tuples, dicts and sets; leave leaves shared.

    Leaves are the JSON-ish primitives and user objects, which persynx never
    mutates, so a structural copy is enough to protect cached payloads.
    """
    if isinstance(value, dict):
        return {k: deep_copy(v) for k, v in value.items()}
    if isinstance(value, list):
        return [deep_copy(item) for item in value]
    if isinstance(value, tuple):
        return tuple(deep_copy(item) for item in value)
    if isinstance(value, set):
        return {deep_copy(item) for item in value}
    return value


def _is_container(value: Any) -> bool:
    return isinstance(value, (_SEQUENCE_TYPES, _SET_TYPES, Mapping))


__all__ = ["is_different", "is_same", "deep_copy"]
