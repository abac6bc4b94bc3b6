# -*- coding: utf-8 -*-
"""Location: ./abac_pdp/utils/paths.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Dotted-path lookup over attribute bags.

Attribute bags are recursive JSON values (string, number, bool, null, list,
mapping).  ``lookup_path`` walks them with an explicit dotted path instead of
ad hoc indexing so that a missing segment is always reported the same way.

Examples:
    >>> bag = {"org": {"id": "org-7", "tags": ["a", "b"]}, "env.flag": True}
    >>> lookup_path(bag, "org.id")
    'org-7'
    >>> lookup_path(bag, "org.tags.1")
    'b'
    >>> lookup_path(bag, "env.flag")
    True
    >>> lookup_path(bag, "org.missing") is MISSING
    True
    >>> is_empty(None), is_empty(""), is_empty([]), is_empty(0)
    (True, True, True, False)
"""

# Standard
from typing import Any, Mapping


class _Missing:
    """Sentinel type for an absent path (distinct from a stored ``None``)."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


def lookup_path(bag: Any, path: str, default: Any = MISSING) -> Any:
    """Resolve ``path`` inside ``bag``.

    A key that literally contains dots (``"env.isInheritedPolicy"``) wins over
    the nested interpretation.  Integer segments index into lists.

    Args:
        bag: Mapping (or list) to walk.
        path: Dot-separated lookup path.
        default: Returned when any segment is missing.

    Returns:
        Any: The value found, or ``default``.
    """
    if not path:
        return default
    if isinstance(bag, Mapping) and path in bag:
        return bag[path]

    current = bag
    for part in path.split("."):
        if isinstance(current, Mapping):
            if part not in current:
                return default
            current = current[part]
        elif isinstance(current, (list, tuple)) and part.isdigit():
            index = int(part)
            if index >= len(current):
                return default
            current = current[index]
        else:
            return default
    return current


def is_empty(value: Any) -> bool:
    """Return True for absent or empty values (the ``"null"`` sentinel semantics)."""
    if value is None or value is MISSING:
        return True
    if isinstance(value, (str, list, tuple, dict, set, frozenset)):
        return len(value) == 0
    return False
