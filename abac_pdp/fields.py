# -*- coding: utf-8 -*-
"""Location: ./abac_pdp/fields.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Field permission filter.

Runs after an allow decision.  The applicable policies are the matched
policies (whatever their effect) that declare ``fieldPermissions`` for the
resource type.  Their grants are unioned; ``"*"`` means every field.  A field
in any ``denied`` list is removed from both grants, whatever else grants it.

* Read path (:func:`filter_fields`) is a projection: keys outside
  ``readable - denied`` are dropped silently.
* Write path (:func:`validate_fields`) is an allow-list gate: any key outside
  ``writable - denied`` rejects the whole write with
  :class:`~abac_pdp.errors.FieldPermissionViolation`.

No applicable policy means no field is readable or writable.

Examples:
    >>> from abac_pdp.models import Policy
    >>> p = Policy.model_validate({
    ...     "id": "p", "effect": "allow", "resources": {"types": ["Customer"]}, "actions": ["read"],
    ...     "fieldPermissions": {"Customer": {"readable": ["id", "email"], "writable": ["email"], "denied": ["ssn"]}},
    ... })
    >>> filter_fields("Customer", {"id": 1, "email": "a@b", "ssn": "x", "name": "n"}, [p])
    {'id': 1, 'email': 'a@b'}
    >>> validate_fields("Customer", ["email", "ssn"], [p])
    Traceback (most recent call last):
    ...
    abac_pdp.errors.FieldPermissionViolation: Field 'ssn' is not writable on Customer
"""

# Standard
from dataclasses import dataclass, field
import logging
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Sequence

# First-Party
from abac_pdp.errors import FieldPermissionViolation
from abac_pdp.models import EvaluationResult, Policy, WILDCARD

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldPermissions:
    """Effective field grants for one resource type.

    Attributes
    ----------
    read_all, write_all : bool
        A ``"*"`` grant was present (and not cancelled by a ``"*"`` deny).
    readable, writable : frozenset
        Explicit grants.
    denied : frozenset
        Explicit denies, always subtracted.
    deny_all : bool
        A ``"*"`` deny was present.
    """

    read_all: bool = False
    write_all: bool = False
    readable: FrozenSet[str] = field(default_factory=frozenset)
    writable: FrozenSet[str] = field(default_factory=frozenset)
    denied: FrozenSet[str] = field(default_factory=frozenset)
    deny_all: bool = False

    def can_read(self, name: str) -> bool:
        """True when ``name`` is in ``readable - denied``."""
        if self.deny_all or name in self.denied:
            return False
        return self.read_all or name in self.readable

    def can_write(self, name: str) -> bool:
        """True when ``name`` is in ``writable - denied``."""
        if self.deny_all or name in self.denied:
            return False
        return self.write_all or name in self.writable


def applicable_policies(resource_type: str, policies: Iterable[Policy]) -> List[Policy]:
    """Policies declaring a field rule for ``resource_type`` (or for ``"*"``)."""
    return [p for p in policies if p.field_rule_for(resource_type) is not None]


def policies_for_result(result: EvaluationResult, resource_type: str) -> List[Policy]:
    """Applicable policies for a decision; empty unless the decision allowed.

    Args:
        result: Engine decision.
        resource_type: Resource type being read or written.

    Returns:
        List[Policy]: Matched policies with a field rule for the type.
    """
    if not result.allowed:
        return []
    return applicable_policies(resource_type, result.matched_policies)


def effective_permissions(resource_type: str, policies: Iterable[Policy]) -> FieldPermissions:
    """Union the field rules of the applicable policies.

    Args:
        resource_type: Resource type.
        policies: Candidate policies; those without a rule for the type are ignored.

    Returns:
        FieldPermissions: Effective grants with denies applied.
    """
    readable: set = set()
    writable: set = set()
    denied: set = set()
    for policy in policies:
        rule = policy.field_rule_for(resource_type)
        if rule is None:
            continue
        readable.update(rule.readable)
        writable.update(rule.writable)
        denied.update(rule.denied)

    deny_all = WILDCARD in denied
    return FieldPermissions(
        read_all=WILDCARD in readable and not deny_all,
        write_all=WILDCARD in writable and not deny_all,
        readable=frozenset(readable - {WILDCARD} - denied),
        writable=frozenset(writable - {WILDCARD} - denied),
        denied=frozenset(denied - {WILDCARD}),
        deny_all=deny_all,
    )


def filter_fields(resource_type: str, payload: Mapping[str, Any], policies: Iterable[Policy]) -> Dict[str, Any]:
    """Project ``payload`` onto the readable fields.

    Args:
        resource_type: Resource type.
        payload: Resource payload.
        policies: Applicable policies.

    Returns:
        Dict[str, Any]: New dict with only readable keys, in payload order.
    """
    permissions = effective_permissions(resource_type, policies)
    projected = {key: value for key, value in payload.items() if permissions.can_read(key)}
    dropped = len(payload) - len(projected)
    if dropped:
        logger.debug("Fields: dropped %d unreadable field(s) from %s", dropped, resource_type)
    return projected


def filter_many(resource_type: str, payloads: Iterable[Mapping[str, Any]], policies: Iterable[Policy]) -> List[Dict[str, Any]]:
    """:func:`filter_fields` over a list of payloads."""
    permissions = effective_permissions(resource_type, policies)
    return [{key: value for key, value in payload.items() if permissions.can_read(key)} for payload in payloads]


def validate_fields(resource_type: str, payload_keys: Iterable[str], policies: Iterable[Policy]) -> None:
    """Reject a write that touches any non-writable field.

    Args:
        resource_type: Resource type.
        payload_keys: Keys present in the write payload.
        policies: Applicable policies.

    Raises:
        FieldPermissionViolation: Naming the first offending key; ``fields`` lists all of them.
    """
    permissions = effective_permissions(resource_type, policies)
    offending = [key for key in payload_keys if not permissions.can_write(key)]
    if offending:
        logger.info("Fields: write rejected on %s, non-writable: %s", resource_type, offending)
        raise FieldPermissionViolation(offending[0], fields=offending, resource_type=resource_type)


def can_read_fields(resource_type: str, fields: Sequence[str], policies: Iterable[Policy]) -> Dict[str, bool]:
    """Per-field readability map.

    Examples:
        >>> can_read_fields("Any", ["a"], [])
        {'a': False}
    """
    permissions = effective_permissions(resource_type, policies)
    return {name: permissions.can_read(name) for name in fields}
