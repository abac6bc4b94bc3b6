# -*- coding: utf-8 -*-
"""Location: ./abac_pdp/matcher.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Policy matcher.

Cheap structural match of one policy against one context, cheapest check
first, stopping at the first failure:

1. the policy is active
2. scope: system always passes; organization requires the context
   organization to be the policy's organization or (when the policy
   cascades) one of its descendants
3. action (``"*"`` matches any)
4. resource type (``"*"`` matches any), then resource ids
5. subject: users, roles, groups (intersection), attributes
6. resource attributes (policy values go through the attribute resolver)

Attribute comparison
--------------------
``expected`` is the resolved policy value, ``actual`` the context value:

* ``None`` expected (unresolvable template) never matches
* ``"*"`` matches any present value
* ``"null"`` matches an absent or empty value
* ``"/regex/"`` matches by regular-expression search
* list expected: the actual value (or any element of an actual list) is in it
* mapping expected: every key matches recursively
* scalar expected with a list actual: the expected value is an element
* otherwise strict equality

Examples:
    >>> from abac_pdp.attributes import AttributeResolver
    >>> attribute_matches(["gold", "silver"], "gold"), attribute_matches("*", None), attribute_matches("null", "")
    (True, False, True)
    >>> attribute_matches("/^INV-\\\\d+$/", "INV-42"), attribute_matches("eu", ["us", "eu"])
    (True, True)
"""

# Standard
import logging
import re
from typing import Any, List, Mapping, NamedTuple, Optional

# First-Party
from abac_pdp.attributes import AttributeResolver
from abac_pdp.hierarchy import HierarchySource
from abac_pdp.models import EvaluationContext, NULL_SENTINEL, Policy, PolicyScope, WILDCARD
from abac_pdp.utils.paths import is_empty, lookup_path, MISSING

logger = logging.getLogger(__name__)


class MatchOutcome(NamedTuple):
    """Structural match result with the first failing check named."""

    matched: bool
    reason: str


def _is_regex_literal(value: Any) -> bool:
    return isinstance(value, str) and len(value) > 2 and value.startswith("/") and value.endswith("/")


def attribute_matches(expected: Any, actual: Any) -> bool:
    """Compare a resolved policy attribute value with a context value.

    Args:
        expected: Resolved policy value.
        actual: Context value (``None`` when absent).

    Returns:
        bool: Whether the value satisfies the policy.
    """
    if actual is MISSING:
        actual = None
    if expected is None:
        return False
    if expected == WILDCARD:
        return actual is not None
    if expected == NULL_SENTINEL:
        return is_empty(actual)
    if actual is None:
        return False

    if _is_regex_literal(expected):
        try:
            return re.search(expected[1:-1], str(actual)) is not None
        except re.error:
            logger.warning("Matcher: invalid regex attribute value %r", expected)
            return False

    if isinstance(expected, list):
        if isinstance(actual, list):
            return any(item in expected for item in actual)
        return actual in expected

    if isinstance(expected, Mapping):
        if not isinstance(actual, Mapping):
            return False
        return all(attribute_matches(value, actual.get(key)) for key, value in expected.items())

    if isinstance(actual, list):
        return expected in actual
    return expected == actual


def _intersects(required: List[str], held: List[str]) -> bool:
    return WILDCARD in required or bool(set(required) & set(held))


class PolicyMatcher:
    """Structural matcher for one evaluation.

    Parameters
    ----------
    resolver : AttributeResolver
        Resolves template values in policy attributes.
    hierarchy : HierarchySource, optional
        Needed for organization-scope descendant checks; without it only an
        exact organization match passes.
    cascade_to_descendants : bool
        Default cascade for organization policies that leave
        ``appliesToDescendants`` unset.
    """

    def __init__(self, resolver: AttributeResolver, hierarchy: Optional[HierarchySource] = None, cascade_to_descendants: bool = True):
        self._resolver = resolver
        self._hierarchy = hierarchy
        self._cascade = cascade_to_descendants

    def matches(self, policy: Policy, context: EvaluationContext) -> bool:
        """True when the policy structurally applies to the context."""
        return self.check(policy, context).matched

    def check(self, policy: Policy, context: EvaluationContext) -> MatchOutcome:
        """Run the structural checks, naming the first one that fails.

        Args:
            policy: Validated policy.
            context: Evaluation context.

        Returns:
            MatchOutcome: match flag and reason.
        """
        if not policy.is_active:
            return MatchOutcome(False, "policy is inactive")

        if not self.in_scope(policy, context.organization_id):
            return MatchOutcome(False, f"organization {context.organization_id!r} is outside policy scope {policy.organization_id!r}")

        if context.action not in policy.actions and WILDCARD not in policy.actions:
            return MatchOutcome(False, f"action {context.action!r} not covered")

        resources = policy.resources
        if context.resource.type not in resources.types and WILDCARD not in resources.types:
            return MatchOutcome(False, f"resource type {context.resource.type!r} not covered")
        if resources.ids and context.resource.id is not None and context.resource.id not in resources.ids and WILDCARD not in resources.ids:
            return MatchOutcome(False, f"resource id {context.resource.id!r} not covered")

        subjects = policy.subjects
        subject = context.subject
        if subjects.users and subject.id not in subjects.users and WILDCARD not in subjects.users:
            return MatchOutcome(False, f"subject {subject.id!r} not listed")
        if subjects.roles and not _intersects(subjects.roles, subject.roles):
            return MatchOutcome(False, "subject holds none of the required roles")
        if subjects.groups and not _intersects(subjects.groups, subject.groups):
            return MatchOutcome(False, "subject is in none of the required groups")

        failed = self._first_attribute_mismatch(subjects.attributes, subject.attributes, context)
        if failed is not None:
            return MatchOutcome(False, f"subject attribute {failed!r} does not match")

        failed = self._first_attribute_mismatch(resources.attributes, context.resource.attributes, context)
        if failed is not None:
            return MatchOutcome(False, f"resource attribute {failed!r} does not match")

        return MatchOutcome(True, "structural match")

    def in_scope(self, policy: Policy, organization_id: Optional[str]) -> bool:
        """Organization-scope check.

        Args:
            policy: Validated policy.
            organization_id: The context organization.

        Returns:
            bool: True for system policies, or when the organization is covered.
        """
        if policy.scope == PolicyScope.SYSTEM:
            return True
        if not organization_id or not policy.organization_id:
            return False
        if organization_id == policy.organization_id:
            return True
        cascade = self._cascade if policy.applies_to_descendants is None else policy.applies_to_descendants
        if not cascade or self._hierarchy is None:
            return False
        return organization_id in self._hierarchy.descendants_of(policy.organization_id)

    def _first_attribute_mismatch(self, required: Mapping[str, Any], held: Mapping[str, Any], context: EvaluationContext) -> Optional[str]:
        for key, raw in required.items():
            expected = self._resolver.resolve(raw, context)
            actual = lookup_path(held, key)
            if not attribute_matches(expected, actual):
                return key
        return None
