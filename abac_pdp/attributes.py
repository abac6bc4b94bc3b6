# -*- coding: utf-8 -*-
"""Location: ./abac_pdp/attributes.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Attribute resolver.

Turns policy values into concrete values for one evaluation context.  A value
is either a literal (returned unchanged) or a template string
``${scope.path}`` with ``scope`` one of ``subject``, ``resource``,
``environment``, ``department`` or ``organization``.

Sentinels are never treated as templates: ``"*"`` matches anything present
and ``"null"`` means "absent or empty".  An unresolvable template yields
``None``, which every downstream comparison treats as a non-match.  Nothing
raises past :meth:`AttributeResolver.resolve`.

Condition paths (``subject.organizationId``, ``env.time``...) go through
:meth:`AttributeResolver.resolve_path`, which also accepts ``env`` / ``user``
aliases and the top-level ``action`` and ``organizationId`` keys.

Examples:
    >>> from abac_pdp.models import EvaluationContext
    >>> ctx = EvaluationContext.model_validate({
    ...     "subject": {"id": "u1", "roles": ["agent"], "attributes": {"organizationId": "org-7"}},
    ...     "resource": {"type": "Customer", "attributes": {"status": "open"}},
    ...     "action": "read",
    ... })
    >>> r = AttributeResolver()
    >>> r.resolve("${subject.organizationId}", ctx)
    'org-7'
    >>> r.resolve("tenant-${subject.organizationId}", ctx)
    'tenant-org-7'
    >>> r.resolve("${subject.nothing}", ctx) is None
    True
    >>> r.resolve("*", ctx), r.resolve(42, ctx)
    ('*', 42)
    >>> r.resolve_path("subject.roles", ctx)
    ['agent']
"""

# Standard
import logging
import re
from typing import Any, Callable, Dict, Optional, Pattern

# First-Party
from abac_pdp.errors import AttributeResolutionError
from abac_pdp.hierarchy import HierarchySource
from abac_pdp.models import EvaluationContext, NULL_SENTINEL, WILDCARD
from abac_pdp.utils.paths import lookup_path, MISSING

logger = logging.getLogger(__name__)

TEMPLATE_SCOPES = ("subject", "resource", "environment", "department", "organization")

_TEMPLATE_RE: Pattern[str] = re.compile(r"\$\{([^}]+)\}")
_FULL_TEMPLATE_RE: Pattern[str] = re.compile(r"^\$\{([^}]+)\}$")

_SCOPE_ALIASES = {"env": "environment", "user": "subject"}

# Subject attributes derived from the organization hierarchy
_CHILD_ORGS = "childOrganizationIds"
_ANCESTOR_ORGS = "ancestorOrganizationIds"


def is_template(value: Any) -> bool:
    """True when ``value`` is a string containing a ``${...}`` template."""
    return isinstance(value, str) and value not in (WILDCARD, NULL_SENTINEL) and _TEMPLATE_RE.search(value) is not None


class AttributeResolver:
    """Resolve templates and attribute paths against an evaluation context.

    Parameters
    ----------
    hierarchy : HierarchySource, optional
        Used for the hierarchy-derived subject attributes
        (``childOrganizationIds``, ``ancestorOrganizationIds``).
    """

    def __init__(self, hierarchy: Optional[HierarchySource] = None):
        self._hierarchy = hierarchy
        self._scopes: Dict[str, Callable[[str, EvaluationContext], Any]] = {
            "subject": self._lookup_subject,
            "resource": self._lookup_resource,
            "environment": self._lookup_environment,
            "department": lambda path, ctx: lookup_path(ctx.department, path),
            "organization": self._lookup_organization,
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def resolve(self, value: Any, context: EvaluationContext) -> Any:
        """Resolve templates inside ``value``; literals come back unchanged.

        Lists and mappings are resolved element-wise.  A string made of a
        single template keeps the resolved value's type; templates embedded
        in a longer string are interpolated, and any unresolvable piece
        nulls the whole string.

        Args:
            value: Policy value.
            context: Evaluation context.

        Returns:
            Any: The resolved value, or ``None`` when a template cannot be resolved.
        """
        if isinstance(value, list):
            return [self.resolve(item, context) for item in value]
        if isinstance(value, dict):
            return {key: self.resolve(item, context) for key, item in value.items()}
        if not is_template(value):
            return value

        full = _FULL_TEMPLATE_RE.match(value)
        if full:
            return self._resolve_template(full.group(1).strip(), context)

        pieces = []
        position = 0
        for match in _TEMPLATE_RE.finditer(value):
            resolved = self._resolve_template(match.group(1).strip(), context)
            if resolved is None:
                return None
            pieces.append(value[position : match.start()])
            pieces.append(str(resolved))
            position = match.end()
        pieces.append(value[position:])
        return "".join(pieces)

    def resolve_path(self, path: str, context: EvaluationContext) -> Any:
        """Resolve a condition attribute path; ``None`` when unresolvable.

        Args:
            path: Dotted path such as ``subject.organizationId`` or ``env.time``.
            context: Evaluation context.

        Returns:
            Any: The attribute value or ``None``.
        """
        try:
            return self.lookup(path, context)
        except AttributeResolutionError as exc:
            logger.debug("Attribute resolution: %s", exc)
            return None

    def lookup(self, path: str, context: EvaluationContext, *, template: bool = False) -> Any:
        """Resolve ``path`` strictly.

        Args:
            path: Dotted attribute path.
            context: Evaluation context.
            template: Restrict to the template scopes.

        Returns:
            Any: The attribute value (``None`` when stored as null).

        Raises:
            AttributeResolutionError: When the path does not resolve.
        """
        head, _, rest = path.partition(".")
        scope = _SCOPE_ALIASES.get(head, head)

        if not template and not rest:
            if scope == "action":
                return context.action
            if scope == "organizationId":
                if context.organization_id is None:
                    raise AttributeResolutionError(path)
                return context.organization_id

        if template and head not in TEMPLATE_SCOPES:
            raise AttributeResolutionError(path, f"Unknown template scope '{head}' in '${{{path}}}'")

        handler = self._scopes.get(scope)
        if handler is None or not rest:
            raise AttributeResolutionError(path)

        value = handler(rest, context)
        if value is MISSING:
            raise AttributeResolutionError(path)
        return value

    # ------------------------------------------------------------------
    # Scope lookups
    # ------------------------------------------------------------------

    def _resolve_template(self, path: str, context: EvaluationContext) -> Any:
        try:
            return self.lookup(path, context, template=True)
        except AttributeResolutionError as exc:
            logger.debug("Template resolution: %s", exc)
            return None

    def _lookup_subject(self, path: str, context: EvaluationContext) -> Any:
        subject = context.subject
        if path in ("id", "roles", "groups"):
            return getattr(subject, path)
        if path.startswith("attributes."):
            return lookup_path(subject.attributes, path[len("attributes.") :])

        value = lookup_path(subject.attributes, path)
        if value is MISSING and path in (_CHILD_ORGS, _ANCESTOR_ORGS):
            return self._hierarchy_attribute(path, context)
        return value

    def _lookup_resource(self, path: str, context: EvaluationContext) -> Any:
        resource = context.resource
        if path == "type":
            return resource.type
        if path == "id":
            return resource.id if resource.id is not None else MISSING
        if path.startswith("attributes."):
            return lookup_path(resource.attributes, path[len("attributes.") :])
        return lookup_path(resource.attributes, path)

    def _lookup_environment(self, path: str, context: EvaluationContext) -> Any:
        env = context.environment
        value = lookup_path(env.attributes, path)
        if value is not MISSING:
            return value
        if path == "timestamp":
            return env.timestamp.isoformat()
        if path == "time":
            return env.timestamp.strftime("%H:%M")
        if path == "date":
            return env.timestamp.date().isoformat()
        if path == "dayOfWeek":
            # 0 = Sunday
            return (env.timestamp.weekday() + 1) % 7
        if path == "ipAddress":
            return env.ip_address if env.ip_address is not None else MISSING
        if path == "location":
            return env.location if env.location is not None else MISSING
        if path.startswith("attributes."):
            return lookup_path(env.attributes, path[len("attributes.") :])
        return MISSING

    def _lookup_organization(self, path: str, context: EvaluationContext) -> Any:
        value = lookup_path(context.organization, path)
        if value is MISSING and path == "id" and context.organization_id is not None:
            return context.organization_id
        return value

    def _hierarchy_attribute(self, path: str, context: EvaluationContext) -> Any:
        if self._hierarchy is None:
            return MISSING
        org_id = lookup_path(context.subject.attributes, "organizationId")
        if not isinstance(org_id, str):
            org_id = context.organization_id
        if not org_id:
            return MISSING
        if path == _CHILD_ORGS:
            return sorted(self._hierarchy.descendants_of(org_id))
        return self._hierarchy.ancestors_of(org_id)
