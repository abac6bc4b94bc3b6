# -*- coding: utf-8 -*-
"""Location: ./abac_pdp/models.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Pydantic models for the policy decision point.

All record types the engine consumes (policies, organizations, evaluation
contexts) and produces (evaluation results) live here so the rest of the
package has a single import target.  Attribute bags are recursive JSON values
(``pydantic.JsonValue``) and are walked with ``abac_pdp.utils.paths.lookup_path``.

Policies arrive in their persisted JSON shape (camelCase keys).  The legacy
``conditions`` object written by older policy builders::

    {"timeWindow": {...}, "ipAddresses": [...], "locations": [...],
     "customConditions": {"resource.amount": {"less_than": 1000}}}

is normalised on load into ``environment`` constraints plus an explicit,
AND-combined list of ``Condition`` records.

Examples:
    >>> p = Policy.model_validate({
    ...     "id": "p1", "name": "read", "effect": "allow", "priority": 10,
    ...     "resources": {"types": ["Customer"]}, "actions": ["read"],
    ...     "conditions": {"customConditions": {"resource.amount": {"less_than": 5}}},
    ... })
    >>> p.scope.value, p.conditions[0].operator, p.conditions[0].value
    ('system', 'less_than', 5)
    >>> ctx = EvaluationContext.model_validate({
    ...     "subject": {"id": "u1", "roles": ["admin"]},
    ...     "resource": {"type": "Customer"},
    ...     "action": "read",
    ... })
    >>> ctx.subject.groups, ctx.environment.timestamp.tzinfo is not None
    ([], True)
"""

# Standard
from datetime import datetime, timezone
from enum import Enum
import re
from typing import Any, Dict, List, Mapping, Optional, Tuple

# Third-Party
from pydantic import Field, field_validator, JsonValue, model_validator

# First-Party
from abac_pdp.config import settings
from abac_pdp.utils.base_models import BaseModelWithConfigDict

WILDCARD = "*"
NULL_SENTINEL = "null"
CLOCK_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")

AttributeBag = Dict[str, JsonValue]


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Effect(str, Enum):
    """Policy effect and final decision."""

    ALLOW = "allow"
    DENY = "deny"


class PolicyScope(str, Enum):
    """Where a policy applies."""

    SYSTEM = "system"
    ORGANIZATION = "organization"


class Operator(str, Enum):
    """Comparison operators understood by the condition evaluator."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    CONTAINS_ANY = "contains_any"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    IN = "in"
    NOT_IN = "not_in"
    GREATER_THAN = "greater_than"
    GREATER_THAN_OR_EQUALS = "greater_than_or_equals"
    LESS_THAN = "less_than"
    LESS_THAN_OR_EQUALS = "less_than_or_equals"
    BETWEEN = "between"
    NOT_BETWEEN = "not_between"
    EXISTS = "exists"
    MATCHES = "matches"


class ValueType(str, Enum):
    """Declared type of a condition's expected value."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    TIME = "time"
    ARRAY = "array"
    OBJECT = "object"


# ---------------------------------------------------------------------------
# Policy records
# ---------------------------------------------------------------------------


class Condition(BaseModelWithConfigDict):
    """A single comparison: ``<attributePath> <operator> <value>``.

    ``operator`` is kept as a plain string so that a record with an unknown
    operator still loads; the evaluator reports it as a condition error.
    """

    attribute_path: str = Field(..., min_length=1)
    operator: str = Field(..., min_length=1)
    value: JsonValue = None
    value_type: Optional[ValueType] = None


class PolicySubjects(BaseModelWithConfigDict):
    """Who a policy applies to.  Empty lists do not constrain."""

    users: List[str] = Field(default_factory=list)
    roles: List[str] = Field(default_factory=list)
    groups: List[str] = Field(default_factory=list)
    attributes: AttributeBag = Field(default_factory=dict)


class PolicyResources(BaseModelWithConfigDict):
    """What a policy applies to.  ``types`` may contain ``"*"``."""

    types: List[str]
    ids: List[str] = Field(default_factory=list)
    attributes: AttributeBag = Field(default_factory=dict)


class FieldPermissionRule(BaseModelWithConfigDict):
    """Field-level grants for one resource type.  Lists may contain ``"*"``."""

    readable: List[str] = Field(default_factory=list)
    writable: List[str] = Field(default_factory=list)
    denied: List[str] = Field(default_factory=list)


class TimeWindow(BaseModelWithConfigDict):
    """Time-of-day / day-of-week constraint.  ``days_of_week`` uses 0=Sunday."""

    start: Optional[str] = None
    end: Optional[str] = None
    timezone: Optional[str] = None
    days_of_week: List[int] = Field(default_factory=list)

    @field_validator("start", "end")
    @classmethod
    def validate_clock(cls, v: Optional[str]) -> Optional[str]:
        """Require ``HH:MM`` or ``HH:MM:SS`` clock strings.

        Args:
            v: Clock string or None.

        Returns:
            Optional[str]: The validated value.

        Raises:
            ValueError: If the value is not a valid clock time.
        """
        if v is None:
            return v
        match = CLOCK_RE.match(v.strip())
        if not match or int(match.group(1)) > 23 or any(int(g) > 59 for g in match.groups()[1:] if g is not None):
            raise ValueError(f"expected HH:MM or HH:MM:SS, got {v!r}")
        return v

    @field_validator("days_of_week")
    @classmethod
    def validate_days(cls, v: List[int]) -> List[int]:
        """Days must be within 0..6.

        Args:
            v: Day numbers.

        Returns:
            List[int]: The validated days.

        Raises:
            ValueError: On an out-of-range day.
        """
        for day in v:
            if day < 0 or day > 6:
                raise ValueError(f"day of week out of range: {day}")
        return v


class EnvironmentConstraints(BaseModelWithConfigDict):
    """Request-environment constraints carried over from the original policy shape."""

    time_window: Optional[TimeWindow] = None
    ip_addresses: List[str] = Field(default_factory=list)
    locations: List[str] = Field(default_factory=list)

    def is_empty(self) -> bool:
        """True when no constraint is set."""
        return self.time_window is None and not self.ip_addresses and not self.locations


_LEGACY_ENVIRONMENT_KEYS: Tuple[Tuple[str, str], ...] = (
    ("timeWindow", "time_window"),
    ("ipAddresses", "ip_addresses"),
    ("locations", "locations"),
)


def _split_legacy_conditions(conditions: Mapping[str, Any]) -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
    """Split the legacy ``conditions`` object into condition records and environment constraints.

    Args:
        conditions: Legacy conditions object.

    Returns:
        Tuple of (condition dicts, environment dict).

    Examples:
        >>> conds, env = _split_legacy_conditions({
        ...     "locations": ["HQ"],
        ...     "customConditions": {"resource.amount": {"greater_than": 5, "less_than": 9}, "subject.tier": "gold"},
        ... })
        >>> [(c["attributePath"], c["operator"], c["value"]) for c in conds]
        [('resource.amount', 'greater_than', 5), ('resource.amount', 'less_than', 9), ('subject.tier', 'equals', 'gold')]
        >>> env
        {'locations': ['HQ']}
    """
    environment: Dict[str, Any] = {}
    for camel, snake in _LEGACY_ENVIRONMENT_KEYS:
        value = conditions.get(camel, conditions.get(snake))
        if value:
            environment[camel] = value

    records: List[Dict[str, Any]] = []
    custom = conditions.get("customConditions", conditions.get("custom_conditions")) or {}
    for path, rule in custom.items():
        if isinstance(rule, Mapping):
            for operator, value in rule.items():
                records.append({"attributePath": path, "operator": operator, "value": value})
        else:
            records.append({"attributePath": path, "operator": Operator.EQUALS.value, "value": rule})
    return records, environment


class Policy(BaseModelWithConfigDict):
    """A versioned ABAC policy record.

    Invariants enforced on load: ``priority >= 0``; ``organization_id`` is set
    iff ``scope == organization``; ``resources.types`` is non-empty (use
    ``["*"]`` for a global policy).
    """

    id: str = Field(..., min_length=1)
    name: str = ""
    description: Optional[str] = None
    scope: PolicyScope = PolicyScope.SYSTEM
    organization_id: Optional[str] = None
    effect: Effect
    priority: int = Field(default_factory=lambda: settings.default_priority, ge=0)
    is_active: bool = True
    subjects: PolicySubjects = Field(default_factory=PolicySubjects)
    resources: PolicyResources
    actions: List[str] = Field(default_factory=list)
    conditions: List[Condition] = Field(default_factory=list)
    environment: Optional[EnvironmentConstraints] = None
    field_permissions: Dict[str, FieldPermissionRule] = Field(default_factory=dict)
    policy_set_id: Optional[str] = None
    applies_to_descendants: Optional[bool] = None
    version: int = 1
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def normalize_record(cls, data: Any) -> Any:
        """Infer ``scope`` and unfold the legacy ``conditions`` object.

        Args:
            data: Raw record.

        Returns:
            Any: Normalised record.
        """
        if not isinstance(data, Mapping):
            return data
        data = dict(data)

        conditions = data.get("conditions")
        if isinstance(conditions, Mapping):
            data["conditions"], environment = _split_legacy_conditions(conditions)
            if environment and not data.get("environment"):
                data["environment"] = environment
        elif conditions is None and "conditions" in data:
            data["conditions"] = []

        if data.get("scope") is None:
            org_id = data.get("organizationId", data.get("organization_id"))
            data["scope"] = PolicyScope.ORGANIZATION.value if org_id else PolicyScope.SYSTEM.value
        return data

    @model_validator(mode="after")
    def check_invariants(self) -> "Policy":
        """Enforce scope/organization pairing and a non-empty resource type list.

        Returns:
            Policy: The validated policy.

        Raises:
            ValueError: When an invariant is violated.
        """
        if self.scope == PolicyScope.ORGANIZATION and not self.organization_id:
            raise ValueError("organizationId is required for organization-scoped policies")
        if self.scope == PolicyScope.SYSTEM and self.organization_id:
            raise ValueError("organizationId must be empty for system-scoped policies")
        if not self.resources.types:
            raise ValueError("resources.types must not be empty (use ['*'] for a global policy)")
        return self

    def field_rule_for(self, resource_type: str) -> Optional[FieldPermissionRule]:
        """Return the field rule declared for ``resource_type`` (or the ``"*"`` rule)."""
        return self.field_permissions.get(resource_type) or self.field_permissions.get(WILDCARD)


class Organization(BaseModelWithConfigDict):
    """A node of the organization tree."""

    id: str = Field(..., min_length=1)
    parent_id: Optional[str] = None
    type: str = "organization"
    name: Optional[str] = None


# ---------------------------------------------------------------------------
# Evaluation context  (what the caller hands the engine)
# ---------------------------------------------------------------------------


class SubjectContext(BaseModelWithConfigDict):
    """The entity requesting access."""

    id: str = Field(..., min_length=1)
    roles: List[str] = Field(default_factory=list)
    groups: List[str] = Field(default_factory=list)
    attributes: AttributeBag = Field(default_factory=dict)


class ResourceContext(BaseModelWithConfigDict):
    """The thing being accessed."""

    type: str = Field(..., min_length=1)
    id: Optional[str] = None
    attributes: AttributeBag = Field(default_factory=dict)


class EnvironmentContext(BaseModelWithConfigDict):
    """Ambient information about the request."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    ip_address: Optional[str] = None
    location: Optional[str] = None
    attributes: AttributeBag = Field(default_factory=dict)

    @field_validator("timestamp")
    @classmethod
    def ensure_aware(cls, v: datetime) -> datetime:
        """Treat naive timestamps as UTC.

        Args:
            v: Request timestamp.

        Returns:
            datetime: Timezone-aware timestamp.
        """
        return v if v.tzinfo is not None else v.replace(tzinfo=timezone.utc)


class EvaluationContext(BaseModelWithConfigDict):
    """Everything the engine needs to decide one request."""

    subject: SubjectContext
    resource: ResourceContext
    action: str = Field(..., min_length=1)
    environment: EnvironmentContext = Field(default_factory=EnvironmentContext)
    organization_id: Optional[str] = None
    department: AttributeBag = Field(default_factory=dict)
    organization: AttributeBag = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Evaluation result  (what the engine returns)
# ---------------------------------------------------------------------------


class EvaluationStep(BaseModelWithConfigDict):
    """Audit record for one considered policy."""

    policy_id: str
    policy_name: str = ""
    priority: Optional[int] = None
    effect: Optional[Effect] = None
    matched: bool
    reason: str
    errors: List[str] = Field(default_factory=list)


class EvaluationResult(BaseModelWithConfigDict):
    """Decision plus full audit trail."""

    allowed: bool
    final_effect: Effect
    reason: str = ""
    matched_policies: List[Policy] = Field(default_factory=list)
    evaluation_path: List[EvaluationStep] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    duration_ms: float = 0.0
    cached: bool = False

    @property
    def matched_policy_ids(self) -> List[str]:
        """Ids of the matched policies, in evaluation order."""
        return [p.id for p in self.matched_policies]
