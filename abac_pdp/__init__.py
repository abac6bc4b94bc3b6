# -*- coding: utf-8 -*-
"""Location: ./abac_pdp/__init__.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

ABAC Policy Decision Point: public API.

Typical usage::

    from abac_pdp import InMemoryPolicySource, OrganizationHierarchy, PolicyDecisionPoint

    pdp = PolicyDecisionPoint(
        InMemoryPolicySource.from_file("policies.yaml"),
        OrganizationHierarchy.from_adjacency([("root", None), ("emea", "root")]),
    )
    result = pdp.evaluate({
        "subject": {"id": "u1", "roles": ["agent"]},
        "resource": {"type": "Customer", "id": "c-9"},
        "action": "read",
        "organizationId": "emea",
    })
    if result.allowed:
        visible = pdp.read_filter(result, "Customer", customer_payload)
"""

__version__ = "0.3.0"

from abac_pdp.engine import DecisionEngine, evaluate
from abac_pdp.errors import AttributeResolutionError, ConditionEvaluationError, EngineFatalError, FieldPermissionViolation, PDPError, PolicyMatchError
from abac_pdp.fields import can_read_fields, effective_permissions, filter_fields, filter_many, validate_fields
from abac_pdp.hierarchy import HierarchySource, OrganizationHierarchy
from abac_pdp.models import (
    Condition,
    Effect,
    EvaluationContext,
    EvaluationResult,
    EvaluationStep,
    Operator,
    Organization,
    Policy,
    PolicyScope,
)
from abac_pdp.pdp import PolicyDecisionPoint
from abac_pdp.sources import InMemoryPolicySource, PolicySnapshot, PolicySource

__all__ = [
    "__version__",
    # Orchestrator
    "PolicyDecisionPoint",
    "DecisionEngine",
    "evaluate",
    # Sources
    "PolicySource",
    "PolicySnapshot",
    "InMemoryPolicySource",
    "HierarchySource",
    "OrganizationHierarchy",
    # Models
    "Policy",
    "PolicyScope",
    "Effect",
    "Condition",
    "Operator",
    "Organization",
    "EvaluationContext",
    "EvaluationResult",
    "EvaluationStep",
    # Field filter
    "effective_permissions",
    "filter_fields",
    "filter_many",
    "validate_fields",
    "can_read_fields",
    # Errors
    "PDPError",
    "AttributeResolutionError",
    "ConditionEvaluationError",
    "PolicyMatchError",
    "FieldPermissionViolation",
    "EngineFatalError",
]
