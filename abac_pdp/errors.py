# -*- coding: utf-8 -*-
"""Location: ./abac_pdp/errors.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Error taxonomy for the policy decision point.

Every error biases toward denial.  Only ``FieldPermissionViolation`` escapes
a public operation; the engine recovers everything else locally and records
it on the evaluation path.

Hierarchy::

    PDPError
    ├── AttributeResolutionError   unresolvable template path (non-match)
    ├── ConditionEvaluationError   unknown operator / type mismatch (condition false)
    ├── PolicyMatchError           malformed policy record (policy skipped)
    ├── FieldPermissionViolation   write touches a non-writable field (write rejected)
    └── EngineFatalError           context lacks subject/action/resource.type (default deny)

Examples:
    >>> err = FieldPermissionViolation("ssn", resource_type="Customer")
    >>> err.field
    'ssn'
    >>> str(err)
    "Field 'ssn' is not writable on Customer"
    >>> EngineFatalError(["action"]).missing
    ['action']
"""

# Standard
from typing import Any, Dict, List, Optional, Sequence


class PDPError(Exception):
    """Root of the PDP error hierarchy.

    Args:
        message: Human-readable description.
        detail: Extra context, safe to log or return to policy authors.
    """

    def __init__(self, message: str, *, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail: Dict[str, Any] = detail or {}

    def to_dict(self) -> Dict[str, Any]:
        """Serialise for audit output."""
        return {"error": type(self).__name__, "message": self.message, "detail": self.detail}


class AttributeResolutionError(PDPError):
    """A template or attribute path could not be resolved against the context."""

    def __init__(self, path: str, message: Optional[str] = None):
        self.path = path
        super().__init__(message or f"Cannot resolve attribute path '{path}'", detail={"path": path})


class ConditionEvaluationError(PDPError):
    """A condition could not be evaluated (unknown operator or type mismatch)."""

    def __init__(self, attribute_path: str, operator: str, message: str):
        self.attribute_path = attribute_path
        self.operator = operator
        super().__init__(
            f"Condition '{attribute_path} {operator}': {message}",
            detail={"attributePath": attribute_path, "operator": operator},
        )


class PolicyMatchError(PDPError):
    """A policy record is malformed and was skipped."""

    def __init__(self, policy_id: str, message: str):
        self.policy_id = policy_id
        super().__init__(f"Policy '{policy_id}' is malformed: {message}", detail={"policyId": policy_id})


class FieldPermissionViolation(PDPError):
    """A write payload references a field outside the writable allow-list."""

    def __init__(self, field: str, *, fields: Optional[Sequence[str]] = None, resource_type: Optional[str] = None):
        self.field = field
        self.fields: List[str] = list(fields) if fields else [field]
        self.resource_type = resource_type
        target = f" on {resource_type}" if resource_type else ""
        super().__init__(
            f"Field '{field}' is not writable{target}",
            detail={"field": field, "fields": self.fields, "resourceType": resource_type},
        )


class EngineFatalError(PDPError):
    """The evaluation context lacks an essential input."""

    def __init__(self, missing: Sequence[str], message: Optional[str] = None):
        self.missing = list(missing)
        super().__init__(message or f"Evaluation context is missing: {', '.join(self.missing)}", detail={"missing": self.missing})
