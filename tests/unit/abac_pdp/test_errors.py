# -*- coding: utf-8 -*-
"""Location: ./tests/unit/abac_pdp/test_errors.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Tests for the PDP error taxonomy.
"""

# First-Party
from abac_pdp.errors import AttributeResolutionError, ConditionEvaluationError, EngineFatalError, FieldPermissionViolation, PDPError, PolicyMatchError


class TestErrors:
    def test_hierarchy(self):
        for cls in (AttributeResolutionError, ConditionEvaluationError, PolicyMatchError, FieldPermissionViolation, EngineFatalError):
            assert issubclass(cls, PDPError)

    def test_field_violation_lists_all_fields(self):
        err = FieldPermissionViolation("ssn", fields=["ssn", "dob"], resource_type="Customer")
        assert err.field == "ssn"
        assert err.fields == ["ssn", "dob"]
        assert err.to_dict() == {
            "error": "FieldPermissionViolation",
            "message": "Field 'ssn' is not writable on Customer",
            "detail": {"field": "ssn", "fields": ["ssn", "dob"], "resourceType": "Customer"},
        }

    def test_condition_error_message(self):
        err = ConditionEvaluationError("subject.level", "bogus", "unknown operator")
        assert str(err) == "Condition 'subject.level bogus': unknown operator"
        assert err.detail == {"attributePath": "subject.level", "operator": "bogus"}

    def test_engine_fatal_message(self):
        err = EngineFatalError(["subject", "action"])
        assert str(err) == "Evaluation context is missing: subject, action"

    def test_policy_match_error(self):
        err = PolicyMatchError("p9", "resources: Field required")
        assert err.policy_id == "p9"
        assert "p9" in str(err)
