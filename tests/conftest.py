# -*- coding: utf-8 -*-
"""Location: ./tests/conftest.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Shared fixtures for the policy decision point tests.
"""

# Standard
from datetime import datetime, timezone
from typing import Any, Dict

# Third-Party
import pytest

# First-Party
from abac_pdp.config import get_settings
from abac_pdp.hierarchy import OrganizationHierarchy
from abac_pdp.models import EvaluationContext


@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch):
    """Every test sees settings built from its own environment."""
    for key in ("PDP_LOG_LEVEL", "PDP_DEFAULT_PRIORITY", "PDP_CASCADE_TO_DESCENDANTS", "PDP_PRENARROW_CANDIDATES", "PDP_CACHE_ENABLED", "PDP_POLICIES_FILE", "PDP_HIERARCHY_FILE"):
        monkeypatch.delenv(key, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def make_policy():
    """Factory for raw policy records with permissive defaults."""

    def _make(policy_id: str = "p1", **overrides: Any) -> Dict[str, Any]:
        record: Dict[str, Any] = {
            "id": policy_id,
            "name": policy_id,
            "effect": "allow",
            "priority": 100,
            "isActive": True,
            "resources": {"types": ["*"]},
            "actions": ["*"],
        }
        record.update(overrides)
        return record

    return _make


@pytest.fixture
def make_context():
    """Factory for evaluation contexts (Monday 2025-06-02 10:30 UTC by default)."""

    def _make(
        *,
        subject: Dict[str, Any] = None,
        resource: Dict[str, Any] = None,
        action: str = "read",
        organization_id: str = None,
        environment: Dict[str, Any] = None,
        **extra: Any,
    ) -> EvaluationContext:
        data: Dict[str, Any] = {
            "subject": subject or {"id": "u1"},
            "resource": resource or {"type": "Customer"},
            "action": action,
            "environment": environment or {"timestamp": datetime(2025, 6, 2, 10, 30, tzinfo=timezone.utc).isoformat()},
            "organizationId": organization_id,
        }
        data.update(extra)
        return EvaluationContext.model_validate(data)

    return _make


@pytest.fixture
def hierarchy() -> OrganizationHierarchy:
    """root -> emea -> (paris, berlin); root -> apac."""
    return OrganizationHierarchy.from_adjacency(
        [
            ("root", None),
            ("emea", "root"),
            ("paris", "emea"),
            ("berlin", "emea"),
            ("apac", "root"),
        ]
    )
