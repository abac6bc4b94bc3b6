# -*- coding: utf-8 -*-
"""Location: ./tests/unit/abac_pdp/test_pdp.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Tests for the PolicyDecisionPoint facade.
"""

# Third-Party
import pytest

# First-Party
from abac_pdp import PolicyDecisionPoint
from abac_pdp.config import get_settings
from abac_pdp.errors import FieldPermissionViolation
from abac_pdp.sources import InMemoryPolicySource


@pytest.fixture
def customer_policies(make_policy):
    return [
        make_policy(
            "agents-read",
            priority=50,
            actions=["read", "update"],
            resources={"types": ["Customer"]},
            subjects={"roles": ["agent"]},
            fieldPermissions={"Customer": {"readable": ["id", "name", "email"], "writable": ["email"], "denied": ["ssn"]}},
        ),
        make_policy("locked", effect="deny", priority=50, resources={"types": ["Customer"], "attributes": {"status": "locked"}}),
        make_policy("emea-only", organizationId="emea", priority=10, resources={"types": ["Report"]}),
    ]


@pytest.fixture
def agent_ctx(make_context):
    return make_context(subject={"id": "u1", "roles": ["agent"]}, resource={"type": "Customer", "id": "c-1", "attributes": {"status": "open"}})


class TestEvaluate:
    def test_allow_and_filter(self, customer_policies, agent_ctx):
        pdp = PolicyDecisionPoint(InMemoryPolicySource(customer_policies), cache_enabled=False)
        result = pdp.evaluate(agent_ctx)
        assert result.allowed is True
        assert pdp.read_filter(result, "Customer", {"id": 1, "name": "Ada", "ssn": "x", "notes": "n"}) == {"id": 1, "name": "Ada"}
        assert pdp.read_filter(result, "Customer", [{"id": 1, "ssn": "x"}]) == [{"id": 1}]

    def test_denied_result_projects_nothing(self, customer_policies, make_context):
        pdp = PolicyDecisionPoint(InMemoryPolicySource(customer_policies), cache_enabled=False)
        ctx = make_context(subject={"id": "u1", "roles": ["agent"]}, resource={"type": "Customer", "attributes": {"status": "locked"}})
        result = pdp.evaluate(ctx)
        assert result.allowed is False
        assert pdp.read_filter(result, "Customer", {"id": 1}) == {}
        with pytest.raises(FieldPermissionViolation):
            pdp.check_write(result, "Customer", ["email"])

    def test_check_write(self, customer_policies, agent_ctx):
        pdp = PolicyDecisionPoint(InMemoryPolicySource(customer_policies), cache_enabled=False)
        result = pdp.evaluate(agent_ctx)
        pdp.check_write(result, "Customer", {"email": "new@example.com"})
        with pytest.raises(FieldPermissionViolation) as exc:
            pdp.check_write(result, "Customer", {"email": "x", "ssn": "123"})
        assert exc.value.field == "ssn"

    def test_fatal_context(self, customer_policies):
        pdp = PolicyDecisionPoint(InMemoryPolicySource(customer_policies), cache_enabled=True)
        result = pdp.evaluate({"subject": {"id": "u1"}, "resource": {"type": "Customer"}})
        assert result.allowed is False
        assert "action" in result.errors[0]
        assert pdp.cache_stats()["size"] == 0

    def test_hierarchy_scope(self, customer_policies, make_context, hierarchy):
        pdp = PolicyDecisionPoint(InMemoryPolicySource(customer_policies), hierarchy, cache_enabled=False)
        assert pdp.evaluate(make_context(resource={"type": "Report"}, organization_id="berlin")).allowed is True
        assert pdp.evaluate(make_context(resource={"type": "Report"}, organization_id="apac")).allowed is False

    def test_settings_drive_cascade(self, customer_policies, make_context, hierarchy, monkeypatch):
        monkeypatch.setenv("PDP_CASCADE_TO_DESCENDANTS", "false")
        get_settings.cache_clear()
        pdp = PolicyDecisionPoint(InMemoryPolicySource(customer_policies), hierarchy, cache_enabled=False)
        assert pdp.evaluate(make_context(resource={"type": "Report"}, organization_id="berlin")).allowed is False


class TestPrenarrow:
    def test_out_of_scope_dropped_from_path(self, customer_policies, make_context, make_policy, hierarchy):
        policies = customer_policies + [make_policy("off", isActive=False), {"id": "broken", "effect": "allow"}]
        pdp = PolicyDecisionPoint(InMemoryPolicySource(policies), hierarchy, prenarrow_candidates=True, cache_enabled=False)
        result = pdp.evaluate(make_context(resource={"type": "Report"}, organization_id="apac"))
        ids = [s.policy_id for s in result.evaluation_path]
        assert "emea-only" not in ids
        assert "off" not in ids
        assert "broken" in ids
        assert result.allowed is False

    def test_same_decision_as_full_evaluation(self, customer_policies, agent_ctx, hierarchy):
        full = PolicyDecisionPoint(InMemoryPolicySource(customer_policies), hierarchy, prenarrow_candidates=False, cache_enabled=False)
        narrow = PolicyDecisionPoint(InMemoryPolicySource(customer_policies), hierarchy, prenarrow_candidates=True, cache_enabled=False)
        assert full.evaluate(agent_ctx).final_effect == narrow.evaluate(agent_ctx).final_effect
        assert full.evaluate(agent_ctx).matched_policy_ids == narrow.evaluate(agent_ctx).matched_policy_ids


class TestCaching:
    def test_second_call_is_cached(self, customer_policies, agent_ctx):
        pdp = PolicyDecisionPoint(InMemoryPolicySource(customer_policies), cache_enabled=True)
        first = pdp.evaluate(agent_ctx)
        second = pdp.evaluate(agent_ctx)
        assert first.cached is False
        assert second.cached is True
        assert second.allowed == first.allowed
        assert pdp.cache_stats()["hits"] == 1

    def test_cached_result_is_isolated_from_callers(self, customer_policies, agent_ctx):
        pdp = PolicyDecisionPoint(InMemoryPolicySource(customer_policies), cache_enabled=True)
        pdp.evaluate(agent_ctx).matched_policies.clear()
        first_hit = pdp.evaluate(agent_ctx)
        first_hit.matched_policies.clear()
        first_hit.evaluation_path.clear()
        second_hit = pdp.evaluate(agent_ctx)
        assert second_hit.cached is True
        assert second_hit.matched_policy_ids == ["agents-read"]
        assert second_hit.evaluation_path

    def test_raw_timestamp_policies_not_shared_within_minute(self, make_policy, make_context):
        cutoff = make_policy("before-cutoff", conditions=[{"attributePath": "environment.timestamp", "operator": "less_than", "value": "2025-06-02T10:30:30+00:00"}])
        pdp = PolicyDecisionPoint(InMemoryPolicySource([cutoff]), cache_enabled=True)
        early = make_context(environment={"timestamp": "2025-06-02T10:30:10+00:00"})
        late = make_context(environment={"timestamp": "2025-06-02T10:30:50+00:00"})
        assert pdp.evaluate(early).allowed is True
        result = pdp.evaluate(late)
        assert result.cached is False
        assert result.allowed is False

    def test_minute_truncation_without_raw_timestamp(self, make_policy, make_context):
        pdp = PolicyDecisionPoint(InMemoryPolicySource([make_policy("open")]), cache_enabled=True)
        pdp.evaluate(make_context(environment={"timestamp": "2025-06-02T10:30:10+00:00"}))
        assert pdp.evaluate(make_context(environment={"timestamp": "2025-06-02T10:30:50+00:00"})).cached is True

    def test_policy_change_bypasses_cache(self, customer_policies, agent_ctx, make_policy):
        src = InMemoryPolicySource(customer_policies)
        pdp = PolicyDecisionPoint(src, cache_enabled=True)
        assert pdp.evaluate(agent_ctx).allowed is True
        src.add(make_policy("freeze", effect="deny", priority=1000))
        result = pdp.evaluate(agent_ctx)
        assert result.cached is False
        assert result.allowed is False

    def test_invalidate_and_disabled_stats(self, customer_policies, agent_ctx):
        pdp = PolicyDecisionPoint(InMemoryPolicySource(customer_policies), cache_enabled=True)
        pdp.evaluate(agent_ctx)
        assert pdp.invalidate_cache() == 1
        off = PolicyDecisionPoint(InMemoryPolicySource(customer_policies), cache_enabled=False)
        assert off.cache_stats() == {"enabled": False}
        assert off.invalidate_cache() == 0

    def test_set_hierarchy_drops_cache(self, customer_policies, make_context, hierarchy):
        pdp = PolicyDecisionPoint(InMemoryPolicySource(customer_policies), cache_enabled=True)
        ctx = make_context(resource={"type": "Report"}, organization_id="paris")
        assert pdp.evaluate(ctx).allowed is False
        pdp.set_hierarchy(hierarchy)
        assert pdp.evaluate(ctx).allowed is True


class TestTestPolicy:
    def test_single_policy(self, make_policy, agent_ctx):
        pdp = PolicyDecisionPoint(InMemoryPolicySource(), cache_enabled=False)
        result = pdp.test_policy(make_policy("draft", actions=["read"]), agent_ctx)
        assert result.allowed is True
        assert [s.policy_id for s in result.evaluation_path] == ["draft"]

    def test_malformed_draft_reported(self, agent_ctx):
        pdp = PolicyDecisionPoint(InMemoryPolicySource(), cache_enabled=False)
        result = pdp.test_policy({"id": "draft", "effect": "allow"}, agent_ctx)
        assert result.allowed is False
        assert result.evaluation_path[0].reason == "malformed policy record"


class TestCrossOrganization:
    @pytest.fixture
    def pdp(self, make_policy, hierarchy):
        policies = [
            make_policy(
                "emea-export",
                organizationId="emea",
                actions=["read"],
                conditions=[{"attributePath": "env.isCrossOrganizationAccess", "operator": "equals", "value": True}],
            ),
            make_policy(
                "apac-import",
                organizationId="apac",
                actions=["read"],
                conditions=[{"attributePath": "subject.sourceOrganizationId", "operator": "in", "value": ["emea", "paris"]}],
            ),
        ]
        return PolicyDecisionPoint(InMemoryPolicySource(policies), hierarchy, cache_enabled=False)

    def test_both_allow(self, pdp, make_context):
        result = pdp.evaluate_cross_organization(make_context(organization_id="paris"), "apac")
        assert result.allowed is True
        assert result.matched_policy_ids == ["emea-export", "apac-import"]
        assert result.reason.startswith("cross-organization access allowed")

    def test_source_denies(self, pdp, make_context):
        result = pdp.evaluate_cross_organization(make_context(organization_id="root"), "apac")
        assert result.allowed is False
        assert "source organization" in result.reason

    def test_target_denies(self, pdp, make_context):
        result = pdp.evaluate_cross_organization(make_context(organization_id="emea"), "root")
        assert result.allowed is False
        assert "target organization" in result.reason

    def test_flags_are_visible_to_conditions(self, pdp, make_context):
        # without the cross-organization flag the export policy does not match
        assert pdp.evaluate(make_context(organization_id="paris")).allowed is False

    def test_fatal_context(self, pdp):
        assert pdp.evaluate_cross_organization({"subject": {"id": "u"}}, "apac").allowed is False


class TestEffectivePolicies:
    def test_scope_and_type(self, customer_policies, make_policy, hierarchy):
        policies = customer_policies + [make_policy("off", isActive=False), {"id": "broken"}]
        pdp = PolicyDecisionPoint(InMemoryPolicySource(policies), hierarchy, cache_enabled=False)
        assert [p.id for p in pdp.effective_policies("paris")] == ["agents-read", "locked", "emea-only"]
        assert [p.id for p in pdp.effective_policies("apac")] == ["agents-read", "locked"]
        assert [p.id for p in pdp.effective_policies("paris", "Report")] == ["emea-only"]
