# -*- coding: utf-8 -*-
"""Location: ./tests/unit/abac_pdp/test_engine.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Tests for the decision engine: conflict resolution, audit trail, failure handling.
"""

# Standard
import itertools

# Third-Party
import pytest

# First-Party
from abac_pdp.engine import coerce_context, DecisionEngine, evaluate, resolve_effect
from abac_pdp.errors import EngineFatalError
from abac_pdp.matcher import PolicyMatcher
from abac_pdp.models import Effect, Policy


# ===========================================================================
# Worked scenarios
# ===========================================================================


class TestScenarios:
    def test_same_band_deny_overrides_allow(self, make_policy, make_context):
        p1 = make_policy("P1", effect="allow", priority=90, actions=["*"], subjects={"roles": ["admin"]})
        p2 = make_policy("P2", effect="deny", priority=90, resources={"types": ["*"], "attributes": {"status": "locked"}})
        ctx = make_context(subject={"id": "u", "roles": ["admin"]}, resource={"type": "Customer", "attributes": {"status": "locked"}})

        result = evaluate(ctx, [p1, p2])

        assert result.matched_policy_ids == ["P1", "P2"]
        assert result.final_effect == Effect.DENY
        assert result.allowed is False

    def test_nothing_matches_is_default_deny(self, make_policy, make_context):
        result = evaluate(make_context(action="read"), [make_policy(actions=["delete"]), make_policy("p2", isActive=False)])
        assert result.allowed is False
        assert result.final_effect == Effect.DENY
        assert result.matched_policies == []
        assert result.reason.startswith("default deny")

    def test_empty_policy_set(self, make_context):
        result = evaluate(make_context(), [])
        assert result.allowed is False
        assert result.evaluation_path == []

    def test_template_resolution(self, make_policy, make_context):
        policy = make_policy(resources={"types": ["Customer"], "attributes": {"organizationId": "${subject.organizationId}"}})
        subject = {"id": "u", "attributes": {"organizationId": "org-7"}}
        same = make_context(subject=subject, resource={"type": "Customer", "attributes": {"organizationId": "org-7"}})
        other = make_context(subject=subject, resource={"type": "Customer", "attributes": {"organizationId": "org-9"}})
        assert evaluate(same, [policy]).allowed is True
        assert evaluate(other, [policy]).allowed is False


# ===========================================================================
# Conflict resolution properties
# ===========================================================================


class TestResolution:
    @pytest.mark.parametrize(
        "high,low,expected",
        [
            ("allow", "deny", Effect.ALLOW),
            ("deny", "allow", Effect.DENY),
        ],
    )
    def test_priority_dominance(self, make_policy, make_context, high, low, expected):
        policies = [make_policy("high", effect=high, priority=200), make_policy("low", effect=low, priority=10)]
        result = evaluate(make_context(), policies)
        assert result.final_effect == expected
        assert result.matched_policy_ids == ["high", "low"]

    def test_lower_band_deny_ignored(self, make_policy, make_context):
        policies = [make_policy("a", priority=50), make_policy("d1", effect="deny", priority=49), make_policy("d2", effect="deny", priority=0)]
        assert evaluate(make_context(), policies).allowed is True

    def test_top_band_with_several_allows(self, make_policy, make_context):
        result = evaluate(make_context(), [make_policy("b", priority=5), make_policy("a", priority=5)])
        assert result.allowed is True
        assert result.reason == "allowed by 'a', 'b' at priority 5"

    def test_order_independent(self, make_policy, make_context):
        policies = [
            make_policy("a", priority=10),
            make_policy("b", effect="deny", priority=10, subjects={"roles": ["guest"]}),
            make_policy("c", priority=5, effect="deny"),
            make_policy("d", priority=10, actions=["delete"]),
        ]
        ctx = make_context(subject={"id": "u", "roles": ["guest"]})
        results = [evaluate(ctx, list(order)) for order in itertools.permutations(policies)]
        assert {r.final_effect for r in results} == {Effect.DENY}
        assert {tuple(r.matched_policy_ids) for r in results} == {("a", "b", "c")}
        assert {tuple(s.policy_id for s in r.evaluation_path) for r in results} == {("a", "b", "d", "c")}

    def test_resolve_effect_direct(self):
        mk = lambda i, e, p: Policy(id=i, effect=e, priority=p, resources={"types": ["*"]}, actions=["*"])  # noqa: E731
        assert resolve_effect([mk("x", "deny", 3), mk("y", "allow", 3), mk("z", "allow", 4)])[0] == Effect.ALLOW
        assert resolve_effect([mk("x", "deny", 3), mk("y", "allow", 3)]) == (Effect.DENY, "denied by 'x' at priority 3")


# ===========================================================================
# Audit trail
# ===========================================================================


class TestEvaluationPath:
    def test_every_policy_recorded(self, make_policy, make_context):
        policies = [
            make_policy("match"),
            make_policy("wrong-action", actions=["delete"]),
            make_policy("inactive", isActive=False),
            make_policy("cond", conditions=[{"attributePath": "subject.level", "operator": "greater_than", "value": 5}]),
        ]
        ctx = make_context(subject={"id": "u", "attributes": {"level": 3}})
        result = evaluate(ctx, policies)
        steps = {s.policy_id: s for s in result.evaluation_path}
        assert set(steps) == {"match", "wrong-action", "inactive", "cond"}
        assert steps["match"].matched is True
        assert steps["match"].reason == "all conditions met"
        assert steps["wrong-action"].reason == "action 'read' not covered"
        assert steps["inactive"].reason == "policy is inactive"
        assert steps["cond"].reason.startswith("condition #1 failed")
        assert steps["match"].priority == 100
        assert steps["match"].effect == Effect.ALLOW

    def test_environment_constraints_applied(self, make_policy, make_context):
        policy = make_policy(environment={"ipAddresses": ["10.0.0.0/8"]})
        result = evaluate(make_context(), [policy])
        assert result.allowed is False
        assert "no IP address" in result.evaluation_path[0].reason

    def test_legacy_conditions_applied(self, make_policy, make_context):
        policy = make_policy(conditions={"customConditions": {"resource.amount": {"less_than": 1000}}})
        cheap = make_context(resource={"type": "Invoice", "attributes": {"amount": 10}})
        pricey = make_context(resource={"type": "Invoice", "attributes": {"amount": 5000}})
        assert evaluate(cheap, [policy]).allowed is True
        assert evaluate(pricey, [policy]).allowed is False

    def test_duration_and_log(self, make_policy, make_context, caplog):
        with caplog.at_level("INFO", logger="abac_pdp.engine"):
            result = evaluate(make_context(), [make_policy()])
        assert result.duration_ms >= 0
        assert "PDP: ALLOW" in caplog.text


# ===========================================================================
# Failure handling
# ===========================================================================


class TestFailures:
    def test_malformed_policy_skipped(self, make_policy, make_context, caplog):
        bad = {"id": "broken", "effect": "allow", "actions": ["*"]}  # no resources
        with caplog.at_level("WARNING", logger="abac_pdp.engine"):
            result = evaluate(make_context(), [bad, make_policy("good")])
        assert result.allowed is True
        assert result.matched_policy_ids == ["good"]
        assert result.evaluation_path[-1].policy_id == "broken"
        assert result.evaluation_path[-1].matched is False
        assert result.evaluation_path[-1].reason == "malformed policy record"
        assert any("broken" in e for e in result.errors)
        assert "malformed" in caplog.text

    def test_non_mapping_record_skipped(self, make_policy, make_context):
        result = evaluate(make_context(), ["not a policy", make_policy()])
        assert result.allowed is True
        assert result.evaluation_path[-1].policy_id == "<unknown>"

    def test_condition_error_surfaces_but_does_not_abort(self, make_policy, make_context):
        bad = make_policy("bad", effect="deny", priority=500, conditions=[{"attributePath": "subject.id", "operator": "approximately", "value": "u"}])
        result = evaluate(make_context(), [bad, make_policy("good")])
        assert result.allowed is True
        assert result.matched_policy_ids == ["good"]
        assert len(result.errors) == 1
        assert "unknown operator" in result.errors[0]

    def test_numeric_overflow_confined_to_policy(self, make_policy, make_context):
        amount = make_policy("amount", effect="deny", priority=50, conditions=[{"attributePath": "resource.amount", "operator": "greater_than", "value": 5}])
        ctx = make_context(resource={"type": "Invoice", "attributes": {"amount": 10**400}})
        result = evaluate(ctx, [make_policy("ok", priority=10), amount])
        assert result.allowed is True
        assert result.matched_policy_ids == ["ok"]
        step = next(s for s in result.evaluation_path if s.policy_id == "amount")
        assert step.matched is False
        assert "out of numeric range" in step.errors[0]

    def test_unexpected_error_confined_to_policy(self, make_policy, make_context, monkeypatch):
        def boom(self, policy, context):
            if policy.id == "fragile":
                raise RuntimeError("resolver exploded")
            return original(self, policy, context)

        original = PolicyMatcher.check
        monkeypatch.setattr(PolicyMatcher, "check", boom)
        result = evaluate(make_context(), [make_policy("fragile", effect="deny", priority=90), make_policy("ok")])
        assert result.allowed is True
        step = result.evaluation_path[0]
        assert (step.policy_id, step.matched, step.reason) == ("fragile", False, "policy evaluation failed")
        assert "resolver exploded" in step.errors[0]

    @pytest.mark.parametrize(
        "context,missing",
        [
            ({"resource": {"type": "T"}, "action": "read"}, ["subject"]),
            ({"subject": {"id": "u"}, "resource": {"type": "T"}}, ["action"]),
            ({"subject": {"id": "u"}, "resource": {"type": ""}, "action": "read"}, ["resource.type"]),
            ({"subject": {"id": "u"}, "resource": {}, "action": "read"}, ["resource.type"]),
            ({"subject": {"id": "u"}, "action": "read"}, ["resource.type"]),
            ({"subject": {"id": "u"}, "resource": {"type": "T"}, "action": "read", "environment": {"timestamp": "not a date"}}, ["context"]),
        ],
    )
    def test_fatal_context_is_default_deny(self, make_policy, context, missing):
        result = evaluate(context, [make_policy()])
        assert result.allowed is False
        assert result.final_effect == Effect.DENY
        assert result.evaluation_path == []
        assert result.errors
        with pytest.raises(EngineFatalError) as exc:
            coerce_context(context)
        assert exc.value.missing == missing

    def test_none_context(self, make_policy):
        result = evaluate(None, [make_policy()])
        assert result.allowed is False
        assert "subject" in result.errors[0]

    def test_model_inputs_accepted(self, make_policy, make_context):
        result = DecisionEngine().evaluate(make_context(), [Policy.model_validate(make_policy())])
        assert result.allowed is True


# ===========================================================================
# Organization scope
# ===========================================================================


class TestScopeContainment:
    @pytest.mark.parametrize("org,expected", [("emea", True), ("paris", True), ("berlin", True), ("root", False), ("apac", False), ("elsewhere", False)])
    def test_org_policy(self, make_policy, make_context, hierarchy, org, expected):
        policy = make_policy(organizationId="emea")
        assert evaluate(make_context(organization_id=org), [policy], hierarchy).allowed is expected

    def test_cascade_disabled_by_engine_default(self, make_policy, make_context, hierarchy):
        policy = make_policy(organizationId="emea")
        result = DecisionEngine(cascade_to_descendants=False).evaluate(make_context(organization_id="paris"), [policy], hierarchy)
        assert result.allowed is False

    def test_hierarchy_template(self, make_policy, make_context, hierarchy):
        policy = make_policy(resources={"types": ["*"], "attributes": {"organizationId": "${subject.childOrganizationIds}"}})
        ctx = make_context(
            subject={"id": "u", "attributes": {"organizationId": "emea"}},
            resource={"type": "Customer", "attributes": {"organizationId": "paris"}},
        )
        assert evaluate(ctx, [policy], hierarchy).allowed is True
        assert evaluate(ctx, [policy]).allowed is False
