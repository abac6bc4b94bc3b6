# -*- coding: utf-8 -*-
"""Location: ./abac_pdp/engine.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Decision engine (PDP core).

``DecisionEngine.evaluate`` is a pure function of the policy snapshot, the
organization hierarchy and the context: no I/O, no shared mutable state, safe
for unbounded parallel invocation.

Algorithm
---------
1. Validate the context.  A missing subject, action or resource type is fatal
   and resolves to default-deny without looking at any policy.
2. Validate every policy record.  A malformed record is skipped, recorded on
   the evaluation path with the validation error, and evaluation continues.
3. For each policy (highest priority first, then by id) run the structural
   matcher, the environment constraints and the AND-combined conditions.
   Every policy lands on ``evaluation_path`` whether it matched or not.
4. No match -> deny.  Otherwise only the highest matched priority band
   counts: any deny in that band -> deny, else allow.  Lower bands never
   influence the outcome.
"""

# Standard
import logging
import time
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

# Third-Party
from pydantic import ValidationError

# First-Party
from abac_pdp.attributes import AttributeResolver
from abac_pdp.conditions import ConditionEvaluator
from abac_pdp.errors import EngineFatalError, PolicyMatchError
from abac_pdp.hierarchy import HierarchySource
from abac_pdp.matcher import PolicyMatcher
from abac_pdp.models import Effect, EvaluationContext, EvaluationResult, EvaluationStep, Policy

logger = logging.getLogger(__name__)

PolicyRecord = Union[Policy, Mapping[str, Any]]
ContextInput = Union[EvaluationContext, Mapping[str, Any], None]

_ESSENTIAL_FIELDS = ("subject", "action", "resource.type")


def _validation_summary(exc: ValidationError) -> str:
    return "; ".join(f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}" for err in exc.errors())


def coerce_context(context: ContextInput) -> EvaluationContext:
    """Validate the evaluation context.

    Args:
        context: Context model or its JSON-compatible dict.

    Returns:
        EvaluationContext: The validated context.

    Raises:
        EngineFatalError: When subject, action or resource type is missing or the context is otherwise invalid.
    """
    if context is None:
        raise EngineFatalError(list(_ESSENTIAL_FIELDS))
    if isinstance(context, EvaluationContext):
        missing = []
        if context.subject is None:
            missing.append("subject")
        if not context.action:
            missing.append("action")
        if context.resource is None or not context.resource.type:
            missing.append("resource.type")
        if missing:
            raise EngineFatalError(missing)
        return context
    try:
        return EvaluationContext.model_validate(context)
    except ValidationError as exc:
        missing = []
        for err in exc.errors():
            loc = ".".join(str(p) for p in err["loc"])
            for field in _ESSENTIAL_FIELDS:
                if loc == field or loc.startswith(field + ".") or field.startswith(loc + "."):
                    missing.append(field)
        raise EngineFatalError(sorted(set(missing)) or ["context"], f"Invalid evaluation context: {_validation_summary(exc)}") from exc


def coerce_policy(record: PolicyRecord) -> Policy:
    """Validate one policy record.

    Args:
        record: Policy model or persisted dict.

    Returns:
        Policy: The validated policy.

    Raises:
        PolicyMatchError: When the record is malformed.
    """
    if isinstance(record, Policy):
        return record
    if not isinstance(record, Mapping):
        raise PolicyMatchError("<unknown>", f"expected an object, got {type(record).__name__}")
    try:
        return Policy.model_validate(record)
    except ValidationError as exc:
        raise PolicyMatchError(str(record.get("id") or "<unknown>"), _validation_summary(exc)) from exc


def resolve_effect(matched: Sequence[Policy]) -> Tuple[Effect, str]:
    """Apply highest-priority-wins with deny-overrides inside the winning band.

    Args:
        matched: Policies that fully matched.

    Returns:
        Tuple of (final effect, reason).

    Examples:
        >>> from abac_pdp.models import Policy
        >>> mk = lambda i, e, p: Policy(id=i, effect=e, priority=p, resources={"types": ["*"]}, actions=["*"])
        >>> resolve_effect([mk("a", "allow", 90), mk("d", "deny", 90)])
        (<Effect.DENY: 'deny'>, "denied by 'd' at priority 90")
        >>> resolve_effect([mk("a", "allow", 100), mk("d", "deny", 10)])[0]
        <Effect.ALLOW: 'allow'>
        >>> resolve_effect([])[0]
        <Effect.DENY: 'deny'>
    """
    if not matched:
        return Effect.DENY, "default deny: no policy matched"
    top = max(p.priority for p in matched)
    band = [p for p in matched if p.priority == top]
    denies = sorted(p.id for p in band if p.effect == Effect.DENY)
    if denies:
        return Effect.DENY, f"denied by {', '.join(repr(i) for i in denies)} at priority {top}"
    allows = sorted(p.id for p in band)
    return Effect.ALLOW, f"allowed by {', '.join(repr(i) for i in allows)} at priority {top}"


class DecisionEngine:
    """Stateless ABAC decision engine.

    Parameters
    ----------
    cascade_to_descendants : bool
        Default cascade for organization policies that leave
        ``appliesToDescendants`` unset.
    """

    def __init__(self, cascade_to_descendants: bool = True):
        self._cascade = cascade_to_descendants

    def evaluate(self, context: ContextInput, policies: Iterable[PolicyRecord], hierarchy: Optional[HierarchySource] = None) -> EvaluationResult:
        """Decide one request.

        Args:
            context: Evaluation context (model or dict).
            policies: Policy snapshot (models or persisted dicts).
            hierarchy: Organization hierarchy for scope checks and hierarchy templates.

        Returns:
            EvaluationResult: Decision with matched policies and full evaluation path.
        """
        start = time.perf_counter()

        try:
            ctx = coerce_context(context)
        except EngineFatalError as exc:
            logger.warning("PDP: fatal input error, default deny: %s", exc)
            return EvaluationResult(
                allowed=False,
                final_effect=Effect.DENY,
                reason=f"default deny: {exc}",
                errors=[str(exc)],
                duration_ms=round((time.perf_counter() - start) * 1000, 3),
            )

        resolver = AttributeResolver(hierarchy)
        matcher = PolicyMatcher(resolver, hierarchy, self._cascade)
        conditions = ConditionEvaluator(resolver)

        valid: List[Policy] = []
        skipped: List[EvaluationStep] = []
        for record in policies:
            try:
                valid.append(coerce_policy(record))
            except PolicyMatchError as exc:
                logger.warning("PDP: skipping malformed policy: %s", exc)
                skipped.append(EvaluationStep(policy_id=exc.policy_id, matched=False, reason="malformed policy record", errors=[str(exc)]))
        valid.sort(key=lambda p: (-p.priority, p.id))
        skipped.sort(key=lambda s: s.policy_id)

        path: List[EvaluationStep] = []
        matched: List[Policy] = []
        errors: List[str] = [e for step in skipped for e in step.errors]

        for policy in valid:
            step = self._evaluate_policy(policy, ctx, matcher, conditions)
            path.append(step)
            errors.extend(step.errors)
            if step.matched:
                matched.append(policy)
        path.extend(skipped)

        effect, reason = resolve_effect(matched)
        duration = (time.perf_counter() - start) * 1000

        logger.info(
            "PDP: %s | action=%s | resource=%s | subject=%s | org=%s | matched=%s | %.2fms",
            effect.value.upper(),
            ctx.action,
            ctx.resource.type,
            ctx.subject.id,
            ctx.organization_id,
            [p.id for p in matched],
            duration,
        )

        return EvaluationResult(
            allowed=effect == Effect.ALLOW,
            final_effect=effect,
            reason=reason,
            matched_policies=matched,
            evaluation_path=path,
            errors=errors,
            duration_ms=round(duration, 3),
        )

    @staticmethod
    def _evaluate_policy(policy: Policy, ctx: EvaluationContext, matcher: PolicyMatcher, conditions: ConditionEvaluator) -> EvaluationStep:
        """Match one policy; any error inside is confined to this policy."""
        step = {"policy_id": policy.id, "policy_name": policy.name, "priority": policy.priority, "effect": policy.effect}
        try:
            outcome = matcher.check(policy, ctx)
            if not outcome.matched:
                return EvaluationStep(**step, matched=False, reason=outcome.reason)

            env = conditions.evaluate_environment(policy.environment, ctx)
            if not env.passed:
                return EvaluationStep(**step, matched=False, reason=env.reason, errors=[str(e) for e in env.errors])

            result = conditions.evaluate_all(policy.conditions, ctx)
            return EvaluationStep(**step, matched=result.passed, reason=result.reason, errors=[str(e) for e in result.errors])
        except Exception as exc:  # noqa: BLE001
            error = PolicyMatchError(policy.id, str(exc))
            logger.warning("PDP: %s", error)
            return EvaluationStep(**step, matched=False, reason="policy evaluation failed", errors=[str(error)])


def evaluate(context: ContextInput, policies: Iterable[PolicyRecord], hierarchy: Optional[HierarchySource] = None, *, cascade_to_descendants: bool = True) -> EvaluationResult:
    """Module-level shortcut for :meth:`DecisionEngine.evaluate`."""
    return DecisionEngine(cascade_to_descendants).evaluate(context, policies, hierarchy)
