# -*- coding: utf-8 -*-
"""Location: ./abac_pdp/pdp.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Policy Decision Point: the orchestrator.

This is the only class application code needs to import.  It wires an
injected ``PolicySource`` and ``HierarchySource`` to the stateless
``DecisionEngine``, an optional ``DecisionCache`` and the field filter.

Lifecycle
---------
1. The application builds a policy source and hierarchy from its own store
   (or from files, see :mod:`abac_pdp.sources`).
2. ``PolicyDecisionPoint`` is instantiated once per source; several
   instances can serve different tenants in the same process.
3. ``evaluate()`` is called on every protected read or write, then
   ``read_filter()`` / ``check_write()`` project or gate the payload.

Examples:
    >>> from abac_pdp.sources import InMemoryPolicySource
    >>> src = InMemoryPolicySource([
    ...     {"id": "read", "effect": "allow", "priority": 10, "resources": {"types": ["Customer"]}, "actions": ["read"],
    ...      "fieldPermissions": {"Customer": {"readable": ["id", "name"]}}},
    ... ])
    >>> pdp = PolicyDecisionPoint(src, cache_enabled=False)
    >>> result = pdp.evaluate({"subject": {"id": "u1"}, "resource": {"type": "Customer"}, "action": "read"})
    >>> result.allowed, result.matched_policy_ids
    (True, ['read'])
    >>> pdp.read_filter(result, "Customer", {"id": 1, "name": "Ada", "ssn": "x"})
    {'id': 1, 'name': 'Ada'}
"""

# Standard
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

# Third-Party
import orjson

# First-Party
from abac_pdp.attributes import AttributeResolver
from abac_pdp.cache import DecisionCache
from abac_pdp.config import settings
from abac_pdp.engine import coerce_context, coerce_policy, ContextInput, DecisionEngine, PolicyRecord
from abac_pdp.errors import EngineFatalError, FieldPermissionViolation, PolicyMatchError
from abac_pdp.fields import filter_fields, filter_many, policies_for_result, validate_fields
from abac_pdp.hierarchy import HierarchySource
from abac_pdp.matcher import PolicyMatcher
from abac_pdp.models import Effect, EvaluationResult, Policy, WILDCARD
from abac_pdp.sources import PolicySnapshot, PolicySource

logger = logging.getLogger(__name__)

Payload = Union[Mapping[str, Any], Sequence[Mapping[str, Any]]]
_TIMESTAMP_PATHS = ("environment.timestamp", "env.timestamp")


class PolicyDecisionPoint:
    """Single entry point for access decisions and field filtering.

    Parameters
    ----------
    source : PolicySource
        Supplies versioned policy snapshots.
    hierarchy : HierarchySource, optional
        Organization tree for scope checks and hierarchy templates.
    cascade_to_descendants, prenarrow_candidates, cache_enabled : bool, optional
        Override the corresponding ``Settings`` values.
    """

    def __init__(
        self,
        source: PolicySource,
        hierarchy: Optional[HierarchySource] = None,
        *,
        cascade_to_descendants: Optional[bool] = None,
        prenarrow_candidates: Optional[bool] = None,
        cache_enabled: Optional[bool] = None,
    ):
        self._source = source
        self._hierarchy = hierarchy
        self._cascade = settings.cascade_to_descendants if cascade_to_descendants is None else cascade_to_descendants
        self._prenarrow = settings.prenarrow_candidates if prenarrow_candidates is None else prenarrow_candidates
        self._engine = DecisionEngine(self._cascade)
        use_cache = settings.cache_enabled if cache_enabled is None else cache_enabled
        self._cache: Optional[DecisionCache] = DecisionCache(settings.cache_ttl_seconds, settings.cache_max_entries) if use_cache else None
        self._timestamp_scan: Tuple[Optional[int], bool] = (None, False)
        logger.info("PDP initialised (cascade=%s, prenarrow=%s, cache=%s)", self._cascade, self._prenarrow, use_cache)

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def evaluate(self, context: ContextInput) -> EvaluationResult:
        """Decide one request against the current policy snapshot.

        Args:
            context: Evaluation context (model or dict).

        Returns:
            EvaluationResult: The decision; ``cached`` is set when served from the cache.
        """
        try:
            ctx = coerce_context(context)
        except EngineFatalError:
            # The engine records the fatal error and default-denies
            return self._engine.evaluate(context, (), self._hierarchy)

        snapshot = self._source.snapshot()
        truncate = self._cache is None or not self._reads_raw_timestamp(snapshot)
        if self._cache is not None:
            hit = self._cache.get(snapshot.version, ctx, truncate_timestamp=truncate)
            if hit is not None:
                return hit.model_copy(deep=True, update={"cached": True})

        policies = self._narrow(snapshot.policies, ctx.organization_id) if self._prenarrow else snapshot.policies
        result = self._engine.evaluate(ctx, policies, self._hierarchy)

        if self._cache is not None:
            self._cache.put(snapshot.version, ctx, result.model_copy(deep=True), truncate_timestamp=truncate)
        return result

    def test_policy(self, policy: PolicyRecord, context: ContextInput) -> EvaluationResult:
        """Evaluate a single (possibly unsaved) policy, bypassing source and cache.

        Args:
            policy: Policy record under test.
            context: Sample context.

        Returns:
            EvaluationResult: Decision and evaluation path for that policy alone.
        """
        return self._engine.evaluate(context, [policy], self._hierarchy)

    def evaluate_cross_organization(self, context: ContextInput, target_organization_id: str) -> EvaluationResult:
        """Access from the context organization into ``target_organization_id``.

        The request is flagged (``env.isCrossOrganizationAccess``,
        ``resource.targetOrganizationId``) and must be allowed first in the
        source organization, then in the target organization with
        ``subject.sourceOrganizationId`` set.

        Args:
            context: Evaluation context in the source organization.
            target_organization_id: Organization owning the resource.

        Returns:
            EvaluationResult: The first denying result, or a combined allow.
        """
        try:
            ctx = coerce_context(context)
        except EngineFatalError:
            return self._engine.evaluate(context, (), self._hierarchy)

        flagged = ctx.model_copy(
            update={
                "resource": ctx.resource.model_copy(update={"attributes": {**ctx.resource.attributes, "targetOrganizationId": target_organization_id}}),
                "environment": ctx.environment.model_copy(update={"attributes": {**ctx.environment.attributes, "isCrossOrganizationAccess": True}}),
            }
        )
        source_result = self.evaluate(flagged)
        if not source_result.allowed:
            return source_result.model_copy(update={"reason": f"{source_result.reason}; cross-organization access denied by source organization"})

        subject = flagged.subject.model_copy(update={"attributes": {**flagged.subject.attributes, "sourceOrganizationId": ctx.organization_id}})
        target_ctx = flagged.model_copy(update={"organization_id": target_organization_id, "subject": subject})
        target_result = self.evaluate(target_ctx)
        if not target_result.allowed:
            return target_result.model_copy(update={"reason": f"{target_result.reason}; cross-organization access denied by target organization"})

        logger.info("PDP: cross-organization access %s -> %s allowed for %s", ctx.organization_id, target_organization_id, ctx.subject.id)
        return EvaluationResult(
            allowed=True,
            final_effect=Effect.ALLOW,
            reason=f"cross-organization access allowed by both organizations ({source_result.reason}; {target_result.reason})",
            matched_policies=source_result.matched_policies + target_result.matched_policies,
            evaluation_path=source_result.evaluation_path + target_result.evaluation_path,
            errors=source_result.errors + target_result.errors,
            duration_ms=round(source_result.duration_ms + target_result.duration_ms, 3),
        )

    # ------------------------------------------------------------------
    # Policy views
    # ------------------------------------------------------------------

    def effective_policies(self, organization_id: str, resource_type: Optional[str] = None) -> List[Policy]:
        """Active policies in scope for an organization.

        Args:
            organization_id: Organization to inspect.
            resource_type: Only policies covering this type (or ``"*"``).

        Returns:
            List[Policy]: Highest priority first, then by id.
        """
        matcher = self._matcher()
        policies = []
        for record in self._source.snapshot().policies:
            try:
                policy = coerce_policy(record)
            except PolicyMatchError as exc:
                logger.warning("PDP: skipping malformed policy: %s", exc)
                continue
            if not policy.is_active or not matcher.in_scope(policy, organization_id):
                continue
            if resource_type is not None and resource_type not in policy.resources.types and WILDCARD not in policy.resources.types:
                continue
            policies.append(policy)
        policies.sort(key=lambda p: (-p.priority, p.id))
        return policies

    # ------------------------------------------------------------------
    # Field filtering
    # ------------------------------------------------------------------

    def read_filter(self, result: EvaluationResult, resource_type: str, payload: Payload) -> Union[Dict[str, Any], List[Dict[str, Any]]]:
        """Project a payload (or list of payloads) onto the readable fields.

        A denied decision projects to nothing.
        """
        policies = policies_for_result(result, resource_type)
        if isinstance(payload, Mapping):
            return filter_fields(resource_type, payload, policies)
        return filter_many(resource_type, payload, policies)

    def check_write(self, result: EvaluationResult, resource_type: str, payload_keys: Iterable[str]) -> None:
        """Gate a write payload.

        Args:
            result: Decision for the write.
            resource_type: Resource type written.
            payload_keys: Keys of the write payload (a mapping works too).

        Raises:
            FieldPermissionViolation: When any key is not writable, or the decision denied.
        """
        keys = list(payload_keys)
        if not result.allowed and keys:
            raise FieldPermissionViolation(keys[0], fields=keys, resource_type=resource_type)
        validate_fields(resource_type, keys, policies_for_result(result, resource_type))

    # ------------------------------------------------------------------
    # Cache / hierarchy management
    # ------------------------------------------------------------------

    def set_hierarchy(self, hierarchy: Optional[HierarchySource]) -> None:
        """Swap the organization hierarchy and drop cached decisions."""
        self._hierarchy = hierarchy
        self.invalidate_cache()

    def invalidate_cache(self) -> int:
        """Drop every cached decision; returns the number removed."""
        return self._cache.invalidate() if self._cache is not None else 0

    def cache_stats(self) -> Dict[str, Any]:
        """Cache counters, or ``{"enabled": False}`` when caching is off."""
        if self._cache is None:
            return {"enabled": False}
        return {"enabled": True, **self._cache.stats()}

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _matcher(self) -> PolicyMatcher:
        return PolicyMatcher(AttributeResolver(self._hierarchy), self._hierarchy, self._cascade)

    def _reads_raw_timestamp(self, snapshot: PolicySnapshot) -> bool:
        """True when any policy in the snapshot reads ``environment.timestamp`` itself."""
        version, reads = self._timestamp_scan
        if version != snapshot.version:
            records = [r.model_dump(mode="json", by_alias=True) if isinstance(r, Policy) else r for r in snapshot.policies]
            raw = orjson.dumps(records, default=str, option=orjson.OPT_NON_STR_KEYS).decode()
            reads = any(marker in raw for marker in _TIMESTAMP_PATHS)
            self._timestamp_scan = (snapshot.version, reads)
        return reads

    def _narrow(self, records: Iterable[PolicyRecord], organization_id: Optional[str]) -> List[PolicyRecord]:
        """Drop inactive and out-of-scope policies; malformed records pass through for the engine to report."""
        matcher = self._matcher()
        kept: List[PolicyRecord] = []
        for record in records:
            try:
                policy = coerce_policy(record)
            except PolicyMatchError:
                kept.append(record)
                continue
            if policy.is_active and matcher.in_scope(policy, organization_id):
                kept.append(policy)
        logger.debug("PDP: narrowed %s candidate(s) for org %s", len(kept), organization_id)
        return kept

