# -*- coding: utf-8 -*-
"""Location: ./abac_pdp/hierarchy.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Organization hierarchy resolver.

Answers ancestor / descendant membership questions over the organization
tree.  The tree can be supplied either as an adjacency list
(``id``/``parentId`` pairs) or as a precomputed closure table of
``(ancestor, descendant)`` edges; both are materialised once into the same
lookup maps so queries are O(1) dictionary hits.

Broken data fails closed: an organization that sits on a cycle, or whose
parent chain references an unknown organization, has no ancestors and no
descendants.  Walks track visited nodes and never loop.

Examples:
    >>> h = OrganizationHierarchy.from_adjacency([("root", None), ("emea", "root"), ("paris", "emea")])
    >>> h.ancestors_of("paris")
    ['root', 'emea']
    >>> sorted(h.descendants_of("root"))
    ['emea', 'paris']
    >>> h.is_within("paris", "emea"), h.is_within("emea", "paris")
    (True, False)
    >>> cyclic = OrganizationHierarchy.from_adjacency([("a", "b"), ("b", "a")])
    >>> cyclic.ancestors_of("a"), sorted(cyclic.descendants_of("b"))
    ([], [])
"""

# Standard
from collections import defaultdict
import logging
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Protocol, Set, Tuple, Union

# First-Party
from abac_pdp.models import Organization

logger = logging.getLogger(__name__)

AdjacencyRow = Union[Organization, Mapping[str, Any], Tuple[str, Optional[str]]]
ClosureRow = Union[Mapping[str, Any], Tuple[str, str]]


class HierarchySource(Protocol):
    """Read-only view of the organization tree consumed by the engine."""

    def ancestors_of(self, org_id: str) -> List[str]:
        """Ancestors ordered root to leaf, excluding ``org_id`` itself."""

    def descendants_of(self, org_id: str) -> FrozenSet[str]:
        """All descendants, excluding ``org_id`` itself."""


def _adjacency_pair(row: AdjacencyRow) -> Tuple[str, Optional[str]]:
    """Normalise one adjacency row to ``(id, parent_id)``."""
    if isinstance(row, Organization):
        return row.id, row.parent_id
    if isinstance(row, Mapping):
        org = Organization.model_validate(row)
        return org.id, org.parent_id
    org_id, parent_id = row
    return str(org_id), (str(parent_id) if parent_id is not None else None)


def _closure_pair(row: ClosureRow) -> Tuple[str, str]:
    """Normalise one closure row to ``(ancestor, descendant)``."""
    if isinstance(row, Mapping):
        ancestor = row.get("ancestorId", row.get("ancestor_id", row.get("ancestor")))
        descendant = row.get("descendantId", row.get("descendant_id", row.get("descendant")))
        if ancestor is None or descendant is None:
            raise ValueError(f"closure row needs ancestor and descendant: {dict(row)!r}")
        return str(ancestor), str(descendant)
    ancestor, descendant = row
    return str(ancestor), str(descendant)


class OrganizationHierarchy:
    """Materialised closure over an organization tree.

    Use :meth:`from_adjacency` or :meth:`from_closure` rather than the
    constructor.  Instances are immutable after construction and safe to
    share between threads.
    """

    def __init__(self, ancestors: Mapping[str, Tuple[str, ...]], broken: Iterable[str] = ()):
        self._ancestors: Dict[str, Tuple[str, ...]] = dict(ancestors)
        self._broken: FrozenSet[str] = frozenset(broken)
        descendants: Dict[str, Set[str]] = defaultdict(set)
        for org_id, chain in self._ancestors.items():
            if org_id in self._broken:
                continue
            for ancestor in chain:
                descendants[ancestor].add(org_id)
        self._descendants: Dict[str, FrozenSet[str]] = {k: frozenset(v) for k, v in descendants.items()}
        if self._broken:
            logger.warning("Hierarchy: %d organization(s) on a cycle or with a dangling parent: %s", len(self._broken), sorted(self._broken))

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_adjacency(cls, organizations: Iterable[AdjacencyRow]) -> "OrganizationHierarchy":
        """Build from ``(id, parent_id)`` rows, ``Organization`` models or dicts.

        Args:
            organizations: Adjacency rows.

        Returns:
            OrganizationHierarchy: The materialised hierarchy.
        """
        parents: Dict[str, Optional[str]] = dict(_adjacency_pair(row) for row in organizations)
        ancestors: Dict[str, Tuple[str, ...]] = {}
        broken: Set[str] = set()

        for org_id in parents:
            chain: List[str] = []
            visited = {org_id}
            current = parents[org_id]
            while current is not None:
                if current in visited or current not in parents:
                    broken.add(org_id)
                    chain = []
                    break
                visited.add(current)
                chain.append(current)
                current = parents[current]
            chain.reverse()
            ancestors[org_id] = tuple(chain)

        return cls(ancestors, broken)

    @classmethod
    def from_closure(cls, edges: Iterable[ClosureRow]) -> "OrganizationHierarchy":
        """Build from a closure table of ``(ancestor, descendant)`` edges.

        Self edges (depth 0) are accepted and ignored.

        Args:
            edges: Closure rows as tuples or ``{ancestorId, descendantId}`` dicts.

        Returns:
            OrganizationHierarchy: The materialised hierarchy.

        Examples:
            >>> h = OrganizationHierarchy.from_closure([("r", "r"), ("r", "a"), ("r", "b"), ("a", "b")])
            >>> h.ancestors_of("b")
            ['r', 'a']
        """
        ancestor_sets: Dict[str, Set[str]] = defaultdict(set)
        nodes: Set[str] = set()
        for row in edges:
            ancestor, descendant = _closure_pair(row)
            nodes.update((ancestor, descendant))
            if ancestor != descendant:
                ancestor_sets[descendant].add(ancestor)

        broken: Set[str] = set()
        for node in nodes:
            for ancestor in ancestor_sets.get(node, ()):
                if node in ancestor_sets.get(ancestor, ()):
                    broken.update((node, ancestor))

        ancestors: Dict[str, Tuple[str, ...]] = {}
        for node in nodes:
            if node in broken:
                ancestors[node] = ()
                continue
            chain = sorted(ancestor_sets.get(node, ()), key=lambda a: (len(ancestor_sets.get(a, ())), a))
            ancestors[node] = tuple(chain)
        return cls(ancestors, broken)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def ancestors_of(self, org_id: str) -> List[str]:
        """Ancestors of ``org_id`` ordered root to leaf (empty when unknown or broken)."""
        if org_id in self._broken:
            return []
        return list(self._ancestors.get(org_id, ()))

    def descendants_of(self, org_id: str) -> FrozenSet[str]:
        """Descendants of ``org_id`` (empty when unknown or broken)."""
        if org_id in self._broken:
            return frozenset()
        return self._descendants.get(org_id, frozenset())

    def is_within(self, org_id: str, root_id: str) -> bool:
        """True when ``org_id`` is ``root_id`` or one of its descendants."""
        if org_id in self._broken or root_id in self._broken:
            return False
        return org_id == root_id or org_id in self.descendants_of(root_id)

    def __contains__(self, org_id: object) -> bool:
        return org_id in self._ancestors

    def __len__(self) -> int:
        return len(self._ancestors)
