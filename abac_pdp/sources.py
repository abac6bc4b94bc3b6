# -*- coding: utf-8 -*-
"""Location: ./abac_pdp/sources.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Policy sources and document loaders.

The engine never reads storage itself: callers hand it a snapshot.  A
``PolicySource`` produces those snapshots; each carries a ``version`` that
changes whenever the policy set changes, so decision caches can key on it.

Documents are JSON (``orjson``) or YAML (``yaml.safe_load``), chosen by file
suffix.  A policy document is either a bare list of policy records or an
object with a ``policies`` list.  A hierarchy document is either
``{"organizations": [{id, parentId}, ...]}`` or
``{"closure": [{ancestorId, descendantId}, ...]}``.

Examples:
    >>> src = InMemoryPolicySource([{"id": "p1", "effect": "allow", "resources": {"types": ["*"]}, "actions": ["*"]}])
    >>> snap = src.snapshot()
    >>> snap.version, len(snap.policies)
    (1, 1)
    >>> src.remove("p1")
    True
    >>> src.snapshot().version
    2
"""

# Standard
import logging
from pathlib import Path
import threading
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Protocol, Sequence, Tuple, Union

# Third-Party
import orjson
import yaml

# First-Party
from abac_pdp.hierarchy import OrganizationHierarchy
from abac_pdp.models import EvaluationContext, Policy

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
PolicyRecord = Union[Policy, Mapping[str, Any]]

_YAML_SUFFIXES = (".yaml", ".yml")


class PolicySnapshot(NamedTuple):
    """Immutable view of the policy set at one version."""

    version: int
    policies: Tuple[PolicyRecord, ...]


class PolicySource(Protocol):
    """Supplies policy snapshots to the decision point."""

    def snapshot(self) -> PolicySnapshot:
        """Return the current policy set and its version."""


class InMemoryPolicySource:
    """Thread-safe in-process policy store.

    Records are kept as given (models or raw dicts); validation happens in
    the engine so one malformed record never blocks the rest.

    Parameters
    ----------
    policies : sequence, optional
        Initial policy records.
    """

    def __init__(self, policies: Optional[Sequence[PolicyRecord]] = None):
        self._lock = threading.Lock()
        self._policies: Tuple[PolicyRecord, ...] = tuple(policies or ())
        self._version = 1

    @classmethod
    def from_file(cls, path: PathLike) -> "InMemoryPolicySource":
        """Create a source from a JSON or YAML policy document."""
        return cls(load_policy_records(path))

    def snapshot(self) -> PolicySnapshot:
        with self._lock:
            return PolicySnapshot(self._version, self._policies)

    @property
    def version(self) -> int:
        """Current snapshot version."""
        with self._lock:
            return self._version

    def replace(self, policies: Sequence[PolicyRecord]) -> int:
        """Swap the whole policy set.

        Args:
            policies: New policy records.

        Returns:
            int: The new version.
        """
        with self._lock:
            self._policies = tuple(policies)
            self._version += 1
            logger.info("Policy source: replaced policy set (%d records, version %d)", len(self._policies), self._version)
            return self._version

    def add(self, policy: PolicyRecord) -> int:
        """Add or replace one record by id; returns the new version."""
        policy_id = _record_id(policy)
        with self._lock:
            kept = tuple(p for p in self._policies if _record_id(p) != policy_id)
            self._policies = kept + (policy,)
            self._version += 1
            return self._version

    def remove(self, policy_id: str) -> bool:
        """Remove a record by id.

        Args:
            policy_id: Policy id.

        Returns:
            bool: True when a record was removed.
        """
        with self._lock:
            kept = tuple(p for p in self._policies if _record_id(p) != policy_id)
            if len(kept) == len(self._policies):
                return False
            self._policies = kept
            self._version += 1
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._policies)


def _record_id(record: PolicyRecord) -> Optional[str]:
    if isinstance(record, Policy):
        return record.id
    if isinstance(record, Mapping):
        value = record.get("id")
        return str(value) if value is not None else None
    return None


# ---------------------------------------------------------------------------
# Loaders
# ---------------------------------------------------------------------------


def load_document(path: PathLike) -> Any:
    """Parse a JSON or YAML document.

    Args:
        path: File path; ``.yaml``/``.yml`` selects YAML, anything else JSON.

    Returns:
        Any: The parsed document.

    Raises:
        ValueError: When the document cannot be parsed.
    """
    path = Path(path)
    raw = path.read_bytes()
    try:
        if path.suffix.lower() in _YAML_SUFFIXES:
            return yaml.safe_load(raw)
        return orjson.loads(raw)
    except (orjson.JSONDecodeError, yaml.YAMLError) as exc:
        raise ValueError(f"Cannot parse {path}: {exc}") from exc


def load_policy_records(path: PathLike) -> List[Dict[str, Any]]:
    """Load raw policy records from a document.

    Args:
        path: Policy document.

    Returns:
        List[Dict[str, Any]]: Unvalidated policy records.

    Raises:
        ValueError: When the document has no policy list.
    """
    document = load_document(path)
    if isinstance(document, Mapping):
        document = document.get("policies")
    if not isinstance(document, list):
        raise ValueError(f"{path}: expected a list of policies or an object with a 'policies' list")
    logger.debug("Loaded %d policy record(s) from %s", len(document), path)
    return document


def load_context(path: PathLike) -> EvaluationContext:
    """Load and validate an evaluation context document."""
    return EvaluationContext.model_validate(load_document(path))


def load_hierarchy(path: PathLike) -> OrganizationHierarchy:
    """Load an organization hierarchy document.

    Args:
        path: Hierarchy document with ``organizations`` or ``closure`` rows.

    Returns:
        OrganizationHierarchy: The materialised hierarchy.

    Raises:
        ValueError: When neither key is present.
    """
    document = load_document(path)
    if isinstance(document, Mapping):
        if "organizations" in document:
            return OrganizationHierarchy.from_adjacency(document["organizations"] or [])
        if "closure" in document:
            return OrganizationHierarchy.from_closure(document["closure"] or [])
    if isinstance(document, list):
        return OrganizationHierarchy.from_adjacency(document)
    raise ValueError(f"{path}: expected 'organizations' or 'closure' rows")
