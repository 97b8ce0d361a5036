"""
Query cache and invalidation map for InsureFlow.

List queries are cached per scope, acting principal and filter parameters.
Every mutating action declares the scopes it affects; completing the action
invalidates those scopes so the next read reflects the new state.
"""

import logging
from typing import Any, Dict, FrozenSet, Iterable, List, NamedTuple, Optional, Tuple

logger = logging.getLogger(__name__)

POLICIES = "policies"
CLAIMS = "claims"

# Action -> query scopes whose cached results become stale on success.
INVALIDATION_MAP: Dict[str, FrozenSet[str]] = {
    "create_policy": frozenset({POLICIES}),
    "renew_policy": frozenset({POLICIES}),
    "suspend_policy": frozenset({POLICIES}),
    "reinstate_policy": frozenset({POLICIES}),
    "create_claim": frozenset({CLAIMS}),
    "submit_claim": frozenset({CLAIMS}),
    "adjudicate_claim": frozenset({CLAIMS}),
    # Documents are never cached.
    "attach_evidence": frozenset(),
}


class QueryKey(NamedTuple):
    """Identity of a cached list query."""
    scope: str
    principal: str
    params: Tuple[Tuple[str, str], ...]

    def param_dict(self) -> Dict[str, str]:
        return dict(self.params)


def make_key(scope: str, principal: str, **params: Optional[Any]) -> QueryKey:
    """Build a query key; None-valued parameters are dropped."""
    normalized = tuple(sorted(
        (name, value.value if hasattr(value, "value") else str(value))
        for name, value in params.items() if value is not None
    ))
    return QueryKey(scope, principal, normalized)


def affected_scopes(action: str) -> FrozenSet[str]:
    """Get the scopes invalidated by a successful action."""
    if action not in INVALIDATION_MAP:
        logger.warning(f"No invalidation entry for action {action}")
        return frozenset()
    return INVALIDATION_MAP[action]


class QueryCache:
    """In-memory store of list query results."""

    def __init__(self):
        self._entries: Dict[QueryKey, Any] = {}

    def get(self, key: QueryKey) -> Optional[Any]:
        return self._entries.get(key)

    def put(self, key: QueryKey, value: Any) -> None:
        self._entries[key] = value

    def keys(self, scope: Optional[str] = None) -> List[QueryKey]:
        return [key for key in self._entries if scope is None or key.scope == scope]

    def invalidate(self, scopes: Iterable[str]) -> List[QueryKey]:
        """
        Drop every entry belonging to ``scopes``.

        Returns:
            The keys that were removed, so callers can refetch them
        """
        scopes = set(scopes)
        stale = [key for key in self._entries if key.scope in scopes]
        for key in stale:
            del self._entries[key]
        if stale:
            logger.debug(f"Invalidated {len(stale)} cached queries for {sorted(scopes)}")
        return stale

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
