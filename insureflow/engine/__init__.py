"""
Lifecycle Engine Package.

This package provides the transition table, input validation, query cache
and the lifecycle manager that ties them to the HTTP collaborator.
"""

from .lifecycle_manager import LifecycleManager, summarize_portfolio
from .query_cache import INVALIDATION_MAP, QueryCache
from .transition_table import Transition, TransitionTable

__all__ = [
    "LifecycleManager",
    "summarize_portfolio",
    "INVALIDATION_MAP",
    "QueryCache",
    "Transition",
    "TransitionTable",
]
