"""
InsureFlow

Policy and claim lifecycle management for an insurance operations console.

Enforces the policy and claim state machines on the client side, talks to
the remote insurance API and presigned document storage, and keeps list
queries fresh after every change.
"""

__version__ = "1.0.0"
__author__ = "InsureFlow Team"
__email__ = "team@example.com"

from .engine.lifecycle_manager import LifecycleManager
from .engine.transition_table import TransitionTable
from .auth.session import RequestContext, Session
from .connectors.api_client import InsureFlowAPI

__all__ = [
    "LifecycleManager",
    "TransitionTable",
    "RequestContext",
    "Session",
    "InsureFlowAPI",
]
