"""
Actions Package.

Exports the ActionRunner used at the operator boundary.
"""

from .runner import ACTION_MESSAGES, ActionRunner

__all__ = ["ACTION_MESSAGES", "ActionRunner"]
