"""
Action boundary for InsureFlow.

Runs a lifecycle operation on behalf of an operator and turns its outcome
into a user-facing notification. Errors never escape this layer: failures
leave state unchanged and are reported, and an authentication failure tears
the session down.
"""

import logging
import threading
from typing import Any, Callable, Dict, Optional, Set, Tuple

from ..auth.session import Session
from ..exceptions import (
    AuthenticationError,
    DuplicateActionError,
    InsureFlowError,
    UploadError,
)
from ..models import ActionOutcome, Notification

logger = logging.getLogger(__name__)

# action -> (success title, failure title)
ACTION_MESSAGES: Dict[str, Tuple[Optional[str], str]] = {
    "create_policy": ("Policy created", "Failed to create policy"),
    "renew_policy": ("Policy renewed", "Renewal failed"),
    "suspend_policy": ("Policy suspended", "Could not suspend policy"),
    "reinstate_policy": ("Policy reinstated", "Reinstate failed"),
    "create_claim": ("Claim created", "Failed to create claim"),
    "submit_claim": ("Claim submitted", "Submission failed"),
    "adjudicate_claim": ("Claim reviewed", "Failed to review claim"),
    "attach_evidence": ("Document uploaded", "Upload failed"),
    "calculate_quote": ("Quote calculated", "Quote failed"),
    "list_documents": (None, "Failed to list documents"),
}

SUCCESS_VARIANTS = {
    "suspend_policy": "warning",
}


class ActionRunner:
    """
    Invokes operations with an in-flight guard and notification mapping.

    Only one invocation per (action, entity) may be outstanding; a second
    one is refused with a warning rather than sent.
    """

    def __init__(self, session: Optional[Session] = None):
        self.session = session
        self._in_flight: Set[Tuple[str, Optional[str]]] = set()
        self._lock = threading.Lock()

    def is_pending(self, action: str, entity_id: Optional[str] = None) -> bool:
        with self._lock:
            return (action, entity_id) in self._in_flight

    def _acquire(self, key: Tuple[str, Optional[str]]) -> None:
        with self._lock:
            if key in self._in_flight:
                raise DuplicateActionError(f"{key[0]} already in progress"
                                           + (f" for {key[1]}" if key[1] else ""))
            self._in_flight.add(key)

    def _release(self, key: Tuple[str, Optional[str]]) -> None:
        with self._lock:
            self._in_flight.discard(key)

    def run(self, action: str, operation: Callable[..., Any], *args: Any,
            entity_id: Optional[str] = None, **kwargs: Any) -> ActionOutcome:
        """
        Run an operation and describe its outcome.

        Args:
            action: Action name, used for the in-flight key and messages
            operation: Callable performing the work
            entity_id: Entity the action targets, if any

        Returns:
            ActionOutcome carrying either the result or the error
        """
        success_title, failure_title = ACTION_MESSAGES.get(
            action, (None, f"{action.replace('_', ' ').capitalize()} failed")
        )
        key = (action, entity_id)

        try:
            self._acquire(key)
        except DuplicateActionError as e:
            logger.warning(str(e))
            return ActionOutcome(
                action=action,
                success=False,
                notification=Notification(title="Action already in progress", variant="warning",
                                          description=str(e)),
                error=str(e),
                error_type=type(e).__name__,
            )

        try:
            result = operation(*args, **kwargs)
        except InsureFlowError as e:
            logger.error(f"{action} failed: {e}")
            if isinstance(e, AuthenticationError) and self.session is not None:
                self.session.logout()

            description = str(e) if isinstance(e, UploadError) else None
            return ActionOutcome(
                action=action,
                success=False,
                notification=Notification(title=failure_title, variant="error",
                                          description=description),
                error=str(e),
                error_type=type(e).__name__,
            )
        finally:
            self._release(key)

        notification = Notification(
            title=success_title or "Done",
            variant=SUCCESS_VARIANTS.get(action, "success"),
        )
        return ActionOutcome(action=action, success=True, result=result, notification=notification)
