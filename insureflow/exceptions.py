"""
Error taxonomy for InsureFlow.

Local validation failures are raised before any request is sent. Remote
401 and 403 responses surface as AuthenticationError and AuthorizationError;
every other remote failure is a CollaboratorError (or UploadError for the
presigned transfer), so the action boundary can turn it into a notification.
"""

from typing import List, Optional, Union


class InsureFlowError(Exception):
    """Base class for all InsureFlow errors."""


class ValidationError(InsureFlowError):
    """Input rejected locally, before reaching the collaborator."""

    def __init__(self, errors: Union[str, List[str]]):
        self.errors = [errors] if isinstance(errors, str) else list(errors)
        super().__init__("; ".join(self.errors))


class InvalidTransitionError(ValidationError):
    """Action is not legal from the entity's current status."""


class AuthenticationError(InsureFlowError):
    """Token absent, expired or malformed."""


class AuthorizationError(InsureFlowError):
    """Role or ownership does not permit the action."""


class CollaboratorError(InsureFlowError):
    """Non-2xx response or network failure from the HTTP collaborator."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class NotFoundError(CollaboratorError):
    """Entity does not exist or is not visible to the caller."""


class UploadError(InsureFlowError):
    """Presigned transfer rejected by the storage collaborator."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class DuplicateActionError(InsureFlowError):
    """The same action is already in flight for this entity."""
