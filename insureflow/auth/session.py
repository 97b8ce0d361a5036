"""
Session handling for InsureFlow.

The session is explicit state: it is initialised by decoding a persisted
token, torn down by logout, and handed to every collaborator call through a
RequestContext rather than living in a module-level global.
"""

import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, Optional, Union

import jwt
from pydantic import ValidationError as PydanticValidationError

from ..exceptions import AuthenticationError
from ..models import AuthUser

logger = logging.getLogger(__name__)

STORAGE_KEY = "insureflow.auth"
REQUIRED_CLAIMS = ("sub", "role", "userId")
ADMIN_PRINCIPAL = "admin"


def decode_claims(token: str) -> Optional[Dict[str, Any]]:
    """
    Decode a bearer token's claims without verifying its signature.

    The collaborator verifies signatures; locally the token is only read
    to learn who is acting.
    """
    try:
        return jwt.decode(token, options={"verify_signature": False, "verify_exp": False})
    except jwt.InvalidTokenError as e:
        logger.warning(f"Failed to decode token: {e}")
        return None


def is_expired(claims: Dict[str, Any], now: Optional[float] = None) -> bool:
    """Check the optional ``exp`` claim (epoch seconds)."""
    exp = claims.get("exp")
    if exp is None:
        return False
    now = time.time() if now is None else now
    try:
        return float(exp) < now
    except (TypeError, ValueError):
        return True


def decode_token(token: Optional[str], now: Optional[float] = None) -> Optional[AuthUser]:
    """
    Turn a bearer token into an AuthUser.

    Returns:
        AuthUser, or None if the token is malformed, expired or missing
        any of ``sub``, ``role`` or ``userId``
    """
    if not token:
        return None

    claims = decode_claims(token)
    if claims is None:
        return None

    if not all(claims.get(name) for name in REQUIRED_CLAIMS):
        logger.warning("Token is missing required claims")
        return None

    if is_expired(claims, now):
        logger.info("Token has expired")
        return None

    try:
        return AuthUser(username=claims["sub"], role=claims["role"], user_id=claims["userId"])
    except PydanticValidationError as e:
        logger.warning(f"Token carries invalid claims: {e}")
        return None


class SessionStore:
    """Persists the bearer token between runs as a small JSON file."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self) -> Optional[str]:
        """Read the persisted token, discarding unreadable files."""
        if not self.path.exists():
            return None

        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
            return data[STORAGE_KEY]["token"]
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Failed to read auth storage {self.path}: {e}")
            self.clear()
            return None

    def save(self, token: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump({STORAGE_KEY: {"token": token}}, f)
        try:
            self.path.chmod(0o600)
        except OSError:
            logger.debug(f"Could not restrict permissions on {self.path}")

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()


class Session:
    """
    Authenticated session for one operator.

    Holds the bearer token and the identity decoded from it. A session
    without a valid token is unauthenticated; every collaborator call checks
    it again so an expiry mid-session forces a logout.
    """

    def __init__(self, store: Optional[SessionStore] = None):
        self.store = store
        self.token: Optional[str] = None
        self.user: Optional[AuthUser] = None

    @classmethod
    def restore(cls, store: Optional[SessionStore] = None) -> "Session":
        """Initialise a session from the persisted token, if still valid."""
        session = cls(store)
        token = store.load() if store else None
        if token:
            user = decode_token(token)
            if user:
                session.token = token
                session.user = user
                logger.info(f"Restored session for {user.username}")
            else:
                store.clear()
        return session

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token and self.user)

    def establish(self, token: str) -> AuthUser:
        """
        Adopt a freshly issued token.

        Raises:
            AuthenticationError: If the token cannot be parsed into a user
        """
        user = decode_token(token)
        if not user:
            raise AuthenticationError("Unable to parse login token")

        self.token = token
        self.user = user
        if self.store:
            self.store.save(token)

        logger.info(f"Established session for {user.username} ({user.role.value})")
        return user

    def logout(self) -> None:
        """Tear down the session and forget the persisted token."""
        if self.user:
            logger.info(f"Logging out {self.user.username}")
        self.token = None
        self.user = None
        if self.store:
            self.store.clear()

    def require_user(self, now: Optional[float] = None) -> AuthUser:
        """
        Get the acting user, re-checking token expiry.

        Raises:
            AuthenticationError: If unauthenticated or the token has expired
        """
        if not self.is_authenticated:
            raise AuthenticationError("Not authenticated")

        if decode_token(self.token, now) is None:
            self.logout()
            raise AuthenticationError("Session expired")

        return self.user


class RequestContext:
    """Request-scoped settings passed explicitly to every collaborator call."""

    def __init__(self, session: Session, timeout: Optional[float] = None):
        self.session = session
        self.timeout = timeout

    def require_user(self) -> AuthUser:
        return self.session.require_user()

    @property
    def principal(self) -> str:
        """Cache partition for the acting user: admins share one view, users get their own."""
        user = self.require_user()
        return ADMIN_PRINCIPAL if user.is_admin else f"user:{user.user_id}"

    def headers(self) -> Dict[str, str]:
        if self.session.token:
            return {"Authorization": f"Bearer {self.session.token}"}
        return {}
