"""
Authentication Package.

Exports the session, its persistent store and the request context.
"""

from .session import RequestContext, Session, SessionStore, decode_token

__all__ = ["RequestContext", "Session", "SessionStore", "decode_token"]
