"""
Backend Package.

In-memory authoritative store used by the development API server.
"""

from .store import InMemoryBackend

__all__ = ["InMemoryBackend"]
