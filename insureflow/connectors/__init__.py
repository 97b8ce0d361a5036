"""
Connectors Package for InsureFlow.

This package provides the HTTP client for the insurance API and the
presigned transfer client for document storage.
"""

from .api_client import InsureFlowAPI
from .storage import PresignedTransfer

__all__ = [
    "InsureFlowAPI",
    "PresignedTransfer",
]
