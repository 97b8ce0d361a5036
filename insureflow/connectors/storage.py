"""
Presigned object-storage transfers.

Files travel directly between the operator and object storage; the
lifecycle manager only brokers the presigned URLs.
"""

import logging
from typing import Any, Optional

import requests

from ..exceptions import UploadError
from ..models import PresignedUpload

logger = logging.getLogger(__name__)


class PresignedTransfer:
    """Uploads to and downloads from presigned storage URLs."""

    def __init__(self, http: Optional[Any] = None):
        self.http = http or requests.Session()

    def upload(self, target: PresignedUpload, content: bytes,
               timeout: Optional[float] = None) -> None:
        """
        PUT ``content`` to a presigned target.

        The Content-Type header is only sent when the target carries one, and
        then exactly as signed; storage rejects any other value.

        Raises:
            UploadError: If the transfer fails or storage answers non-2xx
        """
        headers = {}
        if target.content_type:
            headers["Content-Type"] = target.content_type

        try:
            response = self.http.request("PUT", target.url, data=content, headers=headers,
                                         timeout=timeout)
        except requests.RequestException as e:
            logger.error(f"Upload of {target.key} failed: {e}")
            raise UploadError(f"Upload failed: {e}") from e

        if not 200 <= response.status_code < 300:
            body = response.text
            logger.error(f"Storage rejected upload of {target.key}: HTTP {response.status_code}")
            raise UploadError(
                f"Upload failed: {response.status_code} - {body}",
                status_code=response.status_code,
                body=body,
            )

        logger.info(f"Uploaded {len(content)} bytes to {target.key}")

    def download(self, url: str, timeout: Optional[float] = None) -> bytes:
        """Fetch an object from a presigned download URL."""
        try:
            response = self.http.request("GET", url, timeout=timeout)
        except requests.RequestException as e:
            raise UploadError(f"Download failed: {e}") from e

        if not 200 <= response.status_code < 300:
            raise UploadError(
                f"Download failed: {response.status_code} - {response.text}",
                status_code=response.status_code,
                body=response.text,
            )
        return response.content
