"""
Tests for presigned storage transfers.
"""

from unittest.mock import MagicMock

import pytest
import requests

from insureflow.connectors.storage import PresignedTransfer
from insureflow.exceptions import UploadError
from insureflow.models import PresignedUpload


@pytest.fixture
def http():
    return MagicMock()


class TestUpload:

    def test_sends_signed_content_type(self, http, make_response):
        http.request.return_value = make_response(status_code=200, text="")
        target = PresignedUpload(url="https://s3/put", key="k", content_type="image/png")

        PresignedTransfer(http).upload(target, b"\x89PNG", timeout=3)

        http.request.assert_called_once_with(
            "PUT", "https://s3/put", data=b"\x89PNG",
            headers={"Content-Type": "image/png"}, timeout=3,
        )

    def test_no_content_type_when_unsigned(self, http, make_response):
        http.request.return_value = make_response(status_code=200, text="")
        target = PresignedUpload(url="https://s3/put", key="k")

        PresignedTransfer(http).upload(target, b"data")

        assert http.request.call_args.kwargs["headers"] == {}

    def test_rejection_carries_status_and_body(self, http, make_response):
        body = "<Error><Code>SignatureDoesNotMatch</Code></Error>"
        http.request.return_value = make_response(status_code=403, text=body)
        target = PresignedUpload(url="https://s3/put", key="k", content_type="image/png")

        with pytest.raises(UploadError) as exc_info:
            PresignedTransfer(http).upload(target, b"data")

        assert exc_info.value.status_code == 403
        assert str(exc_info.value) == f"Upload failed: 403 - {body}"

    def test_network_failure(self, http):
        http.request.side_effect = requests.Timeout("timed out")
        target = PresignedUpload(url="https://s3/put", key="k")
        with pytest.raises(UploadError, match="timed out"):
            PresignedTransfer(http).upload(target, b"data")


class TestDownload:

    def test_returns_content(self, http, make_response):
        http.request.return_value = make_response(status_code=200, text="file body")
        assert PresignedTransfer(http).download("https://s3/get") == b"file body"

    def test_failure(self, http, make_response):
        http.request.return_value = make_response(status_code=403, text="expired")
        with pytest.raises(UploadError, match="Download failed: 403"):
            PresignedTransfer(http).download("https://s3/get")
