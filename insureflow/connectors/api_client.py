"""
HTTP collaborator client for InsureFlow.

Wraps every endpoint of the remote insurance API. Each call receives the
RequestContext explicitly; any non-2xx response or transport failure is
raised as a CollaboratorError, except that 401, 403 and 404 map to
AuthenticationError, AuthorizationError and NotFoundError.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional, Type, TypeVar
from urllib.parse import quote

import requests
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..auth.session import RequestContext
from ..exceptions import AuthenticationError, AuthorizationError, CollaboratorError, NotFoundError
from ..models import (
    Claim,
    ClaimAdjudication,
    ClaimCreate,
    DocumentInfo,
    HealthStatus,
    LoginRequest,
    Policy,
    PolicyCreate,
    PresignedUpload,
    QuoteInput,
    QuoteResult,
    RegisterRequest,
    Token,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def derive_quote_base_url(api_base_url: str) -> str:
    """The pricing route lives beside the API, without its ``/api`` suffix."""
    return re.sub(r"/api/?$", "", api_base_url.rstrip("/"))


def _segment(value: str) -> str:
    return quote(str(value), safe="")


def _detail(body: str) -> str:
    """Pull ``detail`` out of a JSON error body, falling back to the raw text."""
    try:
        detail = json.loads(body).get("detail")
    except (ValueError, AttributeError):
        detail = None
    return str(detail) if detail else (body or "forbidden")


class InsureFlowAPI:
    """Client for the policies, claims, documents, quote, health and auth endpoints."""

    def __init__(self, base_url: str, quote_base_url: Optional[str] = None,
                 http: Optional[Any] = None):
        """
        Initialize the client.

        Args:
            base_url: API base URL, e.g. ``https://host/prod/api``
            quote_base_url: Base URL for ``/quote/calculate``; derived from
                           ``base_url`` when omitted
            http: requests.Session-compatible transport
        """
        self.base_url = base_url.rstrip("/")
        self.quote_base_url = (quote_base_url or derive_quote_base_url(base_url)).rstrip("/")
        self.http = http or requests.Session()

        logger.info(f"Initialized InsureFlowAPI (base_url={self.base_url}, "
                    f"quote_base_url={self.quote_base_url})")

    def _request(self, method: str, path: str, ctx: Optional[RequestContext] = None, *,
                 params: Optional[Dict[str, Any]] = None, json: Optional[Any] = None,
                 base_url: Optional[str] = None) -> Any:
        """
        Issue one request and decode the JSON body.

        Raises:
            AuthenticationError: On HTTP 401
            AuthorizationError: On HTTP 403
            NotFoundError: On HTTP 404
            CollaboratorError: On any other non-2xx response or network failure
        """
        url = f"{base_url or self.base_url}{path}"
        headers = ctx.headers() if ctx else {}
        query = {
            name: (value.value if hasattr(value, "value") else value)
            for name, value in (params or {}).items() if value is not None
        }

        try:
            response = self.http.request(
                method,
                url,
                params=query or None,
                json=json,
                headers=headers,
                timeout=ctx.timeout if ctx else None,
            )
        except requests.RequestException as e:
            logger.error(f"{method} {path} failed: {e}")
            raise CollaboratorError(f"{method} {path} failed: {e}") from e

        if not 200 <= response.status_code < 300:
            body = response.text
            logger.error(f"{method} {path} returned HTTP {response.status_code}")
            if response.status_code == 401:
                reason = "session is not valid" if ctx else "credentials were not accepted"
                raise AuthenticationError(f"{method} {path} was rejected: {reason}")
            if response.status_code == 403:
                raise AuthorizationError(f"{method} {path} was refused: {_detail(body)}")
            error_class = NotFoundError if response.status_code == 404 else CollaboratorError
            raise error_class(
                f"{method} {path} returned HTTP {response.status_code}",
                status_code=response.status_code,
                body=body,
            )

        if not response.content:
            return None

        try:
            return response.json()
        except ValueError as e:
            raise CollaboratorError(
                f"{method} {path} returned a non-JSON body", status_code=response.status_code
            ) from e

    @staticmethod
    def _parse(model: Type[M], data: Any) -> M:
        try:
            return model.model_validate(data)
        except PydanticValidationError as e:
            logger.error(f"Unexpected {model.__name__} payload: {e}")
            raise CollaboratorError(f"Unexpected {model.__name__} payload from collaborator") from e

    def _parse_items(self, model: Type[M], data: Any) -> List[M]:
        if not isinstance(data, dict) or not isinstance(data.get("items"), list):
            raise CollaboratorError(f"Expected an items list of {model.__name__}")
        return [self._parse(model, item) for item in data["items"]]

    # Authentication

    def login(self, username: str, password: str) -> Token:
        payload = LoginRequest(username=username, password=password)
        return self._parse(Token, self._request("POST", "/auth/login", json=payload.to_wire()))

    def register(self, request: RegisterRequest) -> Token:
        data = self._request("POST", "/auth/register", json=request.to_wire(exclude_none=True))
        return self._parse(Token, data)

    # Policies

    def list_policies(self, ctx: RequestContext, user_id: Optional[str] = None,
                      status: Optional[str] = None) -> List[Policy]:
        data = self._request("GET", "/policies", ctx, params={"userId": user_id, "status": status})
        return self._parse_items(Policy, data)

    def get_policy(self, ctx: RequestContext, policy_id: str) -> Policy:
        return self._parse(Policy, self._request("GET", f"/policies/{_segment(policy_id)}", ctx))

    def create_policy(self, ctx: RequestContext, payload: PolicyCreate) -> Policy:
        data = self._request("POST", "/policies", ctx, json=payload.to_wire(exclude_none=True))
        return self._parse(Policy, data)

    def renew_policy(self, ctx: RequestContext, policy_id: str, extend_months: int) -> Policy:
        data = self._request("POST", f"/policies/{_segment(policy_id)}/renew", ctx,
                             json={"extendMonths": extend_months})
        return self._parse(Policy, data)

    def suspend_policy(self, ctx: RequestContext, policy_id: str, reason: str) -> Policy:
        data = self._request("POST", f"/policies/{_segment(policy_id)}/suspend", ctx,
                             json={"reason": reason})
        return self._parse(Policy, data)

    def reinstate_policy(self, ctx: RequestContext, policy_id: str) -> Policy:
        data = self._request("POST", f"/policies/{_segment(policy_id)}/reinstate", ctx)
        return self._parse(Policy, data)

    # Claims

    def list_claims(self, ctx: RequestContext, policy_id: Optional[str] = None,
                    status: Optional[str] = None) -> List[Claim]:
        data = self._request("GET", "/claims", ctx, params={"policyId": policy_id, "status": status})
        return self._parse_items(Claim, data)

    def create_claim(self, ctx: RequestContext, payload: ClaimCreate) -> Claim:
        return self._parse(Claim, self._request("POST", "/claims", ctx, json=payload.to_wire()))

    def submit_claim(self, ctx: RequestContext, claim_id: str) -> Claim:
        return self._parse(Claim, self._request("POST", f"/claims/{_segment(claim_id)}/submit", ctx))

    def adjudicate_claim(self, ctx: RequestContext, claim_id: str,
                         payload: ClaimAdjudication) -> Claim:
        data = self._request("POST", f"/claims/{_segment(claim_id)}/adjudicate", ctx,
                             json=payload.to_wire())
        return self._parse(Claim, data)

    # Documents

    def presign_upload(self, ctx: RequestContext, claim_id: str, filename: str,
                       content_type: Optional[str] = None) -> PresignedUpload:
        body = {"filename": filename}
        if content_type:
            body["contentType"] = content_type
        data = self._request("POST", f"/docs/{_segment(claim_id)}/presign-upload", ctx, json=body)
        return self._parse(PresignedUpload, data)

    def list_documents(self, ctx: RequestContext, claim_id: str) -> List[DocumentInfo]:
        data = self._request("GET", f"/docs/{_segment(claim_id)}/list", ctx)
        return self._parse_items(DocumentInfo, data)

    def presign_download(self, ctx: RequestContext, key: str) -> str:
        data = self._request("GET", "/docs/presign-download", ctx, params={"key": key})
        if not isinstance(data, dict) or not data.get("url"):
            raise CollaboratorError("Presign download response did not include a url")
        return data["url"]

    # Pricing and health

    def calculate_quote(self, ctx: RequestContext, quote_input: QuoteInput) -> QuoteResult:
        data = self._request("POST", "/quote/calculate", ctx, json=quote_input.to_wire(),
                             base_url=self.quote_base_url)
        return self._parse(QuoteResult, data)

    def health(self, ctx: RequestContext) -> HealthStatus:
        return self._parse(HealthStatus, self._request("GET", "/health", ctx) or {})
