"""
Shared fixtures for the InsureFlow test suite.
"""

import json
import time
from unittest.mock import MagicMock

import jwt
import pytest

from insureflow.auth.session import RequestContext, Session
from insureflow.models import Claim, ClaimStatus, Policy, PolicyStatus

TEST_SECRET = "test-secret"


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: end-to-end tests against the dev server")


@pytest.fixture
def make_token():
    """Factory for signed bearer tokens."""
    def _make(username="jane@example.com", role="USER", user_id="user-1",
              expires_in=3600, **extra):
        claims = {"sub": username, "role": role, "userId": user_id, **extra}
        if expires_in is not None:
            claims["exp"] = int(time.time()) + expires_in
        return jwt.encode(claims, TEST_SECRET, algorithm="HS256")
    return _make


@pytest.fixture
def user_session(make_token):
    """Session for an ordinary policyholder (user-1)."""
    session = Session()
    session.establish(make_token())
    return session


@pytest.fixture
def admin_session(make_token):
    """Session for an administrator."""
    session = Session()
    session.establish(make_token(username="admin@example.com", role="ADMIN", user_id="admin-1"))
    return session


@pytest.fixture
def user_ctx(user_session):
    return RequestContext(user_session, timeout=5)


@pytest.fixture
def admin_ctx(admin_session):
    return RequestContext(admin_session, timeout=5)


@pytest.fixture
def make_policy():
    def _make(policy_id="pol-1", user_id="user-1", status=PolicyStatus.ACTIVE, **overrides):
        data = {
            "policyId": policy_id,
            "userId": user_id,
            "status": status,
            "coverageAmount": 50000.0,
            "premium": 720.0,
            "termMonths": 12,
        }
        data.update(overrides)
        return Policy.model_validate(data)
    return _make


@pytest.fixture
def make_claim():
    def _make(claim_id="clm-1", policy_id="pol-1", status=ClaimStatus.DRAFT, **overrides):
        data = {
            "claimId": claim_id,
            "policyId": policy_id,
            "status": status,
            "description": "Water damage in kitchen",
        }
        data.update(overrides)
        return Claim.model_validate(data)
    return _make


@pytest.fixture
def make_response():
    """Factory for requests-style response doubles."""
    def _make(status_code=200, payload=None, text=None):
        response = MagicMock()
        response.status_code = status_code
        if payload is not None:
            body = json.dumps(payload)
            response.json.return_value = payload
        else:
            body = text or ""
            response.json.side_effect = ValueError("No JSON")
        response.text = body
        response.content = body.encode()
        return response
    return _make


ADMIN_USERNAME = "admin@example.com"
ADMIN_PASSWORD = "admin-password"


@pytest.fixture
def server_env(monkeypatch):
    """Development server settings: a seeded administrator and cheap password hashing."""
    monkeypatch.setenv("INSUREFLOW_ADMIN_USERNAME", ADMIN_USERNAME)
    monkeypatch.setenv("INSUREFLOW_ADMIN_PASSWORD", ADMIN_PASSWORD)
    monkeypatch.setenv("INSUREFLOW_BCRYPT_ROUNDS", "4")
    return {"username": ADMIN_USERNAME, "password": ADMIN_PASSWORD}
