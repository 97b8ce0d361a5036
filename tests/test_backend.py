"""
Tests for the development server's in-memory backend.
"""

from datetime import datetime, timezone
from urllib.parse import parse_qs, urlparse

import pytest

from insureflow.backend.store import InMemoryBackend, add_months
from insureflow.exceptions import (
    AuthenticationError,
    AuthorizationError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from insureflow.models import (
    AuthUser,
    ClaimAdjudication,
    ClaimCreate,
    ClaimStatus,
    PolicyCreate,
    PolicyStatus,
    QuoteInput,
    RegisterRequest,
    Role,
)

JANE = AuthUser(username="jane@example.com", role=Role.USER, user_id="user-1")
BOB = AuthUser(username="bob@example.com", role=Role.USER, user_id="user-2")
ADMIN = AuthUser(username="admin@example.com", role=Role.ADMIN, user_id="admin-1")


@pytest.fixture
def backend():
    return InMemoryBackend(signing_secret="test-signing", bcrypt_rounds=4)


@pytest.fixture
def policy(backend):
    return backend.create_policy(
        JANE, PolicyCreate(user_id="user-1", coverage_amount=50000, premium=720, term_months=12)
    )


@pytest.fixture
def claim(backend, policy):
    return backend.create_claim(
        JANE, ClaimCreate(policy_id=policy.policy_id, description="Water damage in kitchen")
    )


class TestAddMonths:

    def test_simple(self):
        assert add_months(datetime(2024, 1, 15), 12) == datetime(2025, 1, 15)

    def test_clamps_to_month_end(self):
        assert add_months(datetime(2024, 1, 31), 1) == datetime(2024, 2, 29)
        assert add_months(datetime(2023, 1, 31), 1) == datetime(2023, 2, 28)

    def test_crosses_year(self):
        assert add_months(datetime(2024, 11, 30), 3) == datetime(2025, 2, 28)


class TestUsers:

    def test_register_and_authenticate(self, backend):
        user = backend.register(RegisterRequest(email="Jane@Example.com", password="password123"))

        assert user.username == "jane@example.com"
        assert user.role == Role.USER
        assert user.user_id.startswith("user-")
        assert backend.authenticate("JANE@example.com", "password123").user_id == user.user_id

    def test_duplicate_registration(self, backend):
        backend.register(RegisterRequest(email="jane@example.com", password="password123"))
        with pytest.raises(ValidationError, match="already exists"):
            backend.register(RegisterRequest(email="jane@example.com", password="other-password"))

    def test_passwords_stored_as_bcrypt(self, backend):
        backend.register(RegisterRequest(email="jane@example.com", password="password123"))
        stored = backend.users["jane@example.com"].password_hash

        assert stored.startswith("$2b$04$")
        assert "password123" not in stored

    def test_admin_self_registration_refused(self, backend):
        with pytest.raises(AuthorizationError, match="cannot be self-registered"):
            backend.register(RegisterRequest(email="eve@example.com", password="password123",
                                             role="ADMIN"))
        assert backend.users == {}

    def test_seeded_admin(self, backend):
        user = backend.register(RegisterRequest(email="root@example.com", password="password123",
                                                role="ADMIN"), allow_admin=True)
        assert user.role == Role.ADMIN
        assert backend.authenticate("root@example.com", "password123").is_admin

    def test_wrong_password(self, backend):
        backend.register(RegisterRequest(email="jane@example.com", password="password123"))
        with pytest.raises(AuthenticationError):
            backend.authenticate("jane@example.com", "wrong")
        with pytest.raises(AuthenticationError):
            backend.authenticate("nobody@example.com", "password123")


class TestPolicies:

    def test_create_is_active(self, policy):
        assert policy.status == PolicyStatus.ACTIVE
        assert policy.policy_id.startswith("pol-")

    def test_user_cannot_create_for_another(self, backend):
        with pytest.raises(AuthorizationError):
            backend.create_policy(
                BOB, PolicyCreate(user_id="user-1", coverage_amount=1, premium=1, term_months=1)
            )

    def test_listing_is_owner_scoped(self, backend, policy):
        assert backend.list_policies(BOB) == []
        assert backend.list_policies(BOB, user_id="user-1") == []
        assert [p.policy_id for p in backend.list_policies(JANE)] == [policy.policy_id]
        assert len(backend.list_policies(ADMIN)) == 1
        assert backend.list_policies(ADMIN, status=PolicyStatus.SUSPENDED) == []

    def test_get_policy(self, backend, policy):
        with pytest.raises(AuthorizationError):
            backend.get_policy(BOB, policy.policy_id)
        with pytest.raises(NotFoundError):
            backend.get_policy(ADMIN, "pol-missing")

    def test_renew(self, backend, policy):
        renewed = backend.renew_policy(JANE, policy.policy_id, 6)
        assert renewed.term_months == 18
        assert renewed.status == PolicyStatus.ACTIVE

    def test_renew_rejects_bad_months(self, backend, policy):
        with pytest.raises(ValidationError):
            backend.renew_policy(JANE, policy.policy_id, 0)

    def test_suspend_reinstate(self, backend, policy):
        with pytest.raises(AuthorizationError):
            backend.suspend_policy(JANE, policy.policy_id, "fraud review")

        suspended = backend.suspend_policy(ADMIN, policy.policy_id, " fraud review ")
        assert suspended.status == PolicyStatus.SUSPENDED
        assert suspended.suspended_reason == "fraud review"

        with pytest.raises(InvalidTransitionError):
            backend.renew_policy(JANE, policy.policy_id, 6)
        with pytest.raises(InvalidTransitionError):
            backend.suspend_policy(ADMIN, policy.policy_id, "again")

        reinstated = backend.reinstate_policy(ADMIN, policy.policy_id)
        assert reinstated.status == PolicyStatus.ACTIVE
        assert reinstated.suspended_reason is None

    def test_suspend_requires_reason(self, backend, policy):
        with pytest.raises(ValidationError):
            backend.suspend_policy(ADMIN, policy.policy_id, " ")

    def test_expire_due_policies(self, backend, policy):
        assert backend.expire_due_policies(now=policy.created_at) == []

        later = add_months(policy.created_at, 12)
        expired = backend.expire_due_policies(now=later)

        assert [p.policy_id for p in expired] == [policy.policy_id]
        assert backend.get_policy(ADMIN, policy.policy_id).status == PolicyStatus.EXPIRED
        with pytest.raises(InvalidTransitionError):
            backend.renew_policy(JANE, policy.policy_id, 1)


class TestClaims:

    def test_create_is_draft(self, claim):
        assert claim.status == ClaimStatus.DRAFT
        assert claim.payout_amount is None

    def test_claim_on_foreign_policy(self, backend, policy):
        with pytest.raises(AuthorizationError):
            backend.create_claim(BOB, ClaimCreate(policy_id=policy.policy_id,
                                                  description="Not my policy at all"))

    def test_visibility(self, backend, claim):
        assert backend.list_claims(BOB) == []
        assert len(backend.list_claims(JANE)) == 1
        assert len(backend.list_claims(ADMIN, status=ClaimStatus.DRAFT)) == 1
        with pytest.raises(NotFoundError):
            backend.get_claim(BOB, claim.claim_id)

    def test_submit_once(self, backend, claim):
        assert backend.submit_claim(JANE, claim.claim_id).status == ClaimStatus.SUBMITTED
        with pytest.raises(InvalidTransitionError):
            backend.submit_claim(JANE, claim.claim_id)

    def test_adjudicate(self, backend, claim):
        backend.submit_claim(JANE, claim.claim_id)
        decision = ClaimAdjudication(decision=ClaimStatus.APPROVED, payout_amount=1200)

        with pytest.raises(AuthorizationError):
            backend.adjudicate_claim(JANE, claim.claim_id, decision)

        approved = backend.adjudicate_claim(ADMIN, claim.claim_id, decision)
        assert approved.status == ClaimStatus.APPROVED
        assert approved.payout_amount == 1200

        with pytest.raises(InvalidTransitionError):
            backend.adjudicate_claim(ADMIN, claim.claim_id, decision)

    def test_adjudicate_draft_rejected(self, backend, claim):
        decision = ClaimAdjudication(decision=ClaimStatus.DENIED, payout_amount=0)
        with pytest.raises(InvalidTransitionError):
            backend.adjudicate_claim(ADMIN, claim.claim_id, decision)


class TestStorage:

    def test_sign_and_verify(self, backend):
        signature = backend.sign("claims/c/a.pdf", "application/pdf", 2000)

        assert backend.verify("claims/c/a.pdf", "application/pdf", 2000, signature, now=1000) == (True, "")
        assert backend.verify("claims/c/a.pdf", "text/plain", 2000, signature, now=1000) == \
            (False, "SignatureDoesNotMatch")
        assert backend.verify("claims/c/a.pdf", "application/pdf", 2000, signature, now=3000) == \
            (False, "AccessDenied")

    def test_presign_upload(self, backend, claim):
        target = backend.presign_upload(JANE, claim.claim_id, "my photo.png", "image/png",
                                        "http://testserver")

        assert target.key.startswith(f"claims/{claim.claim_id}/")
        assert target.key.endswith("-my_photo.png")
        assert target.content_type == "image/png"

        url = urlparse(target.url)
        query = parse_qs(url.query)
        assert url.path == f"/storage/{target.key}"
        ok, _ = backend.verify(target.key, "image/png", int(query["expires"][0]),
                               query["signature"][0])
        assert ok

    def test_presign_for_foreign_claim(self, backend, claim):
        with pytest.raises(NotFoundError):
            backend.presign_upload(BOB, claim.claim_id, "a.pdf", None, "http://testserver")

    def test_documents(self, backend, claim):
        target = backend.presign_upload(JANE, claim.claim_id, "a.pdf", None, "http://testserver")
        backend.put_object(target.key, b"%PDF", None)

        documents = backend.list_documents(JANE, claim.claim_id)

        assert [d.key for d in documents] == [target.key]
        assert documents[0].size == 4
        assert "/storage/claims/" in backend.presign_download(JANE, target.key, "http://testserver")

    def test_download_unknown_key(self, backend, claim):
        with pytest.raises(NotFoundError):
            backend.presign_download(JANE, f"claims/{claim.claim_id}/missing", "http://testserver")
        with pytest.raises(NotFoundError):
            backend.presign_download(JANE, "elsewhere", "http://testserver")


class TestMisc:

    def test_quote(self, backend):
        base = backend.calculate_quote(QuoteInput(age=30, coverage_amount=50000))
        loaded = backend.calculate_quote(QuoteInput(age=30, coverage_amount=50000,
                                                    risk_factors=["smoker"]))
        assert base.premium == 600.0
        assert base.currency == "EUR"
        assert loaded.premium == 690.0

    def test_health(self, backend):
        assert backend.health() == {"s3": "ok", "dynamodb": "ok", "lambda": "ok"}

    def test_state_persisted(self, tmp_path):
        path = tmp_path / "state.json"
        first = InMemoryBackend(signing_secret="s", storage_path=path, bcrypt_rounds=4)
        first.register(RegisterRequest(email="jane@example.com", password="password123"))
        created = first.create_policy(
            ADMIN, PolicyCreate(user_id="user-1", coverage_amount=1000, premium=10, term_months=6)
        )

        second = InMemoryBackend(signing_secret="s", storage_path=path, bcrypt_rounds=4)

        assert second.authenticate("jane@example.com", "password123")
        assert second.get_policy(ADMIN, created.policy_id).term_months == 6

    def test_corrupt_state_ignored(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{broken")
        assert InMemoryBackend(storage_path=path).policies == {}
