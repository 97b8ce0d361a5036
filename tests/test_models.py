"""
Model tests for InsureFlow.

Covers wire aliases and the status invariants the models normalise.
"""

import pytest
from pydantic import ValidationError

from insureflow.models import (
    AuthUser,
    Claim,
    ClaimAdjudication,
    ClaimStatus,
    ComponentHealth,
    HealthStatus,
    Policy,
    PolicyStatus,
    QuoteInput,
    RegisterRequest,
    Role,
)


class TestPolicyModel:
    """Tests for the Policy model."""

    def test_accepts_wire_names(self, make_policy):
        policy = make_policy()
        assert policy.policy_id == "pol-1"
        assert policy.coverage_amount == 50000.0
        assert policy.term_months == 12

    def test_serialises_to_camel_case(self, make_policy):
        wire = make_policy().to_wire()
        assert wire["policyId"] == "pol-1"
        assert wire["coverageAmount"] == 50000.0
        assert wire["status"] == "ACTIVE"
        assert "policy_id" not in wire

    def test_reason_cleared_unless_suspended(self, make_policy):
        policy = make_policy(status=PolicyStatus.ACTIVE, suspendedReason="fraud review")
        assert policy.suspended_reason is None

    def test_reason_kept_while_suspended(self, make_policy):
        policy = make_policy(status=PolicyStatus.SUSPENDED, suspendedReason="fraud review")
        assert policy.suspended_reason == "fraud review"

    @pytest.mark.parametrize("field", ["coverageAmount", "premium", "termMonths"])
    def test_amounts_must_be_positive(self, make_policy, field):
        with pytest.raises(ValidationError):
            make_policy(**{field: 0})


class TestClaimModel:
    """Tests for the Claim payout invariant."""

    def test_draft_has_no_payout(self, make_claim):
        claim = make_claim(status=ClaimStatus.DRAFT, payoutAmount=100)
        assert claim.payout_amount is None

    def test_submitted_has_no_payout(self, make_claim):
        assert make_claim(status=ClaimStatus.SUBMITTED, payoutAmount=5).payout_amount is None

    def test_denied_pays_zero(self, make_claim):
        assert make_claim(status=ClaimStatus.DENIED, payoutAmount=500).payout_amount == 0.0

    def test_approved_defaults_to_zero(self, make_claim):
        assert make_claim(status=ClaimStatus.APPROVED).payout_amount == 0.0

    def test_approved_keeps_payout(self, make_claim):
        assert make_claim(status=ClaimStatus.APPROVED, payoutAmount=1200).payout_amount == 1200

    def test_negative_payout_rejected(self, make_claim):
        with pytest.raises(ValidationError):
            make_claim(status=ClaimStatus.APPROVED, payoutAmount=-1)


class TestRequestModels:
    """Tests for request payload models."""

    def test_adjudication_denial_zeroes_payout(self):
        decision = ClaimAdjudication(decision="DENIED", payout_amount=500)
        assert decision.payout_amount == 0.0
        assert decision.to_wire() == {"decision": "DENIED", "payoutAmount": 0.0}

    def test_adjudication_rejects_non_terminal_decision(self):
        with pytest.raises(ValidationError):
            ClaimAdjudication(decision="SUBMITTED", payout_amount=0)

    def test_quote_input_deduplicates_risk_factors(self):
        quote = QuoteInput(age=40, coverage_amount=1000, risk_factors=["smoker", "smoker", " diver "])
        assert quote.risk_factors == ["smoker", "diver"]

    @pytest.mark.parametrize("age", [17, 101])
    def test_quote_input_age_bounds(self, age):
        with pytest.raises(ValidationError):
            QuoteInput(age=age, coverage_amount=1000)

    def test_register_requires_valid_email(self):
        with pytest.raises(ValidationError):
            RegisterRequest(email="not-an-email", password="long-enough")

    def test_register_role_is_optional(self):
        request = RegisterRequest(email="jane@example.com", password="long-enough")
        assert request.role is None
        assert "role" not in request.to_wire(exclude_none=True)


class TestSupportingModels:
    """Tests for health and identity models."""

    def test_health_absent_components_are_checking(self):
        health = HealthStatus.model_validate({"s3": "ok"})
        assert health.s3 == ComponentHealth.OK
        assert health.dynamodb == ComponentHealth.CHECKING
        assert health.lambda_ == ComponentHealth.CHECKING

    def test_health_lambda_alias(self):
        health = HealthStatus.model_validate({"lambda": "error"})
        assert health.lambda_ == ComponentHealth.ERROR
        assert health.to_wire()["lambda"] == "error"

    def test_auth_user_admin_flag(self):
        assert AuthUser(username="a", role=Role.ADMIN, user_id="1").is_admin
        assert not AuthUser(username="b", role="USER", userId="2").is_admin
