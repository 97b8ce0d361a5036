"""
Tests for request validation helpers.
"""

import pytest

from insureflow.engine.validation import (
    parse_status_filter,
    require_identifier,
    validate_adjudication,
    validate_claim_create,
    validate_evidence,
    validate_policy_create,
    validate_quote,
    validate_registration,
    validate_renewal,
    validate_suspension,
)
from insureflow.exceptions import ValidationError
from insureflow.models import ClaimStatus, PolicyStatus


class TestPolicyValidation:

    def test_valid_policy(self):
        payload = validate_policy_create(" user-1 ", 50000, 12, 720.0, quote_id="")
        assert payload.user_id == "user-1"
        assert payload.quote_id is None
        assert payload.to_wire(exclude_none=True) == {
            "userId": "user-1",
            "coverageAmount": 50000.0,
            "premium": 720.0,
            "termMonths": 12,
        }

    def test_collects_every_error(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_policy_create("", 0, 0, -5)
        assert len(exc_info.value.errors) == 4

    def test_fractional_term_rejected(self):
        with pytest.raises(ValidationError):
            validate_policy_create("user-1", 1000, 1.5, 10)

    @pytest.mark.parametrize("months", [0, -3])
    def test_renewal_must_be_positive(self, months):
        with pytest.raises(ValidationError):
            validate_renewal(months)

    def test_renewal(self):
        assert validate_renewal(6) == 6

    @pytest.mark.parametrize("reason", ["", "   "])
    def test_suspension_requires_reason(self, reason):
        with pytest.raises(ValidationError, match="Provide a reason"):
            validate_suspension(reason)

    def test_suspension_reason_trimmed(self):
        assert validate_suspension("  fraud review ") == "fraud review"


class TestClaimValidation:

    def test_description_minimum_length(self):
        with pytest.raises(ValidationError):
            validate_claim_create("pol-1", "short")
        assert validate_claim_create("pol-1", "broken").description == "broken"

    def test_policy_required(self):
        with pytest.raises(ValidationError):
            validate_claim_create("", "Water damage in kitchen")

    def test_adjudication_requires_payout(self):
        with pytest.raises(ValidationError, match="Payout amount is required"):
            validate_adjudication("APPROVED", None)

    def test_adjudication_denial(self):
        decision = validate_adjudication("DENIED", 500)
        assert decision.decision == ClaimStatus.DENIED
        assert decision.payout_amount == 0.0

    def test_adjudication_negative_payout(self):
        with pytest.raises(ValidationError):
            validate_adjudication("APPROVED", -1)

    def test_adjudication_bad_decision(self):
        with pytest.raises(ValidationError):
            validate_adjudication("MAYBE", 10)


class TestOtherValidation:

    def test_quote(self):
        quote = validate_quote(35, 50000, ["smoker", "smoker"])
        assert quote.risk_factors == ["smoker"]
        assert quote.to_wire() == {"age": 35, "coverageAmount": 50000.0, "riskFactors": ["smoker"]}

    def test_quote_rejects_minor(self):
        with pytest.raises(ValidationError):
            validate_quote(16, 50000)

    def test_registration_short_password(self):
        with pytest.raises(ValidationError):
            validate_registration("jane@example.com", "short")

    def test_evidence_must_be_bytes(self):
        assert validate_evidence("photo.jpg", b"\x89PNG") == "photo.jpg"
        with pytest.raises(ValidationError):
            validate_evidence("photo.jpg", b"")
        with pytest.raises(ValidationError):
            validate_evidence("photo.jpg", "text")
        with pytest.raises(ValidationError):
            validate_evidence(" ", b"data")

    def test_require_identifier(self):
        assert require_identifier("claimId", " clm-1 ") == "clm-1"
        with pytest.raises(ValidationError, match="claimId is required"):
            require_identifier("claimId", None)


class TestStatusFilter:

    @pytest.mark.parametrize("value", [None, "ALL"])
    def test_no_filter(self, value):
        assert parse_status_filter(PolicyStatus, value) is None

    def test_case_insensitive(self):
        assert parse_status_filter(PolicyStatus, "active") == PolicyStatus.ACTIVE
        assert parse_status_filter(ClaimStatus, ClaimStatus.DRAFT) == ClaimStatus.DRAFT

    def test_closed_enum(self):
        with pytest.raises(ValidationError, match="Invalid status filter"):
            parse_status_filter(ClaimStatus, "ACTIVE")
