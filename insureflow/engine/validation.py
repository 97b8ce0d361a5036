"""
Request validation helpers for InsureFlow.

Every mutating or pricing request is validated here before it is sent;
failures raise ``ValidationError`` with one message per problem.
"""

import logging
from typing import Any, Iterable, List, Optional, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..exceptions import ValidationError
from ..models import (
    STATUS_ALL,
    ClaimAdjudication,
    ClaimCreate,
    PolicyCreate,
    PolicyRenewal,
    PolicySuspension,
    QuoteInput,
    RegisterRequest,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def collect_errors(exc: PydanticValidationError) -> List[str]:
    """Flatten pydantic errors into ``field: message`` strings."""
    messages = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ()))
        message = error.get("msg", "Invalid value")
        messages.append(f"{field}: {message}" if field else message)
    return messages


def build(model: Type[M], **values: Any) -> M:
    """
    Construct a request model, translating pydantic failures.

    Raises:
        ValidationError: With one message per invalid field
    """
    try:
        return model(**values)
    except PydanticValidationError as e:
        errors = collect_errors(e)
        logger.debug(f"Rejected {model.__name__}: {errors}")
        raise ValidationError(errors) from e


def require_identifier(name: str, value: Optional[str]) -> str:
    """Ensure an identifier argument is a non-blank string."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} is required")
    return value.strip()


def validate_policy_create(user_id: str, coverage_amount: float, term_months: int,
                           premium: float, quote_id: Optional[str] = None) -> PolicyCreate:
    return build(
        PolicyCreate,
        user_id=user_id,
        coverage_amount=coverage_amount,
        term_months=term_months,
        premium=premium,
        quote_id=quote_id or None,
    )


def validate_renewal(extend_months: int) -> int:
    return build(PolicyRenewal, extend_months=extend_months).extend_months


def validate_suspension(reason: str) -> str:
    return build(PolicySuspension, reason=reason).reason


def validate_claim_create(policy_id: str, description: str) -> ClaimCreate:
    return build(ClaimCreate, policy_id=policy_id, description=description)


def validate_adjudication(decision: str, payout_amount: Optional[float]) -> ClaimAdjudication:
    """Validate an adjudication; a denial always carries a zero payout."""
    if payout_amount is None:
        raise ValidationError("payoutAmount: Payout amount is required")
    return build(ClaimAdjudication, decision=decision, payout_amount=payout_amount)


def validate_quote(age: int, coverage_amount: float,
                   risk_factors: Optional[Iterable[str]] = None) -> QuoteInput:
    return build(
        QuoteInput,
        age=age,
        coverage_amount=coverage_amount,
        risk_factors=list(risk_factors or []),
    )


def validate_registration(email: str, password: str, role: Optional[str] = None) -> RegisterRequest:
    return build(RegisterRequest, email=email, password=password, role=role)


def validate_evidence(filename: str, content: Any) -> str:
    """Check an evidence file before requesting an upload target."""
    filename = require_identifier("filename", filename)
    if not isinstance(content, (bytes, bytearray)):
        raise ValidationError("File content must be bytes")
    if not content:
        raise ValidationError("File is empty")
    return filename


def parse_status_filter(status_enum, value: Optional[str]):
    """
    Parse a status filter for list queries.

    Args:
        status_enum: PolicyStatus or ClaimStatus
        value: Status name, ``"ALL"`` or None

    Returns:
        The enum member, or None meaning no filter
    """
    if value is None or value == STATUS_ALL:
        return None
    try:
        return status_enum(value.value if hasattr(value, "value") else str(value).upper())
    except ValueError as e:
        allowed = ", ".join([STATUS_ALL] + [s.value for s in status_enum])
        raise ValidationError(f"Invalid status filter {value!r}; expected one of {allowed}") from e
