"""
Core data models for InsureFlow.

This module defines the Pydantic models used throughout the system for
policies, claims, documents, quotes, sessions and audit records.

Wire payloads use camelCase field names (``policyId``, ``payoutAmount``);
models accept either spelling and serialise back to camelCase.
"""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

STATUS_ALL = "ALL"


class Role(str, Enum):
    """Roles carried by bearer tokens."""
    USER = "USER"
    ADMIN = "ADMIN"


class EntityType(str, Enum):
    """Entities governed by the lifecycle transition table."""
    POLICY = "policy"
    CLAIM = "claim"


class PolicyStatus(str, Enum):
    """Lifecycle status of a policy."""
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class ClaimStatus(str, Enum):
    """Lifecycle status of a claim."""
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    DENIED = "DENIED"


class ComponentHealth(str, Enum):
    """Status reported for a single backing service."""
    OK = "ok"
    ERROR = "error"
    CHECKING = "checking"


class InsureFlowModel(BaseModel):
    """Base model accepting both field names and wire aliases."""
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self, exclude_none: bool = False) -> Dict[str, Any]:
        """Serialise to the camelCase JSON shape used by the HTTP API."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=exclude_none)


class Policy(InsureFlowModel):
    """Insurance coverage agreement with a lifecycle status."""
    policy_id: str = Field(..., alias="policyId", description="Unique, immutable policy identifier")
    user_id: str = Field(..., alias="userId", description="Owner of the policy")
    status: PolicyStatus = PolicyStatus.ACTIVE
    coverage_amount: float = Field(..., alias="coverageAmount", gt=0)
    premium: float = Field(..., gt=0)
    term_months: int = Field(..., alias="termMonths", gt=0)
    suspended_reason: Optional[str] = Field(
        None, alias="suspendedReason", description="Only present while SUSPENDED"
    )
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")

    @model_validator(mode="after")
    def clear_reason_unless_suspended(self) -> "Policy":
        """A suspension reason only exists on suspended policies."""
        if self.status != PolicyStatus.SUSPENDED:
            self.suspended_reason = None
        return self


class Claim(InsureFlowModel):
    """Request for payout against a policy."""
    claim_id: str = Field(..., alias="claimId", description="Unique, immutable claim identifier")
    policy_id: str = Field(..., alias="policyId", description="Policy the claim is made against")
    status: ClaimStatus = ClaimStatus.DRAFT
    description: str = ""
    payout_amount: Optional[float] = Field(None, alias="payoutAmount", ge=0)
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")

    @model_validator(mode="after")
    def normalise_payout(self) -> "Claim":
        """Payout is only meaningful once approved; denial always pays zero."""
        if self.status == ClaimStatus.DENIED:
            self.payout_amount = 0.0
        elif self.status == ClaimStatus.APPROVED:
            if self.payout_amount is None:
                self.payout_amount = 0.0
        else:
            self.payout_amount = None
        return self


class DocumentInfo(InsureFlowModel):
    """Object stored as evidence for a claim."""
    key: str
    last_modified: Optional[datetime] = Field(None, alias="lastModified")
    size: Optional[int] = None


class PresignedUpload(InsureFlowModel):
    """Presigned upload target issued by the document collaborator."""
    url: str
    key: str
    content_type: Optional[str] = Field(None, alias="contentType")


class EvidenceUpload(InsureFlowModel):
    """Outcome of attaching a file to a claim."""
    claim_id: str = Field(..., alias="claimId")
    key: str
    content_type: Optional[str] = Field(None, alias="contentType")
    documents: List[DocumentInfo] = Field(default_factory=list)


class QuoteInput(InsureFlowModel):
    """Inputs forwarded to the pricing collaborator."""
    age: int = Field(..., ge=18, le=100)
    coverage_amount: float = Field(..., alias="coverageAmount", gt=0)
    risk_factors: List[str] = Field(default_factory=list, alias="riskFactors")

    @field_validator("risk_factors")
    @classmethod
    def deduplicate_risk_factors(cls, v: List[str]) -> List[str]:
        """Risk factors are a set; keep first occurrence order."""
        seen: List[str] = []
        for factor in v:
            factor = factor.strip()
            if factor and factor not in seen:
                seen.append(factor)
        return seen


class QuoteResult(InsureFlowModel):
    premium: float
    currency: str


class HealthStatus(InsureFlowModel):
    """Backing service status; a missing entry means the check is still running."""
    s3: ComponentHealth = ComponentHealth.CHECKING
    dynamodb: ComponentHealth = ComponentHealth.CHECKING
    lambda_: ComponentHealth = Field(ComponentHealth.CHECKING, alias="lambda")

    @field_validator("s3", "dynamodb", "lambda_", mode="before")
    @classmethod
    def absent_means_checking(cls, v: Any) -> Any:
        if v is None or v == "":
            return ComponentHealth.CHECKING
        return v


class AuthUser(InsureFlowModel):
    """Identity decoded from a bearer token."""
    username: str
    role: Role
    user_id: str = Field(..., alias="userId")

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


class Token(InsureFlowModel):
    access_token: str
    token_type: str = "bearer"


# Request payloads, validated locally before anything is sent.

class PolicyCreate(InsureFlowModel):
    """Policy creation request."""
    user_id: str = Field(..., alias="userId", min_length=1)
    coverage_amount: float = Field(..., alias="coverageAmount", gt=0)
    premium: float = Field(..., gt=0)
    term_months: int = Field(..., alias="termMonths", gt=0)
    quote_id: Optional[str] = Field(None, alias="quoteId")

    @field_validator("user_id")
    @classmethod
    def strip_user_id(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("User ID required")
        return v.strip()


class PolicyRenewal(InsureFlowModel):
    extend_months: int = Field(..., alias="extendMonths", gt=0)


class PolicySuspension(InsureFlowModel):
    reason: str

    @field_validator("reason")
    @classmethod
    def reason_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Provide a reason")
        return v.strip()


class ClaimCreate(InsureFlowModel):
    """Claim creation request."""
    policy_id: str = Field(..., alias="policyId", min_length=1)
    description: str = Field(..., min_length=6)


class ClaimAdjudication(InsureFlowModel):
    """Administrative decision terminating a claim."""
    decision: ClaimStatus
    payout_amount: float = Field(..., alias="payoutAmount", ge=0)

    @field_validator("decision")
    @classmethod
    def decision_is_terminal(cls, v: ClaimStatus) -> ClaimStatus:
        if v not in (ClaimStatus.APPROVED, ClaimStatus.DENIED):
            raise ValueError("Decision must be APPROVED or DENIED")
        return v

    @model_validator(mode="after")
    def denial_pays_nothing(self) -> "ClaimAdjudication":
        if self.decision == ClaimStatus.DENIED:
            self.payout_amount = 0.0
        return self


class LoginRequest(InsureFlowModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class RegisterRequest(InsureFlowModel):
    """Account registration request."""
    email: str
    password: str = Field(..., min_length=8)
    role: Optional[Role] = None

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        """Basic email validation."""
        if not re.match(r"^[^@\s]+@[^@\s]+\.[^@\s]+$", v.strip()):
            raise ValueError("Valid email required")
        return v.strip()


class PresignUploadRequest(InsureFlowModel):
    filename: str = Field(..., min_length=1)
    content_type: Optional[str] = Field(None, alias="contentType")


# Reporting and action outcomes

class AuditRecord(BaseModel):
    """Audit record for an executed lifecycle mutation."""
    id: str = Field(..., description="Unique audit record ID")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    actor: str = Field(..., description="Username that invoked the action")
    role: Role
    entity_type: EntityType
    entity_id: Optional[str] = Field(None, description="Entity affected, if known")
    action: str = Field(..., description="Named transition or creation request")
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    success: bool = Field(..., description="Whether the collaborator accepted the action")
    error_message: Optional[str] = Field(None, description="Error details if failed")
    metadata: Dict[str, Any] = Field(default_factory=dict)


class PortfolioSummary(BaseModel):
    """Headline figures across the policies and claims visible to a user."""
    total_policies: int = 0
    active_policies: int = 0
    pending_claims: int = 0
    approved_payout: float = 0.0
    average_premium: float = 0.0
    policies_by_status: Dict[str, int] = Field(default_factory=dict)
    claims_by_status: Dict[str, int] = Field(default_factory=dict)


class Notification(BaseModel):
    """User-visible message produced at the action boundary."""
    title: str
    variant: str = Field("info", description="success, error, warning or info")
    description: Optional[str] = None


class ActionOutcome(BaseModel):
    """Result of running a user-initiated action."""
    action: str
    success: bool
    result: Optional[Any] = None
    notification: Notification
    error: Optional[str] = None
    error_type: Optional[str] = None


# Type aliases for convenience
Policies = List[Policy]
Claims = List[Claim]
Documents = List[DocumentInfo]
