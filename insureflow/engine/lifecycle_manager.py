"""
Lifecycle Manager for InsureFlow.

Validates and executes policy and claim transitions against the HTTP
collaborator, and exposes a consistent query surface by status, owner and
role. Mutations are checked locally against the transition table before a
request is sent, audited, and followed by invalidation and refetch of the
affected list queries.
"""

import logging
import uuid
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from ..audit.audit_logger import AuditLogger
from ..auth.session import RequestContext
from ..connectors.api_client import InsureFlowAPI
from ..connectors.storage import PresignedTransfer
from ..exceptions import AuthorizationError, InsureFlowError, NotFoundError
from ..models import (
    AuditRecord,
    AuthUser,
    Claim,
    ClaimStatus,
    DocumentInfo,
    EntityType,
    EvidenceUpload,
    HealthStatus,
    Policy,
    PolicyStatus,
    PortfolioSummary,
    PresignedUpload,
    QuoteResult,
)
from .query_cache import CLAIMS, POLICIES, QueryCache, affected_scopes, make_key
from .transition_table import TransitionTable
from .validation import (
    parse_status_filter,
    require_identifier,
    validate_adjudication,
    validate_claim_create,
    validate_evidence,
    validate_policy_create,
    validate_quote,
    validate_renewal,
    validate_suspension,
)

logger = logging.getLogger(__name__)


def summarize_portfolio(policies: Iterable[Policy], claims: Iterable[Claim]) -> PortfolioSummary:
    """
    Compute headline figures for a set of policies and claims.

    Returns:
        PortfolioSummary with totals and counts by status
    """
    policies = list(policies)
    claims = list(claims)
    summary = PortfolioSummary(total_policies=len(policies))

    total_premium = 0.0
    for policy in policies:
        total_premium += policy.premium
        status = policy.status.value
        summary.policies_by_status[status] = summary.policies_by_status.get(status, 0) + 1
        if policy.status == PolicyStatus.ACTIVE:
            summary.active_policies += 1

    for claim in claims:
        status = claim.status.value
        summary.claims_by_status[status] = summary.claims_by_status.get(status, 0) + 1
        if claim.status == ClaimStatus.SUBMITTED:
            summary.pending_claims += 1
        elif claim.status == ClaimStatus.APPROVED:
            summary.approved_payout += claim.payout_amount or 0.0

    summary.average_premium = total_premium / len(policies) if policies else 0.0
    return summary


class LifecycleManager:
    """
    Enforces the policy and claim lifecycle on behalf of an acting user.

    Every operation takes the RequestContext explicitly; nothing here holds
    session state of its own.
    """

    def __init__(
        self,
        api: InsureFlowAPI,
        transition_table: Optional[TransitionTable] = None,
        audit_logger: Optional[AuditLogger] = None,
        cache: Optional[QueryCache] = None,
        transfer: Optional[PresignedTransfer] = None,
    ):
        """
        Initialize the lifecycle manager.

        Args:
            api: HTTP collaborator client
            transition_table: Lifecycle rules; defaults to the packaged table
            audit_logger: Where executed mutations are recorded; None disables auditing
            cache: Cache for list queries
            transfer: Client used for presigned uploads
        """
        self.api = api
        self.table = transition_table or TransitionTable()
        self.audit_logger = audit_logger
        self.cache = cache or QueryCache()
        self.transfer = transfer or PresignedTransfer(api.http)

        self._fetchers: Dict[str, Callable[..., Any]] = {
            POLICIES: self._fetch_policies,
            CLAIMS: self._fetch_claims,
        }

        logger.info(f"Initialized LifecycleManager (audit={'on' if audit_logger else 'off'})")

    # Policy queries

    def list_policies(self, ctx: RequestContext, status: Optional[str] = None,
                      refresh: bool = False) -> List[Policy]:
        """
        List the policies visible to the acting user.

        Args:
            ctx: Request context carrying the session
            status: Status name, ``"ALL"`` or None for no filter
            refresh: Bypass any cached result

        Returns:
            Policies; non-admin users only ever receive their own
        """
        status_filter = parse_status_filter(PolicyStatus, status)
        key = make_key(POLICIES, ctx.principal, status=status_filter)

        if not refresh:
            cached = self.cache.get(key)
            if cached is not None:
                return list(cached)

        policies = self._fetch_policies(ctx, **key.param_dict())
        self.cache.put(key, policies)
        return list(policies)

    def _fetch_policies(self, ctx: RequestContext, status: Optional[str] = None) -> List[Policy]:
        user = ctx.require_user()
        owner = None if user.is_admin else user.user_id

        policies = self.api.list_policies(ctx, user_id=owner, status=status)

        if owner is not None:
            visible = [p for p in policies if p.user_id == owner]
            if len(visible) != len(policies):
                logger.warning(f"Dropped {len(policies) - len(visible)} policies not owned by {owner}")
            policies = visible
        if status is not None:
            policies = [p for p in policies if p.status.value == status]

        return policies

    def get_policy(self, ctx: RequestContext, policy_id: str) -> Policy:
        """
        Fetch a single policy.

        Raises:
            AuthorizationError: If a non-admin asks for someone else's policy
        """
        user = ctx.require_user()
        policy_id = require_identifier("policyId", policy_id)

        policy = self.api.get_policy(ctx, policy_id)
        if not user.is_admin and policy.user_id != user.user_id:
            raise AuthorizationError(f"Policy {policy_id} belongs to another user")
        return policy

    # Policy mutations

    def create_policy(self, ctx: RequestContext, user_id: str, coverage_amount: float,
                      term_months: int, premium: float, quote_id: Optional[str] = None) -> Policy:
        """
        Create a new ACTIVE policy.

        Raises:
            ValidationError: If any amount or the term is not positive
            AuthorizationError: If a non-admin creates a policy for another user
        """
        user = ctx.require_user()
        payload = validate_policy_create(user_id, coverage_amount, term_months, premium, quote_id)

        if not user.is_admin and payload.user_id != user.user_id:
            raise AuthorizationError("You can only create policies for yourself")

        return self._execute(
            ctx, user, "create_policy", EntityType.POLICY, None, None,
            lambda: self.api.create_policy(ctx, payload),
        )

    def renew_policy(self, ctx: RequestContext, policy_id: str, extend_months: int) -> Policy:
        """Extend a policy's term; status is unchanged."""
        user = ctx.require_user()
        extend_months = validate_renewal(extend_months)
        self.table.authorize(EntityType.POLICY, "renew", user)

        policy = self.get_policy(ctx, policy_id)
        self.table.check(EntityType.POLICY, "renew", policy.status, user, owner_id=policy.user_id)

        return self._execute(
            ctx, user, "renew_policy", EntityType.POLICY, policy.policy_id, policy.status,
            lambda: self.api.renew_policy(ctx, policy.policy_id, extend_months),
            metadata={"extendMonths": extend_months},
        )

    def suspend_policy(self, ctx: RequestContext, policy_id: str, reason: str) -> Policy:
        """Move an ACTIVE policy to SUSPENDED (administrators only)."""
        user = ctx.require_user()
        reason = validate_suspension(reason)
        self.table.authorize(EntityType.POLICY, "suspend", user)

        policy = self.get_policy(ctx, policy_id)
        self.table.check(EntityType.POLICY, "suspend", policy.status, user, owner_id=policy.user_id)

        return self._execute(
            ctx, user, "suspend_policy", EntityType.POLICY, policy.policy_id, policy.status,
            lambda: self.api.suspend_policy(ctx, policy.policy_id, reason),
            metadata={"reason": reason},
        )

    def reinstate_policy(self, ctx: RequestContext, policy_id: str) -> Policy:
        """Return a SUSPENDED policy to ACTIVE (administrators only)."""
        user = ctx.require_user()
        self.table.authorize(EntityType.POLICY, "reinstate", user)

        policy = self.get_policy(ctx, policy_id)
        self.table.check(EntityType.POLICY, "reinstate", policy.status, user,
                         owner_id=policy.user_id)

        return self._execute(
            ctx, user, "reinstate_policy", EntityType.POLICY, policy.policy_id, policy.status,
            lambda: self.api.reinstate_policy(ctx, policy.policy_id),
        )

    # Claim queries

    def list_claims(self, ctx: RequestContext, status: Optional[str] = None,
                    policy_id: Optional[str] = None, refresh: bool = False) -> List[Claim]:
        """List claims visible to the acting user, optionally by status and policy."""
        status_filter = parse_status_filter(ClaimStatus, status)
        key = make_key(CLAIMS, ctx.principal, status=status_filter, policy_id=policy_id or None)

        if not refresh:
            cached = self.cache.get(key)
            if cached is not None:
                return list(cached)

        claims = self._fetch_claims(ctx, **key.param_dict())
        self.cache.put(key, claims)
        return list(claims)

    def _fetch_claims(self, ctx: RequestContext, status: Optional[str] = None,
                      policy_id: Optional[str] = None) -> List[Claim]:
        claims = self.api.list_claims(ctx, policy_id=policy_id, status=status)
        if status is not None:
            claims = [c for c in claims if c.status.value == status]
        if policy_id is not None:
            claims = [c for c in claims if c.policy_id == policy_id]
        return claims

    def get_claim(self, ctx: RequestContext, claim_id: str) -> Claim:
        """
        Fetch the current state of a claim.

        Raises:
            NotFoundError: If the claim is not visible to the acting user
        """
        claim_id = require_identifier("claimId", claim_id)
        for claim in self.api.list_claims(ctx):
            if claim.claim_id == claim_id:
                return claim
        raise NotFoundError(f"Claim {claim_id} not found", status_code=404)

    # Claim mutations

    def create_claim(self, ctx: RequestContext, policy_id: str, description: str) -> Claim:
        """Create a DRAFT claim against a policy."""
        user = ctx.require_user()
        payload = validate_claim_create(policy_id, description)

        return self._execute(
            ctx, user, "create_claim", EntityType.CLAIM, None, None,
            lambda: self.api.create_claim(ctx, payload),
            metadata={"policyId": payload.policy_id},
        )

    def submit_claim(self, ctx: RequestContext, claim_id: str) -> Claim:
        """
        Submit a DRAFT claim for adjudication.

        Raises:
            InvalidTransitionError: If the claim has already left DRAFT
        """
        user = ctx.require_user()
        self.table.authorize(EntityType.CLAIM, "submit", user)

        claim = self.get_claim(ctx, claim_id)
        self.table.check(EntityType.CLAIM, "submit", claim.status, user)

        return self._execute(
            ctx, user, "submit_claim", EntityType.CLAIM, claim.claim_id, claim.status,
            lambda: self.api.submit_claim(ctx, claim.claim_id),
        )

    def adjudicate_claim(self, ctx: RequestContext, claim_id: str, decision: str,
                         payout_amount: Optional[float]) -> Claim:
        """
        Approve or deny a SUBMITTED claim (administrators only).

        A denial is sent, and recorded, with a zero payout whatever was supplied.
        """
        user = ctx.require_user()
        payload = validate_adjudication(decision, payout_amount)
        self.table.authorize(EntityType.CLAIM, "adjudicate", user)

        claim = self.get_claim(ctx, claim_id)
        self.table.check(EntityType.CLAIM, "adjudicate", claim.status, user,
                         to_status=payload.decision)

        return self._execute(
            ctx, user, "adjudicate_claim", EntityType.CLAIM, claim.claim_id, claim.status,
            lambda: self.api.adjudicate_claim(ctx, claim.claim_id, payload),
            metadata={"decision": payload.decision.value, "payoutAmount": payload.payout_amount},
        )

    # Documents

    def attach_evidence(self, ctx: RequestContext, claim_id: str, filename: str,
                        content: bytes, content_type: Optional[str] = None) -> EvidenceUpload:
        """
        Upload a file as claim evidence.

        Obtains a presigned target from the collaborator, transfers the bytes
        directly to storage, then re-reads the claim's document list. A
        failed re-read leaves ``documents`` empty; the upload still counts.

        Raises:
            UploadError: If storage rejects the transfer
        """
        user = ctx.require_user()
        claim_id = require_identifier("claimId", claim_id)
        filename = validate_evidence(filename, content)

        def upload() -> PresignedUpload:
            target = self.api.presign_upload(ctx, claim_id, filename, content_type or None)
            self.transfer.upload(target, bytes(content), timeout=ctx.timeout)
            return target

        uploaded = self._execute(
            ctx, user, "attach_evidence", EntityType.CLAIM, claim_id, None, upload,
            metadata={"filename": filename, "contentType": content_type, "size": len(content)},
        )

        try:
            documents = self.list_documents(ctx, claim_id)
        except InsureFlowError as e:
            logger.warning(f"Document list for {claim_id} not refreshed after upload: {e}")
            documents = []

        return EvidenceUpload(
            claim_id=claim_id,
            key=uploaded.key,
            content_type=uploaded.content_type,
            documents=documents,
        )

    def list_documents(self, ctx: RequestContext, claim_id: str) -> List[DocumentInfo]:
        """List a claim's documents; always read through to the collaborator."""
        ctx.require_user()
        return self.api.list_documents(ctx, require_identifier("claimId", claim_id))

    def get_download_url(self, ctx: RequestContext, key: str) -> str:
        ctx.require_user()
        return self.api.presign_download(ctx, require_identifier("key", key))

    # Pricing, health and reporting

    def calculate_quote(self, ctx: RequestContext, age: int, coverage_amount: float,
                        risk_factors: Optional[Iterable[str]] = None) -> QuoteResult:
        """Price a prospective policy through the pricing collaborator."""
        ctx.require_user()
        quote_input = validate_quote(age, coverage_amount, risk_factors)
        return self.api.calculate_quote(ctx, quote_input)

    def get_health(self, ctx: RequestContext) -> HealthStatus:
        user = ctx.require_user()
        if not user.is_admin:
            raise AuthorizationError("Health status is only available to administrators")
        return self.api.health(ctx)

    def portfolio_summary(self, ctx: RequestContext, refresh: bool = False) -> PortfolioSummary:
        """Summarise the policies and claims visible to the acting user."""
        return summarize_portfolio(
            self.list_policies(ctx, refresh=refresh),
            self.list_claims(ctx, refresh=refresh),
        )

    def available_actions(self, ctx: RequestContext, entity: Union[Policy, Claim]) -> List[str]:
        """
        Get the lifecycle actions the acting user may invoke on an entity.

        Mirrors the transition table used for enforcement, so anything
        returned here would pass the local checks.
        """
        user = ctx.require_user()
        if isinstance(entity, Policy):
            return self.table.allowed_actions(EntityType.POLICY, entity.status, user,
                                              owner_id=entity.user_id)
        return self.table.allowed_actions(EntityType.CLAIM, entity.status, user)

    # Internals

    def _execute(self, ctx: RequestContext, user: AuthUser, action: str,
                 entity_type: EntityType, entity_id: Optional[str], from_status: Optional[Any],
                 call: Callable[[], Any], metadata: Optional[Dict[str, Any]] = None) -> Any:
        """Run a collaborator mutation, audit it and refresh dependent queries."""
        try:
            result = call()
        except InsureFlowError as e:
            self._audit(user, action, entity_type, entity_id, from_status, None,
                        success=False, error=str(e), metadata=metadata)
            raise

        if isinstance(result, Claim):
            result_id = result.claim_id
        elif isinstance(result, Policy):
            result_id = result.policy_id
        else:
            result_id = None
        self._audit(user, action, entity_type, result_id or entity_id, from_status,
                    getattr(result, "status", None), success=True, metadata=metadata)
        logger.info(f"{user.username} completed {action} on {entity_type.value} "
                    f"{result_id or entity_id}")

        self._refresh_after(ctx, action)
        return result

    def _refresh_after(self, ctx: RequestContext, action: str) -> None:
        """Invalidate the scopes an action affects and refetch the caller's queries."""
        stale = self.cache.invalidate(affected_scopes(action))
        principal = ctx.principal

        for key in stale:
            if key.principal != principal:
                continue
            try:
                self.cache.put(key, self._fetchers[key.scope](ctx, **key.param_dict()))
            except InsureFlowError as e:
                logger.warning(f"Refetch of {key.scope} {key.params} after {action} failed: {e}")

    def _audit(self, user: AuthUser, action: str, entity_type: EntityType,
               entity_id: Optional[str], from_status: Optional[Any], to_status: Optional[Any],
               success: bool, error: Optional[str] = None,
               metadata: Optional[Dict[str, Any]] = None) -> None:
        if not self.audit_logger:
            return

        record = AuditRecord(
            id=str(uuid.uuid4()),
            actor=user.username,
            role=user.role,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            from_status=getattr(from_status, "value", from_status),
            to_status=getattr(to_status, "value", to_status),
            success=success,
            error_message=error,
            metadata={k: v for k, v in (metadata or {}).items() if v is not None},
        )
        try:
            self.audit_logger.log_event(record)
        except OSError as e:
            logger.error(f"Audit record for {action} was not written: {e}")

