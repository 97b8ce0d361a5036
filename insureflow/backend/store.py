"""
In-memory backend for the InsureFlow development server.

Holds users, policies, claims and evidence objects, and enforces the same
transition table the client consults. Intended for local development and
end-to-end tests; state may optionally be persisted to a JSON file.
"""

import hashlib
import hmac
import json
import logging
import secrets
import threading
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union
from urllib.parse import quote, urlencode

import bcrypt

from ..engine.transition_table import TransitionTable
from ..exceptions import (
    AuthenticationError,
    AuthorizationError,
    NotFoundError,
    ValidationError,
)
from ..models import (
    AuthUser,
    Claim,
    ClaimAdjudication,
    ClaimCreate,
    ClaimStatus,
    ComponentHealth,
    DocumentInfo,
    EntityType,
    Policy,
    PolicyCreate,
    PolicyStatus,
    PresignedUpload,
    QuoteInput,
    QuoteResult,
    RegisterRequest,
    Role,
)

logger = logging.getLogger(__name__)

PRESIGN_TTL_SECONDS = 900

BASE_RATE = 0.012
RISK_LOADING = 0.15

BCRYPT_ROUNDS = 12


def add_months(moment: datetime, months: int) -> datetime:
    """Shift a datetime by calendar months, clamping the day to the month's end."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    days_in_month = [31, 29 if _is_leap(year) else 28, 31, 30, 31, 30,
                     31, 31, 30, 31, 30, 31][month - 1]
    return moment.replace(year=year, month=month, day=min(moment.day, days_in_month))


def _is_leap(year: int) -> bool:
    return year % 4 == 0 and (year % 100 != 0 or year % 400 == 0)


def hash_password(password: str, rounds: int = BCRYPT_ROUNDS) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


class StoredUser:
    """A registered account."""

    def __init__(self, username: str, role: Role, user_id: str, password_hash: str):
        self.username = username
        self.role = role
        self.user_id = user_id
        self.password_hash = password_hash

    def as_auth_user(self) -> AuthUser:
        return AuthUser(username=self.username, role=self.role, user_id=self.user_id)


class StoredObject:
    """An evidence file held by the mock object store."""

    def __init__(self, key: str, content: bytes, content_type: Optional[str]):
        self.key = key
        self.content = content
        self.content_type = content_type
        self.last_modified = datetime.now(timezone.utc)

    def info(self) -> DocumentInfo:
        return DocumentInfo(key=self.key, last_modified=self.last_modified, size=len(self.content))


class InMemoryBackend:
    """
    Authoritative store for policies and claims.

    Every mutation is checked against the transition table for the acting
    user, so the client's local checks and the server's agree.
    """

    def __init__(self, signing_secret: Optional[str] = None,
                 transition_table: Optional[TransitionTable] = None,
                 storage_path: Optional[Union[str, Path]] = None,
                 bcrypt_rounds: int = BCRYPT_ROUNDS):
        """
        Initialize the backend.

        Args:
            signing_secret: Key for presigned storage URLs; random when omitted
            transition_table: Lifecycle rules; defaults to the packaged table
            storage_path: JSON file for users, policies and claims.
                         If None, state is kept in memory only.
            bcrypt_rounds: Work factor for password hashes
        """
        self.signing_secret = (signing_secret or secrets.token_hex(32)).encode()
        self.table = transition_table or TransitionTable()
        self.storage_path = Path(storage_path) if storage_path else None
        self.bcrypt_rounds = bcrypt_rounds

        self.users: Dict[str, StoredUser] = {}
        self.policies: Dict[str, Policy] = {}
        self.claims: Dict[str, Claim] = {}
        self.objects: Dict[str, StoredObject] = {}
        self._lock = threading.RLock()

        if self.storage_path:
            self.storage_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_state()

        logger.info(
            f"Initialized InMemoryBackend with {'persistent' if self.storage_path else 'in-memory'} storage"
        )

    # Users

    def register(self, request: RegisterRequest, allow_admin: bool = False) -> AuthUser:
        """
        Create an account; the email becomes the username.

        Self-registration only ever creates USER accounts. Administrators
        are seeded by the server with ``allow_admin=True``.

        Raises:
            ValidationError: If the email is already registered
            AuthorizationError: If an ADMIN account is requested without ``allow_admin``
        """
        username = request.email.lower()
        role = request.role or Role.USER
        if role == Role.ADMIN and not allow_admin:
            logger.warning(f"Refused self-registration of {username} as ADMIN")
            raise AuthorizationError("Administrator accounts cannot be self-registered")

        with self._lock:
            if username in self.users:
                raise ValidationError(f"User {username} already exists")

            user = StoredUser(
                username=username,
                role=role,
                user_id=f"user-{uuid.uuid4().hex[:12]}",
                password_hash=hash_password(request.password, self.bcrypt_rounds),
            )
            self.users[username] = user
            self._save_state()

        logger.info(f"Registered {username} as {user.role.value}")
        return user.as_auth_user()

    def authenticate(self, username: str, password: str) -> AuthUser:
        """
        Check a username and password.

        Raises:
            AuthenticationError: On unknown user or wrong password
        """
        user = self.users.get(username.lower())
        if not user or not verify_password(password, user.password_hash):
            logger.warning(f"Failed login for {username}")
            raise AuthenticationError("Invalid username or password")
        return user.as_auth_user()

    # Policies

    def list_policies(self, actor: AuthUser, user_id: Optional[str] = None,
                      status: Optional[PolicyStatus] = None) -> List[Policy]:
        """List policies; non-admin actors only ever see their own."""
        owner = user_id if actor.is_admin else actor.user_id
        policies = [
            p for p in self.policies.values()
            if (owner is None or p.user_id == owner) and (status is None or p.status == status)
        ]
        return sorted(policies, key=lambda p: p.created_at or datetime.min.replace(tzinfo=timezone.utc))

    def get_policy(self, actor: AuthUser, policy_id: str) -> Policy:
        policy = self.policies.get(policy_id)
        if policy is None:
            raise NotFoundError(f"Policy {policy_id} not found", status_code=404)
        if not actor.is_admin and policy.user_id != actor.user_id:
            raise AuthorizationError(f"Policy {policy_id} belongs to another user")
        return policy

    def create_policy(self, actor: AuthUser, request: PolicyCreate) -> Policy:
        if not actor.is_admin and request.user_id != actor.user_id:
            raise AuthorizationError("You can only create policies for yourself")

        now = datetime.now(timezone.utc)
        policy = Policy(
            policy_id=f"pol-{uuid.uuid4().hex[:12]}",
            user_id=request.user_id,
            status=PolicyStatus.ACTIVE,
            coverage_amount=request.coverage_amount,
            premium=request.premium,
            term_months=request.term_months,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self.policies[policy.policy_id] = policy
            self._save_state()

        logger.info(f"Created policy {policy.policy_id} for {policy.user_id}")
        return policy

    def renew_policy(self, actor: AuthUser, policy_id: str, extend_months: int) -> Policy:
        """Extend a policy's term by ``extend_months``."""
        if extend_months <= 0:
            raise ValidationError("extendMonths: must be a positive whole number of months")

        with self._lock:
            policy = self.get_policy(actor, policy_id)
            transition = self.table.check(EntityType.POLICY, "renew", policy.status, actor,
                                          owner_id=policy.user_id)
            return self._update_policy(policy, status=PolicyStatus(transition.to_status),
                                       term_months=policy.term_months + extend_months)

    def suspend_policy(self, actor: AuthUser, policy_id: str, reason: str) -> Policy:
        if not reason or not reason.strip():
            raise ValidationError("reason: Provide a reason")

        with self._lock:
            policy = self._policy_for_transition(actor, policy_id, "suspend")
            return self._update_policy(policy, status=PolicyStatus.SUSPENDED,
                                       suspended_reason=reason.strip())

    def reinstate_policy(self, actor: AuthUser, policy_id: str) -> Policy:
        with self._lock:
            policy = self._policy_for_transition(actor, policy_id, "reinstate")
            return self._update_policy(policy, status=PolicyStatus.ACTIVE, suspended_reason=None)

    def expire_due_policies(self, now: Optional[datetime] = None) -> List[Policy]:
        """
        Move ACTIVE policies whose term has run out to EXPIRED.

        Returns:
            The policies that expired
        """
        now = now or datetime.now(timezone.utc)
        expired = []
        with self._lock:
            for policy in list(self.policies.values()):
                if policy.status != PolicyStatus.ACTIVE or policy.created_at is None:
                    continue
                if add_months(policy.created_at, policy.term_months) <= now:
                    expired.append(self._update_policy(policy, status=PolicyStatus.EXPIRED))

        if expired:
            logger.info(f"Expired {len(expired)} policies")
        return expired

    def _policy_for_transition(self, actor: AuthUser, policy_id: str, action: str) -> Policy:
        self.table.authorize(EntityType.POLICY, action, actor)
        policy = self.policies.get(policy_id)
        if policy is None:
            raise NotFoundError(f"Policy {policy_id} not found", status_code=404)
        self.table.check(EntityType.POLICY, action, policy.status, actor, owner_id=policy.user_id)
        return policy

    def _update_policy(self, policy: Policy, **changes: Any) -> Policy:
        data = policy.model_dump()
        data.update(changes)
        data["updated_at"] = datetime.now(timezone.utc)
        updated = Policy.model_validate(data)
        self.policies[updated.policy_id] = updated
        self._save_state()
        return updated

    # Claims

    def list_claims(self, actor: AuthUser, policy_id: Optional[str] = None,
                    status: Optional[ClaimStatus] = None) -> List[Claim]:
        """List claims; non-admin actors see claims on their own policies only."""
        claims = []
        for claim in self.claims.values():
            if policy_id is not None and claim.policy_id != policy_id:
                continue
            if status is not None and claim.status != status:
                continue
            if not actor.is_admin and not self._owns_policy(actor, claim.policy_id):
                continue
            claims.append(claim)
        return sorted(claims, key=lambda c: c.created_at or datetime.min.replace(tzinfo=timezone.utc))

    def get_claim(self, actor: AuthUser, claim_id: str) -> Claim:
        claim = self.claims.get(claim_id)
        if claim is None or (not actor.is_admin and not self._owns_policy(actor, claim.policy_id)):
            raise NotFoundError(f"Claim {claim_id} not found", status_code=404)
        return claim

    def create_claim(self, actor: AuthUser, request: ClaimCreate) -> Claim:
        self.get_policy(actor, request.policy_id)

        now = datetime.now(timezone.utc)
        claim = Claim(
            claim_id=f"clm-{uuid.uuid4().hex[:12]}",
            policy_id=request.policy_id,
            status=ClaimStatus.DRAFT,
            description=request.description,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self.claims[claim.claim_id] = claim
            self._save_state()

        logger.info(f"Created claim {claim.claim_id} against {claim.policy_id}")
        return claim

    def submit_claim(self, actor: AuthUser, claim_id: str) -> Claim:
        with self._lock:
            claim = self.get_claim(actor, claim_id)
            self.table.check(EntityType.CLAIM, "submit", claim.status, actor)
            return self._update_claim(claim, status=ClaimStatus.SUBMITTED)

    def adjudicate_claim(self, actor: AuthUser, claim_id: str,
                         decision: ClaimAdjudication) -> Claim:
        self.table.authorize(EntityType.CLAIM, "adjudicate", actor)
        with self._lock:
            claim = self.get_claim(actor, claim_id)
            self.table.check(EntityType.CLAIM, "adjudicate", claim.status, actor,
                             to_status=decision.decision)
            return self._update_claim(claim, status=decision.decision,
                                      payout_amount=decision.payout_amount)

    def _owns_policy(self, actor: AuthUser, policy_id: str) -> bool:
        policy = self.policies.get(policy_id)
        return policy is not None and policy.user_id == actor.user_id

    def _update_claim(self, claim: Claim, **changes: Any) -> Claim:
        data = claim.model_dump()
        data.update(changes)
        data["updated_at"] = datetime.now(timezone.utc)
        updated = Claim.model_validate(data)
        self.claims[updated.claim_id] = updated
        self._save_state()
        logger.info(f"Claim {updated.claim_id} is now {updated.status.value}")
        return updated

    # Evidence storage

    def sign(self, key: str, content_type: Optional[str], expires: int) -> str:
        """HMAC over the object key, the content type and the expiry."""
        message = f"{key}\n{content_type or ''}\n{expires}".encode()
        return hmac.new(self.signing_secret, message, hashlib.sha256).hexdigest()

    def verify(self, key: str, content_type: Optional[str], expires: int, signature: str,
               now: Optional[float] = None) -> Tuple[bool, str]:
        """
        Check a presigned request.

        Returns:
            (valid, error code); the code is empty when valid
        """
        now = time.time() if now is None else now
        if expires < now:
            return False, "AccessDenied"
        if not hmac.compare_digest(self.sign(key, content_type, expires), signature or ""):
            return False, "SignatureDoesNotMatch"
        return True, ""

    def _presigned_url(self, base_url: str, key: str, content_type: Optional[str]) -> str:
        expires = int(time.time()) + PRESIGN_TTL_SECONDS
        query = urlencode({"expires": expires, "signature": self.sign(key, content_type, expires)})
        return f"{base_url.rstrip('/')}/storage/{quote(key, safe='/')}?{query}"

    def presign_upload(self, actor: AuthUser, claim_id: str, filename: str,
                       content_type: Optional[str], base_url: str) -> PresignedUpload:
        """Issue an upload target under the claim's document prefix."""
        self.get_claim(actor, claim_id)
        safe_name = Path(filename).name.replace(" ", "_")
        if not safe_name:
            raise ValidationError("filename: File name is required")

        key = f"claims/{claim_id}/{uuid.uuid4().hex[:8]}-{safe_name}"
        return PresignedUpload(
            url=self._presigned_url(base_url, key, content_type),
            key=key,
            content_type=content_type,
        )

    def put_object(self, key: str, content: bytes, content_type: Optional[str]) -> StoredObject:
        stored = StoredObject(key, content, content_type)
        with self._lock:
            self.objects[key] = stored
        logger.info(f"Stored {len(content)} bytes at {key}")
        return stored

    def get_object(self, key: str) -> StoredObject:
        stored = self.objects.get(key)
        if stored is None:
            raise NotFoundError(f"Object {key} not found", status_code=404)
        return stored

    def list_documents(self, actor: AuthUser, claim_id: str) -> List[DocumentInfo]:
        self.get_claim(actor, claim_id)
        prefix = f"claims/{claim_id}/"
        return [obj.info() for key, obj in sorted(self.objects.items()) if key.startswith(prefix)]

    def presign_download(self, actor: AuthUser, key: str, base_url: str) -> str:
        parts = key.split("/")
        if len(parts) < 3 or parts[0] != "claims":
            raise NotFoundError(f"Object {key} not found", status_code=404)
        self.get_claim(actor, parts[1])
        self.get_object(key)
        return self._presigned_url(base_url, key, None)

    # Pricing and health

    def calculate_quote(self, quote_input: QuoteInput) -> QuoteResult:
        """Placeholder pricing: a base rate on coverage, loaded by age and risk factors."""
        age_factor = 1.0 + max(quote_input.age - 30, 0) * 0.02
        risk_factor = 1.0 + RISK_LOADING * len(quote_input.risk_factors)
        premium = quote_input.coverage_amount * BASE_RATE * age_factor * risk_factor
        return QuoteResult(premium=round(premium, 2), currency="EUR")

    def health(self) -> Dict[str, str]:
        return {
            "s3": ComponentHealth.OK.value,
            "dynamodb": ComponentHealth.OK.value,
            "lambda": ComponentHealth.OK.value,
        }

    # Persistence

    def _save_state(self):
        """Save users, policies and claims to persistent storage."""
        if not self.storage_path:
            return

        state_data = {
            "users": {
                name: {
                    "role": u.role.value,
                    "user_id": u.user_id,
                    "password_hash": u.password_hash,
                }
                for name, u in self.users.items()
            },
            "policies": [p.model_dump(mode="json") for p in self.policies.values()],
            "claims": [c.model_dump(mode="json") for c in self.claims.values()],
            "last_updated": datetime.now(timezone.utc).isoformat(),
        }

        try:
            with open(self.storage_path, "w", encoding="utf-8") as f:
                json.dump(state_data, f, indent=2)
        except OSError as e:
            logger.error(f"Failed to save state to {self.storage_path}: {e}")

    def _load_state(self):
        """Load state from persistent storage."""
        if not self.storage_path or not self.storage_path.exists():
            return

        try:
            with open(self.storage_path, encoding="utf-8") as f:
                state_data = json.load(f)

            for name, data in state_data.get("users", {}).items():
                self.users[name] = StoredUser(
                    username=name,
                    role=Role(data["role"]),
                    user_id=data["user_id"],
                    password_hash=data["password_hash"],
                )
            for data in state_data.get("policies", []):
                policy = Policy.model_validate(data)
                self.policies[policy.policy_id] = policy
            for data in state_data.get("claims", []):
                claim = Claim.model_validate(data)
                self.claims[claim.claim_id] = claim

            logger.info(f"Loaded {len(self.policies)} policies and {len(self.claims)} claims "
                        f"from {self.storage_path}")

        except (OSError, ValueError, KeyError) as e:
            logger.error(f"Failed to load state from {self.storage_path}: {e}")
