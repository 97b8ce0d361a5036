"""
FastAPI development server for InsureFlow.

Serves the collaborator endpoints the client consumes: policies, claims,
documents, quotes, health and authentication, plus a mock object store
that honours presigned URLs.
"""

import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import jwt
import uvicorn
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field

from ..backend import InMemoryBackend
from ..backend.store import BCRYPT_ROUNDS
from ..engine.validation import parse_status_filter, validate_adjudication
from ..exceptions import (
    AuthenticationError,
    AuthorizationError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from ..models import (
    AuthUser,
    ClaimCreate,
    ClaimStatus,
    LoginRequest,
    PolicyCreate,
    PolicyRenewal,
    PolicyStatus,
    PolicySuspension,
    PresignUploadRequest,
    QuoteInput,
    RegisterRequest,
    Token,
)

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
TOKEN_TTL_SECONDS = 8 * 60 * 60


class AdjudicationRequest(BaseModel):
    """Adjudication body; a missing payout is treated as zero."""
    decision: str = Field(..., description="APPROVED or DENIED")
    payout_amount: Optional[float] = Field(None, alias="payoutAmount")


# Global components (initialized on startup)
backend: Optional[InMemoryBackend] = None
jwt_secret: str = ""


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global backend, jwt_secret

    logger.info("Initializing InsureFlow API server components")

    jwt_secret = os.environ.get("INSUREFLOW_JWT_SECRET", "insureflow-dev-secret")
    backend = InMemoryBackend(
        signing_secret=os.environ.get("INSUREFLOW_SIGNING_SECRET"),
        storage_path=os.environ.get("INSUREFLOW_STATE_FILE") or None,
        bcrypt_rounds=int(os.environ.get("INSUREFLOW_BCRYPT_ROUNDS", BCRYPT_ROUNDS)),
    )

    admin_username = os.environ.get("INSUREFLOW_ADMIN_USERNAME")
    admin_password = os.environ.get("INSUREFLOW_ADMIN_PASSWORD")
    if admin_username and admin_password and admin_username.lower() not in backend.users:
        backend.register(RegisterRequest(email=admin_username, password=admin_password,
                                         role="ADMIN"), allow_admin=True)
        logger.info(f"Seeded administrator {admin_username}")

    logger.info("InsureFlow API server components initialized")

    yield

    logger.info("Shutting down InsureFlow API server")


app = FastAPI(
    title="InsureFlow API",
    description="Development collaborator for the InsureFlow policy and claim lifecycle",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": message})


@app.exception_handler(InvalidTransitionError)
async def invalid_transition_handler(request: Request, exc: InvalidTransitionError):
    return _error(409, str(exc))


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=422, content={"detail": exc.errors})


@app.exception_handler(AuthenticationError)
async def authentication_error_handler(request: Request, exc: AuthenticationError):
    return _error(401, str(exc))


@app.exception_handler(AuthorizationError)
async def authorization_error_handler(request: Request, exc: AuthorizationError):
    return _error(403, str(exc))


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return _error(404, str(exc))


def get_backend() -> InMemoryBackend:
    if not backend:
        raise HTTPException(status_code=503, detail="Backend not available")
    return backend


def issue_token(user: AuthUser) -> Token:
    """Sign a bearer token carrying the user's identity and role."""
    claims = {
        "sub": user.username,
        "role": user.role.value,
        "userId": user.user_id,
        "exp": int(time.time()) + TOKEN_TTL_SECONDS,
    }
    return Token(access_token=jwt.encode(claims, jwt_secret, algorithm=JWT_ALGORITHM))


bearer_scheme = HTTPBearer(auto_error=False)


def current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> AuthUser:
    """Resolve the acting user from the Authorization header."""
    if credentials is None:
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        claims = jwt.decode(credentials.credentials, jwt_secret, algorithms=[JWT_ALGORITHM])
        return AuthUser(username=claims["sub"], role=claims["role"], user_id=claims["userId"])
    except jwt.ExpiredSignatureError as e:
        raise HTTPException(status_code=401, detail="Token expired") from e
    except (jwt.InvalidTokenError, KeyError, ValueError) as e:
        raise HTTPException(status_code=401, detail="Invalid token") from e


def _items(models: List[Any]) -> Dict[str, Any]:
    return {"items": [m.to_wire() for m in models]}


def _public_base_url(request: Request) -> str:
    return str(request.base_url).rstrip("/")


router = APIRouter(prefix="/api")


@router.get("/health")
async def health_check(user: AuthUser = Depends(current_user)):
    """Component health for the console's admin page."""
    return get_backend().health()


# Authentication

@router.post("/auth/login")
def login(body: LoginRequest):
    user = get_backend().authenticate(body.username, body.password)
    return issue_token(user).model_dump()


@router.post("/auth/register")
def register(body: RegisterRequest):
    user = get_backend().register(body)
    return issue_token(user).model_dump()


# Policies

@router.get("/policies")
def list_policies(
    user_id: Optional[str] = Query(None, alias="userId", description="Filter by owner"),
    status: Optional[str] = Query(None, description="Filter by status"),
    user: AuthUser = Depends(current_user),
):
    """List policies visible to the caller."""
    store = get_backend()
    store.expire_due_policies()
    policies = store.list_policies(user, user_id=user_id,
                                   status=parse_status_filter(PolicyStatus, status))
    return _items(policies)


@router.get("/policies/{policy_id}")
def get_policy(policy_id: str, user: AuthUser = Depends(current_user)):
    store = get_backend()
    store.expire_due_policies()
    return store.get_policy(user, policy_id).to_wire()


@router.post("/policies", status_code=201)
def create_policy(body: PolicyCreate, user: AuthUser = Depends(current_user)):
    return get_backend().create_policy(user, body).to_wire()


@router.post("/policies/{policy_id}/renew")
def renew_policy(policy_id: str, body: PolicyRenewal, user: AuthUser = Depends(current_user)):
    return get_backend().renew_policy(user, policy_id, body.extend_months).to_wire()


@router.post("/policies/{policy_id}/suspend")
def suspend_policy(policy_id: str, body: PolicySuspension, user: AuthUser = Depends(current_user)):
    return get_backend().suspend_policy(user, policy_id, body.reason).to_wire()


@router.post("/policies/{policy_id}/reinstate")
def reinstate_policy(policy_id: str, user: AuthUser = Depends(current_user)):
    return get_backend().reinstate_policy(user, policy_id).to_wire()


# Claims

@router.get("/claims")
def list_claims(
    policy_id: Optional[str] = Query(None, alias="policyId", description="Filter by policy"),
    status: Optional[str] = Query(None, description="Filter by status"),
    user: AuthUser = Depends(current_user),
):
    """List claims visible to the caller."""
    claims = get_backend().list_claims(user, policy_id=policy_id,
                                       status=parse_status_filter(ClaimStatus, status))
    return _items(claims)


@router.post("/claims", status_code=201)
def create_claim(body: ClaimCreate, user: AuthUser = Depends(current_user)):
    return get_backend().create_claim(user, body).to_wire()


@router.post("/claims/{claim_id}/submit")
def submit_claim(claim_id: str, user: AuthUser = Depends(current_user)):
    return get_backend().submit_claim(user, claim_id).to_wire()


@router.post("/claims/{claim_id}/adjudicate")
def adjudicate_claim(claim_id: str, body: AdjudicationRequest,
                     user: AuthUser = Depends(current_user)):
    decision = validate_adjudication(body.decision, body.payout_amount or 0.0)
    return get_backend().adjudicate_claim(user, claim_id, decision).to_wire()


# Documents

@router.post("/docs/{claim_id}/presign-upload")
def presign_upload(claim_id: str, body: PresignUploadRequest, request: Request,
                   user: AuthUser = Depends(current_user)):
    target = get_backend().presign_upload(user, claim_id, body.filename, body.content_type,
                                          _public_base_url(request))
    return target.to_wire(exclude_none=True)


@router.get("/docs/presign-download")
def presign_download(request: Request, key: str = Query(..., description="Object key"),
                     user: AuthUser = Depends(current_user)):
    return {"url": get_backend().presign_download(user, key, _public_base_url(request))}


@router.get("/docs/{claim_id}/list")
def list_documents(claim_id: str, user: AuthUser = Depends(current_user)):
    return _items(get_backend().list_documents(user, claim_id))


app.include_router(router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": "InsureFlow API", "version": "1.0.0", "status": "running"}


@app.post("/quote/calculate")
def calculate_quote(body: QuoteInput, user: AuthUser = Depends(current_user)):
    """Placeholder pricing, served beside the API rather than under it."""
    return get_backend().calculate_quote(body).to_wire()


# Mock object storage

def _storage_error(code: str, message: str) -> Response:
    body = f"<Error><Code>{code}</Code><Message>{message}</Message></Error>"
    return Response(content=body, status_code=403, media_type="application/xml")


@app.put("/storage/{key:path}")
async def put_object(key: str, request: Request,
                     expires: int = Query(...), signature: str = Query(...)):
    """Accept a presigned upload; the Content-Type must match what was signed."""
    content_type = request.headers.get("content-type")
    valid, code = get_backend().verify(key, content_type, expires, signature)
    if not valid:
        logger.warning(f"Rejected upload to {key}: {code}")
        return _storage_error(code, "The request signature we calculated does not match"
                              if code == "SignatureDoesNotMatch" else "Request has expired")

    get_backend().put_object(key, await request.body(), content_type)
    return Response(status_code=200)


@app.get("/storage/{key:path}")
def get_object(key: str, expires: int = Query(...), signature: str = Query(...)):
    store = get_backend()
    valid, code = store.verify(key, None, expires, signature)
    if not valid:
        return _storage_error(code, "Download link is not valid")

    stored = store.get_object(key)
    return Response(content=stored.content,
                    media_type=stored.content_type or "application/octet-stream")


def start_server(host: str = "0.0.0.0", port: int = 8000, reload: bool = False):
    """Start the FastAPI server."""
    uvicorn.run(
        "insureflow.api.server:app",
        host=host,
        port=port,
        reload=reload,
        log_level="info"
    )


if __name__ == "__main__":
    start_server()
