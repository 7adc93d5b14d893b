"""
Courtcase Service API
=====================

FastAPI endpoints for authentication and case management.

Endpoints:
- GET    /health                  - Health check
- POST   /auth/register           - Create account, returns tokens
- POST   /auth/login              - Sign in, returns tokens
- POST   /auth/refresh            - Exchange a refresh token
- GET    /auth/me                 - Current identity
- POST   /auth/logout             - Revoke the current token
- GET    /cases                   - List own cases (trash excluded)
- POST   /cases                   - Create case
- GET    /cases/{case_id}         - Get case
- PATCH  /cases/{case_id}         - Update case fields
- POST   /cases/{case_id}/delete  - Move case to trash
- POST   /cases/{case_id}/restore - Restore case from trash
- DELETE /cases/{case_id}         - Permanently delete a trashed case
- GET    /cases/{case_id}/export  - Download case as JSON

Run with:
    uvicorn courtcase.api:app --host 0.0.0.0 --port 8000
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, Request, Response, status
from fastapi.exception_handlers import http_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .auth import AuthContext, AuthService
from .config import get_settings
from .db.session import get_db_session, init_db, session_factory
from .errors import (
    BackendError, CaseServiceError, Forbidden, NotFound, Unauthenticated, ValidationError,
)
from .middleware.security import SecurityHeadersMiddleware
from .repository import CaseRepository
from .schemas import (
    CaseRecord,
    CreateCaseRequest,
    ErrorResponse,
    HealthResponse,
    LoginRequest,
    MeResponse,
    RefreshTokenRequest,
    RegisterRequest,
    TokenResponse,
    UpdateCaseRequest,
)
from .token_blacklist import remove_expired_blacklist_entries, reset_redis_client, sync_to_redis
from .triggers import ActivityLogTrigger

settings = get_settings()

# Configure logging
logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger(__name__)


# =============================================================================
# FastAPI App
# =============================================================================

app = FastAPI(
    title="Courtcase Service",
    description="Case management for defense attorneys",
    version=settings.service_version,
    docs_url="/docs",
    redoc_url="/redoc",
)

CORS_ALLOW_ORIGINS = settings.parsed_cors_origins()
logger.info(f"CORS allow origins: {CORS_ALLOW_ORIGINS}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SecurityHeadersMiddleware)


@app.on_event("startup")
async def startup_event():
    """Initialize database, repository and auth service"""
    logger.info(f"Starting Courtcase Service v{settings.service_version}")
    for warning in settings.validate_security_config():
        logger.warning(warning)

    init_db()

    app.state.auth_service = AuthService(session_factory)
    app.state.repository = CaseRepository(
        session_factory,
        case_number_prefix=settings.case_number_prefix,
        on_created=[ActivityLogTrigger(session_factory)],
    )

    with get_db_session() as db:
        removed = remove_expired_blacklist_entries(db)
        if removed:
            logger.info(f"Removed {removed} expired blacklist entries")
        sync_to_redis(db)


# =============================================================================
# Error handling
# =============================================================================

ERROR_STATUS = {
    Unauthenticated: status.HTTP_401_UNAUTHORIZED,
    Forbidden: status.HTTP_403_FORBIDDEN,
    NotFound: status.HTTP_404_NOT_FOUND,
    ValidationError: status.HTTP_400_BAD_REQUEST,
    BackendError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


@app.exception_handler(CaseServiceError)
async def case_service_error_handler(request: Request, exc: CaseServiceError):
    body = ErrorResponse(
        error=exc.code,
        detail=exc.message,
        reason=getattr(exc, "reason", None),
        fields=getattr(exc, "fields", None) or None,
    )
    return JSONResponse(
        status_code=ERROR_STATUS.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR),
        content=body.model_dump(exclude_none=True),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    fields = {}
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part != "body"]
        fields[".".join(loc) or "body"] = error.get("msg", "Invalid value")
    body = ErrorResponse(error=ValidationError.code, detail="Invalid request", fields=fields)
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body.model_dump(exclude_none=True))


@app.exception_handler(StarletteHTTPException)
async def not_found_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == status.HTTP_404_NOT_FOUND:
        return JSONResponse(status_code=404, content={"error": "Endpoint not found"})
    return await http_exception_handler(request, exc)


# =============================================================================
# Dependencies
# =============================================================================

def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_repository(request: Request) -> CaseRepository:
    return request.app.state.repository


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if authorization and authorization.lower().startswith("bearer "):
        return authorization.split(" ", 1)[1].strip() or None
    return None


async def get_current_user(
    authorization: Optional[str] = Header(None, alias="Authorization"),
    auth_service: AuthService = Depends(get_auth_service),
) -> Optional[AuthContext]:
    """
    Resolve `Authorization: Bearer <jwt>` to an AuthContext.

    Returns None when no token is sent; the repository then rejects the call as
    unauthenticated. A token that is present but invalid or revoked is a 401.
    """
    token = _bearer_token(authorization)
    if token is None:
        return None

    auth = auth_service.resolve_token(token)
    if auth is None:
        raise Unauthenticated("Invalid or expired token")
    return auth


async def require_auth(auth: Optional[AuthContext] = Depends(get_current_user)) -> AuthContext:
    """Require authenticated user"""
    if auth is None:
        raise Unauthenticated("Authentication required")
    return auth


# =============================================================================
# Health
# =============================================================================

@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """Health check endpoint"""
    return HealthResponse(
        status="ok",
        version=settings.service_version,
        timestamp=datetime.now(timezone.utc),
    )


# =============================================================================
# Auth Endpoints (JWT)
# =============================================================================

@app.post("/auth/register", tags=["Auth"], response_model=TokenResponse)
async def register(request: RegisterRequest, auth_service: AuthService = Depends(get_auth_service)):
    """Create an account and sign in"""
    auth = auth_service.register(
        request.email,
        request.password,
        confirm_password=request.confirm_password,
        name=request.name,
    )
    return TokenResponse(**auth_service.issue_tokens(auth))


@app.post("/auth/login", tags=["Auth"], response_model=TokenResponse)
async def login(request: LoginRequest, auth_service: AuthService = Depends(get_auth_service)):
    """Login with email and password"""
    auth = auth_service.authenticate(request.email, request.password)
    return TokenResponse(**auth_service.issue_tokens(auth))


@app.post("/auth/refresh", tags=["Auth"], response_model=TokenResponse)
async def refresh_token(request: RefreshTokenRequest, auth_service: AuthService = Depends(get_auth_service)):
    """Exchange a refresh token for a new token pair; the old refresh token is revoked"""
    auth = auth_service.resolve_token(request.refresh_token, token_type="refresh")
    if auth is None:
        raise Unauthenticated("Invalid or expired refresh token")

    auth_service.revoke_token(request.refresh_token)
    return TokenResponse(**auth_service.issue_tokens(auth))


@app.get("/auth/me", tags=["Auth"], response_model=MeResponse)
async def auth_me(auth: AuthContext = Depends(require_auth)):
    """Get current authenticated user info from token"""
    return MeResponse(user_id=auth.user_id, email=auth.email, name=auth.name)


@app.post("/auth/logout", tags=["Auth"], status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    authorization: Optional[str] = Header(None, alias="Authorization"),
    auth_service: AuthService = Depends(get_auth_service),
):
    """Revoke the presented access token"""
    token = _bearer_token(authorization)
    if token is None:
        raise Unauthenticated("No token provided")

    # An already-invalid token is fine for logout
    auth_service.revoke_token(token)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# =============================================================================
# Case Management Endpoints
# =============================================================================

@app.get("/cases", tags=["Cases"], response_model=List[CaseRecord], summary="List own cases")
async def list_cases(
    auth: Optional[AuthContext] = Depends(get_current_user),
    repository: CaseRepository = Depends(get_repository),
):
    """Non-deleted cases of the current user, most recently updated first"""
    return repository.list_cases(auth)


@app.post("/cases", tags=["Cases"], response_model=CaseRecord,
          status_code=status.HTTP_201_CREATED, summary="Create a new case")
async def create_case(
    request: CreateCaseRequest,
    auth: Optional[AuthContext] = Depends(get_current_user),
    repository: CaseRepository = Depends(get_repository),
):
    """Create a case owned by the current user"""
    return repository.create_case(auth, request)


@app.get("/cases/{case_id}", tags=["Cases"], response_model=CaseRecord, summary="Get case details")
async def get_case(
    case_id: str,
    auth: Optional[AuthContext] = Depends(get_current_user),
    repository: CaseRepository = Depends(get_repository),
):
    return repository.get_case(auth, case_id)


@app.patch("/cases/{case_id}", tags=["Cases"], response_model=CaseRecord, summary="Update case")
async def update_case(
    case_id: str,
    request: UpdateCaseRequest,
    auth: Optional[AuthContext] = Depends(get_current_user),
    repository: CaseRepository = Depends(get_repository),
):
    """Merge the supplied fields into the case"""
    return repository.update_case(auth, case_id, request)


@app.post("/cases/{case_id}/delete", tags=["Cases"], response_model=CaseRecord, summary="Move case to trash")
async def soft_delete_case(
    case_id: str,
    auth: Optional[AuthContext] = Depends(get_current_user),
    repository: CaseRepository = Depends(get_repository),
):
    return repository.soft_delete_case(auth, case_id)


@app.post("/cases/{case_id}/restore", tags=["Cases"], response_model=CaseRecord, summary="Restore case from trash")
async def restore_case(
    case_id: str,
    auth: Optional[AuthContext] = Depends(get_current_user),
    repository: CaseRepository = Depends(get_repository),
):
    return repository.restore_case(auth, case_id)


@app.delete("/cases/{case_id}", tags=["Cases"], status_code=status.HTTP_204_NO_CONTENT,
            summary="Permanently delete a trashed case")
async def permanently_delete_case(
    case_id: str,
    auth: Optional[AuthContext] = Depends(get_current_user),
    repository: CaseRepository = Depends(get_repository),
):
    repository.permanently_delete_case(auth, case_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/cases/{case_id}/export", tags=["Cases"], summary="Export case as JSON")
async def export_case(
    case_id: str,
    auth: Optional[AuthContext] = Depends(get_current_user),
    repository: CaseRepository = Depends(get_repository),
):
    data = repository.export_case(auth, case_id)
    filename = f"{data.get('case_number') or case_id}.json"
    return JSONResponse(
        content=data,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler - always return valid JSON"""
    logger.error("Unhandled exception on %s: %s", request.url.path, exc.__class__.__name__)
    return JSONResponse(
        status_code=500,
        content={"error": BackendError.code, "detail": "Internal server error"},
    )


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown"""
    reset_redis_client()
    logger.info("Courtcase Service stopped")


# =============================================================================
# Main (for direct execution)
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "courtcase.api:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
