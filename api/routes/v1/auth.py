"""
api/routes/v1/auth.py -- Credential and session REST endpoints.

Routes:
  POST /api/v1/auth/register                -- create an account; 201 profile
  POST /api/v1/auth/login                   -- password login; profile + token pair
  POST /api/v1/auth/refresh-token           -- rotate a refresh token; new pair
  POST /api/v1/auth/logout                  -- revoke one refresh token (idempotent)
  POST /api/v1/auth/logout-all              -- revoke all of the caller's refresh tokens
  POST /api/v1/auth/change-password         -- change password; signs out everywhere
  POST /api/v1/auth/reset-password          -- request a reset email; always 200
  POST /api/v1/auth/confirm-reset-password  -- set a new password with a reset token
  POST /api/v1/auth/verify                  -- verify an access token; returns the user
  GET  /api/v1/auth/me                      -- current user profile

Handlers are plain `def`, not `async def`: bcrypt and store calls block, and
FastAPI runs sync handlers in its thread pool so they never stall the event loop.

Domain errors (auth.errors.AuthError) propagate out of the handlers and are
mapped to status codes by the exception handler in api/main.py.

Security:
  [H2] POST /login and POST /reset-password are rate-limited per IP.
  [C1] Wrong email and wrong password produce the same 401 body.
  [E1] POST /reset-password answers {"success": true} whatever happens --
       including infrastructure errors, which are logged instead.
  [M5] Cache-Control: no-store on every response that carries tokens.
  [P1] POST /register refuses ADMIN/SYSTEM roles and user-admin permissions
       (403). Privileged accounts are created with the operator CLI.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    ChangePasswordRequest,
    ConfirmResetPasswordRequest,
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    RefreshTokenRequest,
    RegisterRequest,
    ResetPasswordRequest,
    SuccessResponse,
    TokenPairResponse,
    UserProfileResponse,
    VerifyResponse,
)
from auth.dependencies import get_current_user, get_session_service
from auth.errors import StoreError
from auth.models import PRIVILEGED_ROLES, USER_ADMIN_PERMISSIONS, RegisterUser, UserProfile
from auth.service import SessionService

logger = logging.getLogger("procureauth.api")

# Auth policy:
# - register, login, refresh-token, logout, reset-password, confirm-reset-password:
#       public -- each carries its own proof (credentials or a token value)
# - logout-all, change-password, verify, me: bearer access token (get_current_user)
router = APIRouter()


def _no_store(payload: dict, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=payload)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=UserProfileResponse, status_code=201)
def register(
    body: RegisterRequest,
    service: SessionService = Depends(get_session_service),
) -> UserProfileResponse:
    """Create an active account. 409 if the email is already registered.

    Self-registration cannot claim a privileged role or any permission that
    administers users or organizations [P1].
    """
    permissions = frozenset(p.value for p in body.permissions)
    if body.role in PRIVILEGED_ROLES or permissions & USER_ADMIN_PERMISSIONS:
        logger.warning("Registration rejected: privileged role or permission requested")
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Privileged roles and permissions cannot be self-assigned."},
        )
    profile = service.register(
        RegisterUser(
            organization_id=body.organizationId,
            email=body.email,
            password=body.password,
            name=body.name,
            title=body.title,
            phone=body.phone,
            timezone=body.timezone,
            role=body.role,
            permissions=permissions,
        )
    )
    return UserProfileResponse.from_profile(profile)


@limiter.limit("10/minute")  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(
    request: Request,
    body: LoginRequest,
    service: SessionService = Depends(get_session_service),
) -> JSONResponse:
    """Authenticate with email and password; return the profile and a token pair."""
    result = service.login(body.email, body.password)
    return _no_store(LoginResponse.from_result(result).model_dump(mode="json"))


@router.post("/auth/refresh-token", response_model=TokenPairResponse)
def refresh_token(
    body: RefreshTokenRequest,
    service: SessionService = Depends(get_session_service),
) -> JSONResponse:
    """Exchange a live refresh token for a new pair. The presented token is revoked."""
    pair = service.refresh_token(body.refreshToken)
    return _no_store(TokenPairResponse.from_pair(pair).model_dump(mode="json"))


@router.post("/auth/logout", response_model=SuccessResponse)
def logout(
    body: LogoutRequest,
    service: SessionService = Depends(get_session_service),
) -> SuccessResponse:
    """Revoke a refresh token. Unknown tokens succeed too -- there is nothing to revoke."""
    service.logout(body.refreshToken)
    return SuccessResponse()


@limiter.limit("5/minute")  # [H2]
@router.post("/auth/reset-password", response_model=SuccessResponse)
def reset_password(
    request: Request,
    body: ResetPasswordRequest,
    service: SessionService = Depends(get_session_service),
) -> SuccessResponse:
    """Request a password reset email. Always succeeds [E1]."""
    try:
        service.reset_password(body.email)
    except StoreError:
        logger.exception("Password reset request failed")
    return SuccessResponse()


@router.post("/auth/confirm-reset-password", response_model=SuccessResponse)
def confirm_reset_password(
    body: ConfirmResetPasswordRequest,
    service: SessionService = Depends(get_session_service),
) -> SuccessResponse:
    """Set a new password using the token from the reset email."""
    service.confirm_reset_password(body.token, body.newPassword)
    return SuccessResponse()


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout-all", response_model=SuccessResponse)
def logout_all(
    current_user: UserProfile = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
) -> SuccessResponse:
    """Revoke every refresh token the caller holds (all devices)."""
    service.logout_all(current_user.id)
    return SuccessResponse()


@router.post("/auth/change-password", response_model=SuccessResponse)
def change_password(
    body: ChangePasswordRequest,
    current_user: UserProfile = Depends(get_current_user),
    service: SessionService = Depends(get_session_service),
) -> SuccessResponse:
    """Change the caller's password. All refresh tokens are revoked afterwards."""
    service.change_password(current_user.id, body.currentPassword, body.newPassword)
    return SuccessResponse()


@router.post("/auth/verify", response_model=VerifyResponse)
def verify(current_user: UserProfile = Depends(get_current_user)) -> VerifyResponse:
    """Verify the bearer token and return the (freshly fetched) user."""
    return VerifyResponse(user=UserProfileResponse.from_profile(current_user))


@router.get("/auth/me", response_model=UserProfileResponse)
def me(current_user: UserProfile = Depends(get_current_user)) -> UserProfileResponse:
    return UserProfileResponse.from_profile(current_user)
