"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Access tokens arrive as "Authorization: Bearer <token>". Verification goes
through SessionService.verify_token(), which checks signature and expiry and
then re-fetches the user so a deactivated account is rejected immediately.

get_current_user() raises the domain error (InvalidOrExpiredTokenError or
AccountInactiveError); api/main.py maps it to 401/403 with the standard
error envelope. require_user_admin() adds a 403 for callers who may not
administer users.

auth/dependencies.py may import from fastapi (for Request/HTTPException)
because it is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.errors import InvalidOrExpiredTokenError
from auth.models import Permission, UserProfile, UserRole
from auth.service import SessionService


def bearer_token(request: Request) -> str | None:
    """Return the bearer token from the Authorization header, or None."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header[:7].lower() == "bearer ":
        token = auth_header[7:].strip()
        return token or None
    return None


def get_session_service(request: Request) -> SessionService:
    return request.app.state.session_service


def get_current_user(request: Request) -> UserProfile:
    """Require a valid access token for an active account.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: UserProfile = Depends(get_current_user)): ...
    """
    token = bearer_token(request)
    if token is None:
        raise InvalidOrExpiredTokenError("Authentication required.")
    return get_session_service(request).verify_token(token)


def require_user_admin(request: Request) -> UserProfile:
    """Require ADMIN role or the MANAGE_USERS permission. 403 otherwise.

    Client and supplier admins are limited to their own organization; the
    organization check lives in the route because it needs the target user.
    """
    user = get_current_user(request)
    if user.role != UserRole.ADMIN and Permission.MANAGE_USERS.value not in user.permissions:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "User administration requires MANAGE_USERS."},
        )
    return user
