"""
api/routes/v1/users.py -- User administration REST endpoints.

Routes (all require ADMIN role or the MANAGE_USERS permission):
  GET /api/v1/users/{id}                         -- profile by id
  GET /api/v1/users/email/{email}                -- profile by email
  GET /api/v1/organizations/{organization_id}/users
  PUT /api/v1/users/{id}                         -- name/title/phone/timezone/role
  PUT /api/v1/users/{id}/permissions             -- replace the permission set
  PUT /api/v1/users/{id}/activate
  PUT /api/v1/users/{id}/deactivate              -- also revokes refresh tokens

Tenant boundary: platform ADMINs may act on any organization. Everyone else
(e.g. a CLIENT_ADMIN holding MANAGE_USERS) only on users of their own
organization; a foreign user is reported as 404, not 403, so ids from other
tenants cannot be probed.

Only platform ADMINs may grant the ADMIN or SYSTEM role or the platform
permissions (MANAGE_ORGANIZATIONS, MANAGE_SYSTEM).

Users are never hard-deleted through this service.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import PermissionsUpdateRequest, UserProfileResponse, UserUpdateRequest
from auth.dependencies import require_user_admin
from auth.errors import UserNotFoundError
from auth.models import PLATFORM_PERMISSIONS, PRIVILEGED_ROLES, UpdateUser, UserProfile, UserRole
from auth.users import UserService

router = APIRouter()


def get_user_service(request: Request) -> UserService:
    return request.app.state.user_service


def _check_tenant(actor: UserProfile, target: UserProfile) -> None:
    if actor.role != UserRole.ADMIN and actor.organization_id != target.organization_id:
        raise UserNotFoundError()


def _require_platform_admin(actor: UserProfile, message: str) -> None:
    if actor.role != UserRole.ADMIN:
        raise HTTPException(status_code=403, detail={"code": "forbidden", "message": message})


def _check_self(actor: UserProfile, user_id: str) -> None:
    if actor.id == user_id:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_deactivation", "message": "You cannot deactivate your own account."},
        )


@router.get("/users/email/{email}", response_model=UserProfileResponse)
def get_user_by_email(
    email: str,
    actor: UserProfile = Depends(require_user_admin),
    users: UserService = Depends(get_user_service),
) -> UserProfileResponse:
    target = users.get_user_by_email(email)
    _check_tenant(actor, target)
    return UserProfileResponse.from_profile(target)


@router.get("/users/{user_id}", response_model=UserProfileResponse)
def get_user(
    user_id: str,
    actor: UserProfile = Depends(require_user_admin),
    users: UserService = Depends(get_user_service),
) -> UserProfileResponse:
    target = users.get_user(user_id)
    _check_tenant(actor, target)
    return UserProfileResponse.from_profile(target)


@router.get("/organizations/{organization_id}/users", response_model=list[UserProfileResponse])
def list_organization_users(
    organization_id: str,
    actor: UserProfile = Depends(require_user_admin),
    users: UserService = Depends(get_user_service),
) -> list[UserProfileResponse]:
    if actor.role != UserRole.ADMIN and actor.organization_id != organization_id:
        return []
    return [UserProfileResponse.from_profile(p) for p in users.list_organization_users(organization_id)]


@router.put("/users/{user_id}", response_model=UserProfileResponse)
def update_user(
    user_id: str,
    body: UserUpdateRequest,
    actor: UserProfile = Depends(require_user_admin),
    users: UserService = Depends(get_user_service),
) -> UserProfileResponse:
    _check_tenant(actor, users.get_user(user_id))
    if body.role in PRIVILEGED_ROLES:
        _require_platform_admin(actor, "Only platform admins can grant the ADMIN or SYSTEM role.")
    updated = users.update_user(
        user_id,
        UpdateUser(name=body.name, title=body.title, phone=body.phone, timezone=body.timezone, role=body.role),
    )
    return UserProfileResponse.from_profile(updated)


@router.put("/users/{user_id}/permissions", response_model=UserProfileResponse)
def update_permissions(
    user_id: str,
    body: PermissionsUpdateRequest,
    actor: UserProfile = Depends(require_user_admin),
    users: UserService = Depends(get_user_service),
) -> UserProfileResponse:
    _check_tenant(actor, users.get_user(user_id))
    if {p.value for p in body.permissions} & PLATFORM_PERMISSIONS:
        _require_platform_admin(actor, "Only platform admins can grant platform permissions.")
    updated = users.update_permissions(user_id, [p.value for p in body.permissions])
    return UserProfileResponse.from_profile(updated)


@router.put("/users/{user_id}/activate", response_model=UserProfileResponse)
def activate_user(
    user_id: str,
    actor: UserProfile = Depends(require_user_admin),
    users: UserService = Depends(get_user_service),
) -> UserProfileResponse:
    _check_tenant(actor, users.get_user(user_id))
    return UserProfileResponse.from_profile(users.activate_user(user_id))


@router.put("/users/{user_id}/deactivate", response_model=UserProfileResponse)
def deactivate_user(
    user_id: str,
    actor: UserProfile = Depends(require_user_admin),
    users: UserService = Depends(get_user_service),
) -> UserProfileResponse:
    _check_self(actor, user_id)
    _check_tenant(actor, users.get_user(user_id))
    return UserProfileResponse.from_profile(users.deactivate_user(user_id))
