"""
api/routes/v1/auth.py -- Authentication protocol and user administration endpoints.

Routes:
  POST   /api/v1/auth/register                -- create account; returns token pair (201)
  POST   /api/v1/auth/login                   -- password login; returns token pair
  POST   /api/v1/auth/refresh-token           -- new access token from a live refresh token
  POST   /api/v1/auth/logout                  -- drop the refresh session; always 200
  POST   /api/v1/auth/forgot-password         -- start a reset; identical response for any email
  POST   /api/v1/auth/reset-password          -- finish a reset with the emailed token
  GET    /api/v1/auth/me                      -- current user (bearer)
  GET    /api/v1/auth/users                   -- search/list users (admin, super_admin)
  GET    /api/v1/auth/users/{id}              -- one user (admin, super_admin)
  PUT    /api/v1/auth/users/{id}              -- update role/flags/names (admin, super_admin)
  DELETE /api/v1/auth/users/{id}              -- delete user (super_admin)
  POST   /api/v1/auth/users/{id}/activate     -- (admin, super_admin)
  POST   /api/v1/auth/users/{id}/deactivate   -- (admin, super_admin)

Security:
  [H2] register/login are rate-limited (Settings.auth_rate_limit) and
       forgot/reset more tightly (Settings.password_reset_rate_limit), per IP.
  [C1] AuthService.login() provides timing equalization -- never inline a
       user lookup + verify_password() here.
  [M5] Cache-Control: no-store on every response that carries tokens.

Handlers are plain def so FastAPI runs them in its threadpool: bcrypt, SQL
and Redis calls never block the event loop.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    AdminUserUpdate,
    ForgotPasswordRequest,
    LoginRequest,
    LogoutRequest,
    Pagination,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    UserPublic,
    ok,
)
from auth.dependencies import get_auth_service, get_current_user, require_admin, require_super_admin
from auth.errors import ValidationFailed
from auth.models import AuthResult, Role, User
from auth.service import AuthService
from core.config import get_settings

_settings = get_settings()

FORGOT_PASSWORD_MESSAGE = "If an account with that email exists, a password reset link has been sent"

# Auth policy:
# - register, login, refresh-token, logout, forgot/reset-password: public
# - GET /auth/me: requires auth (get_current_user)
# - /auth/users*: requires admin or super_admin (require_admin)
# - DELETE /auth/users/{id}: requires super_admin (require_super_admin)
router = APIRouter()


def _token_response(result: AuthResult, message: str, status_code: int) -> JSONResponse:
    resp = JSONResponse(
        status_code=status_code,
        content=ok(
            data={
                "user": UserPublic.from_user(result.user).dump(),
                "accessToken": result.access_token,
                "refreshToken": result.refresh_token,
            },
            message=message,
        ),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_settings.auth_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/register", status_code=201)
def register(
    request: Request,
    body: RegisterRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Create a customer account and start its first session."""
    result = service.register(
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        phone=body.phone,
    )
    return _token_response(result, "User registered successfully", 201)


@limiter.limit(_settings.auth_rate_limit)  # [H2]
@router.post("/auth/login")
def login(
    request: Request,
    body: LoginRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Authenticate with email and password.

    Unknown email, wrong password and inactive account all produce the same
    401 body ("Invalid email or password").
    """
    result = service.login(body.email, body.password)
    return _token_response(result, "Login successful", 200)


@router.post("/auth/refresh-token")
def refresh_token(body: RefreshRequest, service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    """Mint a new access token. The refresh token is returned to nobody and not rotated."""
    if not body.refresh_token:
        raise ValidationFailed("Refresh token is required")
    access_token = service.refresh(body.refresh_token)
    resp = JSONResponse(content=ok(data={"accessToken": access_token}, message="Token refreshed successfully"))
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/logout")
def logout(body: Optional[LogoutRequest] = None, service: AuthService = Depends(get_auth_service)) -> dict:
    """End the refresh session. Idempotent; succeeds for any or no token."""
    service.logout(body.refresh_token if body is not None else None)
    return ok(message="Logged out successfully")


@limiter.limit(_settings.password_reset_rate_limit)  # [H2]
@router.post("/auth/forgot-password")
def forgot_password(
    request: Request,
    body: ForgotPasswordRequest,
    service: AuthService = Depends(get_auth_service),
) -> dict:
    """Start a password reset. The response never reveals whether the email exists."""
    service.forgot_password(body.email)
    return ok(message=FORGOT_PASSWORD_MESSAGE)


@limiter.limit(_settings.password_reset_rate_limit)  # [H2]
@router.post("/auth/reset-password")
def reset_password(
    request: Request,
    body: ResetPasswordRequest,
    service: AuthService = Depends(get_auth_service),
) -> dict:
    service.reset_password(body.token, body.password)
    return ok(message="Password reset successful")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me")
def me(current_user: User = Depends(get_current_user)) -> dict:
    """Return the profile of the currently authenticated user."""
    return ok(data={"user": UserPublic.from_user(current_user).dump()})


# ---------------------------------------------------------------------------
# User management (admin only)
# ---------------------------------------------------------------------------


@router.get("/auth/users")
def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    role: Optional[Role] = Query(None),
    is_active: Optional[bool] = Query(None, alias="isActive"),
    search: Optional[str] = Query(None, max_length=100),
    current_user: User = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
) -> dict:
    """List users newest first. search is a case-insensitive substring of name or email."""
    result = service.list_users(
        page=page,
        limit=limit,
        role=role.value if role else None,
        is_active=is_active,
        search=search or None,
    )
    pagination = Pagination(
        page=result.page,
        limit=result.limit,
        total=result.total,
        total_pages=result.total_pages,
        has_next=result.has_next,
        has_prev=result.has_prev,
    )
    return ok(
        data={
            "users": [UserPublic.from_user(u).dump() for u in result.users],
            "pagination": pagination.model_dump(by_alias=True),
        }
    )


@router.get("/auth/users/{user_id}")
def get_user(
    user_id: str,
    current_user: User = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
) -> dict:
    return ok(data={"user": UserPublic.from_user(service.get_user(user_id)).dump()})


@router.put("/auth/users/{user_id}")
def update_user(
    user_id: str,
    body: AdminUserUpdate,
    current_user: User = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
) -> dict:
    """Update names, role or status flags. Deactivation also ends the user's refresh session."""
    changes = body.changes()
    if not changes:
        raise ValidationFailed("No fields to update")
    updated = service.update_user(user_id, current_user, **changes)
    return ok(data={"user": UserPublic.from_user(updated).dump()}, message="User updated successfully")


@router.delete("/auth/users/{user_id}")
def delete_user(
    user_id: str,
    current_user: User = Depends(require_super_admin),
    service: AuthService = Depends(get_auth_service),
) -> dict:
    service.delete_user(user_id, current_user)
    return ok(message="User deleted successfully")


@router.post("/auth/users/{user_id}/activate")
def activate_user(
    user_id: str,
    current_user: User = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
) -> dict:
    updated = service.set_active(user_id, True, current_user)
    return ok(data={"user": UserPublic.from_user(updated).dump()}, message="User activated successfully")


@router.post("/auth/users/{user_id}/deactivate")
def deactivate_user(
    user_id: str,
    current_user: User = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
) -> dict:
    updated = service.set_active(user_id, False, current_user)
    return ok(data={"user": UserPublic.from_user(updated).dump()}, message="User deactivated successfully")
