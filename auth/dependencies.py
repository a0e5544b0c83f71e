"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

get_current_user() extracts "Authorization: Bearer <token>", verifies it as
an access token, loads the user and rejects missing or inactive accounts with
401. The resolved User is what routes receive.

require_roles(*roles) builds a dependency that runs get_current_user() first
and then applies the pure require_role() predicate. Failure is 403, distinct
from the 401 of the authentication step.

Layer rule: auth/dependencies.py may import from fastapi because it is part
of the FastAPI dependency injection system. It reaches the orchestrator via
request.app.state.auth_service, never via a module-level global.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Depends, Request

from auth.errors import AuthenticationFailed, Forbidden
from auth.models import User
from auth.service import AuthService, require_role


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        return token or None
    return None


def get_current_user(request: Request) -> User:
    """Require a valid bearer access token. Raises 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    token = _bearer_token(request)
    if token is None:
        raise AuthenticationFailed("Access token is required")
    return get_auth_service(request).authenticate(token)


def require_roles(*roles: str) -> Callable[..., User]:
    """Return a dependency that admits only users whose role is in roles.

    Use as a FastAPI dependency:
        @router.delete("/users/{id}")
        def route(user: User = Depends(require_roles("super_admin"))): ...
    """
    allowed = frozenset(roles)

    def _dependency(current_user: User = Depends(get_current_user)) -> User:
        if not require_role(current_user, allowed):
            raise Forbidden("Insufficient permissions")
        return current_user

    return _dependency


require_admin = require_roles("admin", "super_admin")
require_super_admin = require_roles("super_admin")
