"""
auth/service.py -- Auth orchestrator: register, login, refresh, logout, reset.

AuthService composes the credential verifier (auth/passwords.py), the token
issuer (auth/tokens.py), the session store (sessions/store.py) and the user
store (auth/store.py). It owns protocol sequencing and nothing else; every
dependency is injected by the caller (api/main.py lifespan).

Security invariants held here:
  - Login failures are indistinguishable: unknown email, wrong password and
    inactive account all raise AuthenticationFailed("Invalid email or
    password") after exactly one bcrypt comparison [C1].
  - Refresh fails closed. The session store fails open (returns None when
    Redis is unreachable), and None here means "refresh denied". The stored
    token must also equal the presented one, so a token superseded by a newer
    login is rejected even while the entry exists.
  - Refresh does not rotate the refresh token; it mints an access token only.
  - An inactive user never gets an access token: checked at login, at refresh
    (user is re-fetched) and on every authenticated request.
  - Forgot-password reveals nothing about whether the email exists.
  - Reset-password is a single guarded UPDATE (see UserStore.consume_reset_token).
  - Only a super_admin can grant the super_admin role or change a super_admin.

Every token error is translated to a uniform 401 here; the jose message is
logged at debug level only.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import math
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

from auth.errors import (
    AuthenticationFailed,
    Conflict,
    Forbidden,
    InvalidResetToken,
    NotFound,
    ValidationFailed,
)
from auth.models import AuthResult, Role, TokenKind, User
from auth.passwords import check_credentials, hash_password, verify_password
from auth.store import UserStore
from auth.tokens import TokenError, TokenIssuer
from core.config import Settings
from sessions.store import SessionStore

logger = logging.getLogger("authservice.auth")

INVALID_CREDENTIALS = "Invalid email or password"
INVALID_REFRESH_TOKEN = "Invalid refresh token"
INVALID_ACCESS_TOKEN = "Invalid or expired token"

PREFERENCE_FIELDS = frozenset({"language", "currency", "timezone", "marketing_emails", "sms_notifications"})

# Address part name -> users column.
ADDRESS_FIELDS = {
    "street": "address_street",
    "city": "address_city",
    "state": "address_state",
    "country": "address_country",
    "zip_code": "address_zip_code",
}


def require_role(user: User, allowed: set[str] | frozenset[str]) -> bool:
    """Pure role predicate. Independent of how the user was authenticated."""
    return user.role in allowed


@dataclass
class UserPage:
    users: list[User]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    @property
    def has_next(self) -> bool:
        return (self.page - 1) * self.limit + len(self.users) < self.total

    @property
    def has_prev(self) -> bool:
        return self.page > 1


@dataclass
class UserExport:
    user: User
    exported_at: str


class AuthService:
    def __init__(self, users: UserStore, sessions: SessionStore, tokens: TokenIssuer, settings: Settings) -> None:
        self._users = users
        self._sessions = sessions
        self._tokens = tokens
        self._settings = settings

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _normalize_email(self, email: str) -> str:
        email = email.strip()
        return email.lower() if self._settings.normalize_email_case else email

    def _hash_reset_token(self, raw_token: str) -> str:
        """HMAC-SHA256(SECRET_KEY, raw_token). A leaked users table yields no usable reset tokens."""
        return hmac.new(
            self._settings.secret_key.encode(),
            raw_token.encode(),
            hashlib.sha256,
        ).hexdigest()

    def _start_session(self, user: User) -> AuthResult:
        """Issue an access/refresh pair and overwrite the user's session entry.

        Overwriting is what invalidates any earlier refresh token for this user.
        """
        access_token = self._tokens.issue_access_token(user.id, user.email, user.role)
        refresh_token = self._tokens.issue_refresh_token(user.id)
        self._sessions.save_refresh_token(user.id, refresh_token, self._settings.refresh_token_expire_seconds)
        return AuthResult(user=user, access_token=access_token, refresh_token=refresh_token)

    def _require_user(self, user_id: str) -> User:
        user = self._users.get_by_id(user_id)
        if user is None:
            raise NotFound("User not found")
        return user

    # ------------------------------------------------------------------
    # Protocols
    # ------------------------------------------------------------------

    def register(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        phone: str | None = None,
    ) -> AuthResult:
        if not self._settings.self_registration_enabled:
            raise Forbidden("Self-registration is disabled")

        email = self._normalize_email(email)
        if self._users.get_by_email(email) is not None:
            raise Conflict("User with this email already exists")

        new_user = User(
            email=email,
            hashed_password=hash_password(password),
            first_name=first_name,
            last_name=last_name,
            phone=phone,
            role=Role.customer.value,
        )
        try:
            user_id = self._users.create_user(new_user)
        except IntegrityError as exc:
            # A concurrent registration won the UNIQUE(email) race.
            raise Conflict("User with this email already exists") from exc

        user = self._require_user(user_id)
        result = self._start_session(user)
        logger.info("User registered: %s", user.email)
        return result

    def login(self, email: str, password: str) -> AuthResult:
        user = self._users.get_by_email(self._normalize_email(email))
        if not check_credentials(user, password) or not user.is_active:
            raise AuthenticationFailed(INVALID_CREDENTIALS)

        self._users.update_last_login(user.id)
        user = self._require_user(user.id)
        result = self._start_session(user)
        logger.info("User logged in: %s", user.email)
        return result

    def refresh(self, refresh_token: str) -> str:
        """Return a new access token. The refresh token itself is not rotated."""
        try:
            claims = self._tokens.verify(refresh_token, TokenKind.REFRESH)
        except TokenError as exc:
            logger.debug("Refresh token rejected: %s", exc)
            raise AuthenticationFailed(INVALID_REFRESH_TOKEN) from exc

        stored = self._sessions.get_refresh_token(claims.user_id)
        # None covers never issued, logged out, expired entry and store down.
        if stored is None or not hmac.compare_digest(stored, refresh_token):
            raise AuthenticationFailed(INVALID_REFRESH_TOKEN)

        user = self._users.get_by_id(claims.user_id)
        if user is None or not user.is_active:
            raise AuthenticationFailed(INVALID_REFRESH_TOKEN)

        return self._tokens.issue_access_token(user.id, user.email, user.role)

    def logout(self, refresh_token: str | None) -> None:
        """Delete the session entry of the token's owner. Always succeeds.

        Expired tokens still identify their owner (the signature is checked,
        the expiry is not), so logging out with a stale token still clears the
        entry.
        """
        if not refresh_token:
            return
        try:
            claims = self._tokens.verify(refresh_token, TokenKind.REFRESH, check_expiry=False)
        except TokenError as exc:
            logger.debug("Logout with unusable refresh token: %s", exc)
            return
        self._sessions.revoke_refresh_token(claims.user_id)
        logger.info("User logged out: %s", claims.user_id)

    def forgot_password(self, email: str) -> str | None:
        """Attach a single-use reset token to the user, if one exists.

        Returns the raw token for out-of-band delivery, or None when the email
        is unknown. The HTTP layer responds identically in both cases and never
        echoes the token.
        """
        if not self._settings.password_reset_enabled:
            raise Forbidden("Password reset is disabled")

        user = self._users.get_by_email(self._normalize_email(email))
        if user is None:
            return None

        raw_token = secrets.token_urlsafe(32)
        expires_at = int(time.time()) + self._settings.password_reset_expire_seconds
        self._users.set_reset_token(user.id, self._hash_reset_token(raw_token), expires_at)
        logger.info("Password reset token generated for user: %s", user.email)
        return raw_token

    def reset_password(self, token: str, new_password: str) -> None:
        if not self._settings.password_reset_enabled:
            raise Forbidden("Password reset is disabled")

        token_hash = self._hash_reset_token(token)
        now_ts = int(time.time())
        user = self._users.get_by_reset_token(token_hash, now_ts)
        if user is None:
            raise InvalidResetToken("Invalid or expired reset token")

        if not self._users.consume_reset_token(user.id, token_hash, now_ts, hash_password(new_password)):
            # Expired or consumed by a concurrent reset between lookup and write.
            raise InvalidResetToken("Invalid or expired reset token")

        self._sessions.revoke_refresh_token(user.id)
        logger.info("Password reset successful for user: %s", user.email)

    # ------------------------------------------------------------------
    # Request authentication
    # ------------------------------------------------------------------

    def authenticate(self, access_token: str) -> User:
        """Resolve a bearer token to an active user, or raise a 401."""
        try:
            claims = self._tokens.verify(access_token, TokenKind.ACCESS)
        except TokenError as exc:
            logger.debug("Access token rejected: %s", exc)
            raise AuthenticationFailed(INVALID_ACCESS_TOKEN) from exc

        user = self._users.get_by_id(claims.user_id)
        if user is None or not user.is_active:
            raise AuthenticationFailed("User not found or inactive")
        return user

    # ------------------------------------------------------------------
    # Self-service
    # ------------------------------------------------------------------

    def update_profile(self, user: User, **fields) -> User:
        allowed = {k: v for k, v in fields.items() if k in {"first_name", "last_name", "phone"}}
        updated = self._users.update_user(user.id, **allowed)
        if updated is None:
            raise NotFound("User not found")
        logger.info("User profile updated: %s", updated.email)
        return updated

    def change_password(self, user: User, current_password: str, new_password: str) -> None:
        """Verify the current password, store the new one, end the refresh session."""
        fresh = self._require_user(user.id)
        if not verify_password(current_password, fresh.hashed_password):
            raise ValidationFailed("Current password is incorrect")
        self._users.set_password(fresh.id, hash_password(new_password))
        self._sessions.revoke_refresh_token(fresh.id)
        logger.info("Password changed for user: %s", fresh.email)

    def deactivate_account(self, user: User, password: str) -> None:
        """Soft-delete: the record stays, is_active goes false."""
        fresh = self._require_user(user.id)
        if not verify_password(password, fresh.hashed_password):
            raise ValidationFailed("Password is incorrect")
        self._users.update_user(fresh.id, is_active=False)
        self._sessions.revoke_refresh_token(fresh.id)
        logger.info("User account deactivated: %s", fresh.email)

    def update_preferences(self, user: User, **fields) -> User:
        """Merge the given preference fields; anything not passed keeps its value."""
        allowed = {k: v for k, v in fields.items() if k in PREFERENCE_FIELDS and v is not None}
        if not allowed:
            raise ValidationFailed("No preferences to update")
        updated = self._users.update_user(user.id, **allowed)
        if updated is None:
            raise NotFound("User not found")
        logger.info("Preferences updated for user: %s (%s)", updated.email, ", ".join(sorted(allowed)))
        return updated

    def update_address(self, user: User, **fields) -> User:
        """Replace the stored address. Parts not passed are cleared."""
        address = {column: fields.get(part) for part, column in ADDRESS_FIELDS.items()}
        updated = self._users.update_user(user.id, **address)
        if updated is None:
            raise NotFound("User not found")
        logger.info("Address updated for user: %s", updated.email)
        return updated

    def delete_profile_picture(self, user: User) -> User:
        updated = self._users.update_user(user.id, profile_picture=None)
        if updated is None:
            raise NotFound("User not found")
        logger.info("Profile picture deleted for user: %s", updated.email)
        return updated

    def export_user_data(self, user: User) -> UserExport:
        """Snapshot of the stored record, read fresh rather than from the request's user."""
        fresh = self._require_user(user.id)
        logger.info("User data exported: %s", fresh.email)
        return UserExport(user=fresh, exported_at=datetime.now(timezone.utc).isoformat())

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def list_users(
        self,
        page: int = 1,
        limit: int = 10,
        role: str | None = None,
        is_active: bool | None = None,
        search: str | None = None,
    ) -> UserPage:
        skip = (page - 1) * limit
        users = self._users.list_users(role=role, is_active=is_active, search=search, skip=skip, limit=limit)
        total = self._users.count_users(role=role, is_active=is_active, search=search)
        return UserPage(users=users, page=page, limit=limit, total=total)

    def get_user(self, user_id: str) -> User:
        return self._require_user(user_id)

    def update_user(self, user_id: str, acting: User, **fields) -> User:
        if fields.get("is_active") is False and user_id == acting.id:
            raise ValidationFailed("You cannot deactivate your own account")
        target = self._require_user(user_id)
        super_admin = Role.super_admin.value
        if super_admin in (target.role, fields.get("role")) and acting.role != super_admin:
            raise Forbidden("Only a super admin can manage super admin accounts")
        updated = self._users.update_user(user_id, **fields)
        if updated is None:
            raise NotFound("User not found")
        if not updated.is_active:
            self._sessions.revoke_refresh_token(updated.id)
        logger.info("User updated by admin %s: %s", acting.email, updated.email)
        return updated

    def set_active(self, user_id: str, active: bool, acting: User) -> User:
        updated = self.update_user(user_id, acting, is_active=active)
        logger.info("User %s by admin: %s", "activated" if active else "deactivated", updated.email)
        return updated

    def delete_user(self, user_id: str, acting: User) -> None:
        if user_id == acting.id:
            raise ValidationFailed("You cannot delete your own account")
        user = self._require_user(user_id)
        self._users.delete_user(user_id)
        self._sessions.revoke_refresh_token(user_id)
        logger.info("User deleted by %s: %s", acting.email, user.email)
