"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores, the token
issuer and the orchestrator do the work; these only own shape.

Claims are a tagged variant: AccessClaims | RefreshClaims. Verification takes
a TokenKind discriminator and returns exactly one of the two, so downstream
code never handles an untyped claims dict.

Layer rule: no imports from api/, core/, or sessions/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union


class Role(str, Enum):
    customer = "customer"
    admin = "admin"
    super_admin = "super_admin"


class TokenKind(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


@dataclass
class User:
    """A local identity with a password credential.

    id is an opaque string assigned by the store (uuid4 hex).

    password_reset_token holds HMAC-SHA256(SECRET_KEY, raw_token), never the
    raw token. password_reset_expires is a Unix timestamp (seconds). Both are
    None when no reset is pending.

    Preferences always have a value; the address fields and profile_picture
    are None until set.
    """

    email: str
    hashed_password: str
    first_name: str = ""
    last_name: str = ""
    phone: str | None = None
    role: str = Role.customer.value
    id: str | None = None
    is_active: bool = True
    is_email_verified: bool = False
    is_phone_verified: bool = False
    language: str = "en"
    currency: str = "USD"
    timezone: str = "UTC"
    marketing_emails: bool = False
    sms_notifications: bool = False
    address_street: str | None = None
    address_city: str | None = None
    address_state: str | None = None
    address_country: str | None = None
    address_zip_code: str | None = None
    profile_picture: str | None = None
    password_reset_token: str | None = None
    password_reset_expires: int | None = None
    last_login: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class AccessClaims:
    user_id: str
    email: str
    role: str
    issued_at: int
    expires_at: int


@dataclass(frozen=True)
class RefreshClaims:
    user_id: str
    token_id: str
    issued_at: int
    expires_at: int


Claims = Union[AccessClaims, RefreshClaims]


@dataclass
class AuthResult:
    """What register and login hand back to the transport layer."""

    user: User
    access_token: str
    refresh_token: str
