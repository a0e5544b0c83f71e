"""
API request and response models for the auth service REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
kept separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Wire format is camelCase (refreshToken, firstName, ...). Models accept either
the camelCase alias or the snake_case field name and always serialize by
alias.

Every JSON response is wrapped in the same envelope:

    {"success": bool, "data": ..., "message": ..., "error": ..., "timestamp": ISO-8601}

The envelope is built with ok() / fail() so no route hand-assembles it.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator
from pydantic.alias_generators import to_camel

from auth.models import Role, User

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
PHONE_PATTERN = r"^\+?[\d\s\-()]+$"

# Annotated aliases apply the same constraints wherever the type is used.
# Passwords opt out of the model-wide whitespace stripping: surrounding
# spaces are part of the secret.
_Password = Annotated[str, StringConstraints(strip_whitespace=False, min_length=8, max_length=128)]
_PasswordInput = Annotated[str, StringConstraints(strip_whitespace=False, min_length=1, max_length=128)]
_Name = Annotated[str, Field(min_length=2, max_length=50)]

Language = Literal["en", "es", "fr", "de"]
Currency = Literal["USD", "EUR", "GBP", "CAD"]
_Timezone = Annotated[str, Field(min_length=1, max_length=64)]
_AddressPart = Annotated[str, Field(min_length=1, max_length=200)]


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def ok(data: Any = None, message: str | None = None) -> dict:
    """Success envelope. data and message are omitted when None."""
    body: dict[str, Any] = {"success": True}
    if data is not None:
        body["data"] = data
    if message is not None:
        body["message"] = message
    body["timestamp"] = _timestamp()
    return body


def fail(error: str, code: str, details: list | None = None) -> dict:
    """Error envelope. code is a stable machine-readable string; error is for humans."""
    body: dict[str, Any] = {"success": False, "error": error, "code": code}
    if details:
        body["details"] = details
    body["timestamp"] = _timestamp()
    return body


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(_CamelModel):
    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: _Password
    first_name: _Name
    last_name: _Name
    phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN, max_length=32)


class LoginRequest(_CamelModel):
    email: str = Field(min_length=3, max_length=255)
    password: _PasswordInput


class RefreshRequest(_CamelModel):
    """refreshToken is optional at the schema level so a missing token is a 400, not a schema error."""

    refresh_token: Optional[str] = None


class LogoutRequest(_CamelModel):
    refresh_token: Optional[str] = None

    @field_validator("refresh_token", mode="before")
    @classmethod
    def _ignore_non_string(cls, value: Any) -> Any:
        """Logout never fails on its input; a token that is not a string is treated as absent."""
        return value if isinstance(value, str) else None


class ForgotPasswordRequest(_CamelModel):
    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)


class ResetPasswordRequest(_CamelModel):
    token: str = Field(min_length=1, max_length=256)
    password: _Password


class ChangePasswordRequest(_CamelModel):
    current_password: _PasswordInput
    new_password: _Password


class DeleteAccountRequest(_CamelModel):
    password: _PasswordInput


class ProfileUpdate(_CamelModel):
    first_name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    last_name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN, max_length=32)


class PreferencesUpdate(_CamelModel):
    language: Optional[Language] = None
    currency: Optional[Currency] = None
    timezone: Optional[_Timezone] = None
    marketing_emails: Optional[bool] = None
    sms_notifications: Optional[bool] = None


class LanguageUpdate(_CamelModel):
    language: Language


class CurrencyUpdate(_CamelModel):
    currency: Currency


class TimezoneUpdate(_CamelModel):
    timezone: _Timezone


class MarketingPreferencesUpdate(_CamelModel):
    marketing_emails: bool
    sms_notifications: bool


class AddressUpdate(_CamelModel):
    street: Optional[_AddressPart] = None
    city: Optional[_AddressPart] = None
    state: Optional[_AddressPart] = None
    country: Optional[_AddressPart] = None
    zip_code: Optional[Annotated[str, Field(min_length=1, max_length=20)]] = None


class AdminUserUpdate(_CamelModel):
    first_name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    last_name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    role: Optional[Role] = None
    is_active: Optional[bool] = None
    is_email_verified: Optional[bool] = None
    is_phone_verified: Optional[bool] = None

    def changes(self) -> dict:
        """Only the fields the caller actually sent, with enums unwrapped."""
        fields = self.model_dump(exclude_unset=True, exclude_none=True)
        if "role" in fields:
            fields["role"] = Role(fields["role"]).value
        return fields


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class PreferencesPublic(_CamelModel):
    language: str
    currency: str
    timezone: str
    marketing_emails: bool
    sms_notifications: bool


class AddressPublic(_CamelModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    zip_code: Optional[str] = None


class UserPublic(_CamelModel):
    """Sanitized user projection. Never carries the password hash or reset fields."""

    id: str
    email: str
    first_name: str
    last_name: str
    phone: Optional[str] = None
    role: str
    is_active: bool
    is_email_verified: bool
    is_phone_verified: bool
    preferences: PreferencesPublic
    address: AddressPublic
    profile_picture: Optional[str] = None
    last_login: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserPublic":
        """Factory Method -- the mapping lives with the output model, not in route handlers."""
        return cls(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            phone=user.phone,
            role=user.role,
            is_active=user.is_active,
            is_email_verified=user.is_email_verified,
            is_phone_verified=user.is_phone_verified,
            preferences=PreferencesPublic(
                language=user.language,
                currency=user.currency,
                timezone=user.timezone,
                marketing_emails=user.marketing_emails,
                sms_notifications=user.sms_notifications,
            ),
            address=AddressPublic(
                street=user.address_street,
                city=user.address_city,
                state=user.address_state,
                country=user.address_country,
                zip_code=user.address_zip_code,
            ),
            profile_picture=user.profile_picture,
            last_login=user.last_login,
            created_at=user.created_at,
        )

    def dump(self) -> dict:
        return self.model_dump(by_alias=True)


class Pagination(_CamelModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


class HealthResponse(BaseModel):
    status: str
    version: str
    components: dict[str, str]
    timestamp: str = Field(default_factory=_timestamp)
