"""
api/routes/v1/users.py -- Self-service endpoints for the authenticated user.

Routes:
  GET    /api/v1/users/profile                  -- own profile
  PUT    /api/v1/users/profile                  -- update own names / phone
  PUT    /api/v1/users/password                 -- change password (requires current password)
  PUT    /api/v1/users/preferences              -- merge any preference fields
  PUT    /api/v1/users/preferences/language     -- set language
  PUT    /api/v1/users/preferences/currency     -- set currency
  PUT    /api/v1/users/preferences/timezone     -- set timezone
  PUT    /api/v1/users/preferences/marketing    -- set both marketing opt-ins
  PUT    /api/v1/users/address                  -- replace the postal address
  DELETE /api/v1/users/profile-picture          -- clear the profile picture
  GET    /api/v1/users/export                   -- export own record
  GET    /api/v1/users/data/export              -- same export, alternate path
  DELETE /api/v1/users/account                  -- deactivate own account (requires password)

Every route requires a bearer access token. Changing the password or
deactivating the account also ends the refresh session, so other devices
must log in again.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from api.models import (
    AddressUpdate,
    ChangePasswordRequest,
    CurrencyUpdate,
    DeleteAccountRequest,
    LanguageUpdate,
    MarketingPreferencesUpdate,
    PreferencesUpdate,
    ProfileUpdate,
    TimezoneUpdate,
    UserPublic,
    ok,
)
from auth.dependencies import get_auth_service, get_current_user
from auth.errors import ValidationFailed
from auth.models import User
from auth.service import AuthService

router = APIRouter()


def _user_response(user: User, message: str) -> dict:
    return ok(data={"user": UserPublic.from_user(user).dump()}, message=message)


@router.get("/users/profile")
def get_profile(current_user: User = Depends(get_current_user)) -> dict:
    return ok(data={"user": UserPublic.from_user(current_user).dump()})


@router.put("/users/profile")
def update_profile(
    body: ProfileUpdate,
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> dict:
    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        raise ValidationFailed("No fields to update")
    updated = service.update_profile(current_user, **changes)
    return _user_response(updated, "Profile updated successfully")


@router.put("/users/password")
def change_password(
    body: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> dict:
    service.change_password(current_user, body.current_password, body.new_password)
    return ok(message="Password changed successfully")


# ---------------------------------------------------------------------------
# Preferences
# ---------------------------------------------------------------------------


@router.put("/users/preferences")
def update_preferences(
    body: PreferencesUpdate,
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> dict:
    updated = service.update_preferences(current_user, **body.model_dump(exclude_none=True))
    return _user_response(updated, "Preferences updated successfully")


@router.put("/users/preferences/language")
def update_language(
    body: LanguageUpdate,
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> dict:
    updated = service.update_preferences(current_user, language=body.language)
    return _user_response(updated, "Language updated successfully")


@router.put("/users/preferences/currency")
def update_currency(
    body: CurrencyUpdate,
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> dict:
    updated = service.update_preferences(current_user, currency=body.currency)
    return _user_response(updated, "Currency updated successfully")


@router.put("/users/preferences/timezone")
def update_timezone(
    body: TimezoneUpdate,
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> dict:
    updated = service.update_preferences(current_user, timezone=body.timezone)
    return _user_response(updated, "Timezone updated successfully")


@router.put("/users/preferences/marketing")
def update_marketing_preferences(
    body: MarketingPreferencesUpdate,
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> dict:
    updated = service.update_preferences(
        current_user,
        marketing_emails=body.marketing_emails,
        sms_notifications=body.sms_notifications,
    )
    return _user_response(updated, "Marketing preferences updated successfully")


# ---------------------------------------------------------------------------
# Address, picture, export
# ---------------------------------------------------------------------------


@router.put("/users/address")
def update_address(
    body: AddressUpdate,
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> dict:
    updated = service.update_address(current_user, **body.model_dump(exclude_none=True))
    return _user_response(updated, "Address updated successfully")


@router.delete("/users/profile-picture")
def delete_profile_picture(
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> dict:
    updated = service.delete_profile_picture(current_user)
    return _user_response(updated, "Profile picture deleted successfully")


@router.get("/users/export")
@router.get("/users/data/export")
def export_data(
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> dict:
    export = service.export_user_data(current_user)
    return ok(data={"user": UserPublic.from_user(export.user).dump(), "exportDate": export.exported_at})


@router.delete("/users/account")
def delete_account(
    body: DeleteAccountRequest,
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> dict:
    service.deactivate_account(current_user, body.password)
    return ok(message="Account deactivated successfully")
