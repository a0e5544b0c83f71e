"""
auth/passwords.py -- Password hashing and the credential verifier.

Passwords: bcrypt, used directly (no passlib wrapper). passlib's internal
wrap-bug detection feeds bcrypt 4.x a >72-byte password, which it rejects,
so the direct API is simpler and has no compatibility shim.

The cost factor comes from Settings.bcrypt_rounds (default 12). Tests lower
it with BCRYPT_ROUNDS=4 before import; verification cost follows whatever
rounds the stored hash was created with.

Timing equalization [C1]: check_credentials() always runs exactly one bcrypt
comparison, against _DUMMY_HASH when the user does not exist. An attacker
cannot tell "unknown email" from "wrong password" by response time.

Nothing in this module logs, and nothing persists. It is a pure predicate
over a user record and a candidate password.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import bcrypt

from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User

_settings = get_settings()


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt silently truncates input beyond 72 bytes. The API layer caps
    passwords at 128 characters; the truncation is accepted.
    """
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str | None) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    Any malformed or missing hash is a mismatch, never an exception.
    """
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


# Computed once at module load so the first failed login is not measurably
# slower than later ones.
_DUMMY_HASH: str = hash_password("authservice_timing_dummy")


def check_credentials(user: User | None, plain: str) -> bool:
    """Timing-equalized credential check.

    Returns True only when the user exists and the password matches. The
    is_active check is the caller's job and happens after this call, so an
    inactive account costs the same bcrypt work as an active one.
    """
    if user is None or not user.hashed_password:
        verify_password(plain, _DUMMY_HASH)
        return False
    return verify_password(plain, user.hashed_password)
