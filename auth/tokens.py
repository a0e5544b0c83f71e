"""
auth/tokens.py -- JWT issuance and verification for access and refresh tokens.

Security design decisions:
  JWT: python-jose with HS256. Both token kinds are signed with the same
       SECRET_KEY and carry iss/aud claims. Access tokens are verified purely
       by signature + expiry -- no store lookup per request.

  Claim shape: every token carries a "typ" claim AND a kind-specific claim
       set. verify() requires both to match the expected TokenKind, so a
       refresh token presented as an access token is rejected even though
       the signature is valid. Callers cannot opt out by picking the "wrong"
       verify function; there is only one.

  Expiry: jose checks signature, issuer and audience; expiry is checked here
       against the injected clock with zero leeway. A token is valid while
       now <= exp and expired once now > exp.

  Errors: TokenExpired / TokenInvalid / MalformedToken all derive from
       TokenError. The raw jose message is kept on the exception for logging
       but never reaches a client; the orchestrator maps every TokenError to
       a uniform 401.

Layer rule: no imports from api/, sessions/, or core/. Configuration is passed
in by the caller; from_settings() accepts any object with the Settings fields.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime, timezone

from jose import JWTError, jwt
from jose.exceptions import JWTClaimsError

from auth.models import AccessClaims, Claims, RefreshClaims, TokenKind

_ALGORITHM = "HS256"

# Exact claim key sets. Anything missing or extra is a shape mismatch.
_ACCESS_KEYS = frozenset({"sub", "email", "role", "typ", "iss", "aud", "iat", "exp"})
_REFRESH_KEYS = frozenset({"sub", "jti", "typ", "iss", "aud", "iat", "exp"})


class TokenError(Exception):
    """Base class for every token verification failure."""


class TokenExpired(TokenError):
    pass


class TokenInvalid(TokenError):
    pass


class MalformedToken(TokenError):
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenIssuer:
    """Mints and verifies signed, expiring tokens.

    Usage:
        issuer = TokenIssuer(secret_key, issuer="svc", audience="users",
                             access_ttl=3600, refresh_ttl=604800)
        token = issuer.issue_access_token(user_id, email, role)
        claims = issuer.verify(token, TokenKind.ACCESS)
    """

    def __init__(
        self,
        secret_key: str,
        *,
        issuer: str,
        audience: str,
        access_ttl: int,
        refresh_ttl: int,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._secret_key = secret_key
        self.issuer = issuer
        self.audience = audience
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self._clock = clock

    @classmethod
    def from_settings(cls, settings, clock: Callable[[], datetime] = _utcnow) -> TokenIssuer:
        return cls(
            settings.secret_key,
            issuer=settings.token_issuer,
            audience=settings.token_audience,
            access_ttl=settings.access_token_expire_seconds,
            refresh_ttl=settings.refresh_token_expire_seconds,
            clock=clock,
        )

    def _now_ts(self) -> int:
        return int(self._clock().timestamp())

    def issue_access_token(self, user_id: str, email: str, role: str) -> str:
        """Encode an access token carrying identity and role."""
        now = self._now_ts()
        payload = {
            "sub": user_id,
            "email": email,
            "role": role,
            "typ": TokenKind.ACCESS.value,
            "iss": self.issuer,
            "aud": self.audience,
            "iat": now,
            "exp": now + self.access_ttl,
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def issue_refresh_token(self, user_id: str, token_id: str | None = None) -> str:
        """Encode a refresh token. No email or role -- it cannot authorize requests."""
        now = self._now_ts()
        payload = {
            "sub": user_id,
            "jti": token_id or uuid.uuid4().hex,
            "typ": TokenKind.REFRESH.value,
            "iss": self.issuer,
            "aud": self.audience,
            "iat": now,
            "exp": now + self.refresh_ttl,
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def verify(self, token: str, kind: TokenKind, *, check_expiry: bool = True) -> Claims:
        """Verify signature, issuer, audience, claim shape and expiry.

        check_expiry=False is used only by logout, which must be able to find
        the owner of an expired refresh token. The signature is still checked.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[_ALGORITHM],
                audience=self.audience,
                issuer=self.issuer,
                options={"verify_exp": False, "verify_iat": False},
            )
        except JWTClaimsError as exc:
            raise TokenInvalid(str(exc)) from exc
        except JWTError as exc:
            raise MalformedToken(str(exc)) from exc

        expected = _ACCESS_KEYS if kind is TokenKind.ACCESS else _REFRESH_KEYS
        if set(payload) != expected or payload.get("typ") != kind.value:
            raise TokenInvalid(f"claim shape does not match {kind.value} token")

        try:
            issued_at = int(payload["iat"])
            expires_at = int(payload["exp"])
        except (TypeError, ValueError) as exc:
            raise TokenInvalid("non-numeric iat/exp") from exc

        if check_expiry and self._now_ts() > expires_at:
            raise TokenExpired(f"{kind.value} token expired")

        if kind is TokenKind.ACCESS:
            return AccessClaims(
                user_id=str(payload["sub"]),
                email=str(payload["email"]),
                role=str(payload["role"]),
                issued_at=issued_at,
                expires_at=expires_at,
            )
        return RefreshClaims(
            user_id=str(payload["sub"]),
            token_id=str(payload["jti"]),
            issued_at=issued_at,
            expires_at=expires_at,
        )
