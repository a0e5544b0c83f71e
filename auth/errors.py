"""
auth/errors.py -- Error taxonomy raised by the auth orchestrator.

Each error carries the HTTP status and a stable machine-readable code so the
exception handler in api/main.py can render the response envelope without a
lookup table. auth/ does not import FastAPI; the translation to a response
happens only at the api/ boundary.

Messages are uniform where enumeration matters: every login
failure is "Invalid email or password", every refresh failure is
"Invalid refresh token".
"""

from __future__ import annotations


class AuthServiceError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class AuthenticationFailed(AuthServiceError):
    status_code = 401
    code = "unauthorized"


class Forbidden(AuthServiceError):
    status_code = 403
    code = "forbidden"


class ValidationFailed(AuthServiceError):
    status_code = 400
    code = "bad_request"


class Conflict(AuthServiceError):
    # The public contract reports duplicate registration as 400, not 409.
    status_code = 400
    code = "conflict"


class InvalidResetToken(AuthServiceError):
    status_code = 400
    code = "invalid_reset_token"


class NotFound(AuthServiceError):
    status_code = 404
    code = "not_found"
