from __future__ import annotations


class AuthError(Exception):
    """Authentication outcome that maps onto a fixed response body."""

    code = "UNAUTHORIZED"
    status_code = 401

    def __init__(self, retry_after: int | None = None) -> None:
        super().__init__(self.code)
        self.retry_after = retry_after

    def body(self) -> dict:
        out: dict = {"error": self.code}
        if self.retry_after is not None:
            out["retryAfterSeconds"] = self.retry_after
        return out


class InvalidCredentials(AuthError):
    code = "INVALID_CREDENTIALS"
    status_code = 401


class AccountLocked(AuthError):
    code = "ACCOUNT_LOCKED"
    status_code = 423


class InvalidCode(AuthError):
    code = "INVALID_CODE"
    status_code = 400


class SessionExpired(AuthError):
    code = "SESSION_EXPIRED"
    status_code = 410


class NotAuthenticated(AuthError):
    code = "UNAUTHORIZED"
    status_code = 401


class Forbidden(AuthError):
    code = "FORBIDDEN"
    status_code = 403


class IdentityTaken(AuthError):
    code = "IDENTITY_TAKEN"
    status_code = 409


class WeakPassword(AuthError):
    code = "WEAK_PASSWORD"
    status_code = 400


class NotFound(AuthError):
    code = "NOT_FOUND"
    status_code = 404


class StoreConflict(RuntimeError):
    """An atomic counter update could not be confirmed."""


class InvalidInput(AuthError):
    code = "VALIDATION_ERROR"
    status_code = 400
