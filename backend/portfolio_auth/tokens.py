"""Signed session tokens and Pending-2FA markers (PyJWT, HS256 by default).

Both kinds share the signing key but carry a ``typ`` claim; a marker never
verifies as a session token and vice versa. Expiry is checked against the
injected clock so the whole flow runs on one notion of "now".
"""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass
from typing import Any, Callable

import jwt

from .config import Settings
from .credentials import Credential
from .models import Role

ACCESS = "access"
PENDING_2FA = "2fa_pending"


@dataclass(frozen=True)
class SessionClaims:
    user_id: int
    identity: str
    role: Role
    issued_at: int
    expires_at: int
    jti: str


@dataclass(frozen=True)
class PendingClaims:
    user_id: int
    last_totp_step: int | None
    remember: bool
    issued_at: int
    expires_at: int


class TokenIssuer:
    def __init__(self, settings: Settings, clock: Callable[[], float] = time.time) -> None:
        settings.check_signing_key()
        self._secret = settings.jwt_secret
        self._alg = settings.jwt_alg
        self._access_ttl = settings.access_ttl_seconds
        self._remember_ttl = settings.remember_ttl_seconds
        self._pending_ttl = settings.pending_ttl_seconds
        self._clock = clock

    def _encode(self, payload: dict[str, Any]) -> str:
        return jwt.encode(payload, self._secret, algorithm=self._alg)

    def _decode(self, token: str, typ: str) -> dict[str, Any] | None:
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._alg],
                options={"verify_exp": False, "verify_iat": False, "require": ["sub", "iat", "exp", "typ"]},
            )
        except jwt.PyJWTError:
            return None
        if payload.get("typ") != typ:
            return None
        try:
            if int(payload["exp"]) <= int(self._clock()):
                return None
        except (TypeError, ValueError):
            return None
        return payload

    def issue(self, credential: Credential, remember: bool = False) -> str:
        now = int(self._clock())
        ttl = self._remember_ttl if remember else self._access_ttl
        payload: dict[str, Any] = {
            "sub": str(credential.id),
            "email": credential.identity,
            "role": credential.role.value,
            "typ": ACCESS,
            "iat": now,
            "exp": now + ttl,
            "jti": secrets.token_hex(16),
        }
        return self._encode(payload)

    def verify(self, token: str) -> SessionClaims | None:
        if not token:
            return None
        payload = self._decode(token, ACCESS)
        if payload is None:
            return None
        try:
            return SessionClaims(
                user_id=int(payload["sub"]),
                identity=str(payload["email"]),
                role=Role(payload["role"]),
                issued_at=int(payload["iat"]),
                expires_at=int(payload["exp"]),
                jti=str(payload["jti"]),
            )
        except (KeyError, TypeError, ValueError):
            return None

    def issue_pending(self, credential: Credential, remember: bool = False) -> str:
        now = int(self._clock())
        payload: dict[str, Any] = {
            "sub": str(credential.id),
            "typ": PENDING_2FA,
            "lts": credential.last_totp_step,
            "rem": bool(remember),
            "iat": now,
            "exp": now + self._pending_ttl,
            "jti": secrets.token_hex(16),
        }
        return self._encode(payload)

    def verify_pending(self, ref: str) -> PendingClaims | None:
        if not ref:
            return None
        payload = self._decode(ref, PENDING_2FA)
        if payload is None:
            return None
        try:
            lts = payload.get("lts")
            return PendingClaims(
                user_id=int(payload["sub"]),
                last_totp_step=int(lts) if lts is not None else None,
                remember=bool(payload.get("rem", False)),
                issued_at=int(payload["iat"]),
                expires_at=int(payload["exp"]),
            )
        except (KeyError, TypeError, ValueError):
            return None
