"""Password + optional TOTP login.

    START -> PASSWORD_CHECKED -> AUTHENTICATED                      (no 2FA)
    START -> PASSWORD_CHECKED -> AWAITING_SECOND_FACTOR -> AUTHENTICATED
    any step -> REJECTED (raised as an AuthError)

The only side effects are the store's counter operations, the accepted TOTP
step, and token issuance. A Pending-2FA marker is a short-lived signed token
bound to the credential's ``last_totp_step``; once a code is accepted that
value moves on and every outstanding marker for the identity stops verifying.
"""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass
from typing import Callable

from .config import Settings
from .credentials import Credential, CredentialStore
from .errors import AccountLocked, InvalidCode, InvalidCredentials, SessionExpired
from .passwords import dummy_verify, verify_password
from .tokens import TokenIssuer
from .totp import TotpVerifier

logger = logging.getLogger(__name__)


class LoginState(str, enum.Enum):
    START = "start"
    PASSWORD_CHECKED = "password_checked"
    AWAITING_SECOND_FACTOR = "awaiting_second_factor"
    AUTHENTICATED = "authenticated"
    REJECTED = "rejected"


@dataclass(frozen=True)
class LoginResult:
    state: LoginState
    credential: Credential
    token: str | None = None
    pending_ref: str | None = None

    @property
    def requires_two_factor(self) -> bool:
        return self.state is LoginState.AWAITING_SECOND_FACTOR


class LoginService:
    def __init__(
        self,
        store: CredentialStore,
        issuer: TokenIssuer,
        totp: TotpVerifier,
        settings: Settings,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.issuer = issuer
        self.totp = totp
        self.settings = settings
        self.policy = settings.lockout_policy()
        self.clock = clock

    def _locked(self, cred: Credential, now: float) -> AccountLocked | None:
        if self.policy.is_locked(cred.locked_until, now):
            return AccountLocked(retry_after=self.policy.retry_after_seconds(cred.locked_until, now))
        return None

    def _authenticate(self, cred: Credential, remember: bool) -> LoginResult:
        self.store.reset_failed_attempts(cred.identity)
        token = self.issuer.issue(cred, remember=remember)
        logger.info("login ok user_id=%s role=%s", cred.id, cred.role.value)
        return LoginResult(state=LoginState.AUTHENTICATED, credential=cred, token=token)

    def _record_failure(self, cred: Credential, now: float) -> None:
        try:
            updated = self.store.increment_failed_attempts(cred.identity, now)
        except LookupError:
            # deleted mid-flight
            raise InvalidCredentials() from None
        if self.policy.is_locked(updated.locked_until, now):
            logger.warning(
                "account locked user_id=%s after %s failed attempts",
                updated.id,
                updated.failed_attempt_count,
            )

    def login(self, identity: str, password: str, remember: bool = False) -> LoginResult:
        now = self.clock()
        cred = self.store.find_by_identity(identity)
        if cred is None or not cred.active:
            dummy_verify(password, self.settings.pbkdf2_iters)
            logger.info("login rejected: unknown or inactive identity")
            raise InvalidCredentials()

        locked = self._locked(cred, now)
        if locked is not None:
            logger.info("login refused, account locked user_id=%s", cred.id)
            raise locked

        if not verify_password(password, cred.password_hash):
            self._record_failure(cred, now)
            logger.info("login rejected: bad password user_id=%s", cred.id)
            raise InvalidCredentials()

        # PASSWORD_CHECKED
        if not cred.two_factor_enabled:
            return self._authenticate(cred, remember)

        ref = self.issuer.issue_pending(cred, remember=remember)
        logger.info("second factor required user_id=%s", cred.id)
        return LoginResult(state=LoginState.AWAITING_SECOND_FACTOR, credential=cred, pending_ref=ref)

    def verify_second_factor(self, pending_ref: str, code: str) -> LoginResult:
        now = self.clock()
        claims = self.issuer.verify_pending(pending_ref)
        if claims is None:
            logger.info("2fa rejected: marker invalid or expired")
            raise SessionExpired()

        cred = self.store.get(claims.user_id)
        if (
            cred is None
            or not cred.active
            or not cred.two_factor_enabled
            or cred.last_totp_step != claims.last_totp_step
        ):
            logger.info("2fa rejected: marker no longer valid user_id=%s", claims.user_id)
            raise SessionExpired()

        if self.settings.count_failed_two_factor:
            locked = self._locked(cred, now)
            if locked is not None:
                raise locked

        step = self.totp.match_step(cred.two_factor_secret, code, now)
        if step is None or (cred.last_totp_step is not None and step <= cred.last_totp_step):
            if self.settings.count_failed_two_factor:
                self._record_failure(cred, now)
            logger.info("2fa rejected: bad code user_id=%s", cred.id)
            raise InvalidCode()

        if not self.store.consume_totp_step(cred.identity, cred.last_totp_step, step):
            # another request with a marker for this identity won
            logger.info("2fa rejected: marker already consumed user_id=%s", cred.id)
            raise SessionExpired()

        return self._authenticate(cred, claims.remember)
