from __future__ import annotations

import hmac
import logging

import pyotp

logger = logging.getLogger(__name__)


class TotpVerifier:
    """RFC 6238 codes with a +/- ``valid_window`` step tolerance for clock drift."""

    def __init__(self, interval: int = 30, digits: int = 6, valid_window: int = 1) -> None:
        self.interval = interval
        self.digits = digits
        self.valid_window = valid_window

    def _totp(self, secret: str) -> pyotp.TOTP:
        return pyotp.TOTP(secret, digits=self.digits, interval=self.interval)

    def step_at(self, at: float) -> int:
        return int(at) // self.interval

    def code_at(self, secret: str, at: float) -> str:
        return self._totp(secret).generate_otp(self.step_at(at))

    def match_step(self, secret: str | None, code: str, at: float) -> int | None:
        """Time step the code belongs to, or None when it matches none in the window."""
        if not secret or not code:
            return None
        code = code.strip()
        if len(code) != self.digits or not code.isdigit():
            return None
        try:
            totp = self._totp(secret)
            current = self.step_at(at)
            for step in range(current - self.valid_window, current + self.valid_window + 1):
                if step < 0:
                    continue
                if hmac.compare_digest(totp.generate_otp(step), code):
                    return step
        except (ValueError, TypeError) as exc:
            logger.warning("unusable totp secret: %s", type(exc).__name__)
        return None

    def verify(self, secret: str | None, code: str, at: float) -> bool:
        return self.match_step(secret, code, at) is not None

    @staticmethod
    def new_secret() -> str:
        return pyotp.random_base32()
