"""Account lockout rules.

Pure functions over ``(failed_login_count, locked_until)``. Times are unix
seconds. Persisting the result is the credential store's job.
"""

from __future__ import annotations

import math
from dataclasses import dataclass


@dataclass(frozen=True)
class LockoutPolicy:
    max_attempts: int = 5
    lock_window_seconds: int = 3600

    def is_locked(self, locked_until: int | None, now: float) -> bool:
        return locked_until is not None and locked_until > now

    def retry_after_seconds(self, locked_until: int | None, now: float) -> int:
        if not self.is_locked(locked_until, now):
            return 0
        return max(1, math.ceil(locked_until - now))

    def after_failure(self, count: int, locked_until: int | None, now: float) -> tuple[int, int | None]:
        """Counter state after one more failed password check."""
        if self.is_locked(locked_until, now):
            # never extend a running lock
            return count, locked_until

        if locked_until is not None:
            # lock expired: fresh window
            count = 0
            locked_until = None

        count += 1
        if count >= self.max_attempts:
            locked_until = int(now) + self.lock_window_seconds
        return count, locked_until
