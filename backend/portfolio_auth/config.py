from __future__ import annotations

import os

from pydantic import BaseModel, ConfigDict

from .lockout import LockoutPolicy

DEV_JWT_SECRET = "dev-secret-change-me"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Settings(BaseModel):
    """Process-wide configuration, built once at startup and never mutated."""

    model_config = ConfigDict(frozen=True)

    app_env: str = "dev"

    jwt_secret: str = DEV_JWT_SECRET
    jwt_alg: str = "HS256"
    access_ttl_seconds: int = 604800  # 7d
    remember_ttl_seconds: int = 2592000  # 30d
    pending_ttl_seconds: int = 300

    max_login_attempts: int = 5
    lock_window_seconds: int = 3600

    totp_interval: int = 30
    totp_digits: int = 6
    totp_valid_window: int = 1
    count_failed_two_factor: bool = False

    pbkdf2_iters: int = 200000

    database_url: str | None = None
    redis_url: str = "redis://localhost:6379/0"

    admin_bootstrap_email: str = ""
    admin_bootstrap_password: str = ""

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        env = os.environ
        return cls(
            app_env=env.get("APP_ENV", "dev"),
            jwt_secret=env.get("JWT_SECRET", DEV_JWT_SECRET),
            access_ttl_seconds=int(env.get("JWT_TTL_SECONDS", "604800")),
            remember_ttl_seconds=int(env.get("JWT_REMEMBER_TTL_SECONDS", "2592000")),
            pending_ttl_seconds=int(env.get("PENDING_2FA_TTL_SECONDS", "300")),
            max_login_attempts=int(env.get("LOCK_MAX_FAILS", "5")),
            lock_window_seconds=int(env.get("LOCK_WINDOW_SECONDS", "3600")),
            totp_interval=int(env.get("TOTP_INTERVAL", "30")),
            totp_digits=int(env.get("TOTP_DIGITS", "6")),
            totp_valid_window=int(env.get("TOTP_VALID_WINDOW", "1")),
            count_failed_two_factor=_env_bool("COUNT_FAILED_TWO_FACTOR", False),
            pbkdf2_iters=int(env.get("PBKDF2_ITERS", "200000")),
            database_url=env.get("DATABASE_URL") or None,
            redis_url=env.get("REDIS_URL", "redis://localhost:6379/0"),
            admin_bootstrap_email=env.get("ADMIN_BOOTSTRAP_EMAIL", "").strip(),
            admin_bootstrap_password=env.get("ADMIN_BOOTSTRAP_PASSWORD", "").strip(),
            log_level=env.get("LOG_LEVEL", "INFO"),
        )

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    def check_signing_key(self) -> None:
        # outside dev a real key is mandatory
        if not self.jwt_secret:
            raise RuntimeError("JWT_SECRET is required")
        if not self.is_dev and self.jwt_secret == DEV_JWT_SECRET:
            raise RuntimeError("JWT_SECRET must be set outside dev")

    def lockout_policy(self) -> LockoutPolicy:
        return LockoutPolicy(
            max_attempts=self.max_login_attempts,
            lock_window_seconds=self.lock_window_seconds,
        )
