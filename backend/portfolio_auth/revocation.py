from __future__ import annotations

import logging

from .tokens import SessionClaims

logger = logging.getLogger(__name__)

KEY_PREFIX = "token_blacklist:"


class TokenBlacklist:
    """Revoked session tokens, kept in redis until they would have expired anyway."""

    def __init__(self, redis_client) -> None:
        self.r = redis_client

    def revoke(self, claims: SessionClaims, now: float) -> None:
        ttl = int(claims.expires_at - now)
        if ttl <= 0:
            return
        self.r.setex(KEY_PREFIX + claims.jti, ttl, "1")
        logger.info("revoked token for user_id=%s", claims.user_id)

    def is_revoked(self, jti: str) -> bool:
        return bool(self.r.exists(KEY_PREFIX + jti))
