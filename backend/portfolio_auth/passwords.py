from __future__ import annotations

import base64
import hashlib
import hmac
import re
import secrets

from .errors import WeakPassword

DEFAULT_ITERS = 200000


def _b64(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).decode("utf-8").rstrip("=")


def _b64d(s: str) -> bytes:
    pad = "=" * (-len(s) % 4)
    return base64.urlsafe_b64decode((s + pad).encode("utf-8"))


def hash_password(pw: str, iterations: int = DEFAULT_ITERS) -> str:
    # Format: pbkdf2_sha256$iters$salt$hash
    salt = secrets.token_bytes(16)
    dk = hashlib.pbkdf2_hmac("sha256", pw.encode("utf-8"), salt, iterations, dklen=32)
    return f"pbkdf2_sha256${iterations}${_b64(salt)}${_b64(dk)}"


def verify_password(pw: str, pw_hash: str | None) -> bool:
    if not pw_hash:
        return False
    try:
        algo, iters_s, salt_s, hash_s = pw_hash.split("$", 3)
        if algo != "pbkdf2_sha256":
            return False
        iters = int(iters_s)
        salt = _b64d(salt_s)
        expected = _b64d(hash_s)
        if iters <= 0 or not expected:
            return False
        dk = hashlib.pbkdf2_hmac("sha256", pw.encode("utf-8"), salt, iters, dklen=len(expected))
        return hmac.compare_digest(dk, expected)
    except (ValueError, TypeError, OverflowError, UnicodeError):
        return False


# Burned on unknown identities so a miss costs about as much as a wrong password.
_DUMMY_HASHES: dict[int, str] = {}


def dummy_verify(pw: str, iterations: int = DEFAULT_ITERS) -> None:
    dummy = _DUMMY_HASHES.get(iterations)
    if dummy is None:
        dummy = _DUMMY_HASHES.setdefault(iterations, hash_password(secrets.token_urlsafe(16), iterations))
    verify_password(pw, dummy)


def validate_strong_password(pw: str) -> None:
    # >=8, at least 1 digit, 1 uppercase, 1 lowercase
    if len(pw) < 8:
        raise WeakPassword()
    if not re.search(r"[a-z]", pw):
        raise WeakPassword()
    if not re.search(r"[A-Z]", pw):
        raise WeakPassword()
    if not re.search(r"\d", pw):
        raise WeakPassword()
