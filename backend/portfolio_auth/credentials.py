"""Credential records and the store the login flow runs against.

Counter fields (``failed_login_count``, ``locked_until``) and the accepted
TOTP step are only ever written through the atomic operations below. Each
write is a single conditional UPDATE so concurrent logins for the same
identity cannot lose an increment.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from typing import Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .errors import IdentityTaken, StoreConflict
from .lockout import LockoutPolicy
from .models import Role, User

logger = logging.getLogger(__name__)

CAS_RETRIES = 8


def normalize_identity(email: str) -> str:
    return (email or "").strip().lower()


@dataclass(frozen=True)
class Credential:
    id: int
    identity: str
    password_hash: str
    role: Role
    active: bool
    failed_attempt_count: int
    locked_until: int | None
    two_factor_enabled: bool
    two_factor_secret: str | None
    last_totp_step: int | None
    first_name: str | None = None
    last_name: str | None = None

    def __repr__(self) -> str:
        # keep hash and secret out of logs and tracebacks
        return f"Credential(id={self.id!r}, identity={self.identity!r}, role={self.role.value!r})"

    def summary(self) -> dict:
        return {
            "id": self.id,
            "identity": self.identity,
            "role": self.role.value,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "twoFactorEnabled": self.two_factor_enabled,
        }


def _from_row(u: User) -> Credential:
    secret = u.two_factor_secret if u.two_factor_enabled else None
    return Credential(
        id=int(u.id),
        identity=u.email,
        password_hash=u.password_hash,
        role=Role(u.role),
        active=bool(u.active),
        failed_attempt_count=int(u.failed_login_count or 0),
        locked_until=int(u.locked_until) if u.locked_until is not None else None,
        two_factor_enabled=bool(u.two_factor_enabled),
        two_factor_secret=secret,
        last_totp_step=int(u.last_totp_step) if u.last_totp_step is not None else None,
        first_name=u.first_name,
        last_name=u.last_name,
    )


class CredentialStore(Protocol):
    def find_by_identity(self, identity: str) -> Credential | None: ...

    def get(self, user_id: int) -> Credential | None: ...

    def create(
        self,
        identity: str,
        password_hash: str,
        role: Role = Role.user,
        *,
        first_name: str | None = None,
        last_name: str | None = None,
        active: bool = True,
        two_factor_secret: str | None = None,
    ) -> Credential: ...

    def increment_failed_attempts(self, identity: str, now: float) -> Credential: ...

    def reset_failed_attempts(self, identity: str) -> None: ...

    def consume_totp_step(self, identity: str, expected_last_step: int | None, step: int) -> bool: ...

    def set_password_hash(self, user_id: int, password_hash: str) -> None: ...

    def list_users(self) -> list[Credential]: ...


class SqlCredentialStore:
    def __init__(self, engine, policy: LockoutPolicy) -> None:
        self.engine = engine
        self.policy = policy

    def find_by_identity(self, identity: str) -> Credential | None:
        email = normalize_identity(identity)
        if not email:
            return None
        with Session(self.engine) as s:
            u = s.execute(select(User).where(User.email == email)).scalars().first()
            return _from_row(u) if u is not None else None

    def get(self, user_id: int) -> Credential | None:
        with Session(self.engine) as s:
            u = s.get(User, int(user_id))
            return _from_row(u) if u is not None else None

    def create(
        self,
        identity: str,
        password_hash: str,
        role: Role = Role.user,
        *,
        first_name: str | None = None,
        last_name: str | None = None,
        active: bool = True,
        two_factor_secret: str | None = None,
    ) -> Credential:
        email = normalize_identity(identity)
        with Session(self.engine) as s:
            existing = s.execute(select(User).where(User.email == email)).scalars().first()
            if existing is not None:
                raise IdentityTaken()
            u = User(
                email=email,
                password_hash=password_hash,
                role=Role(role).value,
                active=active,
                first_name=first_name,
                last_name=last_name,
                failed_login_count=0,
                locked_until=None,
                lockout_version=0,
                two_factor_enabled=bool(two_factor_secret),
                two_factor_secret=two_factor_secret,
                last_totp_step=None,
                created_at=int(time.time()),
            )
            s.add(u)
            try:
                s.commit()
            except IntegrityError:
                s.rollback()
                raise IdentityTaken() from None
            s.refresh(u)
            return _from_row(u)

    def increment_failed_attempts(self, identity: str, now: float) -> Credential:
        email = normalize_identity(identity)
        for _ in range(CAS_RETRIES):
            with Session(self.engine) as s:
                u = s.execute(select(User).where(User.email == email)).scalars().first()
                if u is None:
                    raise LookupError(email)
                version = int(u.lockout_version or 0)
                current = _from_row(u)
                count, locked_until = self.policy.after_failure(
                    current.failed_attempt_count, current.locked_until, now
                )
                res = s.execute(
                    update(User)
                    .where(User.id == current.id, User.lockout_version == version)
                    .values(
                        failed_login_count=count,
                        locked_until=locked_until,
                        lockout_version=version + 1,
                    )
                    .execution_options(synchronize_session=False)
                )
                if res.rowcount == 1:
                    s.commit()
                    return replace(current, failed_attempt_count=count, locked_until=locked_until)
                s.rollback()
            logger.debug("lockout counter raced for user_id=%s, retrying", current.id)
        raise StoreConflict(f"could not record failed attempt for user_id={current.id}")

    def reset_failed_attempts(self, identity: str) -> None:
        email = normalize_identity(identity)
        with Session(self.engine) as s:
            s.execute(
                update(User)
                .where(User.email == email)
                .values(
                    failed_login_count=0,
                    locked_until=None,
                    lockout_version=User.lockout_version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            s.commit()

    def consume_totp_step(self, identity: str, expected_last_step: int | None, step: int) -> bool:
        """Record ``step`` as the last accepted TOTP step if nothing else got there first."""
        if expected_last_step is not None and step <= expected_last_step:
            return False
        email = normalize_identity(identity)
        if expected_last_step is None:
            cond = User.last_totp_step.is_(None)
        else:
            cond = User.last_totp_step == expected_last_step
        with Session(self.engine) as s:
            res = s.execute(
                update(User)
                .where(User.email == email, cond)
                .values(last_totp_step=step)
                .execution_options(synchronize_session=False)
            )
            s.commit()
            return res.rowcount == 1

    def set_password_hash(self, user_id: int, password_hash: str) -> None:
        with Session(self.engine) as s:
            s.execute(
                update(User)
                .where(User.id == int(user_id))
                .values(password_hash=password_hash)
                .execution_options(synchronize_session=False)
            )
            s.commit()

    def list_users(self) -> list[Credential]:
        with Session(self.engine) as s:
            rows = s.execute(select(User).order_by(User.id.asc())).scalars().all()
            return [_from_row(u) for u in rows]
