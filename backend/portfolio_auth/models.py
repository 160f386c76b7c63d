from __future__ import annotations

import enum

from sqlalchemy import BigInteger, Boolean, Column, Integer, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class Role(str, enum.Enum):
    admin = "admin"
    manager = "manager"
    user = "user"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(254), nullable=False, unique=True)  # always lowercase
    password_hash = Column(String(255), nullable=False)
    role = Column(String(16), nullable=False, default=Role.user.value)
    active = Column(Boolean, nullable=False, default=True)

    first_name = Column(String(50), nullable=True)
    last_name = Column(String(50), nullable=True)

    # login throttling; written only through the credential store counters
    failed_login_count = Column(Integer, nullable=False, default=0)
    locked_until = Column(BigInteger, nullable=True)  # unix seconds
    lockout_version = Column(Integer, nullable=False, default=0)

    # second factor
    two_factor_enabled = Column(Boolean, nullable=False, default=False)
    two_factor_secret = Column(String(64), nullable=True)
    last_totp_step = Column(BigInteger, nullable=True)

    created_at = Column(BigInteger, nullable=False)  # unix seconds
