from __future__ import annotations

from .schemas import CamelModel


class AdminUserOut(CamelModel):
    id: int
    identity: str
    role: str
    active: bool
    locked: bool
    locked_until: int | None
    failed_login_count: int
    two_factor_enabled: bool
