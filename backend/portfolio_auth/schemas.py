from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

IDENTITY_PATTERN = r"^[^@\s]{1,64}@[^@\s]+\.[^@\s]{2,}$"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LoginIn(CamelModel):
    identity: str = Field(min_length=3, max_length=254, pattern=IDENTITY_PATTERN)
    password: str = Field(min_length=1, max_length=128)
    remember: bool = False


class VerifyTwoFactorIn(CamelModel):
    pending_ref: str = Field(min_length=1, max_length=2048)
    code: str = Field(min_length=4, max_length=10, pattern=r"^\s*\d+\s*$")


class RegisterIn(CamelModel):
    identity: str = Field(min_length=3, max_length=254, pattern=IDENTITY_PATTERN)
    password: str = Field(min_length=1, max_length=128)
    first_name: str | None = Field(default=None, max_length=50)
    last_name: str | None = Field(default=None, max_length=50)


class ChangePasswordIn(CamelModel):
    current_password: str = Field(min_length=1, max_length=128)
    new_password: str = Field(min_length=1, max_length=128)


class UserOut(CamelModel):
    id: int
    identity: str
    role: str
    first_name: str | None = None
    last_name: str | None = None
    two_factor_enabled: bool = False


class TokenOut(CamelModel):
    token: str
    user: UserOut


class TwoFactorRequiredOut(CamelModel):
    requires_two_factor: bool = True
    pending_ref: str


class RegisterOut(CamelModel):
    user: UserOut
