from __future__ import annotations

from fastapi import Depends, Header, Request

from .credentials import Credential, CredentialStore
from .errors import Forbidden, NotAuthenticated
from .login import LoginService
from .models import Role
from .revocation import TokenBlacklist
from .tokens import SessionClaims, TokenIssuer


def get_store(request: Request) -> CredentialStore:
    return request.app.state.store


def get_issuer(request: Request) -> TokenIssuer:
    return request.app.state.issuer


def get_blacklist(request: Request) -> TokenBlacklist:
    return request.app.state.blacklist


def get_login_service(request: Request) -> LoginService:
    return request.app.state.login


def get_current_claims(
    authorization: str | None = Header(default=None),
    issuer: TokenIssuer = Depends(get_issuer),
    blacklist: TokenBlacklist = Depends(get_blacklist),
) -> SessionClaims:
    if not authorization:
        raise NotAuthenticated()
    if not authorization.lower().startswith("bearer "):
        raise NotAuthenticated()
    token = authorization.split(" ", 1)[1].strip()
    claims = issuer.verify(token)
    if claims is None:
        raise NotAuthenticated()
    if blacklist.is_revoked(claims.jti):
        raise NotAuthenticated()
    return claims


def get_current_user(
    claims: SessionClaims = Depends(get_current_claims),
    store: CredentialStore = Depends(get_store),
) -> Credential:
    cred = store.get(claims.user_id)
    if cred is None or not cred.active:
        raise NotAuthenticated()
    return cred


def require_roles(*roles: Role):
    """Dependency allowing only users whose current role is one of ``roles``."""

    def _dep(user: Credential = Depends(get_current_user)) -> Credential:
        if roles and user.role not in roles:
            raise Forbidden()
        return user

    return _dep
