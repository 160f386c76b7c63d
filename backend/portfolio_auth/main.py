from __future__ import annotations

import logging
import time
from typing import Callable

import redis
from fastapi import Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .admin_schemas import AdminUserOut
from .config import Settings
from .credentials import Credential, CredentialStore, SqlCredentialStore
from .db import get_engine
from .deps import (
    get_blacklist,
    get_current_claims,
    get_current_user,
    get_login_service,
    get_store,
    require_roles,
)
from .errors import AuthError, IdentityTaken, InvalidCredentials, InvalidInput, NotFound
from .logging_config import setup_logging
from .login import LoginService
from .models import Base, Role
from .passwords import hash_password, validate_strong_password, verify_password
from .revocation import TokenBlacklist
from .schemas import (
    ChangePasswordIn,
    LoginIn,
    RegisterIn,
    RegisterOut,
    TokenOut,
    TwoFactorRequiredOut,
    UserOut,
    VerifyTwoFactorIn,
)
from .tokens import SessionClaims, TokenIssuer
from .totp import TotpVerifier

logger = logging.getLogger(__name__)

STARTUP_RETRIES = 30


def _user_out(cred: Credential) -> UserOut:
    return UserOut.model_validate(cred.summary())


def _wire(app: FastAPI, engine) -> None:
    settings: Settings = app.state.settings
    clock = app.state.clock

    Base.metadata.create_all(bind=engine)

    store = SqlCredentialStore(engine, settings.lockout_policy())
    issuer = TokenIssuer(settings, clock=clock)
    totp = TotpVerifier(
        interval=settings.totp_interval,
        digits=settings.totp_digits,
        valid_window=settings.totp_valid_window,
    )
    app.state.engine = engine
    app.state.store = store
    app.state.issuer = issuer
    app.state.login = LoginService(store, issuer, totp, settings, clock=clock)
    app.state.blacklist = TokenBlacklist(app.state.redis)

    _bootstrap_admin(settings, store)


def _bootstrap_admin(settings: Settings, store: CredentialStore) -> None:
    # In dev, default to admin@example.com/Admin1234.
    admin_email = settings.admin_bootstrap_email
    admin_pw = settings.admin_bootstrap_password
    if settings.is_dev:
        admin_email = admin_email or "admin@example.com"
        admin_pw = admin_pw or "Admin1234"
    if not admin_email or not admin_pw:
        return
    if store.find_by_identity(admin_email) is not None:
        return
    try:
        store.create(admin_email, hash_password(admin_pw, settings.pbkdf2_iters), Role.admin)
        logger.info("bootstrapped admin account %s", admin_email)
    except IdentityTaken:
        pass


def create_app(
    settings: Settings | None = None,
    engine=None,
    redis_client=None,
    clock: Callable[[], float] = time.time,
) -> FastAPI:
    settings = settings or Settings.from_env()
    setup_logging(settings.log_level)

    app = FastAPI(title="Portfolio Auth API")

    # CORS for dev
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.clock = clock
    app.state.redis = redis_client or redis.Redis.from_url(settings.redis_url, decode_responses=True)

    @app.on_event("startup")
    def _startup():
        if engine is not None:
            _wire(app, engine)
            return

        # Postgres in docker-compose might not be ready when API boots.
        # Retry a few times before failing hard.
        last_exc: Exception | None = None
        for attempt in range(STARTUP_RETRIES):
            try:
                _wire(app, get_engine(settings))
                return
            except RuntimeError:
                raise
            except Exception as exc:  # noqa: BLE001
                last_exc = exc
                logger.warning("db init attempt %s failed: %s", attempt + 1, exc)
                time.sleep(1.0)
        raise RuntimeError(f"DB init failed after retries: {last_exc}")

    @app.exception_handler(AuthError)
    async def _auth_error(request: Request, exc: AuthError):
        headers = None
        if exc.retry_after is not None:
            headers = {"Retry-After": str(exc.retry_after)}
        return JSONResponse(status_code=exc.status_code, content=exc.body(), headers=headers)

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": "VALIDATION_ERROR"})

    @app.exception_handler(Exception)
    async def _server_error(request: Request, exc: Exception):
        logger.exception("unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"error": "INTERNAL_ERROR"})

    @app.get("/health")
    def health():
        try:
            app.state.redis.ping()
            redis_ok = True
        except (redis.RedisError, OSError):
            redis_ok = False
        return {"ok": True, "redis": redis_ok}

    @app.get("/healthz")
    async def healthz():
        # super cheap liveness probe
        return {"ok": True}

    @app.post("/api/auth/login")
    def login(body: LoginIn, svc: LoginService = Depends(get_login_service)):
        result = svc.login(body.identity, body.password, remember=body.remember)
        if result.requires_two_factor:
            return TwoFactorRequiredOut(pending_ref=result.pending_ref).model_dump(by_alias=True)
        return TokenOut(token=result.token, user=_user_out(result.credential)).model_dump(by_alias=True)

    @app.post("/api/auth/login/verify-2fa")
    def verify_two_factor(body: VerifyTwoFactorIn, svc: LoginService = Depends(get_login_service)):
        code = body.code.strip()
        if len(code) != settings.totp_digits:
            raise InvalidInput()
        result = svc.verify_second_factor(body.pending_ref, code)
        return TokenOut(token=result.token, user=_user_out(result.credential)).model_dump(by_alias=True)

    @app.post("/api/auth/register", response_model=RegisterOut, status_code=201)
    def register(body: RegisterIn, store: CredentialStore = Depends(get_store)):
        validate_strong_password(body.password)
        # hash first, then persist
        pw_hash = hash_password(body.password, settings.pbkdf2_iters)
        cred = store.create(
            body.identity,
            pw_hash,
            Role.user,
            first_name=(body.first_name or "").strip() or None,
            last_name=(body.last_name or "").strip() or None,
        )
        logger.info("registered user_id=%s", cred.id)
        return RegisterOut(user=_user_out(cred))

    @app.post("/api/auth/logout", status_code=204)
    def logout(
        claims: SessionClaims = Depends(get_current_claims),
        blacklist: TokenBlacklist = Depends(get_blacklist),
    ):
        blacklist.revoke(claims, clock())
        return Response(status_code=204)

    @app.get("/api/auth/me", response_model=UserOut)
    def me(user: Credential = Depends(get_current_user)):
        return _user_out(user)

    @app.post("/api/auth/change-password")
    def change_password(
        body: ChangePasswordIn,
        user: Credential = Depends(get_current_user),
        claims: SessionClaims = Depends(get_current_claims),
        store: CredentialStore = Depends(get_store),
        blacklist: TokenBlacklist = Depends(get_blacklist),
    ):
        if not verify_password(body.current_password, user.password_hash):
            raise InvalidCredentials()
        validate_strong_password(body.new_password)

        store.set_password_hash(user.id, hash_password(body.new_password, settings.pbkdf2_iters))
        store.reset_failed_attempts(user.identity)
        # force re-login with the new password
        blacklist.revoke(claims, clock())
        logger.info("password changed user_id=%s", user.id)
        return {"ok": True}

    @app.get("/api/admin/users", response_model=list[AdminUserOut])
    def admin_list_users(
        _admin: Credential = Depends(require_roles(Role.admin, Role.manager)),
        store: CredentialStore = Depends(get_store),
    ):
        now = clock()
        policy = settings.lockout_policy()
        return [
            AdminUserOut(
                id=c.id,
                identity=c.identity,
                role=c.role.value,
                active=c.active,
                locked=policy.is_locked(c.locked_until, now),
                locked_until=c.locked_until,
                failed_login_count=c.failed_attempt_count,
                two_factor_enabled=c.two_factor_enabled,
            )
            for c in store.list_users()
        ]

    @app.post("/api/admin/users/{user_id}/unlock")
    def admin_unlock_user(
        user_id: int,
        admin: Credential = Depends(require_roles(Role.admin)),
        store: CredentialStore = Depends(get_store),
    ):
        cred = store.get(user_id)
        if cred is None:
            raise NotFound()
        store.reset_failed_attempts(cred.identity)
        logger.info("user_id=%s unlocked by admin user_id=%s", cred.id, admin.id)
        return {"ok": True}

    return app


app = create_app()
