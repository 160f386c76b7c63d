"""
Shared fixtures: an app wired to in-memory SQLite, a controllable clock and a
dict-backed stand-in for the redis client.
"""
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from portfolio_auth.config import Settings
from portfolio_auth.credentials import SqlCredentialStore
from portfolio_auth.main import create_app
from portfolio_auth.models import Base, Role
from portfolio_auth.passwords import hash_password
from portfolio_auth.tokens import TokenIssuer
from portfolio_auth.totp import TotpVerifier

PASSWORD = "Secret123"
TEST_ITERS = 1000
TOTP_SECRET = "JBSWY3DPEHPK3PXP"


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRedis:
    def __init__(self):
        self.data = {}
        self.ttls = {}

    def setex(self, key, ttl, value):
        self.data[key] = value
        self.ttls[key] = ttl

    def exists(self, key):
        return int(key in self.data)

    def ping(self):
        return True


@pytest.fixture
def settings() -> Settings:
    return Settings(app_env="test", jwt_secret="test-jwt-secret-0123456789abcdef0123456789", pbkdf2_iters=TEST_ITERS)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def store(engine, settings) -> SqlCredentialStore:
    return SqlCredentialStore(engine, settings.lockout_policy())


@pytest.fixture
def issuer(settings, clock) -> TokenIssuer:
    return TokenIssuer(settings, clock=clock)


@pytest.fixture
def totp() -> TotpVerifier:
    return TotpVerifier()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def app(settings, engine, fake_redis, clock):
    return create_app(settings, engine=engine, redis_client=fake_redis, clock=clock)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_user(store):
    def _make(
        identity="user@x.com",
        password=PASSWORD,
        role=Role.user,
        two_factor_secret=None,
        active=True,
    ):
        return store.create(
            identity,
            hash_password(password, TEST_ITERS),
            role,
            active=active,
            two_factor_secret=two_factor_secret,
        )

    return _make


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}
