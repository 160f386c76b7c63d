from fastapi.testclient import TestClient

from portfolio_auth.errors import StoreConflict
from portfolio_auth.models import Role

from .conftest import PASSWORD, bearer


def _token(client, identity="user@x.com", password=PASSWORD):
    res = client.post("/api/auth/login", json={"identity": identity, "password": password})
    assert res.status_code == 200, res.text
    return res.json()["token"]


def test_register_hashes_and_allows_login(client, store):
    res = client.post(
        "/api/auth/register",
        json={"identity": "New@X.com", "password": "Newpass123", "firstName": "Ada"},
    )
    assert res.status_code == 201, res.text
    user = res.json()["user"]
    assert user["identity"] == "new@x.com"
    assert user["role"] == "user"
    assert user["firstName"] == "Ada"

    stored = store.find_by_identity("new@x.com")
    assert stored.password_hash.startswith("pbkdf2_sha256$")
    assert "Newpass123" not in stored.password_hash
    assert _token(client, "new@x.com", "Newpass123")


def test_register_rejects_duplicates_and_weak_passwords(client, make_user):
    make_user()
    dup = client.post("/api/auth/register", json={"identity": "USER@x.com", "password": "Newpass123"})
    assert dup.status_code == 409
    assert dup.json() == {"error": "IDENTITY_TAKEN"}

    weak = client.post("/api/auth/register", json={"identity": "weak@x.com", "password": "short"})
    assert weak.status_code == 400
    assert weak.json() == {"error": "WEAK_PASSWORD"}


def test_me_requires_bearer(client):
    assert client.get("/api/auth/me").status_code == 401
    assert client.get("/api/auth/me", headers={"Authorization": "Basic abc"}).status_code == 401
    res = client.get("/api/auth/me", headers=bearer("garbage"))
    assert res.status_code == 401
    assert res.json() == {"error": "UNAUTHORIZED"}


def test_logout_revokes_token(client, make_user, fake_redis):
    make_user()
    token = _token(client)

    assert client.post("/api/auth/logout", headers=bearer(token)).status_code == 204
    assert any(k.startswith("token_blacklist:") for k in fake_redis.data)
    assert client.get("/api/auth/me", headers=bearer(token)).status_code == 401


def test_deactivated_user_token_stops_working(client, make_user, engine):
    from sqlalchemy import update
    from sqlalchemy.orm import Session

    from portfolio_auth.models import User

    make_user()
    token = _token(client)
    with Session(engine) as s:
        s.execute(update(User).values(active=False))
        s.commit()
    assert client.get("/api/auth/me", headers=bearer(token)).status_code == 401


def test_change_password(client, make_user):
    make_user()
    token = _token(client)

    wrong = client.post(
        "/api/auth/change-password",
        json={"currentPassword": "Nope12345", "newPassword": "Another123"},
        headers=bearer(token),
    )
    assert wrong.status_code == 401

    ok = client.post(
        "/api/auth/change-password",
        json={"currentPassword": PASSWORD, "newPassword": "Another123"},
        headers=bearer(token),
    )
    assert ok.status_code == 200
    # old token revoked, old password gone
    assert client.get("/api/auth/me", headers=bearer(token)).status_code == 401
    assert client.post(
        "/api/auth/login", json={"identity": "user@x.com", "password": PASSWORD}
    ).status_code == 401
    assert _token(client, password="Another123")


def test_admin_can_list_and_unlock(client, make_user):
    make_user(identity="boss@x.com", role=Role.admin)
    locked = make_user(identity="victim@x.com")
    for _ in range(5):
        client.post("/api/auth/login", json={"identity": "victim@x.com", "password": "Wrong1234"})

    admin_token = _token(client, "boss@x.com")
    users = client.get("/api/admin/users", headers=bearer(admin_token)).json()
    victim = next(u for u in users if u["identity"] == "victim@x.com")
    assert victim["locked"] is True
    assert victim["failedLoginCount"] == 5
    assert "passwordHash" not in victim

    res = client.post(f"/api/admin/users/{locked.id}/unlock", headers=bearer(admin_token))
    assert res.status_code == 200
    assert _token(client, "victim@x.com")

    missing = client.post("/api/admin/users/9999/unlock", headers=bearer(admin_token))
    assert missing.status_code == 404


def test_roles_are_enforced(client, make_user):
    make_user(identity="mgr@x.com", role=Role.manager)
    plain = make_user(identity="plain@x.com")

    user_token = _token(client, "plain@x.com")
    assert client.get("/api/admin/users", headers=bearer(user_token)).status_code == 403

    mgr_token = _token(client, "mgr@x.com")
    assert client.get("/api/admin/users", headers=bearer(mgr_token)).status_code == 200
    res = client.post(f"/api/admin/users/{plain.id}/unlock", headers=bearer(mgr_token))
    assert res.status_code == 403
    assert res.json() == {"error": "FORBIDDEN"}


def test_store_failure_is_a_generic_server_error(app, make_user, monkeypatch, store):
    make_user()

    def boom(identity, now):
        raise StoreConflict("write not confirmed")

    with TestClient(app, raise_server_exceptions=False) as client:
        monkeypatch.setattr(app.state.store, "increment_failed_attempts", boom)
        res = client.post("/api/auth/login", json={"identity": "user@x.com", "password": "Wrong1234"})

    assert res.status_code == 500
    assert res.json() == {"error": "INTERNAL_ERROR"}
    assert store.find_by_identity("user@x.com").failed_attempt_count == 0


def test_health(client):
    assert client.get("/healthz").json() == {"ok": True}
    assert client.get("/health").json() == {"ok": True, "redis": True}
