import asyncio
from datetime import timedelta

from remit.repositories.session_repository import SessionRepository
from remit.services.auth import hash_token
from remit.utils import db as db_core
from remit.utils.config import settings
from remit.utils.time import utcnow


def test_login_sets_session_cookie(client):
    response = client.post("/v1/auth/login", json={"user_id": "  user_alice "})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["user_id"] == "user_alice"
    assert body["token"]
    set_cookie = response.headers["set-cookie"]
    assert f"{settings.session_cookie_name}=" in set_cookie
    assert "HttpOnly" in set_cookie
    assert "samesite=lax" in set_cookie.lower()

    me = client.get("/v1/users/me")
    assert me.status_code == 200
    assert me.json() == {"id": "user_alice"}


def test_bearer_token_accepted(client, login):
    headers = login("user_bob")
    client.cookies.clear()

    response = client.get("/v1/users/me", headers=headers)

    assert response.json() == {"id": "user_bob"}


def test_logout_revokes_session(client, login):
    headers = login("user_alice")

    assert client.post("/v1/auth/logout", headers=headers).status_code == 200
    client.cookies.clear()

    response = client.get("/v1/users/me", headers=headers)
    assert response.status_code == 401
    assert response.json()["error"] == "unauthorized"


def test_unknown_token_rejected(client):
    client.cookies.clear()
    response = client.get("/v1/users/me", headers={"Authorization": "Bearer not-a-session"})
    assert response.status_code == 401


def test_expired_session_rejected(client):
    async def _expired_session() -> None:
        async with db_core.SessionLocal() as db:
            now = utcnow()
            await SessionRepository(db).create(
                token_hash=hash_token("stale-token"),
                user_id="user_alice",
                now=now - timedelta(days=2),
                expires_at=now - timedelta(days=1),
            )

    asyncio.run(_expired_session())
    client.cookies.clear()

    response = client.get("/v1/users/me", headers={"Authorization": "Bearer stale-token"})
    assert response.status_code == 401


def test_demo_login_disabled_by_default(client, monkeypatch):
    monkeypatch.setattr(settings, "demo_login_enabled", False)
    assert client.post("/v1/auth/login", json={"user_id": "user_alice"}).status_code == 404


def test_login_validates_user_id(client):
    assert client.post("/v1/auth/login", json={"user_id": ""}).status_code == 422
