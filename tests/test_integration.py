import time
from datetime import timedelta

from fastapi.testclient import TestClient

from portal_auth.config import settings
from portal_auth.infrastructure.security import TokenCodec
from portal_auth.main import app


def test_full_auth_flow(client):
    """Интеграционный тест полного потока аутентификации"""
    # 1. Регистрация
    response = client.post(
        "/api/auth/register",
        json={"email": "t@school.edu", "password": "Passw0rd!", "name": "Teacher", "role": "teacher"},
    )
    assert response.status_code == 201
    user_id = response.json()["id"]

    # 2. Логин
    response = client.post("/api/auth/login", json={"email": "t@school.edu", "password": "Passw0rd!"})
    assert response.status_code == 200
    first_refresh = response.cookies["refresh_token"]

    # 3. /me
    response = client.get("/api/auth/me")
    assert response.status_code == 200
    assert response.json() == {
        "id": user_id,
        "email": "t@school.edu",
        "name": "Teacher",
        "role": "teacher",
        "has_password": True,
    }

    # 4. Ротация refresh-токена
    response = client.post("/api/auth/refresh")
    assert response.status_code == 200
    assert response.cookies["refresh_token"] != first_refresh

    # 5. Старый refresh-токен больше не действует
    replay = TestClient(app, cookies={"refresh_token": first_refresh})
    response = replay.post("/api/auth/refresh")
    assert response.status_code == 401
    assert response.json()["error"] == "session_not_found"

    # 6. Новый продолжает работать
    assert client.post("/api/auth/refresh").status_code == 200

    # 7. Выход
    assert client.post("/api/auth/logout").status_code == 204
    assert client.post("/api/auth/refresh").status_code == 401


def test_expired_access_token_then_refresh(client):
    """Истёкший access-токен: 401 token_expired, после refresh снова доступ"""
    client.post("/api/auth/register", json={"email": "e@school.edu", "password": "Passw0rd!"})
    response = client.post("/api/auth/login", json={"email": "e@school.edu", "password": "Passw0rd!"})
    user_id = response.json()["user"]["id"]
    refresh_token = response.cookies["refresh_token"]

    stale = TokenCodec(settings.SECRET_KEY, clock=lambda: time.time() - 3600)
    expired = stale.issue_access_token(user_id, "student", timedelta(minutes=15))
    client.cookies.clear()
    response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {expired}"})
    assert response.status_code == 401
    assert response.json()["error"] == "token_expired"

    browser = TestClient(app, cookies={"refresh_token": refresh_token})
    assert browser.post("/api/auth/refresh").status_code == 200
    assert browser.get("/api/auth/me").status_code == 200
