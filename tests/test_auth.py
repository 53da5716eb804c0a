import secrets
from unittest.mock import MagicMock

from sqlalchemy.orm import Session

from conftest import CountingHasher
from portal_auth.infrastructure.metrics import http_requests_total
from portal_auth.interfaces.http.deps import get_credential_service, get_password_hasher
from portal_auth.infrastructure.models import UserORM
from portal_auth.infrastructure.repositories import UserRepository
from portal_auth.infrastructure.security import PasswordHasher


def register(client, email="student@example.com", password="password123", role="student"):
    return client.post(
        "/api/auth/register",
        json={"email": email, "password": password, "name": "Test", "role": role},
    )


def login(client, email="student@example.com", password="password123"):
    return client.post("/api/auth/login", json={"email": email, "password": password})


def cleared(response, name):
    return any(h.startswith(f"{name}=") and "Max-Age=0" in h for h in response.headers.get_list("set-cookie"))


def set_suspended(engine, email, value=True):
    with Session(engine) as db:
        row = db.query(UserORM).filter(UserORM.email == email).first()
        row.suspended = value
        db.commit()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_metrics_endpoint(client):
    """Тест endpoint метрик"""
    client.get("/health")
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "text/plain" in response.headers["content-type"]
    assert "http_requests_total" in response.text


def endpoint_labels():
    return {s.labels["endpoint"] for metric in http_requests_total.collect() for s in metric.samples}


def test_metrics_labels_use_route_template(client):
    """Случайные пути не порождают новых серий метрик"""
    before = endpoint_labels()
    junk = [secrets.token_hex(8) for _ in range(20)]
    for value in junk:
        assert client.get(f"/api/auth/oauth/{value}").status_code == 404
        assert client.get(f"/nope/{value}").status_code == 404

    added = endpoint_labels() - before
    assert added <= {"/api/auth/oauth/{provider}", "unmatched"}
    labels = endpoint_labels()
    assert "/api/auth/oauth/{provider}" in labels
    assert "unmatched" in labels
    assert not any(value in label for label in labels for value in junk)


def test_value_error_detail_is_not_exposed(client):
    """Текст внутреннего ValueError не уходит клиенту"""
    credentials = MagicMock()
    credentials.register.side_effect = ValueError("connection string postgresql://admin:hunter2@db")
    client.app.dependency_overrides[get_credential_service] = lambda: credentials
    response = register(client)
    assert response.status_code == 400
    assert response.json() == {"error": "invalid_request", "detail": "Invalid request"}
    assert "hunter2" not in response.text


def test_register_user_success(client):
    """Тест успешной регистрации пользователя"""
    response = register(client, email="Test@Example.com")
    assert response.status_code == 201
    data = response.json()
    assert data["email"] == "test@example.com"
    assert data["role"] == "student"
    assert data["has_password"] is True
    assert "id" in data
    assert "password" not in data


def test_register_user_duplicate(client):
    """Тест регистрации с существующим email"""
    assert register(client).status_code == 201
    response = register(client, email="STUDENT@example.com")
    assert response.status_code == 409
    assert response.json()["error"] == "already_exists"


def test_register_admin_role_not_allowed(client):
    """Роль admin нельзя получить через публичную регистрацию"""
    response = register(client, role="admin")
    assert response.status_code == 422


def test_register_invalid_email(client):
    response = client.post("/api/auth/register", json={"email": "not-an-email", "password": "password123"})
    assert response.status_code == 422


def test_register_short_password(client):
    response = client.post("/api/auth/register", json={"email": "a@example.com", "password": "short"})
    assert response.status_code == 422


def test_login_success_sets_cookies(client):
    """Токены приходят только в cookie"""
    register(client)
    response = login(client)
    assert response.status_code == 200
    data = response.json()
    assert data["user"]["email"] == "student@example.com"
    assert data["expires_in"] == 15 * 60
    assert "access_token" not in data
    assert "refresh_token" not in data

    cookies = response.headers.get_list("set-cookie")
    access = next(c for c in cookies if c.startswith("access_token="))
    refresh = next(c for c in cookies if c.startswith("refresh_token="))
    assert "HttpOnly" in access and "SameSite=strict" in access
    assert "Max-Age=900" in access
    assert f"Max-Age={7 * 24 * 3600}" in refresh


def test_login_invalid_credentials(client):
    """Тест входа с неверными учетными данными"""
    register(client)
    wrong_password = login(client, password="wrong-password")
    unknown_user = login(client, email="nobody@example.com")
    assert wrong_password.status_code == 401
    assert unknown_user.status_code == 401
    assert wrong_password.json() == unknown_user.json()


def test_failed_logins_have_equal_hashing_cost(client):
    """Неверный пароль и неизвестный email стоят одинаковое число проверок PBKDF2"""
    hasher = CountingHasher()
    client.app.dependency_overrides[get_password_hasher] = lambda: hasher
    register(client)

    costs = {}
    for name, email in [
        ("wrong_password_1", "student@example.com"),
        ("unknown_1", "nobody@example.com"),
        ("wrong_password_2", "student@example.com"),
        ("unknown_2", "ghost@example.com"),
    ]:
        hasher.reset()
        assert login(client, email=email, password="wrong-password").status_code == 401
        costs[name] = dict(hasher.calls)

    assert all(cost == {"hash": 0, "verify": 1} for cost in costs.values()), costs


def test_login_suspended(client, engine):
    register(client)
    set_suspended(engine, "student@example.com")
    assert login(client, password="wrong-password").status_code == 401
    response = login(client)
    assert response.status_code == 403
    assert response.json()["error"] == "forbidden"
    assert "access_token" not in response.cookies


def test_me_with_cookie(client):
    """/me по cookie"""
    register(client)
    login(client)
    response = client.get("/api/auth/me")
    assert response.status_code == 200
    assert response.json()["email"] == "student@example.com"


def test_me_with_bearer_header(client):
    register(client)
    access = login(client).cookies["access_token"]
    client.cookies.clear()
    response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {access}"})
    assert response.status_code == 200


def test_me_without_token(client):
    """Тест /me без токена"""
    response = client.get("/api/auth/me")
    assert response.status_code == 401
    assert response.json()["error"] == "token_invalid"


def test_me_invalid_token(client):
    """Тест /me с невалидным токеном"""
    response = client.get("/api/auth/me", headers={"Authorization": "Bearer invalid_token"})
    assert response.status_code == 401
    assert response.json()["error"] == "token_invalid"


def test_me_reflects_live_record(client, engine):
    """/me не доверяет claims: блокировка видна сразу"""
    register(client)
    login(client)
    set_suspended(engine, "student@example.com")
    assert client.get("/api/auth/me").status_code == 403


def test_refresh_rotates_cookie(client):
    register(client)
    old = login(client).cookies["refresh_token"]
    response = client.post("/api/auth/refresh")
    assert response.status_code == 200
    new = response.cookies["refresh_token"]
    assert new != old

    client.cookies.clear()
    client.cookies.set("refresh_token", old)
    replay = client.post("/api/auth/refresh")
    assert replay.status_code == 401
    assert replay.json()["error"] == "session_not_found"
    assert cleared(replay, "refresh_token")
    assert cleared(replay, "access_token")


def test_refresh_without_cookie(client):
    response = client.post("/api/auth/refresh")
    assert response.status_code == 401
    assert response.json()["error"] == "session_not_found"


def test_refresh_for_suspended_user(client, engine):
    register(client)
    login(client)
    set_suspended(engine, "student@example.com")
    response = client.post("/api/auth/refresh")
    assert response.status_code == 403
    assert cleared(response, "refresh_token")


def test_logout_revokes_session(client, session_store):
    register(client)
    refresh_token = login(client).cookies["refresh_token"]
    response = client.post("/api/auth/logout")
    assert response.status_code == 204
    assert cleared(response, "access_token")
    assert session_store.get(refresh_token) is None
    # повторный выход не ошибка
    assert client.post("/api/auth/logout").status_code == 204


def test_change_password(client):
    register(client)
    login(client)
    response = client.post(
        "/api/auth/password/change",
        json={"current_password": "password123", "new_password": "new-password-1"},
    )
    assert response.status_code == 204
    # клиенту выдана новая пара
    assert client.get("/api/auth/me").status_code == 200
    assert client.get("/api/auth/sessions").json()["active_sessions"] == 1
    assert login(client, password="password123").status_code == 401
    assert login(client, password="new-password-1").status_code == 200


def test_change_password_wrong_current(client):
    register(client)
    login(client)
    response = client.post(
        "/api/auth/password/change",
        json={"current_password": "nope-nope", "new_password": "new-password-1"},
    )
    assert response.status_code == 401
    assert response.json()["error"] == "invalid_credentials"


def test_password_reset_flow(client):
    register(client)
    response = client.post("/api/auth/password/reset-request", json={"email": "student@example.com"})
    assert response.status_code == 202
    reset_token = response.json()["reset_token"]

    response = client.post(
        "/api/auth/password/reset",
        json={"reset_token": reset_token, "new_password": "after-reset-1"},
    )
    assert response.status_code == 204
    assert login(client, password="after-reset-1").status_code == 200

    reused = client.post(
        "/api/auth/password/reset",
        json={"reset_token": reset_token, "new_password": "second-reset-1"},
    )
    assert reused.status_code == 401
    assert reused.json()["error"] == "token_invalid"


def test_reset_request_unknown_email_same_shape(client):
    register(client)
    known = client.post("/api/auth/password/reset-request", json={"email": "student@example.com"})
    unknown = client.post("/api/auth/password/reset-request", json={"email": "ghost@example.com"})
    assert known.status_code == unknown.status_code == 202
    assert set(known.json()) == set(unknown.json())
    assert known.json()["detail"] == unknown.json()["detail"]


def test_sessions_and_logout_all(client):
    register(client)
    login(client)
    login(client)
    assert client.get("/api/auth/sessions").json()["active_sessions"] == 2
    response = client.post("/api/auth/logout-all")
    assert response.status_code == 204
    client.cookies.clear()
    access = login(client).cookies["access_token"]
    sessions = client.get("/api/auth/sessions", headers={"Authorization": f"Bearer {access}"})
    assert sessions.json()["active_sessions"] == 1


def test_admin_revokes_user_sessions(client, engine):
    """Админ принудительно завершает сессии пользователя"""
    student_id = register(client).json()["id"]
    login(client)
    with Session(engine) as db:
        UserRepository(db).create("admin@example.com", "Admin", "admin", PasswordHasher().hash("admin-password"))

    # студенту доступ запрещён
    assert client.delete(f"/api/auth/users/{student_id}/sessions").status_code == 403

    client.cookies.clear()
    login(client, email="admin@example.com", password="admin-password")
    response = client.delete(f"/api/auth/users/{student_id}/sessions")
    assert response.status_code == 200
    assert response.json() == {"user_id": student_id, "revoked_sessions": 1}


def test_identities_empty_for_password_user(client):
    register(client)
    login(client)
    response = client.get("/api/auth/identities")
    assert response.status_code == 200
    assert response.json() == []
    assert client.delete("/api/auth/identities/google").status_code == 404
