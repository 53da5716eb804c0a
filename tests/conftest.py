import os
import sys

import pytest

CURRENT_DIR = os.path.dirname(__file__)
SERVICE_ROOT = os.path.dirname(CURRENT_DIR)
if SERVICE_ROOT not in sys.path:
    sys.path.insert(0, SERVICE_ROOT)

# Окружение выставляется до импорта приложения: settings читаются один раз
os.environ["SECRET_KEY"] = "test-secret-key-that-is-long-enough-0123456789"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SESSION_BACKEND"] = "memory"
os.environ["REDIS_NAMESPACE"] = "test"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["COOKIE_SECURE"] = "false"
os.environ["EXPOSE_RESET_TOKEN"] = "true"
os.environ["OAUTH_SUCCESS_REDIRECT"] = "http://frontend.example.com/oauth/done"
os.environ["OAUTH_FAILURE_REDIRECT"] = "http://frontend.example.com/login"

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from portal_auth.domain.entities import ProviderProfile, ProviderTokens
from portal_auth.domain.errors import ProviderUnavailable
from portal_auth.infrastructure.db import get_db
from portal_auth.infrastructure.models import Base
from portal_auth.infrastructure.oauth_state import InMemoryOAuthStateStore
from portal_auth.infrastructure.security import PasswordHasher
from portal_auth.infrastructure.session_store import InMemorySessionStore
from portal_auth.interfaces.http.deps import (
    get_oauth_clients,
    get_oauth_state_store,
    get_session_store,
)
from portal_auth.main import app


class FakeProviderClient:
    """Провайдер без сети: отдаёт заранее заданный профиль."""

    def __init__(self, name: str):
        self.name = name
        self.profile = None
        self.fail = False
        self.codes = []

    def authorization_url(self, state: str, redirect_uri: str) -> str:
        return f"https://{self.name}.example.com/authorize?state={state}&redirect_uri={redirect_uri}"

    def exchange_code(self, code: str, redirect_uri: str):
        self.codes.append(code)
        if self.fail:
            raise ProviderUnavailable()
        return self.profile, ProviderTokens(access_token=f"{self.name}-access", refresh_token=None)


class CountingHasher(PasswordHasher):
    """Считает вызовы hash и verify, чтобы сравнивать стоимость веток."""

    def __init__(self):
        self.calls = {"hash": 0, "verify": 0}

    def reset(self):
        self.calls = {"hash": 0, "verify": 0}

    def hash(self, plain):
        self.calls["hash"] += 1
        return super().hash(plain)

    def verify(self, plain, digest):
        self.calls["verify"] += 1
        return super().verify(plain, digest)


class Clock:
    """Управляемые часы для TTL."""

    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    """Сессия БД поверх sqlite в памяти"""
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def session_store():
    return InMemorySessionStore()


@pytest.fixture
def state_store():
    return InMemoryOAuthStateStore(ttl_seconds=600)


@pytest.fixture(scope="session")
def hasher():
    return PasswordHasher()


@pytest.fixture
def providers():
    return {"google": FakeProviderClient("google"), "github": FakeProviderClient("github")}


def make_profile(subject_id="g-1", email="user@example.com", verified=True, name="User"):
    return ProviderProfile(subject_id=subject_id, email=email, email_verified=verified, name=name)


@pytest.fixture
def client(engine, session_store, state_store, providers):
    """Фикстура для тестового клиента"""
    SessionTesting = sessionmaker(bind=engine, autocommit=False, autoflush=False)

    def _get_db():
        session = SessionTesting()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_session_store] = lambda: session_store
    app.dependency_overrides[get_oauth_state_store] = lambda: state_store
    app.dependency_overrides[get_oauth_clients] = lambda: providers
    yield TestClient(app)
    # Очищаем после теста
    app.dependency_overrides.clear()
