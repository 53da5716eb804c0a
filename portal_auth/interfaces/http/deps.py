from datetime import timedelta
from functools import lru_cache

from fastapi import Depends
from sqlalchemy.orm import Session

from ...application.services.credentials import CredentialService
from ...application.services.oauth_linking import OAuthLinkingService
from ...application.services.tokens import TokenService
from ...config import settings
from ...infrastructure.cache import get_redis
from ...infrastructure.db import get_db
from ...infrastructure.oauth_providers import build_provider_clients
from ...infrastructure.oauth_state import InMemoryOAuthStateStore, RedisOAuthStateStore
from ...infrastructure.repositories import LinkedIdentityRepository, UserRepository
from ...infrastructure.security import PasswordHasher, TokenCodec
from ...infrastructure.session_store import InMemorySessionStore, RedisSessionStore


@lru_cache
def get_session_store():
    if settings.SESSION_BACKEND == "memory":
        return InMemorySessionStore()
    return RedisSessionStore(get_redis(), prefix=settings.SESSION_KEY_PREFIX)


@lru_cache
def get_oauth_state_store():
    if settings.SESSION_BACKEND == "memory":
        return InMemoryOAuthStateStore(ttl_seconds=settings.OAUTH_STATE_TTL_SECONDS)
    return RedisOAuthStateStore(
        get_redis(),
        prefix=settings.SESSION_KEY_PREFIX,
        ttl_seconds=settings.OAUTH_STATE_TTL_SECONDS,
    )


@lru_cache
def get_token_codec() -> TokenCodec:
    return TokenCodec(settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


@lru_cache
def get_password_hasher() -> PasswordHasher:
    return PasswordHasher()


@lru_cache
def get_oauth_clients() -> dict:
    return build_provider_clients(settings)


def get_token_service(
    db: Session = Depends(get_db),
    sessions=Depends(get_session_store),
    codec: TokenCodec = Depends(get_token_codec),
) -> TokenService:
    return TokenService(
        users=UserRepository(db),
        sessions=sessions,
        codec=codec,
        access_ttl_seconds=settings.access_token_ttl_seconds,
        refresh_ttl_seconds=settings.refresh_token_ttl_seconds,
    )


def get_credential_service(
    db: Session = Depends(get_db),
    hasher: PasswordHasher = Depends(get_password_hasher),
    codec: TokenCodec = Depends(get_token_codec),
    tokens: TokenService = Depends(get_token_service),
) -> CredentialService:
    return CredentialService(
        users=UserRepository(db),
        hasher=hasher,
        codec=codec,
        tokens=tokens,
        reset_ttl=timedelta(minutes=settings.PASSWORD_RESET_TTL_MINUTES),
    )


def get_oauth_service(
    db: Session = Depends(get_db),
    providers: dict = Depends(get_oauth_clients),
) -> OAuthLinkingService:
    return OAuthLinkingService(
        users=UserRepository(db),
        identities=LinkedIdentityRepository(db),
        providers=providers,
    )
