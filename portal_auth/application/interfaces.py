from ..domain.entities import LinkedIdentity, ProviderProfile, ProviderTokens, User


class IUserRepository:
    def get_by_email(self, email: str) -> User | None: ...
    def get_by_id(self, user_id: str) -> User | None: ...
    def create(self, email: str, name: str, role: str, password_digest: str | None) -> User: ...
    def update_password_digest(self, user_id: str, password_digest: str) -> None: ...
    def is_suspended(self, user_id: str) -> bool: ...


class ILinkedIdentityRepository:
    def get_by_provider_subject(self, provider: str, subject_id: str) -> LinkedIdentity | None: ...
    def get_for_user(self, user_id: str, provider: str) -> LinkedIdentity | None: ...
    def list_for_user(self, user_id: str) -> list[LinkedIdentity]: ...
    def count_for_user(self, user_id: str) -> int: ...
    def create(self, user_id: str, provider: str, subject_id: str, tokens: ProviderTokens) -> LinkedIdentity: ...
    def update_tokens(self, identity_id: int, tokens: ProviderTokens) -> None: ...
    def delete(self, identity_id: int) -> None: ...


class IPasswordHasher:
    def hash(self, plain: str) -> str: ...
    def verify(self, plain: str, digest: str) -> bool: ...
    def is_well_formed(self, digest: str) -> bool: ...


class ISessionStore:
    """TTL key-value хранилище: refresh-токен -> id пользователя."""

    def create(self, token: str, user_id: str, ttl_seconds: int) -> None: ...
    def get(self, token: str) -> str | None: ...
    def delete(self, token: str) -> bool: ...
    def extend(self, token: str, ttl_seconds: int) -> bool: ...
    def delete_all_for_user(self, user_id: str) -> int: ...
    def list_for_user(self, user_id: str) -> list[str]: ...
    def delete_expired(self) -> int: ...


class IOAuthProviderClient:
    name: str

    def authorization_url(self, state: str, redirect_uri: str) -> str: ...
    def exchange_code(self, code: str, redirect_uri: str) -> tuple[ProviderProfile, ProviderTokens]: ...
