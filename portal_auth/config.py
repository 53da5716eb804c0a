from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Обязательный секрет: без него сервис не стартует
    SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_TTL_MINUTES: int = 15
    REFRESH_TOKEN_TTL_DAYS: int = 7
    PASSWORD_RESET_TTL_MINUTES: int = 30
    REFRESH_TOKEN_ROTATION: bool = True

    DATABASE_URL: str = "sqlite:///./auth.db"

    SESSION_BACKEND: str = "redis"
    REDIS_URL: str = "redis://localhost:6379/1"
    REDIS_TEST_URL: str = "redis://localhost:6379/15"
    REDIS_NAMESPACE: str = "default"
    SESSION_KEY_PREFIX: str = "auth:"

    COOKIE_SECURE: bool = True

    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_PER_MINUTE: int = 60
    LOGIN_RATE_LIMIT: str = "10/minute"
    RATE_LIMIT_STORAGE_URI: str = "memory://"

    OAUTH_GOOGLE_CLIENT_ID: str = ""
    OAUTH_GOOGLE_CLIENT_SECRET: str = ""
    OAUTH_GITHUB_CLIENT_ID: str = ""
    OAUTH_GITHUB_CLIENT_SECRET: str = ""
    OAUTH_CALLBACK_BASE_URL: str = "http://localhost:8000"
    OAUTH_SUCCESS_REDIRECT: str = "http://localhost:3000/oauth/callback"
    OAUTH_FAILURE_REDIRECT: str = "http://localhost:3000/login"
    OAUTH_HTTP_TIMEOUT_SECONDS: float = 10.0
    OAUTH_STATE_TTL_SECONDS: int = 600

    EXPOSE_RESET_TOKEN: bool = False
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @field_validator("SECRET_KEY")
    @classmethod
    def _secret_strong_enough(cls, value: str) -> str:
        if len(value) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters long")
        return value

    @field_validator("SESSION_BACKEND")
    @classmethod
    def _known_backend(cls, value: str) -> str:
        if value not in ("redis", "memory"):
            raise ValueError("SESSION_BACKEND must be 'redis' or 'memory'")
        return value

    @property
    def access_token_ttl_seconds(self) -> int:
        return self.ACCESS_TOKEN_TTL_MINUTES * 60

    @property
    def refresh_token_ttl_seconds(self) -> int:
        return self.REFRESH_TOKEN_TTL_DAYS * 24 * 60 * 60


settings = Settings()
