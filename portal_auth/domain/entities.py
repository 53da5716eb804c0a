from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    ADMIN = "admin"
    TEACHER = "teacher"
    STUDENT = "student"


ROLES = frozenset(r.value for r in Role)
DEFAULT_ROLE = Role.STUDENT.value


def normalize_email(email: str) -> str:
    return email.strip().lower()


@dataclass(frozen=True)
class User:
    id: str
    email: str
    name: str
    role: str = DEFAULT_ROLE
    password_digest: str | None = None
    suspended: bool = False

    @property
    def has_password(self) -> bool:
        return self.password_digest is not None


@dataclass(frozen=True)
class LinkedIdentity:
    id: int | None
    user_id: str
    provider: str
    provider_subject_id: str
    access_token: str | None = None
    refresh_token: str | None = None
    expires_at: datetime | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class AccessClaims:
    """Закрытый набор полей access-токена."""
    subject_id: str
    role: str
    issued_at: int
    expires_at: int


@dataclass(frozen=True)
class ResetClaims:
    subject_id: str
    fingerprint: str
    issued_at: int
    expires_at: int


@dataclass(frozen=True)
class ProviderProfile:
    subject_id: str
    email: str
    email_verified: bool
    name: str


@dataclass(frozen=True)
class ProviderTokens:
    access_token: str | None = None
    refresh_token: str | None = None
    expires_at: datetime | None = None
