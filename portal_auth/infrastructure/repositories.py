from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .models import LinkedIdentityORM, UserORM
from ..application.interfaces import ILinkedIdentityRepository, IUserRepository
from ..domain.entities import LinkedIdentity, ProviderTokens, User, normalize_email
from ..domain.errors import AlreadyExists


def to_domain(u: UserORM) -> User:
    return User(
        id=u.id,
        email=u.email,
        name=u.name,
        role=u.role,
        password_digest=u.password_hash,
        suspended=bool(u.suspended),
    )


def identity_to_domain(row: LinkedIdentityORM) -> LinkedIdentity:
    return LinkedIdentity(
        id=row.id,
        user_id=row.user_id,
        provider=row.provider,
        provider_subject_id=row.provider_subject_id,
        access_token=row.access_token,
        refresh_token=row.refresh_token,
        expires_at=row.expires_at,
        created_at=row.created_at,
    )


class UserRepository(IUserRepository):
    def __init__(self, db: Session): self.db = db

    def get_by_email(self, email: str) -> User | None:
        row = self.db.query(UserORM).filter(UserORM.email == normalize_email(email)).first()
        return to_domain(row) if row else None

    def get_by_id(self, user_id: str) -> User | None:
        row = self.db.get(UserORM, user_id)
        return to_domain(row) if row else None

    def create(self, email: str, name: str, role: str, password_digest: str | None) -> User:
        row = UserORM(email=normalize_email(email), name=name, role=role, password_hash=password_digest)
        self.db.add(row)
        try:
            self.db.commit()
        except IntegrityError:
            # уникальный индекс по email решает гонку двойной регистрации
            self.db.rollback()
            raise AlreadyExists("User with this email already exists")
        self.db.refresh(row)
        return to_domain(row)

    def update_password_digest(self, user_id: str, password_digest: str) -> None:
        row = self.db.get(UserORM, user_id)
        if row is None:
            return
        row.password_hash = password_digest
        self.db.commit()

    def is_suspended(self, user_id: str) -> bool:
        suspended = self.db.query(UserORM.suspended).filter(UserORM.id == user_id).scalar()
        return bool(suspended)


class LinkedIdentityRepository(ILinkedIdentityRepository):
    def __init__(self, db: Session): self.db = db

    def get_by_provider_subject(self, provider: str, subject_id: str) -> LinkedIdentity | None:
        row = (
            self.db.query(LinkedIdentityORM)
            .filter(
                LinkedIdentityORM.provider == provider,
                LinkedIdentityORM.provider_subject_id == subject_id,
            )
            .first()
        )
        return identity_to_domain(row) if row else None

    def get_for_user(self, user_id: str, provider: str) -> LinkedIdentity | None:
        row = (
            self.db.query(LinkedIdentityORM)
            .filter(LinkedIdentityORM.user_id == user_id, LinkedIdentityORM.provider == provider)
            .first()
        )
        return identity_to_domain(row) if row else None

    def list_for_user(self, user_id: str) -> list[LinkedIdentity]:
        rows = (
            self.db.query(LinkedIdentityORM)
            .filter(LinkedIdentityORM.user_id == user_id)
            .order_by(LinkedIdentityORM.id)
            .all()
        )
        return [identity_to_domain(r) for r in rows]

    def count_for_user(self, user_id: str) -> int:
        return (
            self.db.query(func.count(LinkedIdentityORM.id))
            .filter(LinkedIdentityORM.user_id == user_id)
            .scalar()
        ) or 0

    def create(self, user_id: str, provider: str, subject_id: str, tokens: ProviderTokens) -> LinkedIdentity:
        row = LinkedIdentityORM(
            user_id=user_id,
            provider=provider,
            provider_subject_id=subject_id,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expires_at=tokens.expires_at,
        )
        self.db.add(row)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise AlreadyExists(f"This {provider} account is already linked")
        self.db.refresh(row)
        return identity_to_domain(row)

    def update_tokens(self, identity_id: int, tokens: ProviderTokens) -> None:
        row = self.db.get(LinkedIdentityORM, identity_id)
        if row is None:
            return
        row.access_token = tokens.access_token
        # провайдер не всегда возвращает новый refresh-токен
        if tokens.refresh_token:
            row.refresh_token = tokens.refresh_token
        row.expires_at = tokens.expires_at
        self.db.commit()

    def delete(self, identity_id: int) -> None:
        row = self.db.get(LinkedIdentityORM, identity_id)
        if row is None:
            return
        self.db.delete(row)
        self.db.commit()
