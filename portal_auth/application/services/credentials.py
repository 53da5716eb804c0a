import hmac
import secrets
import uuid
from datetime import timedelta

import structlog

from .tokens import TokenService
from ..interfaces import IPasswordHasher, IUserRepository
from ...domain.entities import DEFAULT_ROLE, ROLES, User, normalize_email
from ...domain.errors import (
    AccountSuspended,
    AlreadyExists,
    InvalidCredentials,
    InvalidState,
    NotFound,
    TokenExpired,
    TokenInvalid,
)
from ...infrastructure.metrics import password_digest_errors_total
from ...infrastructure.security import DUMMY_DIGEST, TokenCodec, digest_fingerprint

logger = structlog.get_logger(__name__)


class CredentialService:
    """Регистрация и операции с паролем. Единственный писатель поля password_hash."""

    def __init__(
        self,
        users: IUserRepository,
        hasher: IPasswordHasher,
        codec: TokenCodec,
        tokens: TokenService,
        reset_ttl: timedelta = timedelta(minutes=30),
    ):
        self.users = users
        self.hasher = hasher
        self.codec = codec
        self.tokens = tokens
        self.reset_ttl = reset_ttl

    def _burn_time(self, password: str) -> None:
        # выравниваем время ответа для несуществующих и безпарольных аккаунтов
        self.hasher.verify(password or "-", DUMMY_DIGEST)

    def _check_password(self, user: User | None, password: str) -> bool:
        if user is None or user.password_digest is None:
            self._burn_time(password)
            return False
        if not self.hasher.is_well_formed(user.password_digest):
            logger.error("password_digest_malformed", user_id=user.id)
            password_digest_errors_total.inc()
            self._burn_time(password)
            return False
        return self.hasher.verify(password, user.password_digest)

    def register(self, email: str, password: str, name: str, role: str = DEFAULT_ROLE) -> User:
        email = normalize_email(email)
        if "@" not in email:
            raise ValueError("Invalid email")
        if role not in ROLES:
            raise ValueError(f"Unknown role: {role}")
        if not password:
            raise ValueError("Password cannot be empty")
        if self.users.get_by_email(email):
            raise AlreadyExists("User with this email already exists")
        digest = self.hasher.hash(password)
        user = self.users.create(email, name.strip() or email.split("@")[0], role, digest)
        logger.info("user_registered", user_id=user.id, role=user.role)
        return user

    def login(self, email: str, password: str) -> User:
        user = self.users.get_by_email(normalize_email(email))
        if not self._check_password(user, password):
            logger.info("login_failed")
            raise InvalidCredentials()
        # статус блокировки раскрываем только после проверки пароля
        if user.suspended:
            logger.warning("login_denied_suspended", user_id=user.id)
            raise AccountSuspended()
        logger.info("login_succeeded", user_id=user.id)
        return user

    def change_password(self, user_id: str, current_password: str, new_password: str) -> None:
        user = self.users.get_by_id(user_id)
        if user is None:
            raise NotFound("User not found")
        if not self._check_password(user, current_password):
            raise InvalidCredentials("Current password is incorrect")
        self.users.update_password_digest(user.id, self.hasher.hash(new_password))
        revoked = self.tokens.revoke_all(user.id)
        logger.info("password_changed", user_id=user.id, revoked_sessions=revoked)

    def set_password(self, user_id: str, new_password: str) -> None:
        """Первый пароль для аккаунта, созданного через OAuth."""
        user = self.users.get_by_id(user_id)
        if user is None:
            raise NotFound("User not found")
        if user.has_password:
            raise InvalidState("Password is already set; use password change instead")
        self.users.update_password_digest(user.id, self.hasher.hash(new_password))
        logger.info("password_set", user_id=user.id)

    def request_password_reset(self, email: str) -> str:
        # Для неизвестного email тоже выдаём токен той же формы,
        # чтобы ответ не раскрывал существование аккаунта
        user = self.users.get_by_email(normalize_email(email))
        if user is None:
            subject_id = str(uuid.uuid4())
            fingerprint = digest_fingerprint(secrets.token_hex(32))
        else:
            subject_id = user.id
            fingerprint = digest_fingerprint(user.password_digest)
        logger.info("password_reset_requested", known=user is not None)
        return self.codec.issue_reset_token(subject_id, fingerprint, self.reset_ttl)

    def reset_password(self, reset_token: str, new_password: str) -> None:
        try:
            claims = self.codec.verify_reset_token(reset_token)
        except TokenExpired:
            raise TokenInvalid("Invalid or expired reset token")
        user = self.users.get_by_id(claims.subject_id)
        if user is None:
            raise TokenInvalid("Invalid or expired reset token")
        if not hmac.compare_digest(claims.fingerprint, digest_fingerprint(user.password_digest)):
            # пароль уже менялся после выдачи токена
            raise TokenInvalid("Invalid or expired reset token")
        self.users.update_password_digest(user.id, self.hasher.hash(new_password))
        revoked = self.tokens.revoke_all(user.id)
        logger.info("password_reset_completed", user_id=user.id, revoked_sessions=revoked)
