from datetime import timedelta

import structlog

from ..dto import TokenPair
from ..interfaces import ISessionStore, IUserRepository
from ...domain.entities import AccessClaims, User
from ...domain.errors import AccountSuspended, SessionNotFound
from ...infrastructure.security import TokenCodec, generate_refresh_token

logger = structlog.get_logger(__name__)


class TokenService:
    """Выдача, обновление и отзыв пар access/refresh.

    Только этот сервис читает и пишет записи Session Store. Роль и статус
    блокировки, зашитые в access-токен, сверяются с живой записью
    пользователя только при refresh: окно устаревания равно TTL access-токена.
    """

    def __init__(
        self,
        users: IUserRepository,
        sessions: ISessionStore,
        codec: TokenCodec,
        access_ttl_seconds: int = 15 * 60,
        refresh_ttl_seconds: int = 7 * 24 * 60 * 60,
    ):
        self.users = users
        self.sessions = sessions
        self.codec = codec
        self.access_ttl_seconds = access_ttl_seconds
        self.refresh_ttl_seconds = refresh_ttl_seconds

    def _access_token(self, user: User) -> str:
        return self.codec.issue_access_token(user.id, user.role, timedelta(seconds=self.access_ttl_seconds))

    def _pair(self, access_token: str, refresh_token: str) -> TokenPair:
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            access_expires_in=self.access_ttl_seconds,
            refresh_expires_in=self.refresh_ttl_seconds,
        )

    def issue_token_pair(self, user: User) -> TokenPair:
        if user.suspended:
            raise AccountSuspended()
        access_token = self._access_token(user)
        refresh_token = generate_refresh_token()
        self.sessions.create(refresh_token, user.id, self.refresh_ttl_seconds)
        logger.info("session_created", user_id=user.id)
        return self._pair(access_token, refresh_token)

    def verify_access(self, access_token: str) -> AccessClaims:
        return self.codec.verify_access_token(access_token)

    def refresh(self, refresh_token: str, rotate: bool = True) -> TokenPair:
        user_id = self.sessions.get(refresh_token)
        if user_id is None:
            raise SessionNotFound()

        user = self.users.get_by_id(user_id)
        if user is None:
            self.sessions.delete(refresh_token)
            logger.warning("refresh_for_missing_user", user_id=user_id)
            raise SessionNotFound()
        if user.suspended:
            self.sessions.delete(refresh_token)
            logger.warning("refresh_denied_suspended", user_id=user.id)
            raise AccountSuspended()

        if rotate:
            # удалить старую запись может только один из конкурентных запросов
            if not self.sessions.delete(refresh_token):
                logger.warning("refresh_rotation_race_lost", user_id=user.id)
                raise SessionNotFound()
            new_refresh_token = generate_refresh_token()
            self.sessions.create(new_refresh_token, user.id, self.refresh_ttl_seconds)
            logger.info("refresh_rotated", user_id=user.id)
        else:
            if not self.sessions.extend(refresh_token, self.refresh_ttl_seconds):
                raise SessionNotFound()
            new_refresh_token = refresh_token
            logger.info("refresh_extended", user_id=user.id)

        return self._pair(self._access_token(user), new_refresh_token)

    def revoke(self, refresh_token: str | None) -> None:
        if not refresh_token:
            return
        if self.sessions.delete(refresh_token):
            logger.info("session_revoked")

    def revoke_all(self, user_id: str) -> int:
        revoked = self.sessions.delete_all_for_user(user_id)
        logger.info("sessions_revoked_all", user_id=user_id, revoked=revoked)
        return revoked

    def list_sessions(self, user_id: str) -> list[str]:
        return self.sessions.list_for_user(user_id)

    def count_sessions(self, user_id: str) -> int:
        return len(self.list_sessions(user_id))
