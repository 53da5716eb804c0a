import threading
import time

import redis
import structlog

from ..application.interfaces import ISessionStore

logger = structlog.get_logger(__name__)


class RedisSessionStore(ISessionStore):
    """Сессии в redis: ключ session:<token> -> user_id с TTL.

    Дополнительно ведётся множество user_sessions:<user_id>, чтобы отзыв
    всех сессий пользователя не требовал сканирования всего keyspace.
    """

    def __init__(self, client: redis.Redis, prefix: str = "auth:"):
        self.client = client
        self.prefix = prefix

    def _key(self, token: str) -> str:
        return f"{self.prefix}session:{token}"

    def _index(self, user_id: str) -> str:
        return f"{self.prefix}user_sessions:{user_id}"

    def _touch_index(self, user_id: str, ttl_seconds: int) -> None:
        index = self._index(user_id)
        if self.client.ttl(index) < ttl_seconds:
            self.client.expire(index, ttl_seconds)

    def create(self, token: str, user_id: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        pipe = self.client.pipeline(transaction=True)
        pipe.setex(self._key(token), ttl_seconds, user_id)
        pipe.sadd(self._index(user_id), token)
        pipe.execute()
        self._touch_index(user_id, ttl_seconds)

    def get(self, token: str) -> str | None:
        if not token:
            return None
        return self.client.get(self._key(token))

    def delete(self, token: str) -> bool:
        if not token:
            return False
        # GETDEL атомарен: из двух конкурентных удалений успешно только одно
        user_id = self.client.getdel(self._key(token))
        if user_id is None:
            return False
        self.client.srem(self._index(user_id), token)
        return True

    def extend(self, token: str, ttl_seconds: int) -> bool:
        if not token or not self.client.expire(self._key(token), ttl_seconds):
            return False
        user_id = self.client.get(self._key(token))
        if user_id:
            self._touch_index(user_id, ttl_seconds)
        return True

    def delete_all_for_user(self, user_id: str) -> int:
        index = self._index(user_id)
        tokens = self.client.smembers(index)
        deleted = 0
        if tokens:
            deleted = self.client.delete(*[self._key(t) for t in tokens])
        self.client.delete(index)
        return deleted

    def _alive_tokens(self, index: str, user_id: str) -> list[str]:
        tokens = sorted(self.client.smembers(index))
        if not tokens:
            return []
        owners = self.client.mget([self._key(t) for t in tokens])
        alive = [t for t, owner in zip(tokens, owners) if owner == user_id]
        stale = [t for t, owner in zip(tokens, owners) if owner != user_id]
        if stale:
            self.client.srem(index, *stale)
        return alive

    def list_for_user(self, user_id: str) -> list[str]:
        return self._alive_tokens(self._index(user_id), user_id)

    def delete_expired(self) -> int:
        """Чистит индексы от истёкших токенов; сами ключи redis удаляет по TTL."""
        marker = f"{self.prefix}user_sessions:"
        pruned = 0
        for index in self.client.scan_iter(match=f"{marker}*"):
            user_id = index[len(marker):]
            before = self.client.scard(index)
            alive = self._alive_tokens(index, user_id)
            pruned += before - len(alive)
        if pruned:
            logger.info("session_index_pruned", pruned=pruned)
        return pruned


class InMemorySessionStore(ISessionStore):
    """Однопроцессная реализация для разработки и тестов."""

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[str, float]] = {}

    def _live_owner(self, token: str, now: float) -> str | None:
        entry = self._entries.get(token)
        if entry is None:
            return None
        user_id, expires_at = entry
        if expires_at <= now:
            del self._entries[token]
            return None
        return user_id

    def create(self, token: str, user_id: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        with self._lock:
            self._entries[token] = (user_id, self._clock() + ttl_seconds)

    def get(self, token: str) -> str | None:
        with self._lock:
            return self._live_owner(token, self._clock())

    def delete(self, token: str) -> bool:
        with self._lock:
            if self._live_owner(token, self._clock()) is None:
                return False
            del self._entries[token]
            return True

    def extend(self, token: str, ttl_seconds: int) -> bool:
        with self._lock:
            now = self._clock()
            user_id = self._live_owner(token, now)
            if user_id is None:
                return False
            self._entries[token] = (user_id, now + ttl_seconds)
            return True

    def delete_all_for_user(self, user_id: str) -> int:
        with self._lock:
            now = self._clock()
            tokens = [t for t in list(self._entries) if self._live_owner(t, now) == user_id]
            for token in tokens:
                del self._entries[token]
            return len(tokens)

    def list_for_user(self, user_id: str) -> list[str]:
        with self._lock:
            now = self._clock()
            return sorted(t for t in list(self._entries) if self._live_owner(t, now) == user_id)

    def delete_expired(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [t for t, (_, expires_at) in self._entries.items() if expires_at <= now]
            for token in expired:
                del self._entries[token]
            return len(expired)
