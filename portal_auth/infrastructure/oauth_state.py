import json
import secrets
import threading
import time
from dataclasses import dataclass

import redis
import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class OAuthState:
    provider: str
    user_id: str | None = None


def generate_state() -> str:
    return secrets.token_urlsafe(32)


class RedisOAuthStateStore:
    """Одноразовые CSRF state-значения OAuth с TTL."""

    def __init__(self, client: redis.Redis, prefix: str = "auth:", ttl_seconds: int = 600):
        self.client = client
        self.prefix = prefix
        self.ttl_seconds = ttl_seconds

    def _key(self, state: str) -> str:
        return f"{self.prefix}oauth_state:{state}"

    def issue(self, provider: str, user_id: str | None = None) -> str:
        state = generate_state()
        payload = json.dumps({"provider": provider, "user_id": user_id})
        self.client.setex(self._key(state), self.ttl_seconds, payload)
        return state

    def consume(self, state: str) -> OAuthState | None:
        if not state:
            return None
        raw = self.client.getdel(self._key(state))
        if raw is None:
            return None
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("oauth_state_corrupt")
            return None
        if not isinstance(data, dict):
            return None
        return OAuthState(provider=data.get("provider", ""), user_id=data.get("user_id"))


class InMemoryOAuthStateStore:
    def __init__(self, ttl_seconds: int = 600, clock=time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._states: dict[str, tuple[OAuthState, float]] = {}

    def issue(self, provider: str, user_id: str | None = None) -> str:
        state = generate_state()
        now = self._clock()
        with self._lock:
            # брошенные state вычищаем при каждой выдаче
            for key in [k for k, (_, expires_at) in self._states.items() if expires_at <= now]:
                del self._states[key]
            self._states[state] = (OAuthState(provider, user_id), now + self.ttl_seconds)
        return state

    def consume(self, state: str) -> OAuthState | None:
        with self._lock:
            entry = self._states.pop(state, None)
        if entry is None or entry[1] <= self._clock():
            return None
        return entry[0]
