import redis
from typing import Optional
from ..config import settings

# Два изолированных раздела: рабочий и для автотестов
NAMESPACES = ("default", "test")

_redis_clients: dict[str, redis.Redis] = {}


def get_redis(namespace: Optional[str] = None) -> redis.Redis:
    namespace = namespace or settings.REDIS_NAMESPACE
    if namespace not in NAMESPACES:
        raise ValueError(f"Unknown redis namespace: {namespace}")
    client = _redis_clients.get(namespace)
    if client is None:
        url = settings.REDIS_TEST_URL if namespace == "test" else settings.REDIS_URL
        client = redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
        )
        _redis_clients[namespace] = client
    return client
