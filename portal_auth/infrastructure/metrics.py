from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Метрики для HTTP запросов
http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint']
)

# События аутентификации: login, refresh, oauth_callback, ...
auth_events_total = Counter(
    'auth_events_total',
    'Authentication events by outcome',
    ['event', 'outcome']
)

password_digest_errors_total = Counter(
    'password_digest_errors_total',
    'Malformed password digests found in the credential store'
)


def record_auth_event(event: str, outcome: str) -> None:
    auth_events_total.labels(event=event, outcome=outcome).inc()


def metrics_endpoint():
    """Endpoint для Prometheus метрик"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
