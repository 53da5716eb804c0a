from fastapi import Response

from ...application.dto import TokenPair
from ...config import settings

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"
OAUTH_STATE_COOKIE = "oauth_state"


def set_auth_cookies(response: Response, pair: TokenPair) -> None:
    # токены никогда не попадают в тело ответа
    response.set_cookie(
        ACCESS_COOKIE,
        pair.access_token,
        max_age=pair.access_expires_in,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="strict",
        path="/",
    )
    response.set_cookie(
        REFRESH_COOKIE,
        pair.refresh_token,
        max_age=pair.refresh_expires_in,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="strict",
        path="/",
    )


def clear_auth_cookies(response: Response) -> None:
    for name in (ACCESS_COOKIE, REFRESH_COOKIE):
        response.delete_cookie(name, path="/", secure=settings.COOKIE_SECURE, httponly=True, samesite="strict")


def set_state_cookie(response: Response, state: str) -> None:
    # Lax: cookie должен пережить редирект обратно от провайдера
    response.set_cookie(
        OAUTH_STATE_COOKIE,
        state,
        max_age=settings.OAUTH_STATE_TTL_SECONDS,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="lax",
        path="/api/auth/oauth",
    )


def clear_state_cookie(response: Response) -> None:
    response.delete_cookie(OAUTH_STATE_COOKIE, path="/api/auth/oauth", secure=settings.COOKIE_SECURE, httponly=True, samesite="lax")
