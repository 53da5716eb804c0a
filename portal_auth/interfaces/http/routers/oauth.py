import hmac
from urllib.parse import urlencode

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse

from ..authz import get_current_user
from ..cookies import OAUTH_STATE_COOKIE, clear_state_cookie, set_auth_cookies, set_state_cookie
from ..deps import get_oauth_service, get_oauth_state_store, get_token_service
from ....application.services.oauth_linking import OAuthLinkingService
from ....application.services.tokens import TokenService
from ....config import settings
from ....domain.entities import User
from ....domain.errors import AuthError, TokenInvalid
from ....infrastructure.metrics import record_auth_event

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/auth/oauth", tags=["oauth"])


def callback_url(provider: str) -> str:
    return f"{settings.OAUTH_CALLBACK_BASE_URL.rstrip('/')}/api/auth/oauth/{provider}/callback"


def failure_redirect(exc: AuthError) -> RedirectResponse:
    # ошибка приходит через редирект браузера, поэтому причина идёт в query
    query = urlencode({"error": exc.error_code, "message": exc.message})
    response = RedirectResponse(f"{settings.OAUTH_FAILURE_REDIRECT}?{query}", status_code=302)
    clear_state_cookie(response)
    return response


def _start(provider: str, oauth: OAuthLinkingService, state_store, user_id: str | None = None) -> RedirectResponse:
    client = oauth.provider(provider)
    state = state_store.issue(provider, user_id)
    response = RedirectResponse(client.authorization_url(state, callback_url(provider)), status_code=302)
    set_state_cookie(response, state)
    return response


@router.get("/{provider}")
def oauth_login(
    provider: str,
    oauth: OAuthLinkingService = Depends(get_oauth_service),
    state_store=Depends(get_oauth_state_store),
):
    return _start(provider, oauth, state_store)


@router.get("/{provider}/link")
def oauth_link(
    provider: str,
    user: User = Depends(get_current_user),
    oauth: OAuthLinkingService = Depends(get_oauth_service),
    state_store=Depends(get_oauth_state_store),
):
    return _start(provider, oauth, state_store, user_id=user.id)


@router.get("/{provider}/callback")
def oauth_callback(
    provider: str,
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    oauth: OAuthLinkingService = Depends(get_oauth_service),
    tokens: TokenService = Depends(get_token_service),
    state_store=Depends(get_oauth_state_store),
):
    try:
        # state проверяется до любого обращения к провайдеру
        cookie_state = request.cookies.get(OAUTH_STATE_COOKIE) or ""
        if not state or not hmac.compare_digest(cookie_state.encode(), state.encode()):
            raise TokenInvalid("Invalid OAuth state")
        stored = state_store.consume(state)
        if stored is None or stored.provider != provider:
            raise TokenInvalid("Invalid OAuth state")
        if error:
            logger.info("oauth_denied_by_user", provider=provider, error=error)
            raise TokenInvalid("Sign-in was cancelled")
        if not code:
            raise TokenInvalid("Missing authorization code")

        if stored.user_id is not None:
            oauth.complete_link(stored.user_id, provider, code, callback_url(provider))
            record_auth_event("oauth_link", "success")
            response = RedirectResponse(
                f"{settings.OAUTH_SUCCESS_REDIRECT}?{urlencode({'linked': provider})}",
                status_code=302,
            )
            clear_state_cookie(response)
            return response

        result = oauth.complete_login(provider, code, callback_url(provider))
        pair = tokens.issue_token_pair(result.user)
    except AuthError as exc:
        record_auth_event("oauth_callback", exc.error_code)
        logger.warning("oauth_callback_failed", provider=provider, error=exc.error_code)
        return failure_redirect(exc)

    record_auth_event("oauth_callback", "success")
    query = urlencode({"new_user": "true" if result.is_new_user else "false"})
    response = RedirectResponse(f"{settings.OAUTH_SUCCESS_REDIRECT}?{query}", status_code=302)
    set_auth_cookies(response, pair)
    clear_state_cookie(response)
    return response
