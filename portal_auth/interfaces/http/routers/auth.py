from fastapi import APIRouter, Depends, Request, Response, status

from ..authz import get_claims, get_current_user, require_admin
from ..cookies import REFRESH_COOKIE, clear_auth_cookies, set_auth_cookies
from ..deps import get_credential_service, get_oauth_service, get_token_service
from ..errors import error_response
from ..ratelimit import limiter
from ..schemas import (
    ChangePasswordReq,
    LinkedIdentityResp,
    LoginReq,
    LoginResp,
    RefreshResp,
    RegisterReq,
    ResetPasswordReq,
    ResetRequestReq,
    ResetRequestResp,
    RevokedResp,
    SessionsResp,
    SetPasswordReq,
    UserResp,
)
from ....application.services.credentials import CredentialService
from ....application.services.oauth_linking import OAuthLinkingService
from ....application.services.tokens import TokenService
from ....config import settings
from ....domain.entities import AccessClaims, User
from ....domain.errors import AuthError, Forbidden, SessionNotFound, TokenInvalid
from ....infrastructure.metrics import record_auth_event

router = APIRouter(prefix="/api/auth", tags=["auth"])


def user_resp(user: User) -> UserResp:
    return UserResp(
        id=user.id,
        email=user.email,
        name=user.name,
        role=user.role,
        has_password=user.has_password,
    )


@router.post("/register", response_model=UserResp, status_code=status.HTTP_201_CREATED)
@limiter.limit(f"{settings.RATE_LIMIT_PER_MINUTE}/minute")
def register(
    request: Request,
    payload: RegisterReq,
    credentials: CredentialService = Depends(get_credential_service),
):
    user = credentials.register(payload.email, payload.password, payload.name, payload.role)
    record_auth_event("register", "success")
    return user_resp(user)


@router.post("/login", response_model=LoginResp)
@limiter.limit(settings.LOGIN_RATE_LIMIT)
def login(
    request: Request,
    response: Response,
    payload: LoginReq,
    credentials: CredentialService = Depends(get_credential_service),
    tokens: TokenService = Depends(get_token_service),
):
    # Более строгий лимит для логина (защита от брутфорса)
    try:
        user = credentials.login(payload.email, payload.password)
        pair = tokens.issue_token_pair(user)
    except AuthError as exc:
        record_auth_event("login", exc.error_code)
        raise
    record_auth_event("login", "success")
    set_auth_cookies(response, pair)
    return LoginResp(user=user_resp(user), expires_in=pair.access_expires_in)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(request: Request, tokens: TokenService = Depends(get_token_service)):
    # выход работает и с истёкшим access-токеном
    tokens.revoke(request.cookies.get(REFRESH_COOKIE))
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    clear_auth_cookies(response)
    return response


@router.post("/refresh", response_model=RefreshResp)
def refresh(
    request: Request,
    response: Response,
    tokens: TokenService = Depends(get_token_service),
):
    try:
        refresh_token = request.cookies.get(REFRESH_COOKIE)
        if not refresh_token:
            raise SessionNotFound("Refresh token is missing")
        pair = tokens.refresh(refresh_token, rotate=settings.REFRESH_TOKEN_ROTATION)
    except (SessionNotFound, Forbidden, TokenInvalid) as exc:
        # повторный логин обязателен: старые cookie больше не нужны
        record_auth_event("refresh", exc.error_code)
        failed = error_response(exc)
        clear_auth_cookies(failed)
        return failed
    record_auth_event("refresh", "success")
    set_auth_cookies(response, pair)
    return RefreshResp(expires_in=pair.access_expires_in)


@router.get("/me", response_model=UserResp)
def me(user: User = Depends(get_current_user)):
    return user_resp(user)


@router.post("/password/change", status_code=status.HTTP_204_NO_CONTENT)
def change_password(
    payload: ChangePasswordReq,
    user: User = Depends(get_current_user),
    credentials: CredentialService = Depends(get_credential_service),
    tokens: TokenService = Depends(get_token_service),
):
    credentials.change_password(user.id, payload.current_password, payload.new_password)
    # все сессии отозваны, текущему клиенту выдаём новую пару
    pair = tokens.issue_token_pair(user)
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    set_auth_cookies(response, pair)
    return response


@router.post("/password/set", status_code=status.HTTP_204_NO_CONTENT)
def set_password(
    payload: SetPasswordReq,
    user: User = Depends(get_current_user),
    credentials: CredentialService = Depends(get_credential_service),
):
    credentials.set_password(user.id, payload.new_password)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/password/reset-request",
    response_model=ResetRequestResp,
    status_code=status.HTTP_202_ACCEPTED,
)
@limiter.limit(settings.LOGIN_RATE_LIMIT)
def request_password_reset(
    request: Request,
    payload: ResetRequestReq,
    credentials: CredentialService = Depends(get_credential_service),
):
    reset_token = credentials.request_password_reset(payload.email)
    # доставка письма вне ядра; токен отдаём только в dev-режиме
    return ResetRequestResp(reset_token=reset_token if settings.EXPOSE_RESET_TOKEN else None)


@router.post("/password/reset", status_code=status.HTTP_204_NO_CONTENT)
def reset_password(
    payload: ResetPasswordReq,
    credentials: CredentialService = Depends(get_credential_service),
):
    credentials.reset_password(payload.reset_token, payload.new_password)
    record_auth_event("password_reset", "success")
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    clear_auth_cookies(response)
    return response


@router.get("/sessions", response_model=SessionsResp)
def sessions(
    claims: AccessClaims = Depends(get_claims),
    tokens: TokenService = Depends(get_token_service),
):
    return SessionsResp(user_id=claims.subject_id, active_sessions=tokens.count_sessions(claims.subject_id))


@router.post("/logout-all", status_code=status.HTTP_204_NO_CONTENT)
def logout_all(
    claims: AccessClaims = Depends(get_claims),
    tokens: TokenService = Depends(get_token_service),
):
    tokens.revoke_all(claims.subject_id)
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    clear_auth_cookies(response)
    return response


@router.delete("/users/{user_id}/sessions", response_model=RevokedResp)
def revoke_user_sessions(
    user_id: str,
    _: AccessClaims = Depends(require_admin),
    tokens: TokenService = Depends(get_token_service),
):
    return RevokedResp(user_id=user_id, revoked_sessions=tokens.revoke_all(user_id))


@router.get("/identities", response_model=list[LinkedIdentityResp])
def identities(
    claims: AccessClaims = Depends(get_claims),
    oauth: OAuthLinkingService = Depends(get_oauth_service),
):
    return [
        LinkedIdentityResp(
            provider=i.provider,
            provider_subject_id=i.provider_subject_id,
            created_at=i.created_at,
        )
        for i in oauth.list_identities(claims.subject_id)
    ]


@router.delete("/identities/{provider}", status_code=status.HTTP_204_NO_CONTENT)
def unlink_identity(
    provider: str,
    claims: AccessClaims = Depends(get_claims),
    oauth: OAuthLinkingService = Depends(get_oauth_service),
):
    oauth.unlink(claims.subject_id, provider)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
