from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from .cookies import ACCESS_COOKIE
from .deps import get_token_codec
from ...domain.entities import AccessClaims, User
from ...domain.errors import AccountSuspended, Forbidden, TokenInvalid
from ...infrastructure.db import get_db
from ...infrastructure.repositories import UserRepository
from ...infrastructure.security import TokenCodec

bearer = HTTPBearer(auto_error=False)


def get_claims(
    request: Request,
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
    codec: TokenCodec = Depends(get_token_codec),
) -> AccessClaims:
    """Проверка access-токена без обращения к БД.

    Роль берётся из токена и может отставать от БД не дольше TTL access-токена.
    """
    token = request.cookies.get(ACCESS_COOKIE)
    if not token and creds is not None:
        token = creds.credentials
    if not token:
        raise TokenInvalid("Authentication required")
    return codec.verify_access_token(token)


def get_current_user(
    claims: AccessClaims = Depends(get_claims),
    db: Session = Depends(get_db),
) -> User:
    # живая запись пользователя: блокировка действует сразу
    user = UserRepository(db).get_by_id(claims.subject_id)
    if user is None:
        raise TokenInvalid("User no longer exists")
    if user.suspended:
        raise AccountSuspended()
    return user


def require_role(*roles: str):
    def _check(claims: AccessClaims = Depends(get_claims)) -> AccessClaims:
        if claims.role not in roles:
            raise Forbidden(f"Requires role: {', '.join(roles)}")
        return claims
    return _check


require_admin = require_role("admin")
