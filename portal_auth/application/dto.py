from dataclasses import dataclass

from ..domain.entities import User


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    access_expires_in: int
    refresh_expires_in: int


@dataclass(frozen=True)
class OAuthLoginResult:
    user: User
    is_new_user: bool
