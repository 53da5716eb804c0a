import hashlib
import hmac
import secrets
import time
from datetime import timedelta

from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTError
from passlib.crypto.digest import pbkdf2_hmac
from passlib.utils import consteq

from ..domain.entities import ROLES, AccessClaims, ResetClaims
from ..domain.errors import TokenExpired, TokenInvalid

PBKDF2_DIGEST = "sha512"
PBKDF2_ITERATIONS = 100_000
PBKDF2_KEY_LENGTH = 64
SALT_LENGTH = 32

# Заглушка для неизвестных аккаунтов: одна на процесс, проверка по ней стоит ровно один PBKDF2
DUMMY_DIGEST = f"{secrets.token_hex(SALT_LENGTH)}:{secrets.token_hex(PBKDF2_KEY_LENGTH)}"

# Допуск на рассинхрон часов, не настраивается
CLOCK_SKEW_LEEWAY_SECONDS = 10

ACCESS_PURPOSE = "access"
RESET_PURPOSE = "password_reset"


class PasswordHasher:
    """PBKDF2-SHA512 с солью; формат дайджеста ``salt:hash`` в hex."""

    def hash(self, plain: str) -> str:
        if not plain:
            raise ValueError("Password cannot be empty")
        salt = secrets.token_bytes(SALT_LENGTH)
        derived = pbkdf2_hmac(PBKDF2_DIGEST, plain, salt, PBKDF2_ITERATIONS, PBKDF2_KEY_LENGTH)
        return f"{salt.hex()}:{derived.hex()}"

    def verify(self, plain: str, digest: str) -> bool:
        parsed = _split_digest(digest)
        if parsed is None or not plain:
            return False
        salt, expected = parsed
        derived = pbkdf2_hmac(PBKDF2_DIGEST, plain, salt, PBKDF2_ITERATIONS, PBKDF2_KEY_LENGTH)
        return consteq(derived, expected)

    def is_well_formed(self, digest: str) -> bool:
        return _split_digest(digest) is not None


def _split_digest(digest) -> tuple[bytes, bytes] | None:
    if not isinstance(digest, str):
        return None
    parts = digest.split(":")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        return None
    try:
        salt = bytes.fromhex(parts[0])
        expected = bytes.fromhex(parts[1])
    except ValueError:
        return None
    if len(expected) != PBKDF2_KEY_LENGTH:
        return None
    return salt, expected


def digest_fingerprint(digest: str | None) -> str:
    """Отпечаток текущего дайджеста: после смены пароля reset-токен перестаёт подходить."""
    return hashlib.sha256((digest or "").encode("utf-8")).hexdigest()[:32]


def generate_refresh_token() -> str:
    return secrets.token_hex(32)


class TokenCodec:
    """Подпись и проверка JWT. Ключ выводится из секрета отдельно для каждой цели,
    поэтому reset-токен нельзя предъявить как access-токен."""

    def __init__(self, secret: str, algorithm: str = "HS256", clock=time.time):
        if not secret:
            raise ValueError("Signing secret must be configured")
        self._secret = secret.encode("utf-8")
        self._algorithm = algorithm
        self._clock = clock

    def _key(self, purpose: str) -> str:
        return hmac.new(self._secret, purpose.encode("utf-8"), hashlib.sha256).hexdigest()

    def _encode(self, purpose: str, subject: str, ttl: timedelta, extra: dict) -> str:
        now = int(self._clock())
        payload = {
            "sub": subject,
            "iat": now,
            "exp": now + int(ttl.total_seconds()),
            "purpose": purpose,
            **extra,
        }
        return jwt.encode(payload, self._key(purpose), algorithm=self._algorithm)

    def _decode(self, token: str, purpose: str) -> dict:
        if not isinstance(token, str) or not token:
            raise TokenInvalid("Token must be a non-empty string")
        try:
            payload = jwt.decode(
                token,
                self._key(purpose),
                algorithms=[self._algorithm],
                options={
                    "leeway": CLOCK_SKEW_LEEWAY_SECONDS,
                    "require_exp": True,
                    "require_iat": True,
                    "require_sub": True,
                },
            )
        except ExpiredSignatureError:
            raise TokenExpired()
        except JWTError:
            raise TokenInvalid()
        if payload.get("purpose") != purpose:
            raise TokenInvalid()
        if not isinstance(payload.get("iat"), int) or not isinstance(payload.get("exp"), int):
            raise TokenInvalid()
        return payload

    def issue_access_token(self, subject_id: str, role: str, ttl: timedelta) -> str:
        if not subject_id:
            raise ValueError("subject_id must be a non-empty string")
        if role not in ROLES:
            raise ValueError(f"Unknown role: {role}")
        return self._encode(ACCESS_PURPOSE, subject_id, ttl, {"role": role})

    def verify_access_token(self, token: str) -> AccessClaims:
        payload = self._decode(token, ACCESS_PURPOSE)
        role = payload.get("role")
        if role not in ROLES:
            raise TokenInvalid()
        return AccessClaims(
            subject_id=payload["sub"],
            role=role,
            issued_at=payload["iat"],
            expires_at=payload["exp"],
        )

    def issue_reset_token(self, subject_id: str, fingerprint: str, ttl: timedelta) -> str:
        return self._encode(RESET_PURPOSE, subject_id, ttl, {"fp": fingerprint})

    def verify_reset_token(self, token: str) -> ResetClaims:
        payload = self._decode(token, RESET_PURPOSE)
        fingerprint = payload.get("fp")
        if not isinstance(fingerprint, str) or not fingerprint:
            raise TokenInvalid()
        return ResetClaims(
            subject_id=payload["sub"],
            fingerprint=fingerprint,
            issued_at=payload["iat"],
            expires_at=payload["exp"],
        )
