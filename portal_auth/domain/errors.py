class AuthError(Exception):
    """Базовая ошибка ядра аутентификации.

    У каждого подкласса стабильный error_code и HTTP-статус; message
    безопасно показывать клиенту.
    """

    status_code: int = 400
    error_code: str = "auth_error"
    default_message: str = "Authentication error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidCredentials(AuthError):
    status_code = 401
    error_code = "invalid_credentials"
    default_message = "Invalid email or password"


class Forbidden(AuthError):
    status_code = 403
    error_code = "forbidden"
    default_message = "Access denied"


class AccountSuspended(Forbidden):
    default_message = "Your account has been suspended"


class AlreadyExists(AuthError):
    status_code = 409
    error_code = "already_exists"
    default_message = "Resource already exists"


class TokenExpired(AuthError):
    status_code = 401
    error_code = "token_expired"
    default_message = "Token has expired"


class TokenInvalid(AuthError):
    status_code = 401
    error_code = "token_invalid"
    default_message = "Invalid token"


class SessionNotFound(AuthError):
    status_code = 401
    error_code = "session_not_found"
    default_message = "Session not found or expired"


class InvalidState(AuthError):
    status_code = 400
    error_code = "invalid_state"
    default_message = "Operation not allowed in the current state"


class ProviderUnavailable(AuthError):
    status_code = 502
    error_code = "provider_unavailable"
    default_message = "Sign-in provider is unavailable, please try again later"


class NotFound(AuthError):
    status_code = 404
    error_code = "not_found"
    default_message = "Not found"
