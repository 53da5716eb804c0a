from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

import httpx
import structlog

from ..application.interfaces import IOAuthProviderClient
from ..config import Settings
from ..domain.entities import ProviderProfile, ProviderTokens
from ..domain.errors import ProviderUnavailable

logger = structlog.get_logger(__name__)

OAUTH_PROVIDERS = {
    "google": {
        "auth_url": "https://accounts.google.com/o/oauth2/v2/auth",
        "token_url": "https://oauth2.googleapis.com/token",
        "userinfo_url": "https://www.googleapis.com/oauth2/v2/userinfo",
        "scope": "openid email profile",
    },
    "github": {
        "auth_url": "https://github.com/login/oauth/authorize",
        "token_url": "https://github.com/login/oauth/access_token",
        "userinfo_url": "https://api.github.com/user",
        "emails_url": "https://api.github.com/user/emails",
        "scope": "read:user user:email",
    },
}


class OAuthProviderClient(IOAuthProviderClient):
    """Обмен authorization code на профиль провайдера.

    Любой таймаут, сетевой сбой, не-2xx ответ или нечитаемое тело
    превращается в ProviderUnavailable, а не в "пользователь не найден".
    """

    def __init__(
        self,
        name: str,
        client_id: str,
        client_secret: str,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        if name not in OAUTH_PROVIDERS:
            raise ValueError(f"Unsupported OAuth provider: {name}")
        self.name = name
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout
        self.transport = transport
        self.config = OAUTH_PROVIDERS[name]

    def authorization_url(self, state: str, redirect_uri: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": self.config["scope"],
            "state": state,
        }
        if self.name == "google":
            params["access_type"] = "offline"
            params["prompt"] = "consent"
        return f"{self.config['auth_url']}?{urlencode(params)}"

    def exchange_code(self, code: str, redirect_uri: str) -> tuple[ProviderProfile, ProviderTokens]:
        try:
            with httpx.Client(timeout=self.timeout, follow_redirects=False, transport=self.transport) as client:
                token_response = client.post(
                    self.config["token_url"],
                    data={
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "code": code,
                        "redirect_uri": redirect_uri,
                        "grant_type": "authorization_code",
                    },
                    headers={"Accept": "application/json"},
                )
                token_response.raise_for_status()
                token_data = token_response.json()
                access_token = token_data.get("access_token") if isinstance(token_data, dict) else None
                if not access_token:
                    # GitHub отвечает 200 с полем error при неверном коде
                    logger.error(
                        "oauth_no_access_token",
                        provider=self.name,
                        error=token_data.get("error") if isinstance(token_data, dict) else None,
                    )
                    raise ProviderUnavailable()

                headers = {"Authorization": f"Bearer {access_token}"}
                if self.name == "github":
                    headers["Accept"] = "application/vnd.github+json"
                userinfo_response = client.get(self.config["userinfo_url"], headers=headers)
                userinfo_response.raise_for_status()
                userinfo = userinfo_response.json()
                if not isinstance(userinfo, dict):
                    logger.error("oauth_userinfo_invalid_format", provider=self.name)
                    raise ProviderUnavailable()

                if self.name == "github":
                    profile = self._github_profile(client, headers, userinfo)
                else:
                    profile = self._google_profile(userinfo)
        except httpx.TimeoutException:
            logger.error("oauth_provider_timeout", provider=self.name)
            raise ProviderUnavailable()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "oauth_provider_http_error",
                provider=self.name,
                status_code=exc.response.status_code,
            )
            raise ProviderUnavailable()
        except httpx.HTTPError as exc:
            logger.error("oauth_provider_unreachable", provider=self.name, error=str(exc))
            raise ProviderUnavailable()
        except ValueError as exc:
            logger.error("oauth_provider_bad_payload", provider=self.name, error=str(exc))
            raise ProviderUnavailable()

        tokens = ProviderTokens(
            access_token=access_token,
            refresh_token=token_data.get("refresh_token"),
            expires_at=_expires_at(token_data.get("expires_in")),
        )
        logger.info("oauth_exchange_success", provider=self.name)
        return profile, tokens

    def _google_profile(self, userinfo: dict) -> ProviderProfile:
        subject_id = userinfo.get("id") or userinfo.get("sub")
        email = userinfo.get("email")
        if not subject_id or not email:
            logger.error("oauth_identity_incomplete", provider=self.name)
            raise ProviderUnavailable()
        return ProviderProfile(
            subject_id=str(subject_id),
            email=email,
            email_verified=bool(userinfo.get("verified_email", userinfo.get("email_verified", False))),
            name=userinfo.get("name") or email.split("@")[0],
        )

    def _github_profile(self, client: httpx.Client, headers: dict, userinfo: dict) -> ProviderProfile:
        subject_id = userinfo.get("id")
        if not subject_id:
            logger.error("oauth_identity_incomplete", provider=self.name)
            raise ProviderUnavailable()
        # публичный email из /user не подтверждён; берём основной подтверждённый
        emails_response = client.get(self.config["emails_url"], headers=headers)
        emails_response.raise_for_status()
        emails = emails_response.json()
        primary = next(
            (e for e in emails if isinstance(e, dict) and e.get("primary") and e.get("verified")),
            None,
        ) if isinstance(emails, list) else None
        if primary is not None:
            email, verified = primary["email"], True
        else:
            email, verified = userinfo.get("email"), False
        if not email:
            logger.error("oauth_identity_missing_email", provider=self.name)
            raise ProviderUnavailable()
        return ProviderProfile(
            subject_id=str(subject_id),
            email=email,
            email_verified=verified,
            name=userinfo.get("name") or userinfo.get("login") or email.split("@")[0],
        )


def _expires_at(expires_in) -> datetime | None:
    try:
        seconds = int(expires_in)
    except (TypeError, ValueError):
        return None
    return datetime.now(timezone.utc) + timedelta(seconds=seconds)


def build_provider_clients(settings: Settings) -> dict[str, OAuthProviderClient]:
    """Провайдер включён, только если заданы и client_id, и client_secret."""
    credentials = {
        "google": (settings.OAUTH_GOOGLE_CLIENT_ID, settings.OAUTH_GOOGLE_CLIENT_SECRET),
        "github": (settings.OAUTH_GITHUB_CLIENT_ID, settings.OAUTH_GITHUB_CLIENT_SECRET),
    }
    return {
        name: OAuthProviderClient(name, client_id, secret, timeout=settings.OAUTH_HTTP_TIMEOUT_SECONDS)
        for name, (client_id, secret) in credentials.items()
        if client_id and secret
    }
