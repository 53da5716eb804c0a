from dataclasses import dataclass
from typing import Union

import structlog

from ..dto import OAuthLoginResult
from ..interfaces import ILinkedIdentityRepository, IOAuthProviderClient, IUserRepository
from ...domain.entities import DEFAULT_ROLE, LinkedIdentity, ProviderProfile, ProviderTokens, User
from ...domain.errors import AccountSuspended, AlreadyExists, Forbidden, InvalidState, NotFound

logger = structlog.get_logger(__name__)


# Варианты сопоставления профиля провайдера с локальным пользователем
@dataclass(frozen=True)
class ExistingLink:
    identity: LinkedIdentity
    user: User


@dataclass(frozen=True)
class NewUser:
    profile: ProviderProfile


@dataclass(frozen=True)
class ExistingPasswordAccount:
    user: User


@dataclass(frozen=True)
class ExistingPasswordlessAccount:
    user: User


LinkResolution = Union[ExistingLink, NewUser, ExistingPasswordAccount, ExistingPasswordlessAccount]


class OAuthLinkingService:
    """Вход и привязка через сторонних провайдеров.

    Правило защиты от захвата: профиль провайдера никогда не присоединяется
    молча к существующему аккаунту с паролем.
    """

    def __init__(
        self,
        users: IUserRepository,
        identities: ILinkedIdentityRepository,
        providers: dict[str, IOAuthProviderClient],
        default_role: str = DEFAULT_ROLE,
    ):
        self.users = users
        self.identities = identities
        self.providers = providers
        self.default_role = default_role

    def provider(self, name: str) -> IOAuthProviderClient:
        client = self.providers.get(name)
        if client is None:
            raise NotFound(f"Unsupported sign-in provider: {name}")
        return client

    def resolve(self, provider: str, profile: ProviderProfile) -> LinkResolution:
        identity = self.identities.get_by_provider_subject(provider, profile.subject_id)
        if identity is not None:
            user = self.users.get_by_id(identity.user_id)
            if user is None:
                # осиротевшая привязка
                self.identities.delete(identity.id)
                logger.error("oauth_orphaned_identity", provider=provider, identity_id=identity.id)
                raise NotFound("User account not found for this sign-in")
            return ExistingLink(identity=identity, user=user)

        user = self.users.get_by_email(profile.email)
        if user is None:
            return NewUser(profile=profile)
        if user.has_password:
            return ExistingPasswordAccount(user=user)
        return ExistingPasswordlessAccount(user=user)

    @staticmethod
    def _require_verified_email(provider: str, profile: ProviderProfile) -> None:
        if not profile.email_verified:
            logger.warning("oauth_email_unverified", provider=provider)
            raise Forbidden(f"Your {provider} email address is not verified")

    def login_with_profile(
        self, provider: str, profile: ProviderProfile, tokens: ProviderTokens
    ) -> OAuthLoginResult:
        resolution = self.resolve(provider, profile)

        if isinstance(resolution, ExistingLink):
            user = resolution.user
            if user.suspended:
                raise AccountSuspended()
            self.identities.update_tokens(resolution.identity.id, tokens)
            logger.info("oauth_login_existing_link", provider=provider, user_id=user.id)
            return OAuthLoginResult(user=user, is_new_user=False)

        if isinstance(resolution, ExistingPasswordAccount):
            # заблокированному пользователю отвечаем Forbidden на любом колбэке
            if resolution.user.suspended:
                self._require_verified_email(provider, profile)
                raise AccountSuspended()
            logger.warning("oauth_takeover_blocked", provider=provider, user_id=resolution.user.id)
            raise AlreadyExists(
                "An account with this email already exists. Log in with your password first, "
                f"then link your {provider} account from account settings."
            )

        if isinstance(resolution, ExistingPasswordlessAccount):
            user = resolution.user
            self._require_verified_email(provider, profile)
            if user.suspended:
                raise AccountSuspended()
            self.identities.create(user.id, provider, profile.subject_id, tokens)
            logger.info("oauth_auto_linked", provider=provider, user_id=user.id)
            return OAuthLoginResult(user=user, is_new_user=False)

        if isinstance(resolution, NewUser):
            self._require_verified_email(provider, profile)
            user = self.users.create(profile.email, profile.name, self.default_role, None)
            self.identities.create(user.id, provider, profile.subject_id, tokens)
            logger.info("oauth_user_created", provider=provider, user_id=user.id)
            return OAuthLoginResult(user=user, is_new_user=True)

        raise TypeError(f"Unhandled link resolution: {resolution!r}")

    def complete_login(self, provider: str, code: str, redirect_uri: str) -> OAuthLoginResult:
        profile, tokens = self.provider(provider).exchange_code(code, redirect_uri)
        return self.login_with_profile(provider, profile, tokens)

    def link_identity(
        self, user_id: str, provider: str, profile: ProviderProfile, tokens: ProviderTokens
    ) -> LinkedIdentity:
        user = self.users.get_by_id(user_id)
        if user is None:
            raise NotFound("User not found")
        if user.suspended:
            raise AccountSuspended()

        existing = self.identities.get_by_provider_subject(provider, profile.subject_id)
        if existing is not None:
            if existing.user_id != user.id:
                raise AlreadyExists(f"This {provider} account is already linked to another user")
            self.identities.update_tokens(existing.id, tokens)
            return existing
        if self.identities.get_for_user(user.id, provider) is not None:
            raise AlreadyExists(f"A {provider} account is already linked to your account")

        identity = self.identities.create(user.id, provider, profile.subject_id, tokens)
        logger.info("oauth_identity_linked", provider=provider, user_id=user.id)
        return identity

    def complete_link(self, user_id: str, provider: str, code: str, redirect_uri: str) -> LinkedIdentity:
        profile, tokens = self.provider(provider).exchange_code(code, redirect_uri)
        return self.link_identity(user_id, provider, profile, tokens)

    def unlink(self, user_id: str, provider: str) -> None:
        user = self.users.get_by_id(user_id)
        if user is None:
            raise NotFound("User not found")
        identity = self.identities.get_for_user(user.id, provider)
        if identity is None:
            raise NotFound(f"No {provider} account linked to your account")
        # у пользователя должен остаться хотя бы один способ входа
        if not user.has_password and self.identities.count_for_user(user.id) <= 1:
            raise InvalidState(
                "Cannot unlink your only authentication method. Please set a password first."
            )
        self.identities.delete(identity.id)
        logger.info("oauth_identity_unlinked", provider=provider, user_id=user.id)

    def list_identities(self, user_id: str) -> list[LinkedIdentity]:
        return self.identities.list_for_user(user_id)
