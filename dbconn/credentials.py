"""Azure Entra ID token provisioning for Postgres password-less authentication."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Protocol, runtime_checkable

from azure.core.credentials import AccessToken
from azure.identity import ClientSecretCredential, DefaultAzureCredential

from .errors import AuthenticationError, AuthPhase

LOG = logging.getLogger(__name__)

POSTGRES_TOKEN_SCOPE = "https://ossrdbms-aad.database.windows.net/.default"
DEFAULT_REFRESH_MARGIN_MS = 5 * 60 * 1000


class AuthMode(str, Enum):
    """How the Postgres password is obtained."""

    SERVICE_PRINCIPAL = "service_principal"
    USER_MANAGED_IDENTITY = "user_managed_identity"
    SYSTEM_MANAGED_IDENTITY = "system_managed_identity"


def select_auth_mode(
    tenant_id: str | None = None,
    client_id: str | None = None,
    client_secret: str | None = None,
) -> AuthMode:
    """Pick the Azure identity strategy; empty strings count as unset."""

    if tenant_id and client_id and client_secret:
        return AuthMode.SERVICE_PRINCIPAL
    if client_id:
        return AuthMode.USER_MANAGED_IDENTITY
    return AuthMode.SYSTEM_MANAGED_IDENTITY


@dataclass(frozen=True, slots=True)
class CachedToken:
    """Bearer token plus its expiry as a POSIX timestamp in seconds."""

    value: str = field(repr=False)
    expires_at: float


@runtime_checkable
class TokenProvider(Protocol):
    """A credential able to mint tokens for one authentication strategy."""

    mode: AuthMode

    def request_token(self, scope: str) -> AccessToken | None:
        """Request a token for ``scope``; may block on network I/O."""


class ServicePrincipalTokenProvider:
    """Authenticates as an app registration using a client secret."""

    mode = AuthMode.SERVICE_PRINCIPAL

    def __init__(self, tenant_id: str, client_id: str, client_secret: str) -> None:
        self._credential = ClientSecretCredential(tenant_id, client_id, client_secret)

    def request_token(self, scope: str) -> AccessToken | None:
        return self._credential.get_token(scope)


class UserManagedIdentityTokenProvider:
    """Authenticates with a user-assigned managed identity keyed by client id."""

    mode = AuthMode.USER_MANAGED_IDENTITY

    def __init__(self, client_id: str) -> None:
        self._credential = DefaultAzureCredential(managed_identity_client_id=client_id)

    def request_token(self, scope: str) -> AccessToken | None:
        return self._credential.get_token(scope)


class SystemManagedIdentityTokenProvider:
    """Authenticates with the identity assigned to the compute resource."""

    mode = AuthMode.SYSTEM_MANAGED_IDENTITY

    def __init__(self) -> None:
        self._credential = DefaultAzureCredential()

    def request_token(self, scope: str) -> AccessToken | None:
        return self._credential.get_token(scope)


ProviderFactory = Callable[..., TokenProvider]


def create_token_provider(
    mode: AuthMode,
    *,
    tenant_id: str | None = None,
    client_id: str | None = None,
    client_secret: str | None = None,
) -> TokenProvider:
    """Construct the provider implementing ``mode``."""

    if mode is AuthMode.SERVICE_PRINCIPAL:
        return ServicePrincipalTokenProvider(tenant_id or "", client_id or "", client_secret or "")
    if mode is AuthMode.USER_MANAGED_IDENTITY:
        return UserManagedIdentityTokenProvider(client_id or "")
    if mode is AuthMode.SYSTEM_MANAGED_IDENTITY:
        return SystemManagedIdentityTokenProvider()
    raise ValueError(f"Unsupported auth mode: {mode!r}")


class AzureTokenCache:
    """Lazily creates an Azure credential and caches its token until near expiry.

    Concurrent callers are not coalesced: two overlapping ``get_token()`` calls
    on a stale cache each request a token and the last one wins.
    """

    def __init__(
        self,
        tenant_id: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        *,
        refresh_margin_ms: int = DEFAULT_REFRESH_MARGIN_MS,
        provider_factory: ProviderFactory = create_token_provider,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._tenant_id = tenant_id
        self._client_id = client_id
        self._client_secret = client_secret
        self._refresh_margin_ms = refresh_margin_ms
        self._provider_factory = provider_factory
        self._clock = clock
        self._mode: AuthMode | None = None
        self._provider: TokenProvider | None = None
        self._cached_token: CachedToken | None = None

    @property
    def mode(self) -> AuthMode:
        """Authentication strategy, chosen on first use and fixed afterwards."""

        if self._mode is None:
            self._mode = select_auth_mode(self._tenant_id, self._client_id, self._client_secret)
        return self._mode

    @property
    def cached_token(self) -> CachedToken | None:
        return self._cached_token

    @property
    def refresh_margin_ms(self) -> int:
        return self._refresh_margin_ms

    async def get_token(self) -> str:
        """Return a bearer token valid for at least the refresh margin."""

        self._initialize_provider_if_needed()
        await self._refresh_token_if_needed()
        token = self._cached_token
        if token is None or not token.value:
            raise AuthenticationError("No valid access token available", phase=AuthPhase.TOKEN_ACQUISITION)
        return token.value

    def needs_refresh(self) -> bool:
        token = self._cached_token
        if token is None:
            return True
        remaining_ms = (token.expires_at - self._clock()) * 1000
        return remaining_ms < self._refresh_margin_ms

    def _initialize_provider_if_needed(self) -> None:
        if self._provider is not None:
            return
        mode = self.mode
        try:
            self._provider = self._provider_factory(
                mode,
                tenant_id=self._tenant_id,
                client_id=self._client_id,
                client_secret=self._client_secret,
            )
        except Exception as exc:
            raise AuthenticationError(str(exc), phase=AuthPhase.INITIALIZATION, cause=exc) from exc
        LOG.debug("Created Azure credential", extra={"auth_mode": mode.value})

    async def _refresh_token_if_needed(self) -> None:
        provider = self._provider
        if provider is None:
            raise AuthenticationError("Azure credential not initialized", phase=AuthPhase.TOKEN_REFRESH)
        if not self.needs_refresh():
            return
        try:
            result = await asyncio.to_thread(provider.request_token, POSTGRES_TOKEN_SCOPE)
        except Exception as exc:
            raise AuthenticationError(str(exc), phase=AuthPhase.TOKEN_ACQUISITION, cause=exc) from exc
        if result is None or not result.token:
            raise AuthenticationError("Token is null", phase=AuthPhase.TOKEN_ACQUISITION)
        self._cached_token = CachedToken(value=result.token, expires_at=float(result.expires_on))
        LOG.debug(
            "Refreshed Azure access token",
            extra={"auth_mode": self.mode.value, "expires_at": self._cached_token.expires_at},
        )


__all__ = [
    "AuthMode",
    "AzureTokenCache",
    "CachedToken",
    "DEFAULT_REFRESH_MARGIN_MS",
    "POSTGRES_TOKEN_SCOPE",
    "ServicePrincipalTokenProvider",
    "SystemManagedIdentityTokenProvider",
    "TokenProvider",
    "UserManagedIdentityTokenProvider",
    "create_token_provider",
    "select_auth_mode",
]
