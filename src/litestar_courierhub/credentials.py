"""Credential resolution and bearer token caching."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta

from litestar_courierhub.exceptions import CourierAccountNotFoundError
from litestar_courierhub.locks import KeyedLock
from litestar_courierhub.models import CourierAccount
from litestar_courierhub.protocols import CredentialSource
from litestar_courierhub.types import AccessToken, CourierCredentials

logger = logging.getLogger(__name__)

TokenFetcher = Callable[[CourierCredentials], Awaitable[AccessToken]]


class CredentialStore:
    """Resolve a courier account's opaque credential reference.

    Secret storage itself (vault, encrypted column) lives behind the
    :class:`CredentialSource` protocol.
    """

    def __init__(self, source: CredentialSource) -> None:
        self._source = source

    async def resolve(self, account: CourierAccount) -> CourierCredentials:
        secrets = await self._source.load(account.credentials_ref)
        if secrets is None:
            raise CourierAccountNotFoundError(account.id)
        return CourierCredentials(
            tenant_id=account.tenant_id,
            account_id=account.id,
            api_key=secrets.get("api_key"),
            api_secret=secrets.get("api_secret"),
            access_token=secrets.get("access_token"),
            account_code=secrets.get("account_code"),
            channel_id=account.settings.get("channel_id")
            or secrets.get("channel_id"),
            settings=dict(account.settings),
        )


class TokenCache:
    """Bearer tokens keyed by (tenant, courier account).

    Concurrent callers racing on a missing or expiring token share a
    single fetch. Tokens are treated as expired ``refresh_margin``
    seconds early.
    """

    def __init__(self, refresh_margin_seconds: int = 60) -> None:
        self._margin = timedelta(seconds=refresh_margin_seconds)
        self._tokens: dict[tuple[str, str], AccessToken] = {}
        self._locks = KeyedLock()

    def _is_fresh(self, token: AccessToken) -> bool:
        return token.expires_at - self._margin > datetime.now(tz=UTC)

    async def get_token(
        self, credentials: CourierCredentials, fetch: TokenFetcher
    ) -> str:
        key = credentials.cache_key
        token = self._tokens.get(key)
        if token is not None and self._is_fresh(token):
            return token.value

        async with self._locks.acquire(key):
            # Another caller may have refreshed while we waited.
            token = self._tokens.get(key)
            if token is not None and self._is_fresh(token):
                return token.value
            logger.info(
                "Fetching access token for account %s", credentials.account_id
            )
            token = await fetch(credentials)
            self._tokens[key] = token
            return token.value

    def invalidate(self, credentials: CourierCredentials) -> None:
        self._tokens.pop(credentials.cache_key, None)
