"""Rate shopping across a tenant's courier accounts."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace

from litestar_courierhub.credentials import CredentialStore
from litestar_courierhub.exceptions import (
    CourierAccountNotFoundError,
    CourierHubError,
    TransportError,
)
from litestar_courierhub.models import CourierAccount
from litestar_courierhub.protocols import CourierAccountRepository
from litestar_courierhub.registry import AdapterRegistry
from litestar_courierhub.types import CourierRate, RateRequest

logger = logging.getLogger(__name__)


class RateShopper:
    """Query every active account concurrently and rank the results.

    A carrier that fails (bad credentials, timeout) is logged and left out
    of the ranking; the other carriers' quotes are still returned. An
    empty list means the carriers that answered cannot serve the route.
    When every quoted carrier fails, :class:`TransportError` is raised
    instead, so an outage is never reported as an unserviceable route.
    """

    def __init__(
        self,
        *,
        registry: AdapterRegistry,
        accounts: CourierAccountRepository,
        credentials: CredentialStore,
    ) -> None:
        self.registry = registry
        self.accounts = accounts
        self.credentials = credentials

    async def _quote(
        self, account: CourierAccount, request: RateRequest
    ) -> list[CourierRate] | None:
        """Rates for one account; None when it was skipped."""
        adapter = self.registry.get(account.courier_type)
        try:
            creds = await self.credentials.resolve(account)
        except CourierAccountNotFoundError:
            logger.warning(
                "No credentials for %s account %s, not quoted",
                account.courier_type,
                account.id,
            )
            return None
        rates = await adapter.get_rates(creds, request)
        return [
            replace(
                rate,
                courier_type=str(account.courier_type),
                account_id=account.id,
            )
            for rate in rates
        ]

    async def get_available_couriers(
        self, tenant_id: str, request: RateRequest
    ) -> list[CourierRate]:
        accounts = await self.accounts.list_active(tenant_id)
        if not accounts:
            return []
        results = await asyncio.gather(
            *(self._quote(account, request) for account in accounts),
            return_exceptions=True,
        )

        merged: list[CourierRate] = []
        failed: list[str] = []
        answered = 0
        for account, result in zip(accounts, results):
            if isinstance(result, CourierHubError):
                logger.warning(
                    "Rate quote from %s account %s failed: %s",
                    account.courier_type,
                    account.id,
                    result,
                )
                failed.append(str(account.courier_type))
            elif isinstance(result, BaseException):
                raise result
            elif result is not None:
                answered += 1
                merged.extend(result)

        if failed and not answered:
            raise TransportError(
                "No courier answered the rate request: " + ", ".join(failed)
            )
        merged.sort(key=lambda rate: (rate.total_charge, rate.estimated_days))
        logger.info(
            "Rate shopping for tenant %s: %d options from %d accounts",
            tenant_id,
            len(merged),
            answered,
        )
        return merged
