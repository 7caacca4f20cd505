"""Litestar example app wiring litestar-courierhub to SQLite.

Run with ``litestar --app example.app:app run``. Courier secrets are read
from environment variables named after the account's ``credentials_ref``,
e.g. ``DEMO_SHIPROCKET_API_KEY`` and ``DEMO_SHIPROCKET_API_SECRET``.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from litestar import Litestar
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from litestar_courierhub.config import CourierHubConfig
from litestar_courierhub.contrib.sqlalchemy.event_store import (
    SQLAlchemyInboundEventStore,
)
from litestar_courierhub.contrib.sqlalchemy.models import Base
from litestar_courierhub.contrib.sqlalchemy.repository import (
    SQLAlchemyCourierAccountRepository,
    SQLAlchemyNdrCaseRepository,
    SQLAlchemyShipmentRepository,
    SQLAlchemyWebhookDeliveryRepository,
    SQLAlchemyWebhookSubscriptionRepository,
)
from litestar_courierhub.enums import CourierType
from litestar_courierhub.models import CourierAccount
from litestar_courierhub.plugin import CourierHub, create_router_for_hub
from litestar_courierhub.retry import process_due_deliveries

DATABASE_URL = os.environ.get(
    "COURIERHUB_DATABASE_URL", "sqlite+aiosqlite:///courierhub_example.db"
)
DEMO_TENANT = "demo"

logging.basicConfig(level=logging.INFO)

engine = create_async_engine(DATABASE_URL)
sessions = async_sessionmaker(engine, expire_on_commit=False)


class EnvCredentialSource:
    """Secrets from ``<REF>_API_KEY`` style environment variables."""

    FIELDS = ("api_key", "api_secret", "account_code", "channel_id")

    async def load(self, credentials_ref: str) -> dict[str, str] | None:
        prefix = credentials_ref.upper()
        secrets = {
            field: os.environ[f"{prefix}_{field.upper()}"]
            for field in self.FIELDS
            if f"{prefix}_{field.upper()}" in os.environ
        }
        return secrets or None


accounts = SQLAlchemyCourierAccountRepository(sessions)
hub = CourierHub.build(
    config=CourierHubConfig(),
    shipment_repository=SQLAlchemyShipmentRepository(sessions),
    ndr_repository=SQLAlchemyNdrCaseRepository(sessions),
    account_repository=accounts,
    credential_source=EnvCredentialSource(),
    event_store=SQLAlchemyInboundEventStore(sessions),
    subscription_repository=SQLAlchemyWebhookSubscriptionRepository(sessions),
    delivery_repository=SQLAlchemyWebhookDeliveryRepository(sessions),
)


async def seed_accounts() -> None:
    await accounts.save(
        CourierAccount(
            id="demo-shiprocket",
            tenant_id=DEMO_TENANT,
            courier_type=CourierType.SHIPROCKET,
            name="Shiprocket",
            credentials_ref="demo_shiprocket",
            priority=10,
            is_default=True,
        )
    )
    await accounts.save(
        CourierAccount(
            id="demo-custom",
            tenant_id=DEMO_TENANT,
            courier_type=CourierType.CUSTOM,
            name="Local courier",
            credentials_ref="demo_custom",
        )
    )


@asynccontextmanager
async def lifespan(app: Litestar) -> AsyncGenerator[None, None]:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await seed_accounts()
    resumed = asyncio.create_task(
        process_due_deliveries(
            dispatcher=hub.dispatcher, deliveries=hub.dispatcher.deliveries
        )
    )
    try:
        yield
    finally:
        await resumed
        await hub.ingestion.prune()
        await hub.aclose()
        await engine.dispose()


app = Litestar(
    route_handlers=[create_router_for_hub(hub)],
    lifespan=[lifespan],
)
