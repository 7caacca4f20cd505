"""Router factory for litestar-courierhub."""

from __future__ import annotations

from dataclasses import dataclass

import httpx
from litestar import Router
from litestar.di import Provide

from litestar_courierhub.config import CourierHubConfig
from litestar_courierhub.credentials import CredentialStore
from litestar_courierhub.dispatcher import OutboundWebhookDispatcher
from litestar_courierhub.exceptions import EXCEPTION_HANDLERS
from litestar_courierhub.ingestion import WebhookIngestion
from litestar_courierhub.ndr import NdrService
from litestar_courierhub.protocols import (
    CourierAccountRepository,
    CredentialSource,
    InboundEventStore,
    NdrCaseRepository,
    ShipmentRepository,
    WebhookDeliveryRepository,
    WebhookSubscriptionRepository,
)
from litestar_courierhub.rates import RateShopper
from litestar_courierhub.registry import AdapterRegistry
from litestar_courierhub.routes.ndr import NdrController
from litestar_courierhub.routes.shipments import (
    CourierAccountController,
    ShipmentController,
)
from litestar_courierhub.routes.subscriptions import SubscriptionController
from litestar_courierhub.routes.webhooks import WebhookController
from litestar_courierhub.shipments import ShipmentService


@dataclass
class CourierHub:
    """The wired services behind the HTTP routes.

    Usable on its own from workers or scripts that do not serve HTTP.
    Call :meth:`aclose` on shutdown; it closes the HTTP client only when
    the hub created it.
    """

    config: CourierHubConfig
    registry: AdapterRegistry
    shipments: ShipmentService
    ndr: NdrService
    rates: RateShopper
    ingestion: WebhookIngestion
    dispatcher: OutboundWebhookDispatcher
    http_client: httpx.AsyncClient
    owns_http_client: bool = False

    @classmethod
    def build(
        cls,
        *,
        config: CourierHubConfig,
        shipment_repository: ShipmentRepository,
        ndr_repository: NdrCaseRepository,
        account_repository: CourierAccountRepository,
        credential_source: CredentialSource,
        event_store: InboundEventStore,
        subscription_repository: WebhookSubscriptionRepository,
        delivery_repository: WebhookDeliveryRepository,
        http_client: httpx.AsyncClient | None = None,
        registry: AdapterRegistry | None = None,
    ) -> CourierHub:
        client = http_client or httpx.AsyncClient()
        actual_registry = registry or AdapterRegistry.from_config(
            config, client
        )
        credentials = CredentialStore(credential_source)
        dispatcher = OutboundWebhookDispatcher(
            subscriptions=subscription_repository,
            deliveries=delivery_repository,
            client=client,
            config=config,
        )
        ndr = NdrService(
            cases=ndr_repository,
            shipments=shipment_repository,
            publisher=dispatcher,
        )
        shipments = ShipmentService(
            shipments=shipment_repository,
            accounts=account_repository,
            credentials=credentials,
            registry=actual_registry,
            ndr=ndr,
            publisher=dispatcher,
        )
        return cls(
            config=config,
            registry=actual_registry,
            shipments=shipments,
            ndr=ndr,
            rates=RateShopper(
                registry=actual_registry,
                accounts=account_repository,
                credentials=credentials,
            ),
            ingestion=WebhookIngestion(
                registry=actual_registry,
                shipments=shipments,
                event_store=event_store,
                config=config,
            ),
            dispatcher=dispatcher,
            http_client=client,
            owns_http_client=http_client is None,
        )

    async def aclose(self) -> None:
        """Stop subscriber deliveries and release the client."""
        await self.dispatcher.shutdown()
        if self.owns_http_client and not self.http_client.is_closed:
            await self.http_client.aclose()


def create_courier_router(
    *,
    config: CourierHubConfig,
    shipment_repository: ShipmentRepository,
    ndr_repository: NdrCaseRepository,
    account_repository: CourierAccountRepository,
    credential_source: CredentialSource,
    event_store: InboundEventStore,
    subscription_repository: WebhookSubscriptionRepository,
    delivery_repository: WebhookDeliveryRepository,
    http_client: httpx.AsyncClient | None = None,
    registry: AdapterRegistry | None = None,
) -> Router:
    """Create a configured Litestar router.

    Args:
        config: Courier hub configuration.
        shipment_repository: Shipment persistence backend.
        ndr_repository: NDR case persistence backend.
        account_repository: Courier account lookup.
        credential_source: Loads secrets for a courier account.
        event_store: Inbound webhook idempotency ledger.
        subscription_repository: Outbound webhook subscriptions.
        delivery_repository: Outbound delivery attempt log.
        http_client: Shared client for carrier and subscriber calls.
            Creates one if not provided. The wired hub is kept in the
            router's ``opt["courier_hub"]``; register its ``aclose`` as an
            ``on_shutdown`` hook to close a client created here.
        registry: Adapter registry. Built from ``config`` if not provided.

    Returns:
        A Litestar Router with webhook, shipment, NDR and subscription
        endpoints.
    """
    hub = CourierHub.build(
        config=config,
        shipment_repository=shipment_repository,
        ndr_repository=ndr_repository,
        account_repository=account_repository,
        credential_source=credential_source,
        event_store=event_store,
        subscription_repository=subscription_repository,
        delivery_repository=delivery_repository,
        http_client=http_client,
        registry=registry,
    )
    return create_router_for_hub(hub)


def create_router_for_hub(hub: CourierHub) -> Router:
    """Router over an already wired :class:`CourierHub`."""
    return Router(
        path="/",
        route_handlers=[
            WebhookController,
            ShipmentController,
            CourierAccountController,
            NdrController,
            SubscriptionController,
        ],
        dependencies={
            "config": Provide(lambda: hub.config, sync_to_thread=False),
            "shipment_service": Provide(
                lambda: hub.shipments, sync_to_thread=False
            ),
            "ndr_service": Provide(lambda: hub.ndr, sync_to_thread=False),
            "rate_shopper": Provide(lambda: hub.rates, sync_to_thread=False),
            "ingestion": Provide(lambda: hub.ingestion, sync_to_thread=False),
            "dispatcher": Provide(
                lambda: hub.dispatcher, sync_to_thread=False
            ),
        },
        exception_handlers=EXCEPTION_HANDLERS,
        opt={"courier_hub": hub},
    )
