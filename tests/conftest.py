"""Shared fixtures for litestar-courierhub tests."""

from __future__ import annotations

import copy
from collections.abc import Iterator
from datetime import datetime
from decimal import Decimal
from typing import Any

import httpx
import pytest
from litestar import Litestar
from litestar.testing import TestClient

from litestar_courierhub.adapters.base import BaseCourierAdapter, require_awb
from litestar_courierhub.adapters.custom import CustomCourierAdapter
from litestar_courierhub.adapters.shiprocket import ShiprocketAdapter
from litestar_courierhub.config import CourierHubConfig
from litestar_courierhub.credentials import CredentialStore
from litestar_courierhub.dispatcher import OutboundWebhookDispatcher
from litestar_courierhub.enums import (
    CourierType,
    DeliveryStatus,
    ShipmentStatus,
    WebhookEvent,
)
from litestar_courierhub.events import DomainEvent
from litestar_courierhub.exceptions import InvalidCredentialsError
from litestar_courierhub.ingestion import WebhookIngestion
from litestar_courierhub.models import (
    CourierAccount,
    InboundWebhookRecord,
    NdrCase,
    Shipment,
    WebhookDelivery,
    WebhookSubscription,
    utcnow,
)
from litestar_courierhub.ndr import NdrService
from litestar_courierhub.plugin import CourierHub, create_router_for_hub
from litestar_courierhub.rates import RateShopper
from litestar_courierhub.registry import AdapterRegistry
from litestar_courierhub.shipments import ShipmentService
from litestar_courierhub.types import (
    Address,
    CarrierEvent,
    CourierCredentials,
    CourierRate,
    PickupRequest,
    PickupResponse,
    RateRequest,
    ShipmentCreated,
    ShipmentItem,
    ShipmentRequest,
    ShipmentResult,
    TrackingResponse,
)

TENANT = "tenant-1"
SHIPROCKET_TOKEN = "sr-webhook-token"


def make_address(name: str = "Asha Verma", pincode: str = "110001") -> Address:
    return Address(
        name=name,
        phone="9876543210",
        line1="12 MG Road",
        city="New Delhi",
        state="Delhi",
        pincode=pincode,
    )


def make_request(**overrides: Any) -> ShipmentRequest:
    fields: dict[str, Any] = {
        "order_id": "order-1",
        "order_number": "ORD-0001",
        "pickup": make_address("Warehouse", "400001"),
        "delivery": make_address(),
        "weight_kg": Decimal("1.2"),
        "declared_value": Decimal("999"),
        "items": [
            ShipmentItem(name="Kurta", quantity=1, unit_price=Decimal("999"))
        ],
    }
    fields.update(overrides)
    return ShipmentRequest(**fields)


def make_rate(total: str, days: int = 3, code: str = "S") -> CourierRate:
    return CourierRate(
        service_code=code,
        service_name=f"Service {code}",
        freight_charge=Decimal(total),
        cod_charge=Decimal("0"),
        total_charge=Decimal(total),
        estimated_days=days,
    )


def _unreachable(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("no network in tests", request=request)


def offline_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(_unreachable))


class ScriptedAdapter(BaseCourierAdapter):
    """Deterministic carrier; responses are queued by the test."""

    courier_type = CourierType.DELHIVERY
    display_name = "Scripted"
    supports_awb_assignment = True

    STATUSES = {
        "PU": ShipmentStatus.PICKED_UP,
        "IT": ShipmentStatus.IN_TRANSIT,
        "OFD": ShipmentStatus.OUT_FOR_DELIVERY,
        "DL": ShipmentStatus.DELIVERED,
        "UD": ShipmentStatus.NDR_RAISED,
        "RTO": ShipmentStatus.RTO_INITIATED,
    }

    def __init__(self) -> None:
        super().__init__(offline_client())
        self.rates: list[CourierRate] = []
        self.rate_error: Exception | None = None
        self.create_results: list[ShipmentResult] = []
        self.assign_results: list[ShipmentResult] = []
        self.tracking: TrackingResponse | None = None
        self.reject_credentials = False
        self.calls: list[tuple[Any, ...]] = []
        self._awbs = 0

    def _next_awb(self) -> str:
        self._awbs += 1
        return f"AWB{self._awbs:04d}"

    async def validate_credentials(
        self, credentials: CourierCredentials
    ) -> None:
        self.calls.append(("validate", credentials.account_id))
        if self.reject_credentials:
            raise InvalidCredentialsError()

    async def get_rates(
        self, credentials: CourierCredentials, request: RateRequest
    ) -> list[CourierRate]:
        self.calls.append(("rates", request.delivery_pincode))
        if self.rate_error is not None:
            raise self.rate_error
        return list(self.rates)

    async def create_shipment(
        self, credentials: CourierCredentials, request: ShipmentRequest
    ) -> ShipmentResult:
        self.calls.append(("create", request.order_number))
        if self.create_results:
            return self.create_results.pop(0)
        return ShipmentCreated(
            tracking_number=self._next_awb(),
            external_order_id=f"ext-{request.order_number}",
            external_shipment_id="ext-shipment-1",
            courier_name="Scripted Surface",
        )

    async def assign_awb(
        self,
        credentials: CourierCredentials,
        external_shipment_id: str,
        service_code: str | None = None,
    ) -> ShipmentResult:
        self.calls.append(("assign", external_shipment_id, service_code))
        if self.assign_results:
            return self.assign_results.pop(0)
        return ShipmentCreated(
            tracking_number=self._next_awb(),
            external_shipment_id=external_shipment_id,
        )

    async def get_tracking(
        self, credentials: CourierCredentials, tracking_number: str
    ) -> TrackingResponse:
        self.calls.append(("track", tracking_number))
        return self.tracking or TrackingResponse(
            tracking_number=tracking_number, status=None, raw_status=""
        )

    async def cancel_shipment(
        self, credentials: CourierCredentials, tracking_number: str
    ) -> None:
        self.calls.append(("cancel", tracking_number))

    async def schedule_pickup(
        self, credentials: CourierCredentials, request: PickupRequest
    ) -> PickupResponse:
        self.calls.append(("pickup", tuple(request.tracking_numbers)))
        return PickupResponse(
            pickup_id="PK-1",
            scheduled_date=request.pickup_date,
            shipment_count=len(request.tracking_numbers),
            time_slot=request.time_slot,
        )

    async def get_label(
        self, credentials: CourierCredentials, tracking_number: str
    ) -> bytes:
        return b"%PDF-1.4 " + tracking_number.encode()

    def map_status(self, code: str) -> ShipmentStatus | None:
        return self.STATUSES.get(code)

    def parse_webhook(self, payload: dict[str, Any]) -> CarrierEvent:
        code = str(payload.get("status") or "")
        return CarrierEvent(
            tracking_number=require_awb(payload.get("awb"), self.display_name),
            carrier_status_code=code,
            status=self.map_status(code),
            timestamp=utcnow(),
            location=payload.get("location"),
            remarks=payload.get("remarks"),
        )

    def webhook_event_id(self, payload: dict[str, Any]) -> str | None:
        return payload.get("event_id")


class InMemoryShipmentRepository:
    def __init__(self) -> None:
        self.items: dict[str, Shipment] = {}

    def add(self, shipment: Shipment) -> Shipment:
        self.items[shipment.id] = copy.deepcopy(shipment)
        return shipment

    async def get_by_id(self, shipment_id: str) -> Shipment:
        return copy.deepcopy(self.items[shipment_id])

    async def get_by_tracking_number(
        self, tracking_number: str
    ) -> Shipment | None:
        for shipment in self.items.values():
            if tracking_number and shipment.tracking_number == tracking_number:
                return copy.deepcopy(shipment)
        return None

    async def create(self, shipment: Shipment) -> Shipment:
        return self.add(shipment)

    async def save(self, shipment: Shipment) -> Shipment:
        return self.add(shipment)


class InMemoryNdrCaseRepository:
    def __init__(self) -> None:
        self.items: dict[str, NdrCase] = {}

    async def get_by_id(self, case_id: str) -> NdrCase:
        return copy.deepcopy(self.items[case_id])

    async def get_open_for_shipment(self, shipment_id: str) -> NdrCase | None:
        for case in self.items.values():
            if case.shipment_id == shipment_id and case.is_open:
                return copy.deepcopy(case)
        return None

    async def list_for_shipment(self, shipment_id: str) -> list[NdrCase]:
        cases = [
            copy.deepcopy(case)
            for case in self.items.values()
            if case.shipment_id == shipment_id
        ]
        cases.reverse()
        return sorted(cases, key=lambda case: case.opened_at, reverse=True)

    async def create(self, case: NdrCase) -> NdrCase:
        self.items[case.id] = copy.deepcopy(case)
        return case

    async def save(self, case: NdrCase) -> NdrCase:
        self.items[case.id] = copy.deepcopy(case)
        return case


class InMemoryAccountRepository:
    def __init__(self) -> None:
        self.items: dict[str, CourierAccount] = {}

    def add(self, account: CourierAccount) -> CourierAccount:
        self.items[account.id] = account
        return account

    async def get_by_id(self, account_id: str) -> CourierAccount:
        return copy.deepcopy(self.items[account_id])

    async def list_active(
        self, tenant_id: str, courier_type: CourierType | None = None
    ) -> list[CourierAccount]:
        accounts = [
            copy.deepcopy(account)
            for account in self.items.values()
            if account.tenant_id == tenant_id
            and account.is_active
            and (courier_type is None or account.courier_type == courier_type)
        ]
        return sorted(accounts, key=lambda account: -account.priority)

    async def save(self, account: CourierAccount) -> CourierAccount:
        return self.add(copy.deepcopy(account))


class StaticCredentialSource:
    def __init__(self, secrets: dict[str, dict[str, str]]) -> None:
        self.secrets = secrets

    async def load(self, credentials_ref: str) -> dict[str, str] | None:
        return self.secrets.get(credentials_ref)


class InMemoryEventStore:
    def __init__(self) -> None:
        self.records: dict[str, InboundWebhookRecord] = {}

    async def claim(self, key: str, carrier: str) -> bool:
        if key in self.records:
            return False
        self.records[key] = InboundWebhookRecord(key=key, carrier=carrier)
        return True

    async def release(self, key: str) -> None:
        self.records.pop(key, None)

    async def prune(self, older_than: datetime) -> int:
        stale = [
            key
            for key, record in self.records.items()
            if record.processed_at < older_than
        ]
        for key in stale:
            del self.records[key]
        return len(stale)


class InMemorySubscriptionRepository:
    def __init__(self) -> None:
        self.items: dict[str, WebhookSubscription] = {}

    async def get_by_id(self, subscription_id: str) -> WebhookSubscription:
        return copy.deepcopy(self.items[subscription_id])

    async def create(
        self, subscription: WebhookSubscription
    ) -> WebhookSubscription:
        self.items[subscription.id] = copy.deepcopy(subscription)
        return subscription

    async def save(
        self, subscription: WebhookSubscription
    ) -> WebhookSubscription:
        self.items[subscription.id] = copy.deepcopy(subscription)
        return subscription

    async def list_for_tenant(
        self, tenant_id: str
    ) -> list[WebhookSubscription]:
        return [
            copy.deepcopy(subscription)
            for subscription in self.items.values()
            if subscription.tenant_id == tenant_id
        ]

    async def list_active_for_event(
        self, tenant_id: str, event: WebhookEvent
    ) -> list[WebhookSubscription]:
        return [
            copy.deepcopy(subscription)
            for subscription in self.items.values()
            if subscription.tenant_id == tenant_id
            and subscription.is_subscribed_to(event)
        ]


class InMemoryDeliveryRepository:
    def __init__(self) -> None:
        self.items: dict[str, WebhookDelivery] = {}

    async def get_by_id(self, delivery_id: str) -> WebhookDelivery:
        return copy.deepcopy(self.items[delivery_id])

    async def create(self, delivery: WebhookDelivery) -> WebhookDelivery:
        self.items[delivery.id] = copy.deepcopy(delivery)
        return delivery

    async def save(self, delivery: WebhookDelivery) -> WebhookDelivery:
        self.items[delivery.id] = copy.deepcopy(delivery)
        return delivery

    async def list_for_subscription(
        self, subscription_id: str, limit: int = 50
    ) -> list[WebhookDelivery]:
        deliveries = [
            copy.deepcopy(delivery)
            for delivery in self.items.values()
            if delivery.subscription_id == subscription_id
        ]
        deliveries.sort(key=lambda d: d.created_at, reverse=True)
        return deliveries[:limit]

    async def get_due(self, limit: int = 10) -> list[WebhookDelivery]:
        now = utcnow()
        due = [
            copy.deepcopy(delivery)
            for delivery in self.items.values()
            if delivery.status == DeliveryStatus.PENDING
            and delivery.next_retry_at is not None
            and delivery.next_retry_at <= now
        ]
        due.sort(key=lambda d: d.next_retry_at)
        return due[:limit]


class RecordingPublisher:
    def __init__(self) -> None:
        self.events: list[DomainEvent] = []

    async def publish(self, event: DomainEvent) -> None:
        self.events.append(event)

    @property
    def names(self) -> list[str]:
        return [str(event.event) for event in self.events]


@pytest.fixture()
def config() -> CourierHubConfig:
    return CourierHubConfig(
        webhook_secrets={"shiprocket": SHIPROCKET_TOKEN},
        dispatch_backoff_seconds=0.01,
    )


@pytest.fixture()
def adapter() -> ScriptedAdapter:
    return ScriptedAdapter()


@pytest.fixture()
def registry(adapter: ScriptedAdapter) -> AdapterRegistry:
    registry = AdapterRegistry()
    registry.register(adapter)
    registry.register(ShiprocketAdapter(offline_client()))
    registry.register(CustomCourierAdapter(offline_client()))
    return registry


@pytest.fixture()
def shipment_repo() -> InMemoryShipmentRepository:
    return InMemoryShipmentRepository()


@pytest.fixture()
def ndr_repo() -> InMemoryNdrCaseRepository:
    return InMemoryNdrCaseRepository()


@pytest.fixture()
def account_repo() -> InMemoryAccountRepository:
    accounts = InMemoryAccountRepository()
    accounts.add(
        CourierAccount(
            id="acct-scripted",
            tenant_id=TENANT,
            courier_type=CourierType.DELHIVERY,
            name="Scripted",
            credentials_ref="ref-scripted",
            priority=10,
            is_default=True,
        )
    )
    accounts.add(
        CourierAccount(
            id="acct-custom",
            tenant_id=TENANT,
            courier_type=CourierType.CUSTOM,
            name="Local courier",
            credentials_ref="ref-custom",
        )
    )
    return accounts


@pytest.fixture()
def credential_source() -> StaticCredentialSource:
    return StaticCredentialSource(
        {
            "ref-scripted": {"api_key": "scripted-key"},
            "ref-custom": {},
        }
    )


@pytest.fixture()
def event_store() -> InMemoryEventStore:
    return InMemoryEventStore()


@pytest.fixture()
def subscription_repo() -> InMemorySubscriptionRepository:
    return InMemorySubscriptionRepository()


@pytest.fixture()
def delivery_repo() -> InMemoryDeliveryRepository:
    return InMemoryDeliveryRepository()


@pytest.fixture()
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture()
def ndr_service(
    ndr_repo: InMemoryNdrCaseRepository,
    shipment_repo: InMemoryShipmentRepository,
    publisher: RecordingPublisher,
) -> NdrService:
    return NdrService(
        cases=ndr_repo, shipments=shipment_repo, publisher=publisher
    )


@pytest.fixture()
def shipment_service(
    shipment_repo: InMemoryShipmentRepository,
    account_repo: InMemoryAccountRepository,
    credential_source: StaticCredentialSource,
    registry: AdapterRegistry,
    ndr_service: NdrService,
    publisher: RecordingPublisher,
) -> ShipmentService:
    return ShipmentService(
        shipments=shipment_repo,
        accounts=account_repo,
        credentials=CredentialStore(credential_source),
        registry=registry,
        ndr=ndr_service,
        publisher=publisher,
    )


@pytest.fixture()
def rate_shopper(
    registry: AdapterRegistry,
    account_repo: InMemoryAccountRepository,
    credential_source: StaticCredentialSource,
) -> RateShopper:
    return RateShopper(
        registry=registry,
        accounts=account_repo,
        credentials=CredentialStore(credential_source),
    )


@pytest.fixture()
def ingestion(
    registry: AdapterRegistry,
    shipment_service: ShipmentService,
    event_store: InMemoryEventStore,
    config: CourierHubConfig,
) -> WebhookIngestion:
    return WebhookIngestion(
        registry=registry,
        shipments=shipment_service,
        event_store=event_store,
        config=config,
    )


@pytest.fixture()
def subscriber_requests() -> list[httpx.Request]:
    return []


@pytest.fixture()
def dispatcher(
    subscription_repo: InMemorySubscriptionRepository,
    delivery_repo: InMemoryDeliveryRepository,
    config: CourierHubConfig,
    subscriber_requests: list[httpx.Request],
) -> OutboundWebhookDispatcher:
    def accept(request: httpx.Request) -> httpx.Response:
        subscriber_requests.append(request)
        return httpx.Response(200, text="ok")

    return OutboundWebhookDispatcher(
        subscriptions=subscription_repo,
        deliveries=delivery_repo,
        client=httpx.AsyncClient(transport=httpx.MockTransport(accept)),
        config=config,
    )


@pytest.fixture()
def hub(
    config: CourierHubConfig,
    registry: AdapterRegistry,
    shipment_service: ShipmentService,
    ndr_service: NdrService,
    rate_shopper: RateShopper,
    ingestion: WebhookIngestion,
    dispatcher: OutboundWebhookDispatcher,
) -> CourierHub:
    return CourierHub(
        config=config,
        registry=registry,
        shipments=shipment_service,
        ndr=ndr_service,
        rates=rate_shopper,
        ingestion=ingestion,
        dispatcher=dispatcher,
        http_client=dispatcher.client,
    )


@pytest.fixture()
def test_app(hub: CourierHub) -> Litestar:
    return Litestar(route_handlers=[create_router_for_hub(hub)])


@pytest.fixture()
def client(test_app: Litestar) -> Iterator[TestClient]:
    with TestClient(app=test_app) as tc:
        yield tc


@pytest.fixture()
async def booked_shipment(shipment_service: ShipmentService) -> Shipment:
    """A shipment booked on the scripted carrier, status awb_assigned."""
    return await shipment_service.create_shipment(
        TENANT, make_request(), account_id="acct-scripted"
    )
