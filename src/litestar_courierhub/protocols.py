"""Persistence and collaborator protocols consumed by the core."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from litestar_courierhub.enums import CourierType, WebhookEvent
from litestar_courierhub.models import (
    CourierAccount,
    NdrCase,
    Shipment,
    WebhookDelivery,
    WebhookSubscription,
)

if TYPE_CHECKING:
    from litestar_courierhub.events import DomainEvent

__all__ = [
    "CourierAccountRepository",
    "CredentialSource",
    "EventPublisher",
    "InboundEventStore",
    "NdrCaseRepository",
    "ShipmentRepository",
    "WebhookDeliveryRepository",
    "WebhookSubscriptionRepository",
]


@runtime_checkable
class CredentialSource(Protocol):
    """Loads secret material for an opaque credential reference."""

    async def load(self, credentials_ref: str) -> dict[str, str] | None:
        """Return the secret mapping, or None if the reference is unknown."""
        ...


@runtime_checkable
class CourierAccountRepository(Protocol):
    async def get_by_id(self, account_id: str) -> CourierAccount:
        """Get an account by ID. Raises KeyError if not found."""
        ...

    async def list_active(
        self, tenant_id: str, courier_type: CourierType | None = None
    ) -> list[CourierAccount]:
        """Active accounts for a tenant, highest priority first."""
        ...

    async def save(self, account: CourierAccount) -> CourierAccount: ...


@runtime_checkable
class ShipmentRepository(Protocol):
    """Storage for shipments.

    ``save`` is an atomic read-modify-write of one aggregate; callers
    serialize writes per shipment id.
    """

    async def get_by_id(self, shipment_id: str) -> Shipment:
        """Get a shipment by ID. Raises KeyError if not found."""
        ...

    async def get_by_tracking_number(
        self, tracking_number: str
    ) -> Shipment | None:
        """Find the shipment whose active AWB matches."""
        ...

    async def create(self, shipment: Shipment) -> Shipment: ...

    async def save(self, shipment: Shipment) -> Shipment: ...


@runtime_checkable
class NdrCaseRepository(Protocol):
    async def get_by_id(self, case_id: str) -> NdrCase:
        """Get a case by ID. Raises KeyError if not found."""
        ...

    async def get_open_for_shipment(self, shipment_id: str) -> NdrCase | None:
        """The open case for a shipment, if any."""
        ...

    async def list_for_shipment(self, shipment_id: str) -> list[NdrCase]:
        """Every case raised for a shipment, newest first."""
        ...

    async def create(self, case: NdrCase) -> NdrCase: ...

    async def save(self, case: NdrCase) -> NdrCase: ...


@runtime_checkable
class InboundEventStore(Protocol):
    """Idempotency ledger for inbound carrier webhooks.

    Full lifecycle: claim -> (release on failure) -> prune.
    """

    async def claim(self, key: str, carrier: str) -> bool:
        """Record a key. Returns False if it was already recorded."""
        ...

    async def release(self, key: str) -> None:
        """Forget a key so a carrier redelivery is processed again."""
        ...

    async def prune(self, older_than: datetime) -> int:
        """Delete records processed before ``older_than``."""
        ...


@runtime_checkable
class WebhookSubscriptionRepository(Protocol):
    async def get_by_id(self, subscription_id: str) -> WebhookSubscription:
        """Get a subscription by ID. Raises KeyError if not found."""
        ...

    async def create(
        self, subscription: WebhookSubscription
    ) -> WebhookSubscription: ...

    async def save(
        self, subscription: WebhookSubscription
    ) -> WebhookSubscription: ...

    async def list_for_tenant(
        self, tenant_id: str
    ) -> list[WebhookSubscription]: ...

    async def list_active_for_event(
        self, tenant_id: str, event: WebhookEvent
    ) -> list[WebhookSubscription]: ...


@runtime_checkable
class WebhookDeliveryRepository(Protocol):
    async def get_by_id(self, delivery_id: str) -> WebhookDelivery:
        """Get a delivery by ID. Raises KeyError if not found."""
        ...

    async def create(self, delivery: WebhookDelivery) -> WebhookDelivery: ...

    async def save(self, delivery: WebhookDelivery) -> WebhookDelivery: ...

    async def list_for_subscription(
        self, subscription_id: str, limit: int = 50
    ) -> list[WebhookDelivery]:
        """Newest first."""
        ...

    async def get_due(self, limit: int = 10) -> list[WebhookDelivery]:
        """Pending deliveries whose next_retry_at has passed."""
        ...


@runtime_checkable
class EventPublisher(Protocol):
    async def publish(self, event: DomainEvent) -> None: ...
