"""Domain aggregates owned by the integration core.

These are plain dataclasses; persistence is delegated to repositories
implementing :mod:`litestar_courierhub.protocols`.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal

from litestar_courierhub.enums import (
    CourierType,
    DeliveryStatus,
    NdrActionType,
    NdrReasonCode,
    NdrStatus,
    ShipmentStatus,
    TransitionSource,
    WebhookEvent,
)
from litestar_courierhub.types import Address, ShipmentCreated, ShipmentItem


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(tz=UTC)


@dataclass
class CourierAccount:
    """Tenant-scoped carrier configuration.

    ``credentials_ref`` is an opaque handle resolved by the credential
    store; plaintext secrets never live on the account.
    """

    tenant_id: str
    courier_type: CourierType
    name: str
    credentials_ref: str
    id: str = field(default_factory=new_id)
    priority: int = 0
    is_default: bool = False
    is_active: bool = True
    settings: dict[str, str] = field(default_factory=dict)

    def deactivate(self) -> None:
        self.is_active = False

    def activate(self) -> None:
        self.is_active = True


@dataclass(frozen=True)
class StatusHistoryEntry:
    status: ShipmentStatus
    timestamp: datetime
    source: TransitionSource
    location: str | None = None
    remarks: str | None = None


@dataclass
class Shipment:
    tenant_id: str
    order_id: str
    pickup_address: Address
    delivery_address: Address
    weight_kg: Decimal
    id: str = field(default_factory=new_id)
    order_number: str = ""
    status: ShipmentStatus = ShipmentStatus.CREATED
    courier_account_id: str | None = None
    courier_type: CourierType | None = None
    tracking_number: str = ""
    retired_awbs: list[str] = field(default_factory=list)
    external_order_id: str | None = None
    external_shipment_id: str | None = None
    courier_name: str | None = None
    awb_error: str | None = None
    label_url: str | None = None
    tracking_url: str | None = None
    length_cm: Decimal | None = None
    width_cm: Decimal | None = None
    height_cm: Decimal | None = None
    is_cod: bool = False
    cod_amount: Decimal | None = None
    declared_value: Decimal = Decimal("0")
    items: list[ShipmentItem] = field(default_factory=list)
    expected_delivery: datetime | None = None
    picked_up_at: datetime | None = None
    delivered_at: datetime | None = None
    history: list[StatusHistoryEntry] = field(default_factory=list)
    version: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def retire_awb(self) -> None:
        """Move the active AWB into history; at most one AWB is active."""
        if self.tracking_number:
            self.retired_awbs.append(self.tracking_number)
            self.tracking_number = ""

    def apply_awb(self, result: ShipmentCreated) -> None:
        self.retire_awb()
        self.tracking_number = result.tracking_number
        self.courier_name = result.courier_name or self.courier_name
        self.label_url = result.label_url
        self.tracking_url = result.tracking_url
        self.expected_delivery = result.expected_delivery
        if result.external_order_id:
            self.external_order_id = result.external_order_id
        if result.external_shipment_id:
            self.external_shipment_id = result.external_shipment_id
        self.awb_error = None


@dataclass
class NdrAction:
    action_type: NdrActionType
    performed_by: str | None
    performed_at: datetime = field(default_factory=utcnow)
    details: str | None = None
    outcome: str | None = None
    call_duration_seconds: int | None = None


@dataclass
class NdrRemark:
    text: str
    author: str | None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class NdrCase:
    tenant_id: str
    shipment_id: str
    tracking_number: str
    reason_code: NdrReasonCode
    id: str = field(default_factory=new_id)
    reason_description: str | None = None
    status: NdrStatus = NdrStatus.OPEN
    assigned_to: str | None = None
    assigned_at: datetime | None = None
    attempt_count: int = 1
    actions: list[NdrAction] = field(default_factory=list)
    remarks: list[NdrRemark] = field(default_factory=list)
    next_follow_up_at: datetime | None = None
    corrected_address: Address | None = None
    resolution: str | None = None
    resolved_at: datetime | None = None
    opened_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    version: int = 0

    @property
    def is_open(self) -> bool:
        return self.status not in (NdrStatus.RESOLVED, NdrStatus.ESCALATED)


@dataclass
class InboundWebhookRecord:
    key: str
    carrier: str
    processed_at: datetime = field(default_factory=utcnow)


@dataclass
class WebhookSubscription:
    tenant_id: str
    name: str
    url: str
    secret: str = field(repr=False)
    events: list[WebhookEvent]
    id: str = field(default_factory=new_id)
    max_retries: int = 3
    timeout_seconds: float = 30.0
    is_active: bool = True
    headers: dict[str, str] = field(default_factory=dict)
    total_deliveries: int = 0
    successful_deliveries: int = 0
    failed_deliveries: int = 0
    last_triggered_at: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)

    def is_subscribed_to(self, event: WebhookEvent) -> bool:
        return self.is_active and event in self.events

    def record_delivery(self, success: bool) -> None:
        self.total_deliveries += 1
        self.last_triggered_at = utcnow()
        if success:
            self.successful_deliveries += 1
        else:
            self.failed_deliveries += 1


@dataclass
class WebhookDelivery:
    """Outbound attempt log for one event sent to one subscription."""

    subscription_id: str
    tenant_id: str
    event: WebhookEvent
    payload: str
    id: str = field(default_factory=new_id)
    status: DeliveryStatus = DeliveryStatus.PENDING
    attempt_count: int = 0
    last_status_code: int | None = None
    last_error: str | None = None
    response_body: str | None = None
    duration_ms: float | None = None
    next_retry_at: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)
    delivered_at: datetime | None = None

    def mark_delivered(
        self, status_code: int, response_body: str | None, duration_ms: float
    ) -> None:
        self.attempt_count += 1
        self.status = DeliveryStatus.DELIVERED
        self.last_status_code = status_code
        self.response_body = response_body
        self.duration_ms = duration_ms
        self.last_error = None
        self.next_retry_at = None
        self.delivered_at = utcnow()

    def mark_attempt_failed(
        self,
        error: str,
        status_code: int | None,
        response_body: str | None,
        duration_ms: float,
        next_retry_at: datetime | None,
    ) -> None:
        self.attempt_count += 1
        self.last_error = error
        self.last_status_code = status_code
        self.response_body = response_body
        self.duration_ms = duration_ms
        self.next_retry_at = next_retry_at

    def mark_exhausted(self) -> None:
        self.status = DeliveryStatus.EXHAUSTED
        self.next_retry_at = None

    def mark_failed(self, reason: str) -> None:
        """Stop without exhausting retries, e.g. subscription deactivated."""
        self.status = DeliveryStatus.FAILED
        self.last_error = reason
        self.next_retry_at = None
