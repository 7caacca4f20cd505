"""Request/response schemas for HTTP endpoints."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from litestar_courierhub.enums import (
    NdrActionType,
    NdrReasonCode,
    NdrStatus,
    ShipmentStatus,
    WebhookEvent,
)
from litestar_courierhub.models import (
    NdrCase,
    Shipment,
    WebhookDelivery,
    WebhookSubscription,
)
from litestar_courierhub.types import (
    Address,
    CourierRate,
    PickupResponse,
    RateRequest,
    ShipmentItem,
    ShipmentRequest,
    TrackingResponse,
)


class AddressSchema(BaseModel):
    name: str
    phone: str
    line1: str
    city: str
    state: str
    pincode: str
    line2: str = ""
    email: str = ""
    country: str = "India"

    def to_address(self) -> Address:
        return Address(**self.model_dump())

    @classmethod
    def from_address(cls, address: Address) -> AddressSchema:
        return cls(
            name=address.name,
            phone=address.phone,
            line1=address.line1,
            city=address.city,
            state=address.state,
            pincode=address.pincode,
            line2=address.line2,
            email=address.email,
            country=address.country,
        )


class ShipmentItemSchema(BaseModel):
    name: str
    quantity: int = Field(gt=0)
    unit_price: Decimal
    sku: str | None = None


class CreateShipmentRequest(BaseModel):
    """Payload for shipment creation.

    Without ``account_id`` the shipment is stored unassigned and a
    courier can be attached later.
    """

    tenant_id: str
    order_id: str
    order_number: str
    pickup: AddressSchema
    delivery: AddressSchema
    weight_kg: Decimal = Field(gt=0)
    declared_value: Decimal = Decimal("0")
    is_cod: bool = False
    cod_amount: Decimal | None = None
    length_cm: Decimal | None = None
    width_cm: Decimal | None = None
    height_cm: Decimal | None = None
    items: list[ShipmentItemSchema] = Field(default_factory=list)
    account_id: str | None = None
    service_code: str | None = None
    is_express: bool = False

    def to_request(self) -> ShipmentRequest:
        return ShipmentRequest(
            order_id=self.order_id,
            order_number=self.order_number,
            pickup=self.pickup.to_address(),
            delivery=self.delivery.to_address(),
            weight_kg=self.weight_kg,
            declared_value=self.declared_value,
            is_cod=self.is_cod,
            cod_amount=self.cod_amount,
            length_cm=self.length_cm,
            width_cm=self.width_cm,
            height_cm=self.height_cm,
            items=[ShipmentItem(**item.model_dump()) for item in self.items],
            service_code=self.service_code,
            is_express=self.is_express,
        )


class AssignCourierRequest(BaseModel):
    account_id: str | None = None
    service_code: str | None = None
    tracking_number: str | None = None


class UpdateStatusRequest(BaseModel):
    status: ShipmentStatus
    location: str | None = None
    remarks: str | None = None


class CancelShipmentRequest(BaseModel):
    reason: str | None = None


class RateQuoteRequest(BaseModel):
    tenant_id: str
    pickup_pincode: str
    delivery_pincode: str
    weight_kg: Decimal = Field(gt=0)
    is_cod: bool = False
    cod_amount: Decimal | None = None
    declared_value: Decimal | None = None
    length_cm: Decimal | None = None
    width_cm: Decimal | None = None
    height_cm: Decimal | None = None

    def to_request(self) -> RateRequest:
        return RateRequest(**self.model_dump(exclude={"tenant_id"}))


class CourierRateResponse(BaseModel):
    courier_type: str
    account_id: str
    service_code: str
    service_name: str
    freight_charge: Decimal
    cod_charge: Decimal
    total_charge: Decimal
    estimated_days: int
    expected_delivery: datetime | None = None
    is_express: bool
    is_surface: bool

    @classmethod
    def from_rate(cls, rate: CourierRate) -> CourierRateResponse:
        return cls(
            courier_type=rate.courier_type,
            account_id=rate.account_id,
            service_code=rate.service_code,
            service_name=rate.service_name,
            freight_charge=rate.freight_charge,
            cod_charge=rate.cod_charge,
            total_charge=rate.total_charge,
            estimated_days=rate.estimated_days,
            expected_delivery=rate.expected_delivery,
            is_express=rate.is_express,
            is_surface=rate.is_surface,
        )


class StatusHistoryResponse(BaseModel):
    status: str
    timestamp: datetime
    source: str
    location: str | None
    remarks: str | None


class ShipmentResponse(BaseModel):
    """Serialized shipment response payload."""

    id: str
    tenant_id: str
    order_id: str
    status: str
    courier_account_id: str | None
    courier_type: str | None
    courier_name: str | None
    tracking_number: str
    retired_awbs: list[str]
    awb_error: str | None
    external_order_id: str | None
    external_shipment_id: str | None
    label_url: str | None
    tracking_url: str | None
    is_cod: bool
    weight_kg: Decimal
    expected_delivery: datetime | None
    picked_up_at: datetime | None
    delivered_at: datetime | None
    history: list[StatusHistoryResponse]

    @classmethod
    def from_shipment(cls, shipment: Shipment) -> ShipmentResponse:
        return cls(
            id=shipment.id,
            tenant_id=shipment.tenant_id,
            order_id=shipment.order_id,
            status=str(shipment.status),
            courier_account_id=shipment.courier_account_id,
            courier_type=(
                str(shipment.courier_type) if shipment.courier_type else None
            ),
            courier_name=shipment.courier_name,
            tracking_number=shipment.tracking_number,
            retired_awbs=list(shipment.retired_awbs),
            awb_error=shipment.awb_error,
            external_order_id=shipment.external_order_id,
            external_shipment_id=shipment.external_shipment_id,
            label_url=shipment.label_url,
            tracking_url=shipment.tracking_url,
            is_cod=shipment.is_cod,
            weight_kg=shipment.weight_kg,
            expected_delivery=shipment.expected_delivery,
            picked_up_at=shipment.picked_up_at,
            delivered_at=shipment.delivered_at,
            history=[
                StatusHistoryResponse(
                    status=str(entry.status),
                    timestamp=entry.timestamp,
                    source=str(entry.source),
                    location=entry.location,
                    remarks=entry.remarks,
                )
                for entry in shipment.history
            ],
        )


class TrackingEventResponse(BaseModel):
    timestamp: datetime
    status: str
    location: str | None
    remarks: str | None


class TrackingResponseSchema(BaseModel):
    tracking_number: str
    status: str | None
    raw_status: str
    current_location: str | None
    expected_delivery: datetime | None
    delivered_at: datetime | None
    delivered_to: str | None
    events: list[TrackingEventResponse]

    @classmethod
    def from_tracking(cls, tracking: TrackingResponse) -> TrackingResponseSchema:
        return cls(
            tracking_number=tracking.tracking_number,
            status=str(tracking.status) if tracking.status else None,
            raw_status=tracking.raw_status,
            current_location=tracking.current_location,
            expected_delivery=tracking.expected_delivery,
            delivered_at=tracking.delivered_at,
            delivered_to=tracking.delivered_to,
            events=[
                TrackingEventResponse(
                    timestamp=event.timestamp,
                    status=event.status,
                    location=event.location,
                    remarks=event.remarks,
                )
                for event in tracking.events
            ],
        )


class SchedulePickupRequest(BaseModel):
    shipment_ids: list[str] = Field(min_length=1)
    pickup_date: datetime
    time_slot: str | None = None
    warehouse_id: str | None = None


class PickupResponseSchema(BaseModel):
    pickup_id: str | None
    scheduled_date: datetime
    shipment_count: int
    time_slot: str | None

    @classmethod
    def from_pickup(cls, pickup: PickupResponse) -> PickupResponseSchema:
        return cls(
            pickup_id=pickup.pickup_id,
            scheduled_date=pickup.scheduled_date,
            shipment_count=pickup.shipment_count,
            time_slot=pickup.time_slot,
        )


class ValidateAccountResponse(BaseModel):
    account_id: str
    valid: bool


# NDR


class RaiseNdrRequest(BaseModel):
    shipment_id: str
    reason_code: NdrReasonCode
    remarks: str | None = None
    author: str | None = None


class AssignNdrRequest(BaseModel):
    agent: str = Field(min_length=1)
    assigned_by: str | None = None


class LogNdrActionRequest(BaseModel):
    action_type: NdrActionType
    performed_by: str | None = None
    details: str | None = None
    outcome: str | None = None
    call_duration_seconds: int | None = Field(default=None, ge=0)


class AddNdrRemarkRequest(BaseModel):
    text: str = Field(min_length=1)
    author: str | None = None


class ScheduleReattemptRequest(BaseModel):
    reattempt_at: datetime
    corrected_address: AddressSchema | None = None
    performed_by: str | None = None


class UpdateNdrOutcomeRequest(BaseModel):
    outcome: NdrStatus
    resolution: str = Field(min_length=1)
    performed_by: str | None = None


class NdrActionResponse(BaseModel):
    action_type: str
    performed_by: str | None
    performed_at: datetime
    details: str | None
    outcome: str | None
    call_duration_seconds: int | None


class NdrRemarkResponse(BaseModel):
    text: str
    author: str | None
    created_at: datetime


class NdrCaseResponse(BaseModel):
    id: str
    tenant_id: str
    shipment_id: str
    tracking_number: str
    status: str
    reason_code: str
    reason_description: str | None
    assigned_to: str | None
    attempt_count: int
    next_follow_up_at: datetime | None
    corrected_address: AddressSchema | None
    resolution: str | None
    resolved_at: datetime | None
    opened_at: datetime
    actions: list[NdrActionResponse]
    remarks: list[NdrRemarkResponse]

    @classmethod
    def from_case(cls, case: NdrCase) -> NdrCaseResponse:
        return cls(
            id=case.id,
            tenant_id=case.tenant_id,
            shipment_id=case.shipment_id,
            tracking_number=case.tracking_number,
            status=str(case.status),
            reason_code=str(case.reason_code),
            reason_description=case.reason_description,
            assigned_to=case.assigned_to,
            attempt_count=case.attempt_count,
            next_follow_up_at=case.next_follow_up_at,
            corrected_address=(
                AddressSchema.from_address(case.corrected_address)
                if case.corrected_address
                else None
            ),
            resolution=case.resolution,
            resolved_at=case.resolved_at,
            opened_at=case.opened_at,
            actions=[
                NdrActionResponse(
                    action_type=str(action.action_type),
                    performed_by=action.performed_by,
                    performed_at=action.performed_at,
                    details=action.details,
                    outcome=action.outcome,
                    call_duration_seconds=action.call_duration_seconds,
                )
                for action in case.actions
            ],
            remarks=[
                NdrRemarkResponse(
                    text=remark.text,
                    author=remark.author,
                    created_at=remark.created_at,
                )
                for remark in case.remarks
            ],
        )


# Webhooks


class WebhookAck(BaseModel):
    """Body returned to carriers for every inbound webhook."""

    success: bool
    message: str


class CreateSubscriptionRequest(BaseModel):
    tenant_id: str
    name: str
    url: str
    events: list[WebhookEvent]
    secret: str | None = None
    max_retries: int | None = Field(default=None, ge=0, le=10)
    timeout_seconds: float | None = Field(default=None, gt=0, le=120)
    headers: dict[str, str] = Field(default_factory=dict)


class UpdateSubscriptionRequest(BaseModel):
    """Fields left out keep their current value."""

    name: str | None = None
    url: str | None = None
    events: list[WebhookEvent] | None = None
    headers: dict[str, str] | None = None
    max_retries: int | None = Field(default=None, ge=0, le=10)
    timeout_seconds: float | None = Field(default=None, gt=0, le=120)
    is_active: bool | None = None


class SubscriptionResponse(BaseModel):
    id: str
    tenant_id: str
    name: str
    url: str
    events: list[str]
    max_retries: int
    timeout_seconds: float
    is_active: bool
    total_deliveries: int
    successful_deliveries: int
    failed_deliveries: int
    last_triggered_at: datetime | None

    @classmethod
    def from_subscription(
        cls, subscription: WebhookSubscription
    ) -> SubscriptionResponse:
        return cls(
            id=subscription.id,
            tenant_id=subscription.tenant_id,
            name=subscription.name,
            url=subscription.url,
            events=[str(event) for event in subscription.events],
            max_retries=subscription.max_retries,
            timeout_seconds=subscription.timeout_seconds,
            is_active=subscription.is_active,
            total_deliveries=subscription.total_deliveries,
            successful_deliveries=subscription.successful_deliveries,
            failed_deliveries=subscription.failed_deliveries,
            last_triggered_at=subscription.last_triggered_at,
        )


class SubscriptionCreatedResponse(SubscriptionResponse):
    """Returned on creation and secret rotation, the only times it is shown."""

    secret: str

    @classmethod
    def from_subscription(
        cls, subscription: WebhookSubscription
    ) -> SubscriptionCreatedResponse:
        base = SubscriptionResponse.from_subscription(subscription)
        return cls(**base.model_dump(), secret=subscription.secret)


class WebhookTestRequest(BaseModel):
    url: str
    secret: str | None = None
    timeout_seconds: float = Field(default=10.0, gt=0, le=60)


class WebhookTestResponse(BaseModel):
    success: bool
    status_code: int | None
    duration_ms: float
    response_body: str | None
    error: str | None


class WebhookDeliveryResponse(BaseModel):
    id: str
    subscription_id: str
    event: str
    status: str
    attempt_count: int
    last_status_code: int | None
    last_error: str | None
    response_body: str | None
    duration_ms: float | None
    next_retry_at: datetime | None
    created_at: datetime
    delivered_at: datetime | None

    @classmethod
    def from_delivery(cls, delivery: WebhookDelivery) -> WebhookDeliveryResponse:
        return cls(
            id=delivery.id,
            subscription_id=delivery.subscription_id,
            event=str(delivery.event),
            status=str(delivery.status),
            attempt_count=delivery.attempt_count,
            last_status_code=delivery.last_status_code,
            last_error=delivery.last_error,
            response_body=delivery.response_body,
            duration_ms=delivery.duration_ms,
            next_retry_at=delivery.next_retry_at,
            created_at=delivery.created_at,
            delivered_at=delivery.delivered_at,
        )
