"""Value types exchanged with courier adapters."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from litestar_courierhub.enums import ShipmentStatus


@dataclass
class CourierCredentials:
    """Resolved secrets for one courier account.

    Secret fields are excluded from ``repr`` so credentials can be passed
    through logging calls safely.
    """

    tenant_id: str
    account_id: str
    api_key: str | None = field(default=None, repr=False)
    api_secret: str | None = field(default=None, repr=False)
    access_token: str | None = field(default=None, repr=False)
    account_code: str | None = None
    channel_id: str | None = None
    settings: dict[str, str] = field(default_factory=dict)

    @property
    def cache_key(self) -> tuple[str, str]:
        return (self.tenant_id, self.account_id)


@dataclass
class AccessToken:
    value: str = field(repr=False)
    expires_at: datetime


@dataclass
class RateRequest:
    pickup_pincode: str
    delivery_pincode: str
    weight_kg: Decimal
    is_cod: bool = False
    cod_amount: Decimal | None = None
    declared_value: Decimal | None = None
    length_cm: Decimal | None = None
    width_cm: Decimal | None = None
    height_cm: Decimal | None = None


@dataclass
class CourierRate:
    service_code: str
    service_name: str
    freight_charge: Decimal
    cod_charge: Decimal
    total_charge: Decimal
    estimated_days: int
    expected_delivery: datetime | None = None
    is_express: bool = False
    is_surface: bool = False
    courier_type: str = ""
    account_id: str = ""


@dataclass
class Address:
    name: str
    phone: str
    line1: str
    city: str
    state: str
    pincode: str
    line2: str = ""
    email: str = ""
    country: str = "India"


@dataclass
class ShipmentItem:
    name: str
    quantity: int
    unit_price: Decimal
    sku: str | None = None


@dataclass
class ShipmentRequest:
    order_id: str
    order_number: str
    pickup: Address
    delivery: Address
    weight_kg: Decimal
    declared_value: Decimal
    is_cod: bool = False
    cod_amount: Decimal | None = None
    length_cm: Decimal | None = None
    width_cm: Decimal | None = None
    height_cm: Decimal | None = None
    items: list[ShipmentItem] = field(default_factory=list)
    service_code: str | None = None
    is_express: bool = False


@dataclass
class ShipmentCreated:
    """Carrier created the shipment and assigned a tracking number."""

    tracking_number: str
    external_order_id: str | None = None
    external_shipment_id: str | None = None
    courier_name: str | None = None
    label_url: str | None = None
    tracking_url: str | None = None
    freight_charge: Decimal | None = None
    expected_delivery: datetime | None = None


@dataclass
class ShipmentPartiallyCreated:
    """Carrier created the order but could not assign a tracking number."""

    external_order_id: str
    awb_error: str
    external_shipment_id: str | None = None

    @property
    def tracking_number(self) -> str:
        return ""


ShipmentResult = ShipmentCreated | ShipmentPartiallyCreated


@dataclass
class TrackingEvent:
    timestamp: datetime
    status: str
    location: str | None = None
    remarks: str | None = None


@dataclass
class TrackingResponse:
    tracking_number: str
    status: ShipmentStatus | None
    raw_status: str
    current_location: str | None = None
    expected_delivery: datetime | None = None
    delivered_at: datetime | None = None
    delivered_to: str | None = None
    events: list[TrackingEvent] = field(default_factory=list)


@dataclass
class PickupRequest:
    tracking_numbers: list[str]
    pickup_date: datetime
    shipment_ids: list[str] = field(default_factory=list)
    time_slot: str | None = None
    warehouse_id: str | None = None


@dataclass
class PickupResponse:
    pickup_id: str | None
    scheduled_date: datetime
    shipment_count: int
    time_slot: str | None = None


@dataclass
class CarrierEvent:
    """A carrier webhook normalized into the shared vocabulary."""

    tracking_number: str
    carrier_status_code: str
    status: ShipmentStatus | None
    timestamp: datetime
    location: str | None = None
    remarks: str | None = None
    event_id: str | None = None
