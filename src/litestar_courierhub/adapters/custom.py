"""Self-managed courier: no carrier API, tracking numbers are entered
by an operator and status changes arrive as manual overrides."""

from __future__ import annotations

from litestar_courierhub.adapters.base import BaseCourierAdapter
from litestar_courierhub.enums import CourierType, ShipmentStatus
from litestar_courierhub.types import (
    CourierCredentials,
    CourierRate,
    PickupRequest,
    PickupResponse,
    RateRequest,
    ShipmentPartiallyCreated,
    ShipmentRequest,
    ShipmentResult,
    TrackingResponse,
)

MANUAL_AWB_REQUIRED = "Tracking number must be entered manually"


class CustomCourierAdapter(BaseCourierAdapter):
    courier_type = CourierType.CUSTOM
    display_name = "Custom courier"

    async def validate_credentials(
        self, credentials: CourierCredentials
    ) -> None:
        return None

    async def get_rates(
        self, credentials: CourierCredentials, request: RateRequest
    ) -> list[CourierRate]:
        return []

    async def create_shipment(
        self, credentials: CourierCredentials, request: ShipmentRequest
    ) -> ShipmentResult:
        return ShipmentPartiallyCreated(
            external_order_id=request.order_number,
            awb_error=MANUAL_AWB_REQUIRED,
        )

    async def get_tracking(
        self, credentials: CourierCredentials, tracking_number: str
    ) -> TrackingResponse:
        return TrackingResponse(
            tracking_number=tracking_number, status=None, raw_status=""
        )

    async def cancel_shipment(
        self, credentials: CourierCredentials, tracking_number: str
    ) -> None:
        return None

    async def schedule_pickup(
        self, credentials: CourierCredentials, request: PickupRequest
    ) -> PickupResponse:
        return PickupResponse(
            pickup_id=None,
            scheduled_date=request.pickup_date,
            shipment_count=len(request.tracking_numbers),
            time_slot=request.time_slot,
        )

    def map_status(self, code: str) -> ShipmentStatus | None:
        try:
            return ShipmentStatus(str(code).strip().lower())
        except ValueError:
            return None
