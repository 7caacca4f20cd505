"""Shipment, rate shopping and courier account endpoints."""

from __future__ import annotations

from typing import Annotated, ClassVar

from litestar import Controller, Response, get, post
from litestar.params import Dependency

from litestar_courierhub.rates import RateShopper
from litestar_courierhub.schemas import (
    AssignCourierRequest,
    CancelShipmentRequest,
    CourierRateResponse,
    CreateShipmentRequest,
    PickupResponseSchema,
    RateQuoteRequest,
    SchedulePickupRequest,
    ShipmentResponse,
    TrackingResponseSchema,
    UpdateStatusRequest,
    ValidateAccountResponse,
)
from litestar_courierhub.shipments import ShipmentService

ShipmentServiceDep = Annotated[ShipmentService, Dependency(skip_validation=True)]


class ShipmentController(Controller):
    """Shipment command endpoints."""

    path = "/shipments"
    tags: ClassVar[list[str]] = ["shipments"]

    @get("/health")
    async def shipments_health(self) -> dict[str, str]:
        """Healthcheck endpoint for shipment routes."""
        return {"status": "ok"}

    @post("/")
    async def create_shipment(
        self, data: CreateShipmentRequest, shipment_service: ShipmentServiceDep
    ) -> ShipmentResponse:
        """Create a shipment, booking it with ``account_id`` when given."""
        shipment = await shipment_service.create_shipment(
            data.tenant_id, data.to_request(), account_id=data.account_id
        )
        return ShipmentResponse.from_shipment(shipment)

    @post("/available-couriers", status_code=200)
    async def available_couriers(
        self,
        data: RateQuoteRequest,
        rate_shopper: Annotated[RateShopper, Dependency(skip_validation=True)],
    ) -> list[CourierRateResponse]:
        """Rates from every active courier account, cheapest first."""
        rates = await rate_shopper.get_available_couriers(
            data.tenant_id, data.to_request()
        )
        return [CourierRateResponse.from_rate(rate) for rate in rates]

    @post("/pickups", status_code=200)
    async def schedule_pickup(
        self, data: SchedulePickupRequest, shipment_service: ShipmentServiceDep
    ) -> PickupResponseSchema:
        pickup = await shipment_service.schedule_pickup(
            data.shipment_ids,
            data.pickup_date,
            time_slot=data.time_slot,
            warehouse_id=data.warehouse_id,
        )
        return PickupResponseSchema.from_pickup(pickup)

    @get("/{shipment_id:str}")
    async def get_shipment(
        self, shipment_id: str, shipment_service: ShipmentServiceDep
    ) -> ShipmentResponse:
        shipment = await shipment_service.get(shipment_id)
        return ShipmentResponse.from_shipment(shipment)

    @get("/{shipment_id:str}/tracking")
    async def get_tracking(
        self, shipment_id: str, shipment_service: ShipmentServiceDep
    ) -> TrackingResponseSchema:
        """Live carrier tracking; a newer status is applied to the shipment."""
        tracking = await shipment_service.get_tracking(shipment_id)
        return TrackingResponseSchema.from_tracking(tracking)

    @post("/{shipment_id:str}/cancel", status_code=200)
    async def cancel_shipment(
        self,
        shipment_id: str,
        data: CancelShipmentRequest,
        shipment_service: ShipmentServiceDep,
    ) -> ShipmentResponse:
        shipment = await shipment_service.cancel_shipment(
            shipment_id, reason=data.reason
        )
        return ShipmentResponse.from_shipment(shipment)

    @post("/{shipment_id:str}/assign-courier", status_code=200)
    async def assign_courier(
        self,
        shipment_id: str,
        data: AssignCourierRequest,
        shipment_service: ShipmentServiceDep,
    ) -> ShipmentResponse:
        shipment = await shipment_service.assign_courier(
            shipment_id,
            account_id=data.account_id,
            service_code=data.service_code,
            tracking_number=data.tracking_number,
        )
        return ShipmentResponse.from_shipment(shipment)

    @post("/{shipment_id:str}/status", status_code=200)
    async def update_status(
        self,
        shipment_id: str,
        data: UpdateStatusRequest,
        shipment_service: ShipmentServiceDep,
    ) -> ShipmentResponse:
        """Operator status override."""
        shipment = await shipment_service.update_status(
            shipment_id,
            data.status,
            location=data.location,
            remarks=data.remarks,
        )
        return ShipmentResponse.from_shipment(shipment)

    @get("/{shipment_id:str}/label")
    async def get_label(
        self, shipment_id: str, shipment_service: ShipmentServiceDep
    ) -> Response[bytes]:
        label = await shipment_service.get_label(shipment_id)
        return Response(
            label,
            media_type="application/pdf",
            headers={
                "Content-Disposition": f'inline; filename="{shipment_id}.pdf"'
            },
        )


class CourierAccountController(Controller):
    path = "/courier-accounts"
    tags: ClassVar[list[str]] = ["courier-accounts"]

    @post("/{account_id:str}/validate", status_code=200)
    async def validate_account(
        self, account_id: str, shipment_service: ShipmentServiceDep
    ) -> ValidateAccountResponse:
        """Check the stored credentials against the carrier."""
        await shipment_service.validate_courier_account(account_id)
        return ValidateAccountResponse(account_id=account_id, valid=True)
