"""Shadowfax adapter (static ``Authorization: Token`` header)."""

from __future__ import annotations

from typing import Any

from litestar_courierhub.adapters.base import (
    BaseCourierAdapter,
    estimate_rate,
    parse_timestamp,
)
from litestar_courierhub.enums import CourierType, ShipmentStatus
from litestar_courierhub.exceptions import CarrierError, InvalidCredentialsError
from litestar_courierhub.types import (
    CourierCredentials,
    CourierRate,
    RateRequest,
    ShipmentCreated,
    ShipmentRequest,
    ShipmentResult,
    TrackingEvent,
    TrackingResponse,
)

STATUS_CODES: dict[str, ShipmentStatus] = {
    "new": ShipmentStatus.AWB_ASSIGNED,
    "assigned_for_pickup": ShipmentStatus.AWB_ASSIGNED,
    "picked": ShipmentStatus.PICKED_UP,
    "recd_at_fwd_hub": ShipmentStatus.IN_TRANSIT,
    "in_transit": ShipmentStatus.IN_TRANSIT,
    "ofd": ShipmentStatus.OUT_FOR_DELIVERY,
    "delivered": ShipmentStatus.DELIVERED,
    "nc": ShipmentStatus.NDR_RAISED,
    "na": ShipmentStatus.NDR_RAISED,
    "cid": ShipmentStatus.NDR_RAISED,
    "rts": ShipmentStatus.RTO_INITIATED,
    "rto_initiated": ShipmentStatus.RTO_INITIATED,
    "rts_d": ShipmentStatus.RTO_DELIVERED,
    "cancelled_by_customer": ShipmentStatus.CANCELLED,
    "cancelled": ShipmentStatus.CANCELLED,
    "lost": ShipmentStatus.LOST,
}


class ShadowfaxAdapter(BaseCourierAdapter):
    courier_type = CourierType.SHADOWFAX
    display_name = "Shadowfax"
    default_base_url = "https://dale.shadowfax.in/api"

    def _headers(self, credentials: CourierCredentials) -> dict[str, str]:
        if not credentials.api_key:
            raise InvalidCredentialsError("Shadowfax requires an API token")
        return {"Authorization": f"Token {credentials.api_key}"}

    async def _call(
        self,
        credentials: CourierCredentials,
        method: str,
        path: str,
        action: str,
        **kwargs: Any,
    ) -> dict[str, Any]:
        response = await self._request(
            method, path, headers=self._headers(credentials), **kwargs
        )
        self._raise_for_status(response, action)
        return self._json(response)

    async def _serviceable(
        self, credentials: CourierCredentials, pincode: str
    ) -> bool:
        body = await self._call(
            credentials,
            "GET",
            "v1/serviceability/",
            "check serviceability",
            params={"pincodes": pincode},
        )
        return any(
            str(entry.get("pincode")) == pincode and entry.get("serviceable")
            for entry in body.get("data") or []
        )

    async def validate_credentials(
        self, credentials: CourierCredentials
    ) -> None:
        await self._serviceable(credentials, "110001")

    async def get_rates(
        self, credentials: CourierCredentials, request: RateRequest
    ) -> list[CourierRate]:
        if not await self._serviceable(credentials, request.delivery_pincode):
            return []
        return [
            estimate_rate(
                request,
                service_code="STANDARD",
                service_name="Shadowfax Standard",
                express=False,
                estimated_days=4,
            )
        ]

    async def create_shipment(
        self, credentials: CourierCredentials, request: ShipmentRequest
    ) -> ShipmentResult:
        delivery, pickup = request.delivery, request.pickup
        body = await self._call(
            credentials,
            "POST",
            "v3/clients/orders/",
            "create the shipment",
            json={
                "order_details": {
                    "client_order_id": request.order_number,
                    "actual_weight": int(request.weight_kg * 1000),
                    "product_value": str(request.declared_value),
                    "payment_mode": "COD" if request.is_cod else "Prepaid",
                    "cod_amount": str(request.cod_amount or 0)
                    if request.is_cod
                    else "0",
                },
                "customer_details": {
                    "name": delivery.name,
                    "contact": delivery.phone,
                    "address_line_1": delivery.line1,
                    "address_line_2": delivery.line2,
                    "city": delivery.city,
                    "state": delivery.state,
                    "pincode": delivery.pincode,
                },
                "pickup_details": {
                    "name": pickup.name,
                    "contact": pickup.phone,
                    "address_line_1": pickup.line1,
                    "city": pickup.city,
                    "state": pickup.state,
                    "pincode": pickup.pincode,
                },
                "product_details": [
                    {
                        "sku_name": item.name,
                        "sku_id": item.sku or item.name,
                        "price": str(item.unit_price),
                        "quantity": item.quantity,
                    }
                    for item in request.items
                ],
            },
        )
        data = body.get("data") or {}
        awb = data.get("awb_number")
        if not awb:
            raise CarrierError(
                "Shadowfax rejected the shipment: "
                f"{body.get('message') or 'no AWB returned'}"
            )
        return ShipmentCreated(
            tracking_number=str(awb),
            external_order_id=request.order_number,
            courier_name="Shadowfax",
        )

    async def get_tracking(
        self, credentials: CourierCredentials, tracking_number: str
    ) -> TrackingResponse:
        body = await self._call(
            credentials,
            "GET",
            f"v4/clients/orders/{tracking_number}/track/",
            "track the shipment",
        )
        details = body.get("order_details") or {}
        events = []
        for item in body.get("tracking_details") or []:
            timestamp = parse_timestamp(item.get("created"))
            if timestamp is None:
                continue
            events.append(
                TrackingEvent(
                    timestamp=timestamp,
                    status=str(item.get("status_id") or ""),
                    location=item.get("location"),
                    remarks=item.get("remarks"),
                )
            )
        events.sort(key=lambda event: event.timestamp)
        raw_status = str(details.get("status") or "")
        status = self.map_status(raw_status)
        return TrackingResponse(
            tracking_number=tracking_number,
            status=status,
            raw_status=raw_status,
            current_location=events[-1].location if events else None,
            expected_delivery=parse_timestamp(details.get("promised_delivery_date")),
            delivered_at=events[-1].timestamp
            if status is ShipmentStatus.DELIVERED and events
            else None,
            events=events,
        )

    async def cancel_shipment(
        self, credentials: CourierCredentials, tracking_number: str
    ) -> None:
        body = await self._call(
            credentials,
            "POST",
            "v3/clients/orders/cancel/",
            "cancel the shipment",
            json={
                "request_id": tracking_number,
                "cancel_remarks": "Cancelled by shipper",
            },
        )
        if str(body.get("responseCode", "200")) != "200":
            raise CarrierError(
                "Shadowfax could not cancel the shipment: "
                f"{body.get('responseMsg') or 'unknown error'}"
            )

    def map_status(self, code: str) -> ShipmentStatus | None:
        return STATUS_CODES.get(str(code).strip().lower())
