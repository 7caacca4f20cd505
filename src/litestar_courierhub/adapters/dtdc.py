"""DTDC adapter (``X-API-Key`` header, customer code in the body)."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from litestar_courierhub.adapters.base import (
    BaseCourierAdapter,
    estimate_rate,
    parse_timestamp,
    require_awb,
    to_decimal,
)
from litestar_courierhub.enums import CourierType, ShipmentStatus
from litestar_courierhub.exceptions import CarrierError, InvalidCredentialsError
from litestar_courierhub.types import (
    Address,
    CarrierEvent,
    CourierCredentials,
    CourierRate,
    PickupRequest,
    PickupResponse,
    RateRequest,
    ShipmentCreated,
    ShipmentRequest,
    ShipmentResult,
    TrackingEvent,
    TrackingResponse,
)

logger = logging.getLogger(__name__)

STATUS_CODES: dict[str, ShipmentStatus] = {
    "BKD": ShipmentStatus.AWB_ASSIGNED,
    "PKD": ShipmentStatus.PICKED_UP,
    "ITR": ShipmentStatus.IN_TRANSIT,
    "ARR": ShipmentStatus.IN_TRANSIT,
    "OFD": ShipmentStatus.OUT_FOR_DELIVERY,
    "DLV": ShipmentStatus.DELIVERED,
    "UND": ShipmentStatus.NDR_RAISED,
    "DLY": ShipmentStatus.NDR_RAISED,
    "CNL": ShipmentStatus.CANCELLED,
    "RTO": ShipmentStatus.RTO_INITIATED,
    "RTN": ShipmentStatus.RTO_DELIVERED,
    "LST": ShipmentStatus.LOST,
}


def _party(address: Address) -> dict[str, str]:
    return {
        "name": address.name,
        "address1": address.line1,
        "address2": address.line2,
        "pincode": address.pincode,
        "city": address.city,
        "state": address.state,
        "country": address.country,
        "mobileNo": address.phone,
        "emailId": address.email,
    }


class DtdcAdapter(BaseCourierAdapter):
    courier_type = CourierType.DTDC
    display_name = "DTDC"
    default_base_url = "https://api.dtdc.com"

    def _headers(self, credentials: CourierCredentials) -> dict[str, str]:
        if not credentials.api_key:
            raise InvalidCredentialsError("DTDC requires an API key")
        return {"X-API-Key": credentials.api_key}

    async def _call(
        self,
        credentials: CourierCredentials,
        method: str,
        path: str,
        action: str,
        **kwargs: Any,
    ) -> Any:
        response = await self._request(
            method, path, headers=self._headers(credentials), **kwargs
        )
        self._raise_for_status(response, action)
        body = self._json(response)
        if not body.get("success", False):
            message = body.get("message") or "unknown error"
            raise CarrierError(f"DTDC could not {action}: {message}")
        return body.get("data")

    async def validate_credentials(
        self, credentials: CourierCredentials
    ) -> None:
        await self._call(
            credentials, "GET", "api/v1/pincode/110001", "validate the key"
        )

    async def get_rates(
        self, credentials: CourierCredentials, request: RateRequest
    ) -> list[CourierRate]:
        try:
            pincode = await self._call(
                credentials,
                "GET",
                f"api/v1/pincode/{request.delivery_pincode}",
                "check serviceability",
            )
        except CarrierError:
            return []
        if not pincode or not pincode.get("serviceable"):
            return []
        if request.is_cod and not pincode.get("codAvailable", True):
            return []

        try:
            data = await self._call(
                credentials,
                "POST",
                "api/v1/rate/calculate",
                "calculate rates",
                json={
                    "originPincode": request.pickup_pincode,
                    "destinationPincode": request.delivery_pincode,
                    "weight": str(request.weight_kg),
                    "codAmount": str(request.cod_amount or 0)
                    if request.is_cod
                    else "0",
                    "declaredValue": str(request.declared_value or 0),
                    "loadType": "NON-DOCUMENT",
                },
            )
        except CarrierError as exc:
            logger.info("DTDC rate API unavailable, estimating: %s", exc)
            data = None

        if not data:
            return self.sort_rates(
                [
                    estimate_rate(
                        request,
                        service_code="PREMIUM",
                        service_name="DTDC Premium",
                        express=True,
                        estimated_days=3,
                    ),
                    estimate_rate(
                        request,
                        service_code="GROUND",
                        service_name="DTDC Ground",
                        express=False,
                        estimated_days=6,
                    ),
                ]
            )

        rates = []
        for item in data:
            name = str(item.get("serviceName") or "Premium")
            rates.append(
                CourierRate(
                    service_code=str(item.get("serviceCode") or name.upper()),
                    service_name=f"DTDC {name}",
                    freight_charge=to_decimal(item.get("freightCharge")),
                    cod_charge=to_decimal(item.get("codCharge")),
                    total_charge=to_decimal(item.get("totalCharge")),
                    estimated_days=int(item.get("deliveryDays") or 0),
                    is_express="EXPRESS" in name.upper()
                    or "PREMIUM" in name.upper(),
                    is_surface="GROUND" in name.upper(),
                )
            )
        return self.sort_rates(rates)

    async def create_shipment(
        self, credentials: CourierCredentials, request: ShipmentRequest
    ) -> ShipmentResult:
        consignment: dict[str, Any] = {
            "referenceNumber": request.order_number,
            "customerReferenceNumber": request.order_id,
            "serviceName": request.service_code
            or ("PREMIUM" if request.is_express else "GROUND"),
            "loadType": "NON-DOCUMENT",
            "noOfPieces": 1,
            "actualWeight": str(request.weight_kg),
            "isCOD": request.is_cod,
            "codAmount": str(request.cod_amount or 0) if request.is_cod else "0",
            "declaredValue": str(request.declared_value),
            "productDescription": ", ".join(i.name for i in request.items),
            "consignorDetails": _party(request.pickup),
            "consigneeDetails": _party(request.delivery),
        }
        if request.length_cm and request.width_cm and request.height_cm:
            consignment["dimension"] = {
                "length": str(request.length_cm),
                "width": str(request.width_cm),
                "height": str(request.height_cm),
            }
        data = await self._call(
            credentials,
            "POST",
            "api/v1/shipment/create",
            "create the shipment",
            json={
                "customerCode": credentials.account_code or "",
                "consignmentDetails": [consignment],
            },
        )
        results = (data or {}).get("consignmentNumbers") or []
        result = results[0] if results else {}
        number = result.get("consignmentNumber")
        if not number:
            message = result.get("message") or "no consignment number"
            raise CarrierError(f"DTDC rejected the shipment: {message}")
        return ShipmentCreated(
            tracking_number=str(number),
            external_order_id=result.get("referenceNumber")
            or request.order_number,
            courier_name="DTDC",
        )

    async def get_tracking(
        self, credentials: CourierCredentials, tracking_number: str
    ) -> TrackingResponse:
        data = await self._call(
            credentials,
            "GET",
            f"api/v1/tracking/{tracking_number}",
            "track the shipment",
        )
        data = data or {}
        events = []
        for item in data.get("trackingHistory") or []:
            timestamp = parse_timestamp(
                f"{item.get('eventDate', '')} {item.get('eventTime', '')}"
            ) or parse_timestamp(item.get("eventDate"))
            if timestamp is None:
                continue
            events.append(
                TrackingEvent(
                    timestamp=timestamp,
                    status=str(item.get("status") or ""),
                    location=item.get("location"),
                    remarks=item.get("remarks"),
                )
            )
        events.sort(key=lambda event: event.timestamp)
        code = str(data.get("currentStatusCode") or "")
        return TrackingResponse(
            tracking_number=tracking_number,
            status=self.map_status(code),
            raw_status=str(data.get("currentStatus") or code),
            current_location=data.get("currentLocation"),
            expected_delivery=parse_timestamp(data.get("expectedDeliveryDate")),
            delivered_at=parse_timestamp(data.get("deliveredDate")),
            delivered_to=data.get("receivedBy"),
            events=events,
        )

    async def cancel_shipment(
        self, credentials: CourierCredentials, tracking_number: str
    ) -> None:
        await self._call(
            credentials,
            "POST",
            "api/v1/shipment/cancel",
            "cancel the shipment",
            json={
                "customerCode": credentials.account_code or "",
                "consignmentNumber": tracking_number,
                "cancellationReason": "Cancelled by shipper",
            },
        )

    async def schedule_pickup(
        self, credentials: CourierCredentials, request: PickupRequest
    ) -> PickupResponse:
        data = await self._call(
            credentials,
            "POST",
            "api/v1/pickup/schedule",
            "schedule a pickup",
            json={
                "customerCode": credentials.account_code or "",
                "pickupDate": request.pickup_date.strftime("%Y-%m-%d"),
                "pickupTime": request.time_slot or "10:00",
                "closingTime": "18:00",
                "consignmentCount": len(request.tracking_numbers),
                "totalWeight": str(0.5 * len(request.tracking_numbers)),
            },
        )
        data = data or {}
        return PickupResponse(
            pickup_id=data.get("pickupRequestNumber") or data.get("tokenNumber"),
            scheduled_date=parse_timestamp(data.get("scheduledDate"))
            or request.pickup_date,
            shipment_count=len(request.tracking_numbers),
            time_slot=data.get("scheduledTime") or request.time_slot,
        )

    async def get_label(
        self, credentials: CourierCredentials, tracking_number: str
    ) -> bytes:
        response = await self._request(
            "GET",
            f"api/v1/label/{tracking_number}",
            headers=self._headers(credentials),
        )
        self._raise_for_status(response, "download the label")
        return response.content

    def map_status(self, code: str) -> ShipmentStatus | None:
        return STATUS_CODES.get(str(code).strip().upper())

    def parse_webhook(self, payload: dict[str, Any]) -> CarrierEvent:
        tracking_number = require_awb(
            payload.get("consignmentNumber"), self.display_name
        )
        code = str(payload.get("statusCode") or "")
        timestamp = parse_timestamp(
            f"{payload.get('eventDate', '')} {payload.get('eventTime', '')}"
        ) or parse_timestamp(payload.get("eventDate"))
        return CarrierEvent(
            tracking_number=tracking_number,
            carrier_status_code=code,
            status=self.map_status(code),
            timestamp=timestamp or datetime.now(tz=UTC),
            location=payload.get("location"),
            remarks=payload.get("remarks") or payload.get("status"),
        )
