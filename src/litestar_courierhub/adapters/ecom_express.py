"""Ecom Express adapter.

Credentials travel as ``username``/``password`` form fields on every
call. Tracking is only offered as XML.
"""

from __future__ import annotations

import json
import xml.etree.ElementTree as ET
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

TRACKING_URL = "https://plapi.ecomexpress.in/track_me/api/mawbd/"

# reason_code_number values from the tracking feed
STATUS_CODES: dict[str, ShipmentStatus] = {
    "001": ShipmentStatus.AWB_ASSIGNED,
    "0011": ShipmentStatus.PICKED_UP,
    "002": ShipmentStatus.IN_TRANSIT,
    "003": ShipmentStatus.IN_TRANSIT,
    "004": ShipmentStatus.IN_TRANSIT,
    "005": ShipmentStatus.IN_TRANSIT,
    "006": ShipmentStatus.OUT_FOR_DELIVERY,
    "999": ShipmentStatus.DELIVERED,
    "777": ShipmentStatus.RTO_INITIATED,
    "77": ShipmentStatus.RTO_DELIVERED,
    "000": ShipmentStatus.CANCELLED,
    "333": ShipmentStatus.LOST,
}

# Undelivered reason codes all report a failed delivery attempt.
NDR_CODES = frozenset({"200", "201", "202", "203", "204", "206", "207", "208"})


def _fields(node: ET.Element) -> dict[str, str]:
    return {
        field.get("name", ""): (field.text or "").strip()
        for field in node.findall("field")
    }


class EcomExpressAdapter(BaseCourierAdapter):
    courier_type = CourierType.ECOM_EXPRESS
    display_name = "Ecom Express"
    default_base_url = "https://api.ecomexpress.in"

    def _auth(self, credentials: CourierCredentials) -> dict[str, str]:
        if not credentials.api_key or not credentials.api_secret:
            raise InvalidCredentialsError(
                "Ecom Express requires a username and password"
            )
        return {
            "username": credentials.api_key,
            "password": credentials.api_secret,
        }

    async def _post(
        self,
        credentials: CourierCredentials,
        path: str,
        action: str,
        **fields: str,
    ) -> Any:
        response = await self._request(
            "POST", path, data={**self._auth(credentials), **fields}
        )
        self._raise_for_status(response, action)
        return self._json(response)

    async def _serviceable(
        self, credentials: CourierCredentials, pincode: str, is_cod: bool
    ) -> bool:
        body = await self._post(
            credentials, "apiv2/pincodes/", "check serviceability"
        )
        if isinstance(body, dict):
            raise InvalidCredentialsError("Ecom Express rejected the credentials")
        for entry in body or []:
            if str(entry.get("pincode")) != pincode:
                continue
            return not is_cod or entry.get("active") in (True, "Y", 1, "1")
        return False

    async def validate_credentials(
        self, credentials: CourierCredentials
    ) -> None:
        await self._serviceable(credentials, "110001", False)

    async def get_rates(
        self, credentials: CourierCredentials, request: RateRequest
    ) -> list[CourierRate]:
        if not await self._serviceable(
            credentials, request.delivery_pincode, request.is_cod
        ):
            return []
        return [
            estimate_rate(
                request,
                service_code="REGULAR",
                service_name="Ecom Express Regular",
                express=False,
                estimated_days=5,
            )
        ]

    async def create_shipment(
        self, credentials: CourierCredentials, request: ShipmentRequest
    ) -> ShipmentResult:
        awb_body = await self._post(
            credentials,
            "apiv2/fetch_awb/",
            "allocate an AWB",
            count="1",
            type="COD" if request.is_cod else "PPD",
        )
        awbs = awb_body.get("awb") or []
        if awb_body.get("success") != "yes" or not awbs:
            raise CarrierError("Ecom Express did not allocate an AWB")
        awb = str(awbs[0])

        delivery, pickup = request.delivery, request.pickup
        manifest = {
            "AWB_NUMBER": awb,
            "ORDER_NUMBER": request.order_number,
            "PRODUCT": "COD" if request.is_cod else "PPD",
            "CONSIGNEE": delivery.name,
            "CONSIGNEE_ADDRESS1": delivery.line1,
            "CONSIGNEE_ADDRESS2": delivery.line2,
            "DESTINATION_CITY": delivery.city,
            "STATE": delivery.state,
            "PINCODE": delivery.pincode,
            "MOBILE": delivery.phone,
            "ITEM_DESCRIPTION": ", ".join(i.name for i in request.items),
            "PIECES": 1,
            "COLLECTABLE_VALUE": str(request.cod_amount or 0)
            if request.is_cod
            else "0",
            "DECLARED_VALUE": str(request.declared_value),
            "ACTUAL_WEIGHT": str(request.weight_kg),
            "PICKUP_NAME": pickup.name,
            "PICKUP_ADDRESS_LINE1": pickup.line1,
            "PICKUP_PINCODE": pickup.pincode,
            "PICKUP_MOBILE": pickup.phone,
        }
        body = await self._post(
            credentials,
            "apiv2/manifest_awb/",
            "manifest the shipment",
            json_input=json.dumps([manifest]),
        )
        shipments = body.get("shipments") or []
        result = shipments[0] if shipments else {}
        if not result.get("success"):
            raise CarrierError(
                "Ecom Express rejected the shipment: "
                f"{result.get('reason') or 'unknown error'}"
            )
        return ShipmentCreated(
            tracking_number=awb,
            external_order_id=request.order_number,
            courier_name="Ecom Express",
        )

    async def get_tracking(
        self, credentials: CourierCredentials, tracking_number: str
    ) -> TrackingResponse:
        response = await self._request(
            "POST",
            TRACKING_URL,
            data={**self._auth(credentials), "awb": tracking_number},
        )
        self._raise_for_status(response, "track the shipment")
        try:
            root = ET.fromstring(response.content)
        except ET.ParseError as exc:
            raise CarrierError(
                "Ecom Express returned unreadable tracking data"
            ) from exc
        shipment = root.find("object")
        if shipment is None:
            raise CarrierError(
                f"Ecom Express has no shipment for AWB {tracking_number}"
            )
        fields = _fields(shipment)
        events = []
        for scan in shipment.iter("object"):
            if scan.get("model") != "scan_stages":
                continue
            detail = _fields(scan)
            timestamp = parse_timestamp(detail.get("updated_on"))
            if timestamp is None:
                continue
            events.append(
                TrackingEvent(
                    timestamp=timestamp,
                    status=detail.get("status", ""),
                    location=detail.get("location_city"),
                    remarks=detail.get("reason_code"),
                )
            )
        events.sort(key=lambda event: event.timestamp)
        code = fields.get("reason_code_number", "")
        return TrackingResponse(
            tracking_number=tracking_number,
            status=self.map_status(code),
            raw_status=fields.get("status", code),
            current_location=fields.get("current_location_name"),
            expected_delivery=parse_timestamp(
                fields.get("expected_date")
            ),
            delivered_at=parse_timestamp(fields.get("delivery_date")),
            delivered_to=fields.get("receiver") or None,
            events=events,
        )

    async def cancel_shipment(
        self, credentials: CourierCredentials, tracking_number: str
    ) -> None:
        body = await self._post(
            credentials,
            "apiv2/cancel_awb/",
            "cancel the shipment",
            awbs=tracking_number,
        )
        results = body if isinstance(body, list) else [body]
        if not results or not results[0].get("success"):
            reason = results[0].get("reason") if results else None
            raise CarrierError(
                f"Ecom Express could not cancel the shipment: {reason}"
            )

    def map_status(self, code: str) -> ShipmentStatus | None:
        code = str(code).strip()
        if code in NDR_CODES:
            return ShipmentStatus.NDR_RAISED
        return STATUS_CODES.get(code)