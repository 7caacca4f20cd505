"""Delhivery adapter.

Delhivery uses a static API token sent as ``Authorization: Token <key>``.
Tracking: GET /api/v1/packages/json/?waybill=XXXX
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from litestar_courierhub.adapters.base import (
    BaseCourierAdapter,
    parse_timestamp,
    require_awb,
    to_decimal,
)
from litestar_courierhub.enums import CourierType, ShipmentStatus
from litestar_courierhub.exceptions import (
    CarrierError,
    InvalidCredentialsError,
    NotServiceableError,
)
from litestar_courierhub.signatures import HmacSha256Header
from litestar_courierhub.types import (
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
    "UD": ShipmentStatus.AWB_ASSIGNED,
    "PP": ShipmentStatus.AWB_ASSIGNED,
    "OP": ShipmentStatus.AWB_ASSIGNED,
    "FM": ShipmentStatus.AWB_ASSIGNED,
    "PU": ShipmentStatus.PICKED_UP,
    "IT": ShipmentStatus.IN_TRANSIT,
    "RAD": ShipmentStatus.IN_TRANSIT,
    "LM": ShipmentStatus.IN_TRANSIT,
    "OC": ShipmentStatus.OUT_FOR_DELIVERY,
    "DL": ShipmentStatus.DELIVERED,
    "CN": ShipmentStatus.CANCELLED,
    "CR": ShipmentStatus.CANCELLED,
    "RTO": ShipmentStatus.RTO_INITIATED,
    "RT": ShipmentStatus.RTO_INITIATED,
    "RTD": ShipmentStatus.RTO_DELIVERED,
    "ND": ShipmentStatus.NDR_RAISED,
    "DNA": ShipmentStatus.NDR_RAISED,
    "LT": ShipmentStatus.LOST,
}

# Free-text statuses returned by the tracking API.
STATUS_TEXT: dict[str, ShipmentStatus] = {
    "manifested": ShipmentStatus.AWB_ASSIGNED,
    "not picked": ShipmentStatus.AWB_ASSIGNED,
    "picked up": ShipmentStatus.PICKED_UP,
    "in transit": ShipmentStatus.IN_TRANSIT,
    "pending": ShipmentStatus.IN_TRANSIT,
    "dispatched": ShipmentStatus.OUT_FOR_DELIVERY,
    "delivered": ShipmentStatus.DELIVERED,
    "undelivered": ShipmentStatus.NDR_RAISED,
    "rto": ShipmentStatus.RTO_INITIATED,
    "rto initiated": ShipmentStatus.RTO_INITIATED,
    "returned": ShipmentStatus.RTO_DELIVERED,
    "rto delivered": ShipmentStatus.RTO_DELIVERED,
    "rto-del": ShipmentStatus.RTO_DELIVERED,
    "cancelled": ShipmentStatus.CANCELLED,
    "canceled": ShipmentStatus.CANCELLED,
    "lost": ShipmentStatus.LOST,
}

SERVICES = (("S", "Surface", False, 5), ("E", "Express", True, 3))


class DelhiveryAdapter(BaseCourierAdapter):
    courier_type = CourierType.DELHIVERY
    display_name = "Delhivery"
    default_base_url = "https://track.delhivery.com"
    webhook_verifier = HmacSha256Header("x-delhivery-signature")

    def _headers(self, credentials: CourierCredentials) -> dict[str, str]:
        if not credentials.api_key:
            raise InvalidCredentialsError("Delhivery requires an API token")
        return {
            "Authorization": f"Token {credentials.api_key}",
            "Accept": "application/json",
        }

    async def _get(
        self, credentials: CourierCredentials, path: str, **kwargs: Any
    ):
        return await self._request(
            "GET", path, headers=self._headers(credentials), **kwargs
        )

    async def _is_serviceable(
        self, credentials: CourierCredentials, pincode: str, is_cod: bool
    ) -> bool:
        response = await self._get(
            credentials,
            "c/api/pin-codes/json/",
            params={"filter_codes": pincode},
        )
        self._raise_for_status(response, "check serviceability")
        codes = self._json(response).get("delivery_codes") or []
        for entry in codes:
            postal = entry.get("postal_code") or {}
            if is_cod and postal.get("cod") != "Y":
                continue
            if not is_cod and postal.get("pre_paid") not in ("Y", None):
                continue
            return True
        return False

    async def validate_credentials(
        self, credentials: CourierCredentials
    ) -> None:
        response = await self._get(
            credentials,
            "c/api/pin-codes/json/",
            params={"filter_codes": "110001"},
        )
        self._raise_for_status(response, "validate the token")

    async def get_rates(
        self, credentials: CourierCredentials, request: RateRequest
    ) -> list[CourierRate]:
        if not await self._is_serviceable(
            credentials, request.delivery_pincode, request.is_cod
        ):
            return []

        grams = int(request.weight_kg * 1000)
        rates = []
        for mode, name, express, days in SERVICES:
            params: dict[str, Any] = {
                "md": mode,
                "ss": "Delivered",
                "o_pin": request.pickup_pincode,
                "d_pin": request.delivery_pincode,
                "cgm": grams,
                "pt": "COD" if request.is_cod else "Pre-paid",
            }
            if request.is_cod:
                params["cod"] = str(request.cod_amount or 0)
            response = await self._get(
                credentials, "api/kinko/v1/invoice/charges/.json", params=params
            )
            if not response.is_success:
                logger.info(
                    "Delhivery has no %s rate for %s -> %s",
                    name,
                    request.pickup_pincode,
                    request.delivery_pincode,
                )
                continue
            charges = self._json(response)
            if isinstance(charges, list):
                charges = charges[0] if charges else {}
            total = to_decimal(charges.get("total_amount"))
            if not total:
                continue
            cod = to_decimal(charges.get("charge_COD"))
            rates.append(
                CourierRate(
                    service_code=mode,
                    service_name=f"Delhivery {name}",
                    freight_charge=total - cod,
                    cod_charge=cod,
                    total_charge=total,
                    estimated_days=days,
                    is_express=express,
                    is_surface=not express,
                )
            )
        return self.sort_rates(rates)

    def _manifest(
        self, credentials: CourierCredentials, request: ShipmentRequest
    ) -> dict[str, Any]:
        delivery = request.delivery
        shipment = {
            "name": delivery.name,
            "add": " ".join(filter(None, (delivery.line1, delivery.line2))),
            "pin": delivery.pincode,
            "city": delivery.city,
            "state": delivery.state,
            "country": delivery.country,
            "phone": delivery.phone,
            "order": request.order_number,
            "payment_mode": "COD" if request.is_cod else "Prepaid",
            "cod_amount": str(request.cod_amount or Decimal("0")),
            "total_amount": str(request.declared_value),
            "weight": str(int(request.weight_kg * 1000)),
            "products_desc": ", ".join(item.name for item in request.items),
            "quantity": str(sum(item.quantity for item in request.items) or 1),
            "shipping_mode": "Express" if request.is_express else "Surface",
        }
        for key, value in (
            ("shipment_length", request.length_cm),
            ("shipment_width", request.width_cm),
            ("shipment_height", request.height_cm),
        ):
            if value is not None:
                shipment[key] = str(value)
        return {
            "shipments": [shipment],
            "pickup_location": {
                "name": credentials.settings.get(
                    "pickup_location", request.pickup.name
                ),
            },
        }

    async def create_shipment(
        self, credentials: CourierCredentials, request: ShipmentRequest
    ) -> ShipmentResult:
        response = await self._request(
            "POST",
            "api/cmu/create.json",
            headers=self._headers(credentials),
            data={
                "format": "json",
                "data": json.dumps(self._manifest(credentials, request)),
            },
        )
        self._raise_for_status(response, "create the shipment")
        body = self._json(response)
        packages = body.get("packages") or []
        package = packages[0] if packages else {}
        waybill = package.get("waybill")
        if not waybill or package.get("status") == "Fail":
            remarks = package.get("remarks") or body.get("rmk") or "unknown"
            if isinstance(remarks, list):
                remarks = "; ".join(str(r) for r in remarks)
            if "serviceab" in str(remarks).lower():
                raise NotServiceableError(
                    f"Delhivery cannot deliver to {request.delivery.pincode}"
                )
            raise CarrierError(f"Delhivery rejected the shipment: {remarks}")
        return ShipmentCreated(
            tracking_number=str(waybill),
            external_order_id=package.get("refnum") or request.order_number,
            courier_name="Delhivery",
            tracking_url=f"https://www.delhivery.com/track/package/{waybill}",
        )

    async def get_tracking(
        self, credentials: CourierCredentials, tracking_number: str
    ) -> TrackingResponse:
        response = await self._get(
            credentials,
            "api/v1/packages/json/",
            params={"waybill": tracking_number},
        )
        self._raise_for_status(response, "track the shipment")
        body = self._json(response)
        shipment_data = body.get("ShipmentData") or []
        if not shipment_data:
            raise CarrierError(
                f"Delhivery has no shipment for AWB {tracking_number}"
            )
        shipment = shipment_data[0].get("Shipment") or {}
        status_block = shipment.get("Status") or {}
        raw_status = str(status_block.get("Status") or "")
        status_type = str(status_block.get("StatusType") or "")

        events = []
        for scan in shipment.get("Scans") or []:
            detail = scan.get("ScanDetail") or scan
            timestamp = parse_timestamp(detail.get("ScanDateTime"))
            if timestamp is None:
                continue
            events.append(
                TrackingEvent(
                    timestamp=timestamp,
                    status=str(detail.get("Scan") or ""),
                    location=detail.get("ScannedLocation"),
                    remarks=detail.get("Instructions"),
                )
            )
        events.sort(key=lambda event: event.timestamp)

        status = STATUS_TEXT.get(raw_status.strip().lower())
        delivered_at = None
        if status is ShipmentStatus.DELIVERED or status_type.upper() == "DL":
            delivered_at = parse_timestamp(status_block.get("StatusDateTime"))
        return TrackingResponse(
            tracking_number=tracking_number,
            status=status,
            raw_status=raw_status,
            current_location=status_block.get("StatusLocation"),
            expected_delivery=parse_timestamp(
                shipment.get("ExpectedDeliveryDate")
            ),
            delivered_at=delivered_at,
            delivered_to=status_block.get("RecievedBy")
            or status_block.get("ReceivedBy"),
            events=events,
        )

    async def cancel_shipment(
        self, credentials: CourierCredentials, tracking_number: str
    ) -> None:
        response = await self._request(
            "POST",
            "api/p/edit",
            headers=self._headers(credentials),
            json={"waybill": tracking_number, "cancellation": "true"},
        )
        self._raise_for_status(response, "cancel the shipment")
        body = self._json(response)
        if body.get("status") is False:
            raise CarrierError(
                f"Delhivery could not cancel the shipment: "
                f"{body.get('remark') or body.get('error')}"
            )

    async def schedule_pickup(
        self, credentials: CourierCredentials, request: PickupRequest
    ) -> PickupResponse:
        location = request.warehouse_id or credentials.settings.get(
            "pickup_location"
        )
        if not location:
            raise CarrierError("Delhivery pickups need a pickup location")
        response = await self._request(
            "POST",
            "fm/request/new/",
            headers=self._headers(credentials),
            json={
                "pickup_location": location,
                "pickup_date": request.pickup_date.strftime("%Y-%m-%d"),
                "pickup_time": request.pickup_date.strftime("%H:%M:%S"),
                "expected_package_count": len(request.tracking_numbers),
            },
        )
        self._raise_for_status(response, "schedule a pickup")
        body = self._json(response)
        pickup_id = body.get("pickup_id")
        return PickupResponse(
            pickup_id=str(pickup_id) if pickup_id is not None else None,
            scheduled_date=parse_timestamp(body.get("pickup_date"))
            or request.pickup_date,
            shipment_count=len(request.tracking_numbers),
            time_slot=request.time_slot,
        )

    async def get_label(
        self, credentials: CourierCredentials, tracking_number: str
    ) -> bytes:
        response = await self._get(
            credentials,
            "api/p/packing_slip",
            params={"wbns": tracking_number, "pdf": "true"},
        )
        self._raise_for_status(response, "generate the label")
        packages = self._json(response).get("packages") or []
        link = packages[0].get("pdf_download_link") if packages else None
        if not link:
            raise CarrierError("Delhivery did not return a label")
        download = await self._request("GET", link)
        self._raise_for_status(download, "download the label")
        return download.content

    def map_status(self, code: str) -> ShipmentStatus | None:
        code = str(code).strip()
        return STATUS_CODES.get(code.upper()) or STATUS_TEXT.get(code.lower())

    def parse_webhook(self, payload: dict[str, Any]) -> CarrierEvent:
        tracking_number = require_awb(
            payload.get("waybill"), self.display_name
        )
        code = str(payload.get("status_code") or payload.get("status") or "")
        return CarrierEvent(
            tracking_number=tracking_number,
            carrier_status_code=code,
            status=self.map_status(code),
            timestamp=parse_timestamp(payload.get("timestamp"))
            or datetime.now(tz=UTC),
            location=payload.get("location"),
            remarks=payload.get("remarks") or payload.get("status"),
        )
