"""Blue Dart adapter.

Every request carries a ``Profile`` block (login id and licence key);
results come back wrapped in ``<Operation>Result`` objects with an
``IsError`` flag rather than HTTP status codes.
"""

from __future__ import annotations

import base64
import binascii
from datetime import UTC, datetime
from typing import Any

from litestar_courierhub.adapters.base import (
    BaseCourierAdapter,
    estimate_rate,
    parse_timestamp,
    require_awb,
)
from litestar_courierhub.enums import CourierType, ShipmentStatus
from litestar_courierhub.exceptions import CarrierError, InvalidCredentialsError
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

API = "Ver1.10/ShippingAPI"

STATUS_CODES: dict[str, ShipmentStatus] = {
    "PKF": ShipmentStatus.AWB_ASSIGNED,
    "PKD": ShipmentStatus.PICKED_UP,
    "IT": ShipmentStatus.IN_TRANSIT,
    "LD": ShipmentStatus.IN_TRANSIT,
    "OD": ShipmentStatus.OUT_FOR_DELIVERY,
    "DL": ShipmentStatus.DELIVERED,
    "ND": ShipmentStatus.NDR_RAISED,
    "DLE": ShipmentStatus.NDR_RAISED,
    "HD": ShipmentStatus.NDR_RAISED,
    "CN": ShipmentStatus.CANCELLED,
    "RTO": ShipmentStatus.RTO_INITIATED,
    "RTD": ShipmentStatus.RTO_DELIVERED,
    "LST": ShipmentStatus.LOST,
}

_INVALID_LOGIN_MARKERS = ("invalid login", "invalid licence", "invalid license")


class BlueDartAdapter(BaseCourierAdapter):
    courier_type = CourierType.BLUEDART
    display_name = "Blue Dart"
    default_base_url = "https://netconnect.bluedart.com"

    def _profile(self, credentials: CourierCredentials) -> dict[str, str]:
        if not credentials.api_key or not credentials.api_secret:
            raise InvalidCredentialsError(
                "Blue Dart requires a login id and licence key"
            )
        return {
            "LoginID": credentials.api_key,
            "LicenceKey": credentials.api_secret,
            "Api_type": "S",
        }

    async def _call(
        self,
        credentials: CourierCredentials,
        path: str,
        body: dict[str, Any],
        result_key: str,
        action: str,
    ) -> dict[str, Any]:
        body = {**body, "Profile": self._profile(credentials)}
        response = await self._request("POST", f"{API}/{path}", json=body)
        self._raise_for_status(response, action)
        result = self._json(response).get(result_key) or {}
        if result.get("IsError"):
            message = str(result.get("ErrorMessage") or "unknown error")
            if any(m in message.lower() for m in _INVALID_LOGIN_MARKERS):
                raise InvalidCredentialsError(
                    "Blue Dart rejected the credentials"
                )
            raise CarrierError(f"Blue Dart could not {action}: {message}")
        return result

    async def _pincode_services(
        self, credentials: CourierCredentials, pincode: str
    ) -> dict[str, Any] | None:
        try:
            return await self._call(
                credentials,
                "Finder/ServiceFinderQuery.svc/rest/GetServicesforPincode",
                {"pinCode": pincode},
                "GetServicesforPincodeResult",
                "check serviceability",
            )
        except InvalidCredentialsError:
            raise
        except CarrierError:
            return None

    async def validate_credentials(
        self, credentials: CourierCredentials
    ) -> None:
        await self._call(
            credentials,
            "Finder/ServiceFinderQuery.svc/rest/GetServicesforPincode",
            {"pinCode": "110001"},
            "GetServicesforPincodeResult",
            "validate the credentials",
        )

    async def get_rates(
        self, credentials: CourierCredentials, request: RateRequest
    ) -> list[CourierRate]:
        services = await self._pincode_services(
            credentials, request.delivery_pincode
        )
        if not services:
            return []
        rates = []
        if services.get("ApexInbound") == "Yes":
            rates.append(
                estimate_rate(
                    request,
                    service_code="A",
                    service_name="Blue Dart Apex",
                    express=True,
                    estimated_days=2,
                )
            )
        if services.get("GroundInbound") == "Yes":
            rates.append(
                estimate_rate(
                    request,
                    service_code="E",
                    service_name="Blue Dart Surface",
                    express=False,
                    estimated_days=5,
                )
            )
        return self.sort_rates(rates)

    async def create_shipment(
        self, credentials: CourierCredentials, request: ShipmentRequest
    ) -> ShipmentResult:
        consignee = request.delivery
        shipper = request.pickup
        body = {
            "Request": {
                "Consignee": {
                    "ConsigneeName": consignee.name,
                    "ConsigneeAddress1": consignee.line1,
                    "ConsigneeAddress2": consignee.line2,
                    "ConsigneeAddress3": consignee.city,
                    "ConsigneePincode": consignee.pincode,
                    "ConsigneeMobile": consignee.phone,
                    "ConsigneeEmailID": consignee.email,
                },
                "Services": {
                    "ActualWeight": str(request.weight_kg),
                    "CollectableAmount": (
                        str(request.cod_amount or 0) if request.is_cod else "0"
                    ),
                    "CreditReferenceNo": request.order_number,
                    "DeclaredValue": str(request.declared_value),
                    "PieceCount": "1",
                    "ProductCode": request.service_code
                    or ("A" if request.is_express else "E"),
                    "SubProductCode": "C" if request.is_cod else "P",
                    "PickupDate": datetime.now(tz=UTC).strftime("%Y-%m-%d"),
                },
                "Shipper": {
                    "CustomerName": shipper.name,
                    "CustomerAddress1": shipper.line1,
                    "CustomerAddress2": shipper.line2,
                    "CustomerAddress3": shipper.city,
                    "CustomerPincode": shipper.pincode,
                    "CustomerMobile": shipper.phone,
                    "CustomerCode": credentials.account_code or "",
                    "OriginArea": credentials.settings.get("origin_area", ""),
                    "IsToPayCustomer": False,
                },
            }
        }
        result = await self._call(
            credentials,
            "WayBill/WayBillGeneration.svc/rest/GenerateWayBill",
            body,
            "GenerateWaybillResult",
            "generate a waybill",
        )
        awb = result.get("AWBNo")
        if not awb:
            raise CarrierError("Blue Dart did not return an AWB number")
        return ShipmentCreated(
            tracking_number=str(awb),
            external_order_id=request.order_number,
            courier_name="Blue Dart",
        )

    async def get_tracking(
        self, credentials: CourierCredentials, tracking_number: str
    ) -> TrackingResponse:
        result = await self._call(
            credentials,
            "Tracking/TrackingQuery.svc/rest/GetShipmentTracking",
            {"AWBNo": tracking_number},
            "GetShipmentTrackingResult",
            "track the shipment",
        )
        details = result.get("ShipmentTrackingDetails") or []
        events = []
        for detail in details:
            timestamp = parse_timestamp(
                f"{detail.get('StatusDate', '')} {detail.get('StatusTime', '')}"
            )
            if timestamp is None:
                continue
            events.append(
                TrackingEvent(
                    timestamp=timestamp,
                    status=str(detail.get("Status") or ""),
                    location=detail.get("StatusLocation"),
                    remarks=detail.get("Remarks") or detail.get("Instructions"),
                )
            )
        events.sort(key=lambda event: event.timestamp)
        latest = details[0] if details else {}
        code = str(latest.get("StatusType") or "")
        status = self.map_status(code)
        return TrackingResponse(
            tracking_number=tracking_number,
            status=status,
            raw_status=str(latest.get("Status") or code),
            current_location=latest.get("StatusLocation"),
            expected_delivery=parse_timestamp(
                latest.get("ExpectedDeliveryDate")
            ),
            delivered_at=events[-1].timestamp
            if status is ShipmentStatus.DELIVERED and events
            else None,
            delivered_to=latest.get("ReceivedBy"),
            events=events,
        )

    async def cancel_shipment(
        self, credentials: CourierCredentials, tracking_number: str
    ) -> None:
        await self._call(
            credentials,
            "WayBill/WayBillGeneration.svc/rest/CancelWaybill",
            {
                "Request": {
                    "AWBNo": tracking_number,
                    "CancellationReason": "Cancelled by shipper",
                }
            },
            "CancelWaybillResult",
            "cancel the shipment",
        )

    async def schedule_pickup(
        self, credentials: CourierCredentials, request: PickupRequest
    ) -> PickupResponse:
        result = await self._call(
            credentials,
            "Pickup/PickupRegistration.svc/rest/RegisterPickup",
            {
                "request": {
                    "AreaCode": credentials.settings.get("origin_area", ""),
                    "CustomerCode": credentials.account_code or "",
                    "PickupDate": request.pickup_date.strftime("%Y-%m-%d"),
                    "ReadyTime": request.time_slot or "1000",
                    "NumberOfPieces": len(request.tracking_numbers),
                    "ProductType": "A",
                }
            },
            "RegisterPickupResult",
            "register a pickup",
        )
        token = result.get("PickupRegistrationNumber") or result.get(
            "TokenNumber"
        )
        return PickupResponse(
            pickup_id=str(token) if token else None,
            scheduled_date=request.pickup_date,
            shipment_count=len(request.tracking_numbers),
            time_slot=request.time_slot,
        )

    async def get_label(
        self, credentials: CourierCredentials, tracking_number: str
    ) -> bytes:
        result = await self._call(
            credentials,
            "Manifest/Manifest.svc/rest/PrintAWB",
            {"AWBNo": tracking_number},
            "PrintAWBResult",
            "print the label",
        )
        content = result.get("AWBPrintContent")
        if not content:
            raise CarrierError("Blue Dart did not return a label")
        try:
            return base64.b64decode(content)
        except (binascii.Error, ValueError) as exc:
            raise CarrierError("Blue Dart returned an unreadable label") from exc

    def map_status(self, code: str) -> ShipmentStatus | None:
        return STATUS_CODES.get(str(code).strip().upper())

    def parse_webhook(self, payload: dict[str, Any]) -> CarrierEvent:
        tracking_number = require_awb(payload.get("AWBNo"), self.display_name)
        code = str(payload.get("StatusCode") or "")
        timestamp = parse_timestamp(
            f"{payload.get('StatusDate', '')} {payload.get('StatusTime', '')}"
        )
        return CarrierEvent(
            tracking_number=tracking_number,
            carrier_status_code=code,
            status=self.map_status(code),
            timestamp=timestamp or datetime.now(tz=UTC),
            location=payload.get("StatusLocation"),
            remarks=payload.get("Remarks") or payload.get("Status"),
        )
