"""Shiprocket aggregator adapter."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx

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
    TransportError,
)
from litestar_courierhub.signatures import SharedTokenHeader
from litestar_courierhub.types import (
    AccessToken,
    CarrierEvent,
    CourierCredentials,
    CourierRate,
    PickupRequest,
    PickupResponse,
    RateRequest,
    ShipmentCreated,
    ShipmentPartiallyCreated,
    ShipmentRequest,
    ShipmentResult,
    TrackingEvent,
    TrackingResponse,
)

logger = logging.getLogger(__name__)

# Shiprocket tokens are valid for 240 hours.
TOKEN_TTL = timedelta(hours=240)

AWB_ASSIGN_FAILED = (
    "Failed to assign courier. AWB Assign Status: {status}. "
    "Possible reasons: No serviceable courier found for this route, "
    "or insufficient wallet balance."
)

STATUS_IDS: dict[int, ShipmentStatus] = {
    1: ShipmentStatus.AWB_ASSIGNED,
    2: ShipmentStatus.AWB_ASSIGNED,
    3: ShipmentStatus.AWB_ASSIGNED,
    4: ShipmentStatus.AWB_ASSIGNED,
    5: ShipmentStatus.AWB_ASSIGNED,
    6: ShipmentStatus.IN_TRANSIT,
    7: ShipmentStatus.DELIVERED,
    8: ShipmentStatus.CANCELLED,
    9: ShipmentStatus.RTO_INITIATED,
    10: ShipmentStatus.RTO_DELIVERED,
    11: ShipmentStatus.LOST,
    12: ShipmentStatus.NDR_RAISED,
    13: ShipmentStatus.OUT_FOR_DELIVERY,
    16: ShipmentStatus.IN_TRANSIT,
    17: ShipmentStatus.PICKED_UP,
    18: ShipmentStatus.PICKED_UP,
    19: ShipmentStatus.RTO_INITIATED,
    20: ShipmentStatus.RTO_INITIATED,
}

STATUS_TEXT: dict[str, ShipmentStatus] = {
    "AWB ASSIGNED": ShipmentStatus.AWB_ASSIGNED,
    "PICKUP SCHEDULED": ShipmentStatus.AWB_ASSIGNED,
    "MANIFEST GENERATED": ShipmentStatus.AWB_ASSIGNED,
    "PICKED UP": ShipmentStatus.PICKED_UP,
    "SHIPPED": ShipmentStatus.IN_TRANSIT,
    "IN TRANSIT": ShipmentStatus.IN_TRANSIT,
    "OUT FOR DELIVERY": ShipmentStatus.OUT_FOR_DELIVERY,
    "DELIVERED": ShipmentStatus.DELIVERED,
    "UNDELIVERED": ShipmentStatus.NDR_RAISED,
    "CANCELED": ShipmentStatus.CANCELLED,
    "CANCELLED": ShipmentStatus.CANCELLED,
    "RTO INITIATED": ShipmentStatus.RTO_INITIATED,
    "RTO DELIVERED": ShipmentStatus.RTO_DELIVERED,
    "LOST": ShipmentStatus.LOST,
}


def _split_name(name: str) -> tuple[str, str]:
    first, _, last = name.strip().partition(" ")
    return first, last


class ShiprocketAdapter(BaseCourierAdapter):
    courier_type = CourierType.SHIPROCKET
    display_name = "Shiprocket"
    default_base_url = "https://apiv2.shiprocket.in/v1/external"
    webhook_verifier = SharedTokenHeader("x-api-key")
    supports_awb_assignment = True

    async def _login(self, credentials: CourierCredentials) -> AccessToken:
        if not credentials.api_key or not credentials.api_secret:
            raise InvalidCredentialsError(
                "Shiprocket requires an API user email and password"
            )
        response = await self._request(
            "POST",
            "auth/login",
            json={
                "email": credentials.api_key,
                "password": credentials.api_secret,
            },
        )
        body = self._json(response) if response.is_success else {}
        token = body.get("token") if isinstance(body, dict) else None
        if not token:
            raise InvalidCredentialsError("Shiprocket rejected the credentials")
        return AccessToken(
            value=token, expires_at=datetime.now(tz=UTC) + TOKEN_TTL
        )

    async def _authed(
        self,
        credentials: CourierCredentials,
        method: str,
        path: str,
        **kwargs: Any,
    ) -> httpx.Response:
        token = await self._tokens.get_token(credentials, self._login)
        headers = {"Authorization": f"Bearer {token}"}
        try:
            return await self._request(method, path, headers=headers, **kwargs)
        except InvalidCredentialsError:
            self._tokens.invalidate(credentials)
            raise

    async def validate_credentials(
        self, credentials: CourierCredentials
    ) -> None:
        self._tokens.invalidate(credentials)
        await self._tokens.get_token(credentials, self._login)

    async def get_rates(
        self, credentials: CourierCredentials, request: RateRequest
    ) -> list[CourierRate]:
        params: dict[str, Any] = {
            "pickup_postcode": request.pickup_pincode,
            "delivery_postcode": request.delivery_pincode,
            "weight": str(request.weight_kg),
            "cod": 1 if request.is_cod else 0,
        }
        if request.declared_value is not None:
            params["declared_value"] = str(request.declared_value)
        for key, value in (
            ("length", request.length_cm),
            ("breadth", request.width_cm),
            ("height", request.height_cm),
        ):
            if value is not None:
                params[key] = str(value)

        response = await self._authed(
            credentials, "GET", "courier/serviceability/", params=params
        )
        if response.status_code == 404:
            return []
        self._raise_for_status(response, "check serviceability")
        body = self._json(response)
        data = body.get("data") or {}
        companies = data.get("available_courier_companies") or []

        rates = []
        for company in companies:
            if company.get("blocked"):
                continue
            freight = to_decimal(company.get("freight_charge"))
            cod = to_decimal(company.get("cod_charges"))
            total = to_decimal(company.get("rate"), default=str(freight + cod))
            is_surface = bool(company.get("is_surface"))
            rates.append(
                CourierRate(
                    service_code=str(company.get("courier_company_id", "")),
                    service_name=company.get("courier_name", ""),
                    freight_charge=freight,
                    cod_charge=cod,
                    total_charge=total,
                    estimated_days=int(
                        company.get("estimated_delivery_days") or 0
                    ),
                    expected_delivery=parse_timestamp(company.get("etd")),
                    is_express=not is_surface,
                    is_surface=is_surface,
                )
            )
        return self.sort_rates(rates)

    def _order_payload(
        self, credentials: CourierCredentials, request: ShipmentRequest
    ) -> dict[str, Any]:
        first, last = _split_name(request.delivery.name)
        payload: dict[str, Any] = {
            "order_id": request.order_number,
            "order_date": datetime.now(tz=UTC).strftime("%Y-%m-%d %H:%M"),
            "pickup_location": credentials.settings.get(
                "pickup_location", "Primary"
            ),
            "billing_customer_name": first,
            "billing_last_name": last,
            "billing_address": request.delivery.line1,
            "billing_address_2": request.delivery.line2,
            "billing_city": request.delivery.city,
            "billing_pincode": request.delivery.pincode,
            "billing_state": request.delivery.state,
            "billing_country": request.delivery.country,
            "billing_email": request.delivery.email,
            "billing_phone": request.delivery.phone,
            "shipping_is_billing": True,
            "order_items": [
                {
                    "name": item.name,
                    "sku": item.sku or item.name,
                    "units": item.quantity,
                    "selling_price": str(item.unit_price),
                }
                for item in request.items
            ],
            "payment_method": "COD" if request.is_cod else "Prepaid",
            "sub_total": str(request.cod_amount or request.declared_value),
            "length": str(request.length_cm or 10),
            "breadth": str(request.width_cm or 10),
            "height": str(request.height_cm or 10),
            "weight": str(request.weight_kg),
        }
        if credentials.channel_id:
            payload["channel_id"] = credentials.channel_id
        return payload

    async def create_shipment(
        self, credentials: CourierCredentials, request: ShipmentRequest
    ) -> ShipmentResult:
        path = (
            "orders/create" if credentials.channel_id else "orders/create/adhoc"
        )
        response = await self._authed(
            credentials,
            "POST",
            path,
            json=self._order_payload(credentials, request),
        )
        self._raise_for_status(response, "create the order")
        body = self._json(response)
        order_id = str(body.get("order_id") or "")
        shipment_id = str(body.get("shipment_id") or "")
        if not order_id or not shipment_id:
            raise CarrierError(
                f"Shiprocket did not create the order: {body.get('message')}"
            )

        if body.get("awb_code"):
            return ShipmentCreated(
                tracking_number=str(body["awb_code"]),
                external_order_id=order_id,
                external_shipment_id=shipment_id,
                courier_name=body.get("courier_name"),
            )

        try:
            return await self.assign_awb(
                credentials, shipment_id, request.service_code
            )
        except (CarrierError, TransportError) as exc:
            logger.warning(
                "Shiprocket order %s created without AWB: %s", order_id, exc
            )
            return ShipmentPartiallyCreated(
                external_order_id=order_id,
                external_shipment_id=shipment_id,
                awb_error=str(exc),
            )

    async def assign_awb(
        self,
        credentials: CourierCredentials,
        external_shipment_id: str,
        service_code: str | None = None,
    ) -> ShipmentResult:
        payload: dict[str, Any] = {"shipment_id": external_shipment_id}
        if service_code:
            payload["courier_id"] = service_code
        response = await self._authed(
            credentials, "POST", "courier/assign/awb", json=payload
        )
        self._raise_for_status(response, "assign an AWB")
        body = self._json(response)
        status = body.get("awb_assign_status", 0)
        data = (body.get("response") or {}).get("data") or {}
        awb = data.get("awb_code")
        if status != 1 or not awb:
            raise CarrierError(AWB_ASSIGN_FAILED.format(status=status))
        return ShipmentCreated(
            tracking_number=str(awb),
            external_order_id=str(data.get("order_id") or "") or None,
            external_shipment_id=external_shipment_id,
            courier_name=data.get("courier_name"),
        )

    async def _track(
        self, credentials: CourierCredentials, tracking_number: str
    ) -> dict[str, Any]:
        response = await self._authed(
            credentials, "GET", f"courier/track/awb/{tracking_number}"
        )
        self._raise_for_status(response, "track the shipment")
        body = self._json(response)
        return body.get("tracking_data") or {}

    async def get_tracking(
        self, credentials: CourierCredentials, tracking_number: str
    ) -> TrackingResponse:
        data = await self._track(credentials, tracking_number)
        tracks = data.get("shipment_track") or [{}]
        current = tracks[0]
        raw_status = str(
            data.get("shipment_status") or current.get("current_status") or ""
        )

        events = []
        for activity in data.get("shipment_track_activities") or []:
            timestamp = parse_timestamp(activity.get("date"))
            if timestamp is None:
                continue
            events.append(
                TrackingEvent(
                    timestamp=timestamp,
                    status=activity.get("sr-status-label")
                    or str(activity.get("status", "")),
                    location=activity.get("location"),
                    remarks=activity.get("activity"),
                )
            )
        events.sort(key=lambda event: event.timestamp)

        return TrackingResponse(
            tracking_number=tracking_number,
            status=self.map_status(raw_status),
            raw_status=raw_status,
            current_location=events[-1].location if events else None,
            expected_delivery=parse_timestamp(data.get("etd")),
            delivered_at=parse_timestamp(current.get("delivered_date")),
            delivered_to=current.get("delivered_to"),
            events=events,
        )

    async def cancel_shipment(
        self, credentials: CourierCredentials, tracking_number: str
    ) -> None:
        response = await self._authed(
            credentials,
            "POST",
            "orders/cancel/shipment/awbs",
            json={"awbs": [tracking_number]},
        )
        self._raise_for_status(response, "cancel the shipment")

    async def schedule_pickup(
        self, credentials: CourierCredentials, request: PickupRequest
    ) -> PickupResponse:
        if not request.shipment_ids:
            raise CarrierError("Shiprocket pickups need Shiprocket shipment ids")
        response = await self._authed(
            credentials,
            "POST",
            "courier/generate/pickup",
            json={
                "shipment_id": [int(sid) for sid in request.shipment_ids],
                "pickup_date": [request.pickup_date.strftime("%Y-%m-%d")],
            },
        )
        self._raise_for_status(response, "schedule a pickup")
        body = self._json(response)
        details = body.get("response") or {}
        return PickupResponse(
            pickup_id=details.get("pickup_token_number"),
            scheduled_date=parse_timestamp(
                details.get("pickup_scheduled_date")
            )
            or request.pickup_date,
            shipment_count=len(request.shipment_ids),
            time_slot=request.time_slot,
        )

    async def get_label(
        self, credentials: CourierCredentials, tracking_number: str
    ) -> bytes:
        data = await self._track(credentials, tracking_number)
        tracks = data.get("shipment_track") or [{}]
        shipment_id = tracks[0].get("shipment_id")
        if not shipment_id:
            raise CarrierError(
                f"Shiprocket has no shipment for AWB {tracking_number}"
            )
        response = await self._authed(
            credentials,
            "POST",
            "courier/generate/label",
            json={"shipment_id": [shipment_id]},
        )
        self._raise_for_status(response, "generate the label")
        label_url = self._json(response).get("label_url")
        if not label_url:
            raise CarrierError("Shiprocket did not return a label")
        download = await self._request("GET", label_url)
        self._raise_for_status(download, "download the label")
        return download.content

    def map_status(self, code: str) -> ShipmentStatus | None:
        code = str(code).strip()
        if code.isdigit():
            return STATUS_IDS.get(int(code))
        return STATUS_TEXT.get(code.upper())

    def parse_webhook(self, payload: dict[str, Any]) -> CarrierEvent:
        tracking_number = require_awb(payload.get("awb"), self.display_name)
        status_id = payload.get("current_status_id")
        code = (
            str(status_id)
            if status_id not in (None, "")
            else str(payload.get("current_status") or "")
        )
        scans = payload.get("scans") or []
        last_scan = scans[-1] if scans else {}
        return CarrierEvent(
            tracking_number=tracking_number,
            carrier_status_code=code,
            status=self.map_status(code),
            timestamp=parse_timestamp(payload.get("current_timestamp"))
            or datetime.now(tz=UTC),
            location=payload.get("location") or last_scan.get("location"),
            remarks=payload.get("current_status") or last_scan.get("activity"),
        )
