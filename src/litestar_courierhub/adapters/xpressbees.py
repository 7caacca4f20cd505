"""XpressBees adapter (bearer token from ``users/login``)."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx

from litestar_courierhub.adapters.base import (
    BaseCourierAdapter,
    parse_timestamp,
    to_decimal,
)
from litestar_courierhub.enums import CourierType, ShipmentStatus
from litestar_courierhub.exceptions import CarrierError, InvalidCredentialsError
from litestar_courierhub.types import (
    AccessToken,
    CourierCredentials,
    CourierRate,
    RateRequest,
    ShipmentCreated,
    ShipmentPartiallyCreated,
    ShipmentRequest,
    ShipmentResult,
    TrackingEvent,
    TrackingResponse,
)

logger = logging.getLogger(__name__)

TOKEN_TTL = timedelta(hours=12)

STATUS_CODES: dict[str, ShipmentStatus] = {
    "PP": ShipmentStatus.AWB_ASSIGNED,
    "PU": ShipmentStatus.PICKED_UP,
    "IT": ShipmentStatus.IN_TRANSIT,
    "RAD": ShipmentStatus.IN_TRANSIT,
    "OFD": ShipmentStatus.OUT_FOR_DELIVERY,
    "DL": ShipmentStatus.DELIVERED,
    "UD": ShipmentStatus.NDR_RAISED,
    "RT": ShipmentStatus.RTO_INITIATED,
    "RT-IT": ShipmentStatus.RTO_INITIATED,
    "RTD": ShipmentStatus.RTO_DELIVERED,
    "CN": ShipmentStatus.CANCELLED,
    "LT": ShipmentStatus.LOST,
}

STATUS_TEXT: dict[str, ShipmentStatus] = {
    "pending pickup": ShipmentStatus.AWB_ASSIGNED,
    "picked up": ShipmentStatus.PICKED_UP,
    "in transit": ShipmentStatus.IN_TRANSIT,
    "out for delivery": ShipmentStatus.OUT_FOR_DELIVERY,
    "delivered": ShipmentStatus.DELIVERED,
    "exception": ShipmentStatus.NDR_RAISED,
    "rto": ShipmentStatus.RTO_INITIATED,
    "rto delivered": ShipmentStatus.RTO_DELIVERED,
    "cancelled": ShipmentStatus.CANCELLED,
    "lost": ShipmentStatus.LOST,
}


class XpressBeesAdapter(BaseCourierAdapter):
    courier_type = CourierType.XPRESSBEES
    display_name = "XpressBees"
    default_base_url = "https://shipment.xpressbees.com/api"

    async def _login(self, credentials: CourierCredentials) -> AccessToken:
        if not credentials.api_key or not credentials.api_secret:
            raise InvalidCredentialsError(
                "XpressBees requires an account email and password"
            )
        response = await self._request(
            "POST",
            "users/login",
            json={
                "email": credentials.api_key,
                "password": credentials.api_secret,
            },
        )
        body = self._json(response) if response.is_success else {}
        if not body.get("status") or not body.get("data"):
            raise InvalidCredentialsError("XpressBees rejected the credentials")
        return AccessToken(
            value=str(body["data"]),
            expires_at=datetime.now(tz=UTC) + TOKEN_TTL,
        )

    async def _authed(
        self,
        credentials: CourierCredentials,
        method: str,
        path: str,
        **kwargs: Any,
    ) -> httpx.Response:
        token = await self._tokens.get_token(credentials, self._login)
        try:
            return await self._request(
                method,
                path,
                headers={"Authorization": f"Bearer {token}"},
                **kwargs,
            )
        except InvalidCredentialsError:
            self._tokens.invalidate(credentials)
            raise

    async def _data(
        self,
        credentials: CourierCredentials,
        method: str,
        path: str,
        action: str,
        **kwargs: Any,
    ) -> Any:
        response = await self._authed(credentials, method, path, **kwargs)
        self._raise_for_status(response, action)
        body = self._json(response)
        if not body.get("status"):
            raise CarrierError(
                f"XpressBees could not {action}: "
                f"{body.get('message') or 'unknown error'}"
            )
        return body.get("data")

    async def validate_credentials(
        self, credentials: CourierCredentials
    ) -> None:
        self._tokens.invalidate(credentials)
        await self._tokens.get_token(credentials, self._login)

    async def get_rates(
        self, credentials: CourierCredentials, request: RateRequest
    ) -> list[CourierRate]:
        try:
            data = await self._data(
                credentials,
                "POST",
                "courier/serviceability",
                "check serviceability",
                json={
                    "origin": request.pickup_pincode,
                    "destination": request.delivery_pincode,
                    "payment_type": "cod" if request.is_cod else "prepaid",
                    "order_amount": str(
                        request.cod_amount or request.declared_value or 0
                    ),
                    "weight": str(int(request.weight_kg * 1000)),
                    "length": str(request.length_cm or 10),
                    "breadth": str(request.width_cm or 10),
                    "height": str(request.height_cm or 10),
                },
            )
        except CarrierError as exc:
            logger.info("XpressBees not serviceable: %s", exc)
            return []

        rates = []
        for option in data or []:
            name = str(option.get("name") or "")
            express = "air" in name.lower() or "express" in name.lower()
            rates.append(
                CourierRate(
                    service_code=str(option.get("id", "")),
                    service_name=f"XpressBees {name}".strip(),
                    freight_charge=to_decimal(option.get("freight_charges")),
                    cod_charge=to_decimal(option.get("cod_charges")),
                    total_charge=to_decimal(option.get("total_charges")),
                    estimated_days=2 if express else 5,
                    is_express=express,
                    is_surface=not express,
                )
            )
        return self.sort_rates(rates)

    async def create_shipment(
        self, credentials: CourierCredentials, request: ShipmentRequest
    ) -> ShipmentResult:
        pickup, delivery = request.pickup, request.delivery
        payload: dict[str, Any] = {
            "order_number": request.order_number,
            "payment_type": "cod" if request.is_cod else "prepaid",
            "order_amount": str(request.declared_value),
            "collectable_amount": str(request.cod_amount or 0)
            if request.is_cod
            else "0",
            "package_weight": int(request.weight_kg * 1000),
            "package_length": str(request.length_cm or 10),
            "package_breadth": str(request.width_cm or 10),
            "package_height": str(request.height_cm or 10),
            "consignee": {
                "name": delivery.name,
                "address": delivery.line1,
                "address_2": delivery.line2,
                "city": delivery.city,
                "state": delivery.state,
                "pincode": delivery.pincode,
                "phone": delivery.phone,
            },
            "pickup": {
                "warehouse_name": credentials.settings.get(
                    "pickup_location", pickup.name
                ),
                "name": pickup.name,
                "address": pickup.line1,
                "address_2": pickup.line2,
                "city": pickup.city,
                "state": pickup.state,
                "pincode": pickup.pincode,
                "phone": pickup.phone,
            },
            "order_items": [
                {
                    "name": item.name,
                    "qty": str(item.quantity),
                    "price": str(item.unit_price),
                    "sku": item.sku or item.name,
                }
                for item in request.items
            ],
        }
        if request.service_code:
            payload["courier_id"] = request.service_code

        data = await self._data(
            credentials,
            "POST",
            "shipments2",
            "create the shipment",
            json=payload,
        )
        data = data or {}
        order_id = str(data.get("order_id") or request.order_number)
        awb = data.get("awb_number")
        if not awb:
            return ShipmentPartiallyCreated(
                external_order_id=order_id,
                external_shipment_id=str(data.get("shipment_id") or "") or None,
                awb_error="XpressBees created the order without an AWB",
            )
        return ShipmentCreated(
            tracking_number=str(awb),
            external_order_id=order_id,
            external_shipment_id=str(data.get("shipment_id") or "") or None,
            courier_name=data.get("courier_name") or "XpressBees",
            label_url=data.get("label"),
        )

    async def get_tracking(
        self, credentials: CourierCredentials, tracking_number: str
    ) -> TrackingResponse:
        data = await self._data(
            credentials,
            "GET",
            f"shipments2/track/{tracking_number}",
            "track the shipment",
        )
        data = data or {}
        events = []
        for item in data.get("history") or []:
            timestamp = parse_timestamp(item.get("event_time"))
            if timestamp is None:
                continue
            events.append(
                TrackingEvent(
                    timestamp=timestamp,
                    status=str(item.get("status_code") or ""),
                    location=item.get("location"),
                    remarks=item.get("message"),
                )
            )
        events.sort(key=lambda event: event.timestamp)
        raw_status = str(data.get("status") or "")
        status = self.map_status(raw_status)
        return TrackingResponse(
            tracking_number=tracking_number,
            status=status,
            raw_status=raw_status,
            current_location=events[-1].location if events else None,
            delivered_at=events[-1].timestamp
            if status is ShipmentStatus.DELIVERED and events
            else None,
            events=events,
        )

    async def cancel_shipment(
        self, credentials: CourierCredentials, tracking_number: str
    ) -> None:
        await self._data(
            credentials,
            "POST",
            "shipments2/cancel",
            "cancel the shipment",
            json={"awb": tracking_number},
        )

    async def get_label(
        self, credentials: CourierCredentials, tracking_number: str
    ) -> bytes:
        data = await self._data(
            credentials,
            "GET",
            f"shipments2/track/{tracking_number}",
            "look up the label",
        )
        label_url = (data or {}).get("label")
        if not label_url:
            raise CarrierError("XpressBees did not return a label")
        download = await self._request("GET", label_url)
        self._raise_for_status(download, "download the label")
        return download.content

    def map_status(self, code: str) -> ShipmentStatus | None:
        code = str(code).strip()
        return STATUS_CODES.get(code.upper()) or STATUS_TEXT.get(code.lower())
