"""Base class shared by all courier adapters."""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from datetime import UTC, datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, ClassVar

import httpx

from litestar_courierhub.credentials import TokenCache
from litestar_courierhub.enums import CourierType, ShipmentStatus
from litestar_courierhub.exceptions import (
    CarrierError,
    InvalidCredentialsError,
    MalformedPayloadError,
    TransportError,
)
from litestar_courierhub.signatures import NoSignature, WebhookVerifier
from litestar_courierhub.types import (
    CarrierEvent,
    CourierCredentials,
    CourierRate,
    PickupRequest,
    PickupResponse,
    RateRequest,
    ShipmentRequest,
    ShipmentResult,
    TrackingResponse,
)

logger = logging.getLogger(__name__)

IST = timezone(timedelta(hours=5, minutes=30))

_TIMESTAMP_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%d-%m-%Y %H:%M:%S",
    "%d %m %Y %H:%M:%S",
    "%d-%m-%Y %H:%M",
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M",
    "%d-%b-%Y %H:%M",
    "%d %b %Y %H:%M",
    "%Y-%m-%d",
    "%d-%m-%Y",
    "%d-%b-%Y",
)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a carrier timestamp. Naive values are read as IST."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            for fmt in _TIMESTAMP_FORMATS:
                try:
                    parsed = datetime.strptime(text, fmt)
                    break
                except ValueError:
                    continue
            else:
                return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=IST)
    return parsed


def to_decimal(value: Any, default: str = "0") -> Decimal:
    if value is None or value == "":
        return Decimal(default)
    try:
        return Decimal(str(value))
    except ArithmeticError:
        return Decimal(default)


def chargeable_weight(weight_kg: Decimal) -> Decimal:
    """Round up to the next half kilo, minimum 0.5 kg."""
    halves = math.ceil(float(weight_kg) * 2) / 2
    return Decimal(str(max(0.5, halves)))


def estimate_rate(
    request: RateRequest,
    *,
    service_code: str,
    service_name: str,
    express: bool,
    estimated_days: int,
) -> CourierRate:
    """Tariff estimate for carriers without a rate API."""
    base, per_kg = (Decimal("55"), Decimal("28")) if express else (
        Decimal("40"),
        Decimal("18"),
    )
    freight = base + chargeable_weight(request.weight_kg) * per_kg
    cod = Decimal("0")
    if request.is_cod:
        cod_amount = request.cod_amount or Decimal("0")
        cod = max(Decimal("50"), cod_amount * Decimal("0.02"))
    cents = Decimal("0.01")
    freight = freight.quantize(cents, rounding=ROUND_HALF_UP)
    cod = cod.quantize(cents, rounding=ROUND_HALF_UP)
    return CourierRate(
        service_code=service_code,
        service_name=service_name,
        freight_charge=freight,
        cod_charge=cod,
        total_charge=freight + cod,
        estimated_days=estimated_days,
        expected_delivery=(
            datetime.now(tz=UTC) + timedelta(days=estimated_days)
        ),
        is_express=express,
        is_surface=not express,
    )


def require_awb(value: Any, carrier: str) -> str:
    tracking_number = str(value or "").strip()
    if not tracking_number:
        raise MalformedPayloadError(f"{carrier} webhook has no tracking number")
    return tracking_number


class BaseCourierAdapter(ABC):
    """Common transport and error mapping for carrier integrations.

    Subclasses implement the capability set and own the translation of
    their status vocabulary. Adapters never retry; a transport failure is
    raised as :class:`TransportError` and the caller decides.
    """

    courier_type: ClassVar[CourierType]
    display_name: ClassVar[str]
    default_base_url: ClassVar[str] = ""
    webhook_verifier: ClassVar[WebhookVerifier] = NoSignature()
    supports_awb_assignment: ClassVar[bool] = False

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        base_url: str | None = None,
        timeout: float = 30.0,
        token_cache: TokenCache | None = None,
    ) -> None:
        self._client = client
        self._tokens = token_cache or TokenCache()
        self.base_url = (base_url or self.default_base_url).rstrip("/")
        self.timeout = timeout

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    async def _request(
        self,
        method: str,
        path: str,
        **kwargs: Any,
    ) -> httpx.Response:
        url = self._url(path)
        try:
            response = await self._client.request(
                method, url, timeout=self.timeout, **kwargs
            )
        except httpx.TimeoutException as exc:
            logger.warning("%s %s %s timed out", self.display_name, method, path)
            raise TransportError(
                f"{self.display_name} did not respond within {self.timeout}s"
            ) from exc
        except httpx.TransportError as exc:
            logger.warning(
                "%s %s %s failed: %s", self.display_name, method, path, exc
            )
            raise TransportError(
                f"{self.display_name} could not be reached"
            ) from exc

        if response.status_code in (401, 403):
            raise InvalidCredentialsError(
                f"{self.display_name} rejected the credentials"
            )
        if response.status_code >= 500:
            raise TransportError(
                f"{self.display_name} returned HTTP {response.status_code}"
            )
        return response

    def _json(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise CarrierError(
                f"{self.display_name} returned a non-JSON response"
            ) from exc

    def _raise_for_status(self, response: httpx.Response, action: str) -> None:
        if response.is_success:
            return
        message = None
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            message = body.get("message") or body.get("error")
        raise CarrierError(
            f"{self.display_name} could not {action}: "
            f"{message or f'HTTP {response.status_code}'}"
        )

    def _unsupported(self, operation: str) -> CarrierError:
        return CarrierError(f"{self.display_name} does not support {operation}")

    @abstractmethod
    async def validate_credentials(
        self, credentials: CourierCredentials
    ) -> None:
        """Raise InvalidCredentialsError if the carrier rejects them."""

    @abstractmethod
    async def get_rates(
        self, credentials: CourierCredentials, request: RateRequest
    ) -> list[CourierRate]:
        """Service options sorted ascending by total charge."""

    @abstractmethod
    async def create_shipment(
        self, credentials: CourierCredentials, request: ShipmentRequest
    ) -> ShipmentResult: ...

    @abstractmethod
    async def get_tracking(
        self, credentials: CourierCredentials, tracking_number: str
    ) -> TrackingResponse: ...

    @abstractmethod
    async def cancel_shipment(
        self, credentials: CourierCredentials, tracking_number: str
    ) -> None: ...

    async def assign_awb(
        self,
        credentials: CourierCredentials,
        external_shipment_id: str,
        service_code: str | None = None,
    ) -> ShipmentResult:
        """Assign a tracking number to a shipment created earlier."""
        raise self._unsupported("deferred AWB assignment")

    async def schedule_pickup(
        self, credentials: CourierCredentials, request: PickupRequest
    ) -> PickupResponse:
        raise self._unsupported("pickup scheduling")

    async def get_label(
        self, credentials: CourierCredentials, tracking_number: str
    ) -> bytes:
        raise self._unsupported("label download")

    @abstractmethod
    def map_status(self, code: str) -> ShipmentStatus | None:
        """Translate a carrier status code; None if unrecognized."""

    def parse_webhook(self, payload: dict[str, Any]) -> CarrierEvent:
        raise self._unsupported("webhooks")

    def webhook_event_id(self, payload: dict[str, Any]) -> str | None:
        """Carrier-native event id used for deduplication, if any."""
        return None

    @staticmethod
    def sort_rates(rates: list[CourierRate]) -> list[CourierRate]:
        return sorted(rates, key=lambda rate: rate.total_charge)
