"""Inbound carrier webhook pipeline.

Every carrier goes through the same steps: verify, deduplicate, parse,
look up the shipment, transition. Requests that are the sender's fault
(bad signature, unreadable body) are rejected with a 4xx. Anything that
goes wrong on our side is acknowledged with a 200 so the carrier does
not keep redelivering.
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import timedelta

from litestar_courierhub.config import CourierHubConfig
from litestar_courierhub.enums import TransitionSource
from litestar_courierhub.exceptions import (
    ConfigurationError,
    DuplicateEventError,
    InvalidTransitionError,
    MalformedPayloadError,
    SignatureInvalidError,
)
from litestar_courierhub.locks import KeyedLock
from litestar_courierhub.models import utcnow
from litestar_courierhub.protocols import InboundEventStore
from litestar_courierhub.registry import AdapterRegistry
from litestar_courierhub.shipments import ShipmentService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IngestionResult:
    status_code: int
    success: bool
    message: str

    @classmethod
    def ok(cls, message: str) -> IngestionResult:
        return cls(status_code=200, success=True, message=message)

    @classmethod
    def rejected(cls, status_code: int, message: str) -> IngestionResult:
        return cls(status_code=status_code, success=False, message=message)


def idempotency_key(carrier: str, event_id: str | None, body: bytes) -> str:
    """Carrier event id when supplied, otherwise a hash of the raw body."""
    if event_id:
        return f"{carrier}:{event_id}"
    return f"{carrier}:sha256:{hashlib.sha256(body).hexdigest()}"


class WebhookIngestion:
    def __init__(
        self,
        *,
        registry: AdapterRegistry,
        shipments: ShipmentService,
        event_store: InboundEventStore,
        config: CourierHubConfig,
    ) -> None:
        self.registry = registry
        self.shipments = shipments
        self.event_store = event_store
        self.config = config
        self._locks = KeyedLock()

    def _verify(
        self, carrier: str, body: bytes, headers: Mapping[str, str]
    ) -> None:
        verifier = self.registry.get(carrier).webhook_verifier
        if not verifier.requires_secret:
            return
        secret = self.config.webhook_secret_for(carrier)
        if secret is None:
            logger.warning(
                "No webhook secret configured for %s, skipping verification",
                carrier,
            )
            return
        if not verifier.verify(body, headers, secret):
            raise SignatureInvalidError()

    async def _claim(self, key: str, carrier: str) -> None:
        if not await self.event_store.claim(key, carrier):
            raise DuplicateEventError(key)

    async def handle(
        self, carrier: str, body: bytes, headers: Mapping[str, str]
    ) -> IngestionResult:
        try:
            adapter = self.registry.get(carrier)
            self._verify(carrier, body, headers)
        except ConfigurationError:
            return IngestionResult.rejected(404, f"Unknown carrier {carrier!r}")
        except SignatureInvalidError as exc:
            logger.warning("Rejected %s webhook: invalid signature", carrier)
            return IngestionResult.rejected(401, str(exc))

        try:
            payload = json.loads(body)
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            logger.warning("Rejected %s webhook: body is not a JSON object", carrier)
            return IngestionResult.rejected(400, MalformedPayloadError.default_message)

        key = idempotency_key(carrier, adapter.webhook_event_id(payload), body)
        async with self._locks.acquire(key):
            try:
                await self._claim(key, carrier)
            except DuplicateEventError:
                logger.info("Duplicate %s webhook %s ignored", carrier, key)
                return IngestionResult.ok("Duplicate event ignored")

            try:
                return await self._process(carrier, key, payload)
            except MalformedPayloadError as exc:
                await self.event_store.release(key)
                logger.warning("Rejected %s webhook: %s", carrier, exc)
                return IngestionResult.rejected(400, str(exc))
            except Exception:
                await self.event_store.release(key)
                logger.exception("Failed to process %s webhook %s", carrier, key)
                return IngestionResult(
                    status_code=200,
                    success=False,
                    message="Webhook received but could not be processed",
                )

    async def _process(
        self, carrier: str, key: str, payload: dict
    ) -> IngestionResult:
        event = self.registry.get(carrier).parse_webhook(payload)

        if event.status is None:
            logger.warning(
                "Unknown %s status %r for AWB %s",
                carrier,
                event.carrier_status_code,
                event.tracking_number,
            )
            return IngestionResult.ok("Status not tracked")

        shipment = await self.shipments.find_by_tracking_number(
            event.tracking_number
        )
        if shipment is None:
            await self.event_store.release(key)
            logger.warning(
                "No shipment for %s AWB %s, webhook acknowledged",
                carrier,
                event.tracking_number,
            )
            return IngestionResult.ok("Shipment not found")

        try:
            await self.shipments.apply_status(
                shipment.id,
                event.status,
                source=TransitionSource.CARRIER,
                timestamp=event.timestamp,
                location=event.location,
                remarks=event.remarks,
            )
        except InvalidTransitionError as exc:
            logger.info(
                "Stale %s webhook for shipment %s: %s", carrier, shipment.id, exc
            )
            return IngestionResult.ok("Stale status ignored")
        return IngestionResult.ok("Webhook processed")

    async def prune(self) -> int:
        """Drop dedup records older than the retention window."""
        cutoff = utcnow() - timedelta(days=self.config.inbound_event_retention_days)
        removed = await self.event_store.prune(cutoff)
        logger.info("Pruned %d inbound webhook records", removed)
        return removed
