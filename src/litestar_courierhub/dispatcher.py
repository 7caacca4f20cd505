"""Outbound webhook delivery to tenant subscribers."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections import Counter
from collections.abc import Coroutine, Iterable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any
from urllib.parse import urlparse

import httpx

from litestar_courierhub import __version__
from litestar_courierhub.config import CourierHubConfig
from litestar_courierhub.enums import DeliveryStatus, WebhookEvent
from litestar_courierhub.events import DomainEvent
from litestar_courierhub.exceptions import (
    ExhaustedRetriesError,
    SubscriptionNotFoundError,
)
from litestar_courierhub.locks import KeyedLock
from litestar_courierhub.models import (
    WebhookDelivery,
    WebhookSubscription,
    utcnow,
)
from litestar_courierhub.protocols import (
    WebhookDeliveryRepository,
    WebhookSubscriptionRepository,
)
from litestar_courierhub.retry import (
    compute_backoff_delay,
    compute_next_retry_at,
)
from litestar_courierhub.signatures import generate_secret, sign_payload

logger = logging.getLogger(__name__)

TEST_EVENT = "webhook.test"


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    raise TypeError(f"{type(value).__name__} is not JSON serializable")


def build_payload(event: str, occurred_at: datetime, data: dict) -> str:
    """Canonical body: sorted keys, no whitespace."""
    return json.dumps(
        {"event": event, "occurredAt": occurred_at.isoformat(), "data": data},
        sort_keys=True,
        separators=(",", ":"),
        default=_json_default,
    )


def truncate_body(body: str | None, limit: int) -> str | None:
    if body is None or len(body) <= limit:
        return body
    return body[:limit] + "..."


def validate_url(url: str) -> str:
    url = url.strip()
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError("Webhook URL must be an absolute http(s) URL")
    return url


@dataclass(frozen=True)
class AttemptResult:
    success: bool
    status_code: int | None
    response_body: str | None
    duration_ms: float
    error: str | None = None


class OutboundWebhookDispatcher:
    """Fans domain events out to subscriber URLs.

    Each delivery gets one initial attempt plus up to ``max_retries``
    retries with exponential backoff. Waits between attempts are timers
    on a per-subscription event, so deactivating a subscription wakes
    its pending deliveries and stops them. Implements
    :class:`~litestar_courierhub.protocols.EventPublisher`.
    """

    def __init__(
        self,
        *,
        subscriptions: WebhookSubscriptionRepository,
        deliveries: WebhookDeliveryRepository,
        client: httpx.AsyncClient,
        config: CourierHubConfig,
    ) -> None:
        self.subscriptions = subscriptions
        self.deliveries = deliveries
        self.client = client
        self.config = config
        self._tasks: set[asyncio.Task] = set()
        self._in_flight: set[str] = set()
        self._cancelled: dict[str, asyncio.Event] = {}
        self._running: Counter[str] = Counter()
        self._counter_locks = KeyedLock()

    # Subscriptions

    async def get_subscription(
        self, subscription_id: str
    ) -> WebhookSubscription:
        try:
            return await self.subscriptions.get_by_id(subscription_id)
        except KeyError as exc:
            raise SubscriptionNotFoundError(subscription_id) from exc

    async def create_subscription(
        self,
        tenant_id: str,
        *,
        name: str,
        url: str,
        events: Iterable[WebhookEvent | str],
        secret: str | None = None,
        max_retries: int | None = None,
        timeout_seconds: float | None = None,
        headers: dict[str, str] | None = None,
    ) -> WebhookSubscription:
        name = name.strip()
        if not name:
            raise ValueError("Subscription name is required")
        event_set = list(dict.fromkeys(WebhookEvent(e) for e in events))
        if not event_set:
            raise ValueError("Subscribe to at least one event")
        if max_retries is None:
            max_retries = self.config.default_subscription_max_retries
        if max_retries < 0:
            raise ValueError("max_retries must not be negative")
        if timeout_seconds is None:
            timeout_seconds = self.config.default_subscription_timeout_seconds
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")

        subscription = await self.subscriptions.create(
            WebhookSubscription(
                tenant_id=tenant_id,
                name=name,
                url=validate_url(url),
                secret=secret or generate_secret(),
                events=event_set,
                max_retries=max_retries,
                timeout_seconds=timeout_seconds,
                headers=dict(headers or {}),
            )
        )
        logger.info(
            "Webhook subscription %s created for tenant %s",
            subscription.id,
            tenant_id,
        )
        return subscription

    async def list_subscriptions(
        self, tenant_id: str
    ) -> list[WebhookSubscription]:
        return await self.subscriptions.list_for_tenant(tenant_id)

    async def update_subscription(
        self,
        subscription_id: str,
        *,
        name: str | None = None,
        url: str | None = None,
        events: Iterable[WebhookEvent | str] | None = None,
        headers: dict[str, str] | None = None,
        max_retries: int | None = None,
        timeout_seconds: float | None = None,
        is_active: bool | None = None,
    ) -> WebhookSubscription:
        """Change the given fields; ``None`` leaves a field as it is."""
        async with self._counter_locks.acquire(subscription_id):
            subscription = await self.get_subscription(subscription_id)
            if name is not None:
                name = name.strip()
                if not name:
                    raise ValueError("Subscription name is required")
                subscription.name = name
            if url is not None:
                subscription.url = validate_url(url)
            if events is not None:
                event_set = list(dict.fromkeys(WebhookEvent(e) for e in events))
                if not event_set:
                    raise ValueError("Subscribe to at least one event")
                subscription.events = event_set
            if headers is not None:
                subscription.headers = dict(headers)
            if max_retries is not None:
                if max_retries < 0:
                    raise ValueError("max_retries must not be negative")
                subscription.max_retries = max_retries
            if timeout_seconds is not None:
                if timeout_seconds <= 0:
                    raise ValueError("timeout_seconds must be positive")
                subscription.timeout_seconds = timeout_seconds
            if is_active is not None:
                subscription.is_active = is_active
            subscription = await self.subscriptions.save(subscription)
        if is_active is False:
            self._cancel_running(subscription_id)
        elif is_active:
            event = self._cancelled.get(subscription_id)
            if event is not None and event.is_set():
                # Stopping deliveries keep their own reference.
                del self._cancelled[subscription_id]
        logger.info("Webhook subscription %s updated", subscription_id)
        return subscription

    async def regenerate_secret(
        self, subscription_id: str
    ) -> WebhookSubscription:
        """Replace the signing secret used by deliveries published from now on."""
        async with self._counter_locks.acquire(subscription_id):
            subscription = await self.get_subscription(subscription_id)
            subscription.secret = generate_secret()
            subscription = await self.subscriptions.save(subscription)
        logger.info(
            "Webhook subscription %s signing secret regenerated",
            subscription_id,
        )
        return subscription

    async def deactivate_subscription(
        self, subscription_id: str
    ) -> WebhookSubscription:
        """Stop future attempts; recorded attempts are kept as they are."""
        async with self._counter_locks.acquire(subscription_id):
            subscription = await self.get_subscription(subscription_id)
            subscription.is_active = False
            subscription = await self.subscriptions.save(subscription)
        self._cancel_running(subscription_id)
        logger.info("Webhook subscription %s deactivated", subscription_id)
        return subscription

    async def get_deliveries(
        self, subscription_id: str, limit: int = 50
    ) -> list[WebhookDelivery]:
        await self.get_subscription(subscription_id)
        return await self.deliveries.list_for_subscription(
            subscription_id, limit=limit
        )

    # Publishing

    async def publish(self, event: DomainEvent) -> None:
        subscriptions = await self.subscriptions.list_active_for_event(
            event.tenant_id, event.event
        )
        payload = build_payload(event.event, event.occurred_at, event.data)
        for subscription in subscriptions:
            if not subscription.is_subscribed_to(event.event):
                continue
            delivery = await self.deliveries.create(
                WebhookDelivery(
                    subscription_id=subscription.id,
                    tenant_id=event.tenant_id,
                    event=event.event,
                    payload=payload,
                )
            )
            self._spawn(self.deliver(subscription, delivery))

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for every delivery started by :meth:`publish`."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel running deliveries. They stay pending for :meth:`resume`."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _cancel_event(self, subscription_id: str) -> asyncio.Event:
        return self._cancelled.setdefault(subscription_id, asyncio.Event())

    def _cancel_running(self, subscription_id: str) -> None:
        # Only deliveries in progress hold an event.
        event = self._cancelled.get(subscription_id)
        if event is not None:
            event.set()

    # Delivery

    def _headers(
        self,
        subscription: WebhookSubscription,
        body: bytes,
        event: str,
        delivery_id: str,
    ) -> dict[str, str]:
        headers = dict(subscription.headers)
        headers.update(
            {
                "Content-Type": "application/json",
                "User-Agent": f"litestar-courierhub/{__version__}",
                "X-Webhook-Signature": sign_payload(body, subscription.secret),
                "X-Webhook-Timestamp": str(int(time.time())),
                "X-Webhook-Event": event,
                "X-Webhook-Delivery": delivery_id,
            }
        )
        return headers

    async def _post(
        self, url: str, body: bytes, headers: dict[str, str], timeout: float
    ) -> AttemptResult:
        started = time.perf_counter()
        try:
            async with asyncio.timeout(timeout):
                response = await self.client.post(
                    url, content=body, headers=headers, timeout=timeout
                )
        except (TimeoutError, httpx.TimeoutException):
            return AttemptResult(
                success=False,
                status_code=None,
                response_body=None,
                duration_ms=(time.perf_counter() - started) * 1000,
                error=f"Timed out after {timeout}s",
            )
        except httpx.HTTPError as exc:
            return AttemptResult(
                success=False,
                status_code=None,
                response_body=None,
                duration_ms=(time.perf_counter() - started) * 1000,
                error=f"Request failed: {exc.__class__.__name__}",
            )
        duration_ms = (time.perf_counter() - started) * 1000
        response_body = truncate_body(
            response.text, self.config.response_body_limit
        )
        if response.is_success:
            return AttemptResult(
                success=True,
                status_code=response.status_code,
                response_body=response_body,
                duration_ms=duration_ms,
            )
        return AttemptResult(
            success=False,
            status_code=response.status_code,
            response_body=response_body,
            duration_ms=duration_ms,
            error=f"HTTP {response.status_code}",
        )

    async def _attempt(
        self, subscription: WebhookSubscription, delivery: WebhookDelivery
    ) -> AttemptResult:
        body = delivery.payload.encode()
        headers = self._headers(subscription, body, delivery.event, delivery.id)
        return await self._post(
            subscription.url, body, headers, subscription.timeout_seconds
        )

    async def _wait_for_retry(
        self, cancelled: asyncio.Event, delay: float
    ) -> bool:
        """Sleep ``delay`` seconds. Returns True if cancelled meanwhile."""
        try:
            await asyncio.wait_for(cancelled.wait(), timeout=delay)
        except TimeoutError:
            return False
        return True

    async def _record_outcome(
        self, subscription_id: str, success: bool
    ) -> None:
        async with self._counter_locks.acquire(subscription_id):
            try:
                subscription = await self.subscriptions.get_by_id(
                    subscription_id
                )
            except KeyError:
                return
            subscription.record_delivery(success)
            await self.subscriptions.save(subscription)

    async def _stop(self, delivery: WebhookDelivery) -> WebhookDelivery:
        delivery.mark_failed("Subscription deactivated")
        delivery = await self.deliveries.save(delivery)
        await self._record_outcome(delivery.subscription_id, False)
        logger.info(
            "Webhook delivery %s stopped: subscription deactivated", delivery.id
        )
        return delivery

    async def _exhaust(self, delivery: WebhookDelivery) -> WebhookDelivery:
        delivery.mark_exhausted()
        delivery = await self.deliveries.save(delivery)
        await self._record_outcome(delivery.subscription_id, False)
        logger.error(
            "%s (last error: %s)",
            ExhaustedRetriesError(delivery.id, delivery.attempt_count),
            delivery.last_error,
        )
        return delivery

    async def deliver(
        self, subscription: WebhookSubscription, delivery: WebhookDelivery
    ) -> WebhookDelivery:
        """Run a delivery to completion: delivered, exhausted or stopped."""
        if delivery.id in self._in_flight:
            return delivery
        self._in_flight.add(delivery.id)
        self._running[subscription.id] += 1
        try:
            return await self._deliver(subscription, delivery)
        finally:
            self._in_flight.discard(delivery.id)
            self._running[subscription.id] -= 1
            if self._running[subscription.id] <= 0:
                del self._running[subscription.id]
                self._cancelled.pop(subscription.id, None)

    async def _deliver(
        self, subscription: WebhookSubscription, delivery: WebhookDelivery
    ) -> WebhookDelivery:
        loop = asyncio.get_running_loop()
        deadline = None
        if self.config.dispatch_deadline_seconds is not None:
            deadline = loop.time() + self.config.dispatch_deadline_seconds
        cancelled = self._cancel_event(subscription.id)
        max_attempts = subscription.max_retries + 1

        while True:
            if cancelled.is_set() or not subscription.is_active:
                return await self._stop(delivery)

            result = await self._attempt(subscription, delivery)
            if result.success:
                delivery.mark_delivered(
                    result.status_code or 200,
                    result.response_body,
                    result.duration_ms,
                )
                delivery = await self.deliveries.save(delivery)
                await self._record_outcome(subscription.id, True)
                logger.info(
                    "Webhook %s delivered to subscription %s on attempt %d",
                    delivery.event,
                    subscription.id,
                    delivery.attempt_count,
                )
                return delivery

            attempt = delivery.attempt_count + 1
            delay = compute_backoff_delay(
                attempt, self.config.dispatch_backoff_seconds
            )
            give_up = attempt >= max_attempts or (
                deadline is not None and loop.time() + delay > deadline
            )
            delivery.mark_attempt_failed(
                result.error or "Delivery failed",
                result.status_code,
                result.response_body,
                result.duration_ms,
                None
                if give_up
                else compute_next_retry_at(
                    attempt, self.config.dispatch_backoff_seconds
                ),
            )
            if give_up:
                return await self._exhaust(delivery)

            delivery = await self.deliveries.save(delivery)
            logger.warning(
                "Webhook delivery %s attempt %d failed (%s), retrying in %.1fs",
                delivery.id,
                attempt,
                result.error,
                delay,
            )
            if await self._wait_for_retry(cancelled, delay):
                return await self._stop(delivery)

    async def resume(self, delivery: WebhookDelivery) -> WebhookDelivery:
        """Continue a persisted pending delivery, e.g. after a restart."""
        if delivery.status != DeliveryStatus.PENDING:
            return delivery
        try:
            subscription = await self.subscriptions.get_by_id(
                delivery.subscription_id
            )
        except KeyError:
            delivery.mark_failed("Subscription no longer exists")
            return await self.deliveries.save(delivery)
        return await self.deliver(subscription, delivery)

    # Manual test

    async def test_url(
        self,
        url: str,
        *,
        secret: str | None = None,
        timeout_seconds: float = 10.0,
        headers: dict[str, str] | None = None,
    ) -> AttemptResult:
        """One best-effort POST of a test event, outside the retry loop."""
        url = validate_url(url)
        now = utcnow()
        body = build_payload(
            TEST_EVENT,
            now,
            {"message": "This is a test webhook delivery"},
        ).encode()
        request_headers = dict(headers or {})
        request_headers.update(
            {
                "Content-Type": "application/json",
                "User-Agent": f"litestar-courierhub/{__version__}",
                "X-Webhook-Timestamp": str(int(now.timestamp())),
                "X-Webhook-Event": TEST_EVENT,
            }
        )
        if secret:
            request_headers["X-Webhook-Signature"] = sign_payload(body, secret)
        result = await self._post(url, body, request_headers, timeout_seconds)
        logger.info(
            "Test webhook to %s: %s in %.0fms",
            url,
            result.status_code or result.error,
            result.duration_ms,
        )
        return result
