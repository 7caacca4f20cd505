"""Tests for backoff math and resuming persisted deliveries."""

from datetime import UTC, datetime, timedelta

import pytest

from litestar_courierhub.enums import DeliveryStatus, WebhookEvent
from litestar_courierhub.models import WebhookDelivery, utcnow
from litestar_courierhub.retry import (
    compute_backoff_delay,
    compute_next_retry_at,
    process_due_deliveries,
)

from conftest import TENANT


@pytest.mark.parametrize(
    ("attempt", "expected"),
    [(1, 60.0), (2, 120.0), (3, 240.0), (4, 480.0)],
)
def test_backoff_doubles_each_attempt(attempt, expected):
    assert compute_backoff_delay(attempt, 60.0) == expected


def test_next_retry_at_is_in_the_future():
    before = datetime.now(tz=UTC)
    next_at = compute_next_retry_at(2, 30.0)
    assert before + timedelta(seconds=60) <= next_at
    assert next_at <= datetime.now(tz=UTC) + timedelta(seconds=60)


def _pending(subscription_id: str, **overrides) -> WebhookDelivery:
    fields = {
        "subscription_id": subscription_id,
        "tenant_id": TENANT,
        "event": WebhookEvent.SHIPMENT_DELIVERED,
        "payload": '{"event":"shipment.delivered"}',
        "attempt_count": 1,
        "last_error": "HTTP 500",
        "next_retry_at": utcnow() - timedelta(seconds=5),
    }
    fields.update(overrides)
    return WebhookDelivery(**fields)


async def test_nothing_due(dispatcher, delivery_repo):
    assert (
        await process_due_deliveries(
            dispatcher=dispatcher, deliveries=delivery_repo
        )
        == 0
    )


async def test_due_delivery_is_resumed(
    dispatcher, delivery_repo, subscriber_requests
):
    subscription = await dispatcher.create_subscription(
        TENANT,
        name="Order system",
        url="https://hooks.example.com/courier",
        events=[WebhookEvent.SHIPMENT_DELIVERED],
    )
    due = await delivery_repo.create(_pending(subscription.id))
    later = await delivery_repo.create(
        _pending(subscription.id, next_retry_at=utcnow() + timedelta(hours=1))
    )

    picked = await process_due_deliveries(
        dispatcher=dispatcher, deliveries=delivery_repo
    )

    assert picked == 1
    assert len(subscriber_requests) == 1
    resumed = delivery_repo.items[due.id]
    assert resumed.status == DeliveryStatus.DELIVERED
    assert resumed.attempt_count == 2
    assert delivery_repo.items[later.id].status == DeliveryStatus.PENDING


async def test_delivery_for_deleted_subscription_fails(
    dispatcher, delivery_repo
):
    orphan = await delivery_repo.create(_pending("gone"))
    await process_due_deliveries(dispatcher=dispatcher, deliveries=delivery_repo)
    stored = delivery_repo.items[orphan.id]
    assert stored.status == DeliveryStatus.FAILED
    assert stored.last_error == "Subscription no longer exists"


async def test_finished_delivery_is_not_resumed(dispatcher, subscriber_requests):
    delivery = _pending("any", status=DeliveryStatus.DELIVERED)
    assert await dispatcher.resume(delivery) is delivery
    assert subscriber_requests == []
