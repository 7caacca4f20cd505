"""Webhook delivery retry with exponential backoff."""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from litestar_courierhub.protocols import WebhookDeliveryRepository

if TYPE_CHECKING:
    from litestar_courierhub.dispatcher import OutboundWebhookDispatcher

logger = logging.getLogger(__name__)


def compute_backoff_delay(attempt: int, backoff_seconds: float) -> float:
    """Seconds to wait after failed attempt ``attempt`` (1-based).

    delay = backoff_seconds * 2^(attempt - 1)
    """
    return backoff_seconds * (2 ** (attempt - 1))


def compute_next_retry_at(
    attempt: int,
    backoff_seconds: float,
) -> datetime:
    """Compute the next retry time with exponential backoff."""
    delay = compute_backoff_delay(attempt, backoff_seconds)
    return datetime.now(tz=UTC) + timedelta(seconds=delay)


async def process_due_deliveries(
    *,
    dispatcher: OutboundWebhookDispatcher,
    deliveries: WebhookDeliveryRepository,
    limit: int = 10,
) -> int:
    """Resume pending deliveries whose retry time has passed.

    Used after a restart, when the in-process timers are gone. Each
    delivery runs through the same retry loop as a fresh one, counting
    from its recorded attempts. Returns the number of deliveries picked up.
    """
    due = await deliveries.get_due(limit=limit)
    if not due:
        return 0
    results = await asyncio.gather(
        *(dispatcher.resume(delivery) for delivery in due),
        return_exceptions=True,
    )
    for delivery, result in zip(due, results, strict=True):
        if isinstance(result, Exception):
            logger.error(
                "Resuming webhook delivery %s failed: %s", delivery.id, result
            )
        else:
            logger.info(
                "Resumed webhook delivery %s: %s", delivery.id, result.status
            )
    return len(due)
