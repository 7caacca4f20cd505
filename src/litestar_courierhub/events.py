"""Domain events emitted by the lifecycles and consumed by the dispatcher."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from litestar_courierhub.enums import WebhookEvent
from litestar_courierhub.models import NdrCase, Shipment, StatusHistoryEntry


@dataclass(frozen=True)
class DomainEvent:
    event: WebhookEvent
    tenant_id: str
    data: dict[str, Any]
    occurred_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))


def shipment_event(
    shipment: Shipment, entry: StatusHistoryEntry
) -> DomainEvent:
    return DomainEvent(
        event=WebhookEvent.for_shipment_status(entry.status),
        tenant_id=shipment.tenant_id,
        occurred_at=entry.timestamp,
        data={
            "shipmentId": shipment.id,
            "orderId": shipment.order_id,
            "trackingNumber": shipment.tracking_number,
            "courierType": shipment.courier_type,
            "status": entry.status,
            "source": entry.source,
            "location": entry.location,
            "remarks": entry.remarks,
        },
    )


def ndr_event(case: NdrCase, event: WebhookEvent) -> DomainEvent:
    return DomainEvent(
        event=event,
        tenant_id=case.tenant_id,
        occurred_at=case.updated_at,
        data={
            "ndrCaseId": case.id,
            "shipmentId": case.shipment_id,
            "trackingNumber": case.tracking_number,
            "status": case.status,
            "reasonCode": case.reason_code,
            "attemptCount": case.attempt_count,
            "assignedTo": case.assigned_to,
            "nextFollowUpAt": (
                case.next_follow_up_at.isoformat()
                if case.next_follow_up_at
                else None
            ),
            "resolution": case.resolution,
        },
    )


class NullPublisher:
    """Publisher that drops every event; used when no dispatcher is wired."""

    async def publish(self, event: DomainEvent) -> None:
        return None

