"""Shipment state machine.

Carriers deliver status callbacks late, out of order and more than once,
so transitions are checked against an explicit table and anything that
would move a shipment backwards is rejected.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from litestar_courierhub.enums import ShipmentStatus, TransitionSource
from litestar_courierhub.events import DomainEvent, shipment_event
from litestar_courierhub.exceptions import InvalidTransitionError
from litestar_courierhub.models import Shipment, StatusHistoryEntry, utcnow

logger = logging.getLogger(__name__)

S = ShipmentStatus

# Happy path, in order. Carriers skip scans, so any later step is allowed.
FORWARD_PATH: tuple[ShipmentStatus, ...] = (
    S.CREATED,
    S.AWB_ASSIGNED,
    S.PICKED_UP,
    S.IN_TRANSIT,
    S.OUT_FOR_DELIVERY,
)

TERMINAL_STATES = frozenset({S.DELIVERED, S.CANCELLED, S.RTO_DELIVERED, S.LOST})

_POST_PICKUP = frozenset(
    {S.PICKED_UP, S.IN_TRANSIT, S.OUT_FOR_DELIVERY, S.NDR_RAISED, S.RTO_INITIATED}
)


def _build_transitions() -> dict[ShipmentStatus, frozenset[ShipmentStatus]]:
    table: dict[ShipmentStatus, set[ShipmentStatus]] = {}
    for index, status in enumerate(FORWARD_PATH):
        targets = set(FORWARD_PATH[index + 1 :])
        targets |= {S.CANCELLED}
        if status is not S.CREATED:
            targets |= {S.DELIVERED, S.NDR_RAISED, S.RTO_INITIATED}
        table[status] = targets
    table[S.NDR_RAISED] = {
        S.NDR_RAISED,
        S.IN_TRANSIT,
        S.OUT_FOR_DELIVERY,
        S.DELIVERED,
        S.RTO_INITIATED,
        S.CANCELLED,
    }
    table[S.RTO_INITIATED] = {S.RTO_DELIVERED}
    for status in _POST_PICKUP:
        table[status].add(S.LOST)
    for status in TERMINAL_STATES:
        table[status] = set()
    return {status: frozenset(targets) for status, targets in table.items()}


TRANSITIONS = _build_transitions()


def can_transition(current: ShipmentStatus, target: ShipmentStatus) -> bool:
    return target in TRANSITIONS[current]


@dataclass(frozen=True)
class Transition:
    """Outcome of applying a status to a shipment.

    ``changed`` is False when the status repeats the current one; the
    scan is still kept in history but no event is published.
    """

    shipment: Shipment
    previous: ShipmentStatus
    entry: StatusHistoryEntry
    changed: bool
    event: DomainEvent | None = None


class ShipmentLifecycle:
    """Apply guarded status transitions to a :class:`Shipment`.

    Pure with respect to storage: the caller holds the per-shipment lock,
    persists the shipment and publishes the resulting event.
    """

    def record_creation(
        self,
        shipment: Shipment,
        source: TransitionSource = TransitionSource.MANUAL,
    ) -> Transition:
        entry = StatusHistoryEntry(
            status=S.CREATED,
            timestamp=shipment.created_at,
            source=source,
            remarks="Shipment created",
        )
        shipment.status = S.CREATED
        shipment.history.append(entry)
        return Transition(
            shipment=shipment,
            previous=S.CREATED,
            entry=entry,
            changed=True,
            event=shipment_event(shipment, entry),
        )

    def apply(
        self,
        shipment: Shipment,
        target: ShipmentStatus,
        *,
        source: TransitionSource,
        timestamp: datetime | None = None,
        location: str | None = None,
        remarks: str | None = None,
    ) -> Transition:
        current = shipment.status
        repeat = target == current
        if current in TERMINAL_STATES or not (
            repeat or can_transition(current, target)
        ):
            raise InvalidTransitionError(current, target)

        entry = StatusHistoryEntry(
            status=target,
            timestamp=timestamp or utcnow(),
            source=source,
            location=location,
            remarks=remarks,
        )
        shipment.history.append(entry)
        shipment.status = target
        shipment.updated_at = utcnow()
        shipment.version += 1
        if target == S.PICKED_UP and shipment.picked_up_at is None:
            shipment.picked_up_at = entry.timestamp
        if target == S.DELIVERED:
            shipment.delivered_at = entry.timestamp

        if repeat:
            logger.debug("Shipment %s: repeated %s scan", shipment.id, target)
        else:
            logger.info(
                "Shipment %s: %s -> %s (%s)",
                shipment.id,
                current,
                target,
                source,
            )
        return Transition(
            shipment=shipment,
            previous=current,
            entry=entry,
            changed=not repeat,
            event=None if repeat else shipment_event(shipment, entry),
        )
