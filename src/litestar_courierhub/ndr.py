"""Non-delivery report (NDR) case handling.

A shipment has at most one open case. Repeated failed attempts update
that case; a new case is only opened once the previous one is resolved
or escalated.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from litestar_courierhub.enums import (
    NdrActionType,
    NdrReasonCode,
    NdrStatus,
    ShipmentStatus,
    WebhookEvent,
)
from litestar_courierhub.events import NullPublisher, ndr_event
from litestar_courierhub.exceptions import (
    InvalidTransitionError,
    NdrCaseNotFoundError,
    ShipmentNotFoundError,
)
from litestar_courierhub.locks import KeyedLock
from litestar_courierhub.models import (
    NdrAction,
    NdrCase,
    NdrRemark,
    Shipment,
    utcnow,
)
from litestar_courierhub.protocols import (
    EventPublisher,
    NdrCaseRepository,
    ShipmentRepository,
)
from litestar_courierhub.types import Address

logger = logging.getLogger(__name__)

R = NdrReasonCode

_REASON_KEYWORDS: tuple[tuple[tuple[str, ...], NdrReasonCode], ...] = (
    (("refused", "rejected", "not interested"), R.CUSTOMER_REFUSED),
    (
        ("address change", "change address", "change of address"),
        R.ADDRESS_CHANGE_REQUESTED,
    ),
    (
        (
            "incorrect address",
            "wrong address",
            "incomplete address",
            "address not found",
            "address issue",
        ),
        R.INCORRECT_ADDRESS,
    ),
    (("closed", "door locked"), R.PREMISES_CLOSED),
    (("cod amount", "cod not ready", "cash not ready"), R.COD_NOT_READY),
    (
        ("future delivery", "reschedule", "deliver later", "next day"),
        R.FUTURE_DELIVERY_REQUESTED,
    ),
    (("out of station", "out of town"), R.CUSTOMER_OUT_OF_STATION),
    (
        ("unreachable", "not reachable", "switched off", "not answering"),
        R.CUSTOMER_UNREACHABLE,
    ),
    (("not available", "unavailable", "not at home"), R.CUSTOMER_NOT_AVAILABLE),
)

# Shipment states that close an open case automatically.
AUTO_RESOLUTIONS: dict[ShipmentStatus, str] = {
    ShipmentStatus.DELIVERED: "delivered",
    ShipmentStatus.RTO_INITIATED: "rto",
}


def infer_ndr_reason(remarks: str | None) -> NdrReasonCode:
    """Best-effort reason code from a carrier's free-text remarks."""
    text = (remarks or "").lower()
    for keywords, reason in _REASON_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return reason
    return R.OTHER


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=UTC)


class NdrService:
    """Operations on NDR cases, serialized per shipment."""

    def __init__(
        self,
        *,
        cases: NdrCaseRepository,
        shipments: ShipmentRepository,
        publisher: EventPublisher | None = None,
    ) -> None:
        self.cases = cases
        self.shipments = shipments
        self.publisher = publisher or NullPublisher()
        self._locks = KeyedLock()

    async def get(self, case_id: str) -> NdrCase:
        try:
            return await self.cases.get_by_id(case_id)
        except KeyError as exc:
            raise NdrCaseNotFoundError(case_id) from exc

    async def list_for_shipment(self, shipment_id: str) -> list[NdrCase]:
        """Every case raised for a shipment, newest first."""
        try:
            await self.shipments.get_by_id(shipment_id)
        except KeyError as exc:
            raise ShipmentNotFoundError(shipment_id) from exc
        return await self.cases.list_for_shipment(shipment_id)

    async def record_failed_attempt(
        self,
        shipment: Shipment,
        *,
        reason_code: NdrReasonCode | None = None,
        remarks: str | None = None,
        author: str | None = None,
    ) -> NdrCase:
        """Open a case, or update the open one, for a failed delivery."""
        reason = reason_code or infer_ndr_reason(remarks)
        async with self._locks.acquire(shipment.id):
            case = await self.cases.get_open_for_shipment(shipment.id)
            if case is None:
                case = NdrCase(
                    tenant_id=shipment.tenant_id,
                    shipment_id=shipment.id,
                    tracking_number=shipment.tracking_number,
                    reason_code=reason,
                    reason_description=remarks,
                )
                if remarks:
                    case.remarks.append(NdrRemark(text=remarks, author=author))
                case = await self.cases.create(case)
                event = WebhookEvent.NDR_OPENED
                logger.info(
                    "NDR case %s opened for shipment %s (%s)",
                    case.id,
                    shipment.id,
                    reason,
                )
            else:
                case.attempt_count += 1
                case.reason_code = reason
                case.reason_description = remarks or case.reason_description
                if case.status == NdrStatus.REATTEMPT_SCHEDULED:
                    case.status = NdrStatus.OPEN
                    case.next_follow_up_at = None
                if remarks:
                    case.remarks.append(NdrRemark(text=remarks, author=author))
                case = await self._touch_and_save(case)
                event = WebhookEvent.NDR_UPDATED
                logger.info(
                    "NDR case %s: attempt %d failed",
                    case.id,
                    case.attempt_count,
                )
        await self.publisher.publish(ndr_event(case, event))
        return case

    async def open_case(
        self,
        shipment_id: str,
        *,
        reason_code: NdrReasonCode,
        remarks: str | None = None,
        author: str | None = None,
    ) -> NdrCase:
        """Manual NDR raised by an operator."""
        try:
            shipment = await self.shipments.get_by_id(shipment_id)
        except KeyError as exc:
            raise ShipmentNotFoundError(shipment_id) from exc
        return await self.record_failed_attempt(
            shipment, reason_code=reason_code, remarks=remarks, author=author
        )

    async def assign(
        self, case_id: str, agent: str, *, assigned_by: str | None = None
    ) -> NdrCase:
        def change(case: NdrCase) -> WebhookEvent:
            self._require_open(case, NdrStatus.ASSIGNED)
            case.assigned_to = agent
            case.assigned_at = utcnow()
            if case.status == NdrStatus.OPEN:
                case.status = NdrStatus.ASSIGNED
            return WebhookEvent.NDR_ASSIGNED

        return await self._mutate(case_id, change)

    async def log_action(
        self,
        case_id: str,
        action_type: NdrActionType,
        *,
        performed_by: str | None,
        details: str | None = None,
        outcome: str | None = None,
        call_duration_seconds: int | None = None,
    ) -> NdrCase:
        """Append a contact attempt. Does not change the case status."""

        def change(case: NdrCase) -> WebhookEvent:
            self._require_open(case, case.status)
            case.actions.append(
                NdrAction(
                    action_type=action_type,
                    performed_by=performed_by,
                    details=details,
                    outcome=outcome,
                    call_duration_seconds=call_duration_seconds,
                )
            )
            return WebhookEvent.NDR_UPDATED

        return await self._mutate(case_id, change)

    async def add_remark(
        self, case_id: str, text: str, *, author: str | None = None
    ) -> NdrCase:
        if not text.strip():
            raise ValueError("Remark text must not be empty")

        def change(case: NdrCase) -> None:
            case.remarks.append(NdrRemark(text=text.strip(), author=author))

        return await self._mutate(case_id, change)

    async def schedule_reattempt(
        self,
        case_id: str,
        reattempt_at: datetime,
        *,
        corrected_address: Address | None = None,
        performed_by: str | None = None,
    ) -> NdrCase:
        reattempt_at = _aware(reattempt_at)
        if reattempt_at <= utcnow():
            raise ValueError("Reattempt date must be in the future")

        def change(case: NdrCase) -> WebhookEvent:
            self._require_open(case, NdrStatus.REATTEMPT_SCHEDULED)
            case.status = NdrStatus.REATTEMPT_SCHEDULED
            case.next_follow_up_at = reattempt_at
            if corrected_address is not None:
                case.corrected_address = corrected_address
            case.actions.append(
                NdrAction(
                    action_type=NdrActionType.CALLBACK_SCHEDULED,
                    performed_by=performed_by,
                    details=f"Reattempt scheduled for {reattempt_at.isoformat()}",
                )
            )
            return WebhookEvent.NDR_REATTEMPT_SCHEDULED

        return await self._mutate(case_id, change)

    async def update_outcome(
        self,
        case_id: str,
        outcome: NdrStatus,
        *,
        resolution: str,
        performed_by: str | None = None,
    ) -> NdrCase:
        """Close a case as resolved or escalated."""
        if outcome not in (NdrStatus.RESOLVED, NdrStatus.ESCALATED):
            raise ValueError("Outcome must be 'resolved' or 'escalated'")

        def change(case: NdrCase) -> WebhookEvent:
            self._require_open(case, outcome)
            self._close(case, outcome, resolution)
            if performed_by:
                case.remarks.append(
                    NdrRemark(text=f"Closed: {resolution}", author=performed_by)
                )
            return WebhookEvent.for_ndr_status(outcome)

        return await self._mutate(case_id, change)

    async def auto_resolve(
        self, shipment: Shipment, status: ShipmentStatus
    ) -> NdrCase | None:
        """Close the shipment's open case once it is delivered or returned."""
        resolution = AUTO_RESOLUTIONS.get(status)
        if resolution is None:
            return None
        async with self._locks.acquire(shipment.id):
            case = await self.cases.get_open_for_shipment(shipment.id)
            if case is None:
                return None
            self._close(case, NdrStatus.RESOLVED, resolution)
            case = await self._touch_and_save(case)
        logger.info("NDR case %s auto-resolved: %s", case.id, resolution)
        await self.publisher.publish(ndr_event(case, WebhookEvent.NDR_RESOLVED))
        return case

    @staticmethod
    def _require_open(case: NdrCase, target: NdrStatus) -> None:
        if not case.is_open:
            raise InvalidTransitionError(case.status, target, entity="NDR case")

    @staticmethod
    def _close(case: NdrCase, status: NdrStatus, resolution: str) -> None:
        case.status = status
        case.resolution = resolution
        case.resolved_at = utcnow()
        case.next_follow_up_at = None

    async def _touch_and_save(self, case: NdrCase) -> NdrCase:
        case.updated_at = utcnow()
        case.version += 1
        return await self.cases.save(case)

    async def _mutate(
        self,
        case_id: str,
        change: Callable[[NdrCase], WebhookEvent | None],
    ) -> NdrCase:
        shipment_id = (await self.get(case_id)).shipment_id
        async with self._locks.acquire(shipment_id):
            case = await self.get(case_id)
            event = change(case)
            case = await self._touch_and_save(case)
        if event is not None:
            await self.publisher.publish(ndr_event(case, event))
        return case
