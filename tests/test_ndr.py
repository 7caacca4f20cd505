"""Tests for NDR case handling."""

from datetime import timedelta

import pytest

from litestar_courierhub.enums import (
    NdrActionType,
    NdrReasonCode,
    NdrStatus,
    ShipmentStatus,
    TransitionSource,
)
from litestar_courierhub.exceptions import (
    InvalidTransitionError,
    NdrCaseNotFoundError,
    ShipmentNotFoundError,
)
from litestar_courierhub.models import utcnow
from litestar_courierhub.ndr import infer_ndr_reason

from conftest import make_address

CARRIER = TransitionSource.CARRIER


async def _raise_ndr(shipment_service, shipment, remarks):
    await shipment_service.apply_status(
        shipment.id, ShipmentStatus.IN_TRANSIT, source=CARRIER
    )
    await shipment_service.apply_status(
        shipment.id,
        ShipmentStatus.NDR_RAISED,
        source=CARRIER,
        remarks=remarks,
    )


@pytest.mark.parametrize(
    ("remarks", "reason"),
    [
        ("Customer refused to accept", NdrReasonCode.CUSTOMER_REFUSED),
        ("Incomplete address, landmark missing", NdrReasonCode.INCORRECT_ADDRESS),
        ("Office closed on Sunday", NdrReasonCode.PREMISES_CLOSED),
        ("Consignee phone switched off", NdrReasonCode.CUSTOMER_UNREACHABLE),
        ("Customer not available", NdrReasonCode.CUSTOMER_NOT_AVAILABLE),
        ("Asked to deliver later", NdrReasonCode.FUTURE_DELIVERY_REQUESTED),
        (None, NdrReasonCode.OTHER),
    ],
)
def test_reason_inferred_from_remarks(remarks, reason):
    assert infer_ndr_reason(remarks) == reason


async def test_ndr_scan_opens_case(
    shipment_service, booked_shipment, ndr_repo, publisher
):
    await _raise_ndr(shipment_service, booked_shipment, "Customer not available")

    [case] = ndr_repo.items.values()
    assert case.shipment_id == booked_shipment.id
    assert case.tracking_number == booked_shipment.tracking_number
    assert case.reason_code == NdrReasonCode.CUSTOMER_NOT_AVAILABLE
    assert case.status == NdrStatus.OPEN
    assert case.attempt_count == 1
    assert "ndr.opened" in publisher.names
    assert "shipment.ndr_raised" in publisher.names


async def test_repeat_ndr_scan_updates_open_case(
    shipment_service, booked_shipment, ndr_repo, publisher
):
    await _raise_ndr(shipment_service, booked_shipment, "Customer not available")
    transition = await shipment_service.apply_status(
        booked_shipment.id,
        ShipmentStatus.NDR_RAISED,
        source=CARRIER,
        remarks="Customer refused",
    )

    assert not transition.changed
    [case] = ndr_repo.items.values()
    assert case.attempt_count == 2
    assert case.reason_code == NdrReasonCode.CUSTOMER_REFUSED
    assert publisher.names.count("shipment.ndr_raised") == 1
    assert publisher.names[-1] == "ndr.updated"


async def test_delivery_auto_resolves_case(
    shipment_service, ndr_service, booked_shipment, ndr_repo, publisher
):
    await _raise_ndr(shipment_service, booked_shipment, "Door locked")
    await shipment_service.apply_status(
        booked_shipment.id, ShipmentStatus.DELIVERED, source=CARRIER
    )

    [case] = ndr_repo.items.values()
    assert case.status == NdrStatus.RESOLVED
    assert case.resolution == "delivered"
    assert case.resolved_at is not None
    assert "ndr.resolved" in publisher.names


async def test_new_case_after_previous_resolved(
    shipment_service, ndr_service, booked_shipment, ndr_repo
):
    await _raise_ndr(shipment_service, booked_shipment, "Door locked")
    [first] = ndr_repo.items.values()
    await ndr_service.update_outcome(
        first.id, NdrStatus.RESOLVED, resolution="Customer will collect"
    )
    await shipment_service.apply_status(
        booked_shipment.id, ShipmentStatus.NDR_RAISED, source=CARRIER
    )
    assert len(ndr_repo.items) == 2

    history = await ndr_service.list_for_shipment(booked_shipment.id)
    assert [case.status for case in history] == [
        NdrStatus.OPEN,
        NdrStatus.RESOLVED,
    ]
    assert history[1].id == first.id


async def test_manual_open_case(ndr_service, booked_shipment, publisher):
    case = await ndr_service.open_case(
        booked_shipment.id,
        reason_code=NdrReasonCode.COD_NOT_READY,
        remarks="Cash not ready",
        author="agent-7",
    )
    assert case.reason_code == NdrReasonCode.COD_NOT_READY
    assert case.remarks[0].author == "agent-7"
    assert publisher.names[-1] == "ndr.opened"


async def test_manual_open_case_unknown_shipment(ndr_service):
    with pytest.raises(ShipmentNotFoundError):
        await ndr_service.open_case(
            "missing", reason_code=NdrReasonCode.OTHER
        )


async def test_unknown_case(ndr_service):
    with pytest.raises(NdrCaseNotFoundError):
        await ndr_service.get("missing")
    with pytest.raises(ShipmentNotFoundError):
        await ndr_service.list_for_shipment("missing")


async def test_assign_and_log_actions(ndr_service, booked_shipment, publisher):
    case = await ndr_service.open_case(
        booked_shipment.id, reason_code=NdrReasonCode.OTHER
    )
    case = await ndr_service.assign(case.id, "agent-7")
    assert case.status == NdrStatus.ASSIGNED
    assert case.assigned_to == "agent-7"
    assert case.assigned_at is not None

    case = await ndr_service.log_action(
        case.id,
        NdrActionType.PHONE_CALL,
        performed_by="agent-7",
        outcome="No answer",
        call_duration_seconds=35,
    )
    assert case.status == NdrStatus.ASSIGNED
    assert case.actions[-1].call_duration_seconds == 35
    assert publisher.names[-2:] == ["ndr.assigned", "ndr.updated"]


async def test_schedule_reattempt(ndr_service, booked_shipment):
    case = await ndr_service.open_case(
        booked_shipment.id, reason_code=NdrReasonCode.INCORRECT_ADDRESS
    )
    when = utcnow() + timedelta(days=1)
    corrected = make_address(pincode="110002")
    case = await ndr_service.schedule_reattempt(
        case.id, when, corrected_address=corrected, performed_by="agent-7"
    )
    assert case.status == NdrStatus.REATTEMPT_SCHEDULED
    assert case.next_follow_up_at == when
    assert case.corrected_address.pincode == "110002"
    assert case.actions[-1].action_type == NdrActionType.CALLBACK_SCHEDULED


async def test_reattempt_in_the_past_is_rejected(ndr_service, booked_shipment):
    case = await ndr_service.open_case(
        booked_shipment.id, reason_code=NdrReasonCode.OTHER
    )
    with pytest.raises(ValueError, match="future"):
        await ndr_service.schedule_reattempt(
            case.id, utcnow() - timedelta(minutes=1)
        )


async def test_failed_reattempt_reopens_case(
    shipment_service, ndr_service, booked_shipment, ndr_repo
):
    await _raise_ndr(shipment_service, booked_shipment, "Not at home")
    [case] = ndr_repo.items.values()
    await ndr_service.schedule_reattempt(
        case.id, utcnow() + timedelta(days=1)
    )
    await shipment_service.apply_status(
        booked_shipment.id, ShipmentStatus.NDR_RAISED, source=CARRIER
    )
    case = await ndr_service.get(case.id)
    assert case.status == NdrStatus.OPEN
    assert case.next_follow_up_at is None
    assert case.attempt_count == 2


async def test_closed_case_rejects_changes(ndr_service, booked_shipment):
    case = await ndr_service.open_case(
        booked_shipment.id, reason_code=NdrReasonCode.OTHER
    )
    case = await ndr_service.update_outcome(
        case.id, NdrStatus.ESCALATED, resolution="Customer unreachable"
    )
    assert case.status == NdrStatus.ESCALATED
    with pytest.raises(InvalidTransitionError):
        await ndr_service.assign(case.id, "agent-7")
    with pytest.raises(InvalidTransitionError):
        await ndr_service.update_outcome(
            case.id, NdrStatus.RESOLVED, resolution="again"
        )


async def test_outcome_must_close_the_case(ndr_service, booked_shipment):
    case = await ndr_service.open_case(
        booked_shipment.id, reason_code=NdrReasonCode.OTHER
    )
    with pytest.raises(ValueError):
        await ndr_service.update_outcome(
            case.id, NdrStatus.ASSIGNED, resolution="nope"
        )


async def test_remarks(ndr_service, booked_shipment):
    case = await ndr_service.open_case(
        booked_shipment.id, reason_code=NdrReasonCode.OTHER
    )
    case = await ndr_service.add_remark(case.id, "  Call after 6pm ", author="a")
    assert case.remarks[-1].text == "Call after 6pm"
    with pytest.raises(ValueError):
        await ndr_service.add_remark(case.id, "   ")
