"""NDR case endpoints."""

from __future__ import annotations

from typing import Annotated, ClassVar

from litestar import Controller, get, post
from litestar.params import Dependency

from litestar_courierhub.ndr import NdrService
from litestar_courierhub.schemas import (
    AddNdrRemarkRequest,
    AssignNdrRequest,
    LogNdrActionRequest,
    NdrCaseResponse,
    RaiseNdrRequest,
    ScheduleReattemptRequest,
    UpdateNdrOutcomeRequest,
)

NdrServiceDep = Annotated[NdrService, Dependency(skip_validation=True)]


class NdrController(Controller):
    """Operator actions on non-delivery reports."""

    path = "/ndr"
    tags: ClassVar[list[str]] = ["ndr"]

    @post("/")
    async def raise_ndr(
        self, data: RaiseNdrRequest, ndr_service: NdrServiceDep
    ) -> NdrCaseResponse:
        """Open a case, or update the shipment's open one."""
        case = await ndr_service.open_case(
            data.shipment_id,
            reason_code=data.reason_code,
            remarks=data.remarks,
            author=data.author,
        )
        return NdrCaseResponse.from_case(case)

    @get("/by-shipment/{shipment_id:str}")
    async def list_for_shipment(
        self, shipment_id: str, ndr_service: NdrServiceDep
    ) -> list[NdrCaseResponse]:
        """Every case raised for a shipment, newest first."""
        cases = await ndr_service.list_for_shipment(shipment_id)
        return [NdrCaseResponse.from_case(case) for case in cases]

    @get("/{case_id:str}")
    async def get_case(
        self, case_id: str, ndr_service: NdrServiceDep
    ) -> NdrCaseResponse:
        return NdrCaseResponse.from_case(await ndr_service.get(case_id))

    @post("/{case_id:str}/assign", status_code=200)
    async def assign(
        self, case_id: str, data: AssignNdrRequest, ndr_service: NdrServiceDep
    ) -> NdrCaseResponse:
        case = await ndr_service.assign(
            case_id, data.agent, assigned_by=data.assigned_by
        )
        return NdrCaseResponse.from_case(case)

    @post("/{case_id:str}/actions", status_code=200)
    async def log_action(
        self,
        case_id: str,
        data: LogNdrActionRequest,
        ndr_service: NdrServiceDep,
    ) -> NdrCaseResponse:
        case = await ndr_service.log_action(
            case_id,
            data.action_type,
            performed_by=data.performed_by,
            details=data.details,
            outcome=data.outcome,
            call_duration_seconds=data.call_duration_seconds,
        )
        return NdrCaseResponse.from_case(case)

    @post("/{case_id:str}/remarks", status_code=200)
    async def add_remark(
        self,
        case_id: str,
        data: AddNdrRemarkRequest,
        ndr_service: NdrServiceDep,
    ) -> NdrCaseResponse:
        case = await ndr_service.add_remark(
            case_id, data.text, author=data.author
        )
        return NdrCaseResponse.from_case(case)

    @post("/{case_id:str}/reattempt", status_code=200)
    async def schedule_reattempt(
        self,
        case_id: str,
        data: ScheduleReattemptRequest,
        ndr_service: NdrServiceDep,
    ) -> NdrCaseResponse:
        case = await ndr_service.schedule_reattempt(
            case_id,
            data.reattempt_at,
            corrected_address=(
                data.corrected_address.to_address()
                if data.corrected_address
                else None
            ),
            performed_by=data.performed_by,
        )
        return NdrCaseResponse.from_case(case)

    @post("/{case_id:str}/outcome", status_code=200)
    async def update_outcome(
        self,
        case_id: str,
        data: UpdateNdrOutcomeRequest,
        ndr_service: NdrServiceDep,
    ) -> NdrCaseResponse:
        """Resolve or escalate a case."""
        case = await ndr_service.update_outcome(
            case_id,
            data.outcome,
            resolution=data.resolution,
            performed_by=data.performed_by,
        )
        return NdrCaseResponse.from_case(case)
