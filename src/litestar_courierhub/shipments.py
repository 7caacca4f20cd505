"""Shipment commands: create, assign, track, cancel and status override."""

from __future__ import annotations

import logging
from datetime import datetime

from litestar_courierhub.adapters.base import BaseCourierAdapter
from litestar_courierhub.credentials import CredentialStore
from litestar_courierhub.enums import ShipmentStatus, TransitionSource
from litestar_courierhub.events import NullPublisher
from litestar_courierhub.exceptions import (
    CarrierError,
    CourierAccountNotFoundError,
    InvalidTransitionError,
    ShipmentNotFoundError,
)
from litestar_courierhub.lifecycle import (
    ShipmentLifecycle,
    Transition,
    can_transition,
)
from litestar_courierhub.locks import KeyedLock
from litestar_courierhub.models import CourierAccount, Shipment
from litestar_courierhub.ndr import NdrService
from litestar_courierhub.protocols import (
    CourierAccountRepository,
    EventPublisher,
    ShipmentRepository,
)
from litestar_courierhub.registry import AdapterRegistry
from litestar_courierhub.types import (
    CourierCredentials,
    PickupRequest,
    PickupResponse,
    ShipmentCreated,
    ShipmentRequest,
    ShipmentResult,
    TrackingResponse,
)

logger = logging.getLogger(__name__)


class ShipmentService:
    """Drives shipments through carriers and the lifecycle.

    Writes to one shipment are serialized with a per-id lock; different
    shipments proceed in parallel. Carrier failures propagate to the
    caller and are never retried here.
    """

    def __init__(
        self,
        *,
        shipments: ShipmentRepository,
        accounts: CourierAccountRepository,
        credentials: CredentialStore,
        registry: AdapterRegistry,
        ndr: NdrService | None = None,
        publisher: EventPublisher | None = None,
    ) -> None:
        self.shipments = shipments
        self.accounts = accounts
        self.credentials = credentials
        self.registry = registry
        self.ndr = ndr
        self.publisher = publisher or NullPublisher()
        self.lifecycle = ShipmentLifecycle()
        self._locks = KeyedLock()

    async def get(self, shipment_id: str) -> Shipment:
        try:
            return await self.shipments.get_by_id(shipment_id)
        except KeyError as exc:
            raise ShipmentNotFoundError(shipment_id) from exc

    async def find_by_tracking_number(
        self, tracking_number: str
    ) -> Shipment | None:
        return await self.shipments.get_by_tracking_number(tracking_number)

    async def _account(
        self, account_id: str, tenant_id: str | None = None
    ) -> CourierAccount:
        try:
            account = await self.accounts.get_by_id(account_id)
        except KeyError as exc:
            raise CourierAccountNotFoundError(account_id) from exc
        if tenant_id is not None and account.tenant_id != tenant_id:
            raise CourierAccountNotFoundError(account_id)
        return account

    async def _carrier(
        self, account: CourierAccount
    ) -> tuple[BaseCourierAdapter, CourierCredentials]:
        if not account.is_active:
            raise ValueError(f"Courier account {account.id!r} is inactive")
        adapter = self.registry.get(account.courier_type)
        credentials = await self.credentials.resolve(account)
        return adapter, credentials

    async def _carrier_for(
        self, shipment: Shipment
    ) -> tuple[BaseCourierAdapter, CourierCredentials]:
        if shipment.courier_account_id is None:
            raise ValueError(f"Shipment {shipment.id!r} has no courier assigned")
        account = await self._account(shipment.courier_account_id)
        return await self._carrier(account)

    async def _publish(self, *transitions: Transition) -> None:
        for transition in transitions:
            event = transition.event
            if event is not None:
                await self.publisher.publish(event)

    def _apply_result(
        self,
        shipment: Shipment,
        result: ShipmentResult,
        source: TransitionSource = TransitionSource.CARRIER,
    ) -> Transition | None:
        if isinstance(result, ShipmentCreated):
            shipment.apply_awb(result)
            return self.lifecycle.apply(
                shipment,
                ShipmentStatus.AWB_ASSIGNED,
                source=source,
                remarks=f"AWB {result.tracking_number} assigned",
            )
        shipment.external_order_id = result.external_order_id
        if result.external_shipment_id:
            shipment.external_shipment_id = result.external_shipment_id
        shipment.awb_error = result.awb_error
        logger.warning(
            "Shipment %s created without AWB: %s", shipment.id, result.awb_error
        )
        return None

    async def create_shipment(
        self,
        tenant_id: str,
        request: ShipmentRequest,
        *,
        account_id: str | None = None,
    ) -> Shipment:
        """Create a shipment, booking it with the carrier when one is given.

        A carrier that creates the order but cannot assign an AWB still
        yields a saved shipment in ``created`` with ``awb_error`` set.
        """
        shipment = Shipment(
            tenant_id=tenant_id,
            order_id=request.order_id,
            order_number=request.order_number,
            pickup_address=request.pickup,
            delivery_address=request.delivery,
            weight_kg=request.weight_kg,
            length_cm=request.length_cm,
            width_cm=request.width_cm,
            height_cm=request.height_cm,
            is_cod=request.is_cod,
            cod_amount=request.cod_amount,
            declared_value=request.declared_value,
            items=list(request.items),
        )
        transitions = [self.lifecycle.record_creation(shipment)]

        if account_id is not None:
            account = await self._account(account_id, tenant_id)
            adapter, credentials = await self._carrier(account)
            result = await adapter.create_shipment(credentials, request)
            shipment.courier_account_id = account.id
            shipment.courier_type = account.courier_type
            assigned = self._apply_result(shipment, result)
            if assigned is not None:
                transitions.append(assigned)

        shipment = await self.shipments.create(shipment)
        logger.info(
            "Shipment %s created for order %s (status %s)",
            shipment.id,
            shipment.order_id,
            shipment.status,
        )
        await self._publish(*transitions)
        return shipment

    def _request_for(
        self, shipment: Shipment, service_code: str | None
    ) -> ShipmentRequest:
        return ShipmentRequest(
            order_id=shipment.order_id,
            order_number=shipment.order_number or shipment.order_id,
            pickup=shipment.pickup_address,
            delivery=shipment.delivery_address,
            weight_kg=shipment.weight_kg,
            declared_value=shipment.declared_value,
            is_cod=shipment.is_cod,
            cod_amount=shipment.cod_amount,
            length_cm=shipment.length_cm,
            width_cm=shipment.width_cm,
            height_cm=shipment.height_cm,
            items=list(shipment.items),
            service_code=service_code,
        )

    async def assign_courier(
        self,
        shipment_id: str,
        *,
        account_id: str | None = None,
        service_code: str | None = None,
        tracking_number: str | None = None,
    ) -> Shipment:
        """Attach an AWB to a shipment still in ``created``.

        With ``tracking_number`` the AWB is recorded as entered. Otherwise
        a carrier that already holds the order assigns one to it, and any
        other carrier gets a fresh booking.
        """
        async with self._locks.acquire(shipment_id):
            shipment = await self.get(shipment_id)
            if shipment.status != ShipmentStatus.CREATED:
                raise InvalidTransitionError(
                    shipment.status, ShipmentStatus.AWB_ASSIGNED
                )
            account_id = account_id or shipment.courier_account_id
            if account_id is None:
                raise ValueError("A courier account is required")
            account = await self._account(account_id, shipment.tenant_id)

            if tracking_number:
                result: ShipmentResult = ShipmentCreated(
                    tracking_number=tracking_number.strip(),
                    courier_name=account.name,
                )
            else:
                adapter, credentials = await self._carrier(account)
                same_carrier = shipment.courier_account_id == account.id
                if (
                    same_carrier
                    and shipment.external_shipment_id
                    and adapter.supports_awb_assignment
                ):
                    result = await adapter.assign_awb(
                        credentials, shipment.external_shipment_id, service_code
                    )
                else:
                    result = await adapter.create_shipment(
                        credentials, self._request_for(shipment, service_code)
                    )

            shipment.courier_account_id = account.id
            shipment.courier_type = account.courier_type
            transition = self._apply_result(
                shipment,
                result,
                TransitionSource.MANUAL
                if tracking_number
                else TransitionSource.CARRIER,
            )
            shipment = await self.shipments.save(shipment)

        if transition is None:
            raise CarrierError(shipment.awb_error)
        await self._publish(transition)
        return shipment

    async def apply_status(
        self,
        shipment_id: str,
        status: ShipmentStatus,
        *,
        source: TransitionSource,
        timestamp: datetime | None = None,
        location: str | None = None,
        remarks: str | None = None,
    ) -> Transition:
        """Guarded transition shared by webhooks, tracking and operators.

        Raises InvalidTransitionError without touching the shipment when
        the move is not allowed.
        """
        async with self._locks.acquire(shipment_id):
            shipment = await self.get(shipment_id)
            transition = self.lifecycle.apply(
                shipment,
                status,
                source=source,
                timestamp=timestamp,
                location=location,
                remarks=remarks,
            )
            shipment = await self.shipments.save(shipment)

        # Saved; follow-up failures are logged, not raised.
        try:
            await self._sync_ndr(shipment, transition, remarks)
        except Exception:
            logger.exception(
                "Shipment %s moved to %s but NDR handling failed",
                shipment.id,
                status,
            )
        try:
            await self._publish(transition)
        except Exception:
            logger.exception(
                "Shipment %s moved to %s but the event was not published",
                shipment.id,
                status,
            )
        return transition

    async def _sync_ndr(
        self, shipment: Shipment, transition: Transition, remarks: str | None
    ) -> None:
        if self.ndr is None:
            return
        if shipment.status == ShipmentStatus.NDR_RAISED:
            await self.ndr.record_failed_attempt(shipment, remarks=remarks)
        elif transition.changed:
            await self.ndr.auto_resolve(shipment, shipment.status)

    async def update_status(
        self,
        shipment_id: str,
        status: ShipmentStatus,
        *,
        location: str | None = None,
        remarks: str | None = None,
    ) -> Shipment:
        """Operator status override; same guard as carrier updates."""
        transition = await self.apply_status(
            shipment_id,
            status,
            source=TransitionSource.MANUAL,
            location=location,
            remarks=remarks,
        )
        return transition.shipment

    async def get_tracking(self, shipment_id: str) -> TrackingResponse:
        """Fetch live tracking and fold a newer carrier status in."""
        shipment = await self.get(shipment_id)
        if not shipment.tracking_number:
            raise ValueError(f"Shipment {shipment_id!r} has no tracking number")
        adapter, credentials = await self._carrier_for(shipment)
        tracking = await adapter.get_tracking(
            credentials, shipment.tracking_number
        )
        status = tracking.status
        if status is not None and status != shipment.status:
            if can_transition(shipment.status, status):
                latest = tracking.events[-1] if tracking.events else None
                try:
                    await self.apply_status(
                        shipment.id,
                        status,
                        source=TransitionSource.CARRIER,
                        timestamp=latest.timestamp if latest else None,
                        location=tracking.current_location,
                        remarks=(
                            latest.remarks if latest else tracking.raw_status
                        ),
                    )
                except InvalidTransitionError as exc:
                    # Moved on by a webhook while the carrier was queried.
                    logger.info(
                        "Shipment %s: tracked status not applied: %s",
                        shipment.id,
                        exc,
                    )
            else:
                logger.debug(
                    "Shipment %s: ignoring tracked status %s (currently %s)",
                    shipment.id,
                    status,
                    shipment.status,
                )
        return tracking

    async def cancel_shipment(
        self, shipment_id: str, *, reason: str | None = None
    ) -> Shipment:
        async with self._locks.acquire(shipment_id):
            shipment = await self.get(shipment_id)
            if not can_transition(shipment.status, ShipmentStatus.CANCELLED):
                raise InvalidTransitionError(
                    shipment.status, ShipmentStatus.CANCELLED
                )
            if shipment.tracking_number:
                adapter, credentials = await self._carrier_for(shipment)
                await adapter.cancel_shipment(
                    credentials, shipment.tracking_number
                )
            transition = self.lifecycle.apply(
                shipment,
                ShipmentStatus.CANCELLED,
                source=TransitionSource.MANUAL,
                remarks=reason or "Cancelled",
            )
            shipment.retire_awb()
            shipment = await self.shipments.save(shipment)
        await self._publish(transition)
        return shipment

    async def schedule_pickup(
        self,
        shipment_ids: list[str],
        pickup_date: datetime,
        *,
        time_slot: str | None = None,
        warehouse_id: str | None = None,
    ) -> PickupResponse:
        """Request one pickup for shipments booked on the same account."""
        if not shipment_ids:
            raise ValueError("At least one shipment is required")
        shipments = [await self.get(shipment_id) for shipment_id in shipment_ids]
        account_ids = {shipment.courier_account_id for shipment in shipments}
        if len(account_ids) != 1 or None in account_ids:
            raise ValueError(
                "Shipments in one pickup must share a courier account"
            )
        missing = [s.id for s in shipments if not s.tracking_number]
        if missing:
            raise ValueError(f"Shipments without AWB: {', '.join(missing)}")

        adapter, credentials = await self._carrier_for(shipments[0])
        response = await adapter.schedule_pickup(
            credentials,
            PickupRequest(
                tracking_numbers=[s.tracking_number for s in shipments],
                pickup_date=pickup_date,
                shipment_ids=[
                    s.external_shipment_id
                    for s in shipments
                    if s.external_shipment_id
                ],
                time_slot=time_slot,
                warehouse_id=warehouse_id,
            ),
        )
        logger.info(
            "Pickup %s scheduled for %d shipments",
            response.pickup_id,
            response.shipment_count,
        )
        return response

    async def get_label(self, shipment_id: str) -> bytes:
        shipment = await self.get(shipment_id)
        if not shipment.tracking_number:
            raise ValueError(f"Shipment {shipment_id!r} has no tracking number")
        adapter, credentials = await self._carrier_for(shipment)
        return await adapter.get_label(credentials, shipment.tracking_number)

    async def validate_courier_account(self, account_id: str) -> None:
        """Raise InvalidCredentialsError if the carrier rejects the account."""
        account = await self._account(account_id)
        adapter = self.registry.get(account.courier_type)
        credentials = await self.credentials.resolve(account)
        await adapter.validate_credentials(credentials)
        logger.info("Courier account %s validated", account_id)
