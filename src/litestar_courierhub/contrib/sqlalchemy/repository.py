"""SQLAlchemy 2.0 async repositories for the courier hub aggregates.

Each repository maps between the ORM rows in
:mod:`litestar_courierhub.contrib.sqlalchemy.models` and the domain
dataclasses, so callers never hold a session-bound object.
"""

from __future__ import annotations

import dataclasses
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from litestar_courierhub.contrib.sqlalchemy.models import (
    CourierAccountModel,
    NdrCaseModel,
    ShipmentModel,
    WebhookDeliveryModel,
    WebhookSubscriptionModel,
)
from litestar_courierhub.enums import (
    CourierType,
    DeliveryStatus,
    NdrActionType,
    NdrReasonCode,
    NdrStatus,
    ShipmentStatus,
    TransitionSource,
    WebhookEvent,
)
from litestar_courierhub.models import (
    CourierAccount,
    NdrAction,
    NdrCase,
    NdrRemark,
    Shipment,
    StatusHistoryEntry,
    WebhookDelivery,
    WebhookSubscription,
    utcnow,
)
from litestar_courierhub.types import Address, ShipmentItem

SessionFactory = async_sessionmaker[AsyncSession]


def _aware(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything is stored as UTC.
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _from_iso(value: str | None) -> datetime | None:
    return _aware(datetime.fromisoformat(value)) if value else None


def _address_to_json(address: Address) -> dict[str, Any]:
    return dataclasses.asdict(address)


def _address_from_json(data: dict[str, Any]) -> Address:
    return Address(**data)


def _item_to_json(item: ShipmentItem) -> dict[str, Any]:
    return {
        "name": item.name,
        "quantity": item.quantity,
        "unit_price": str(item.unit_price),
        "sku": item.sku,
    }


def _item_from_json(data: dict[str, Any]) -> ShipmentItem:
    return ShipmentItem(
        name=data["name"],
        quantity=data["quantity"],
        unit_price=Decimal(data["unit_price"]),
        sku=data.get("sku"),
    )


def _history_to_json(entry: StatusHistoryEntry) -> dict[str, Any]:
    return {
        "status": str(entry.status),
        "timestamp": _iso(entry.timestamp),
        "source": str(entry.source),
        "location": entry.location,
        "remarks": entry.remarks,
    }


def _history_from_json(data: dict[str, Any]) -> StatusHistoryEntry:
    return StatusHistoryEntry(
        status=ShipmentStatus(data["status"]),
        timestamp=_from_iso(data["timestamp"]),
        source=TransitionSource(data["source"]),
        location=data.get("location"),
        remarks=data.get("remarks"),
    )


def shipment_to_row(shipment: Shipment) -> ShipmentModel:
    return ShipmentModel(
        id=shipment.id,
        tenant_id=shipment.tenant_id,
        order_id=shipment.order_id,
        order_number=shipment.order_number,
        status=str(shipment.status),
        courier_account_id=shipment.courier_account_id,
        courier_type=(
            str(shipment.courier_type) if shipment.courier_type else None
        ),
        tracking_number=shipment.tracking_number,
        retired_awbs=list(shipment.retired_awbs),
        external_order_id=shipment.external_order_id,
        external_shipment_id=shipment.external_shipment_id,
        courier_name=shipment.courier_name,
        awb_error=shipment.awb_error,
        label_url=shipment.label_url,
        tracking_url=shipment.tracking_url,
        pickup_address=_address_to_json(shipment.pickup_address),
        delivery_address=_address_to_json(shipment.delivery_address),
        weight_kg=shipment.weight_kg,
        length_cm=shipment.length_cm,
        width_cm=shipment.width_cm,
        height_cm=shipment.height_cm,
        is_cod=shipment.is_cod,
        cod_amount=shipment.cod_amount,
        declared_value=shipment.declared_value,
        items=[_item_to_json(item) for item in shipment.items],
        expected_delivery=shipment.expected_delivery,
        picked_up_at=shipment.picked_up_at,
        delivered_at=shipment.delivered_at,
        history=[_history_to_json(entry) for entry in shipment.history],
        version=shipment.version,
        created_at=shipment.created_at,
        updated_at=shipment.updated_at,
    )


def shipment_from_row(row: ShipmentModel) -> Shipment:
    return Shipment(
        id=row.id,
        tenant_id=row.tenant_id,
        order_id=row.order_id,
        order_number=row.order_number,
        status=ShipmentStatus(row.status),
        courier_account_id=row.courier_account_id,
        courier_type=CourierType(row.courier_type) if row.courier_type else None,
        tracking_number=row.tracking_number,
        retired_awbs=list(row.retired_awbs or []),
        external_order_id=row.external_order_id,
        external_shipment_id=row.external_shipment_id,
        courier_name=row.courier_name,
        awb_error=row.awb_error,
        label_url=row.label_url,
        tracking_url=row.tracking_url,
        pickup_address=_address_from_json(row.pickup_address),
        delivery_address=_address_from_json(row.delivery_address),
        weight_kg=row.weight_kg,
        length_cm=row.length_cm,
        width_cm=row.width_cm,
        height_cm=row.height_cm,
        is_cod=row.is_cod,
        cod_amount=row.cod_amount,
        declared_value=row.declared_value,
        items=[_item_from_json(item) for item in row.items or []],
        expected_delivery=_aware(row.expected_delivery),
        picked_up_at=_aware(row.picked_up_at),
        delivered_at=_aware(row.delivered_at),
        history=[_history_from_json(entry) for entry in row.history or []],
        version=row.version,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _account_to_row(account: CourierAccount) -> CourierAccountModel:
    return CourierAccountModel(
        id=account.id,
        tenant_id=account.tenant_id,
        courier_type=str(account.courier_type),
        name=account.name,
        credentials_ref=account.credentials_ref,
        priority=account.priority,
        is_default=account.is_default,
        is_active=account.is_active,
        settings=dict(account.settings),
    )


def _account_from_row(row: CourierAccountModel) -> CourierAccount:
    return CourierAccount(
        id=row.id,
        tenant_id=row.tenant_id,
        courier_type=CourierType(row.courier_type),
        name=row.name,
        credentials_ref=row.credentials_ref,
        priority=row.priority,
        is_default=row.is_default,
        is_active=row.is_active,
        settings=dict(row.settings or {}),
    )


def _action_to_json(action: NdrAction) -> dict[str, Any]:
    return {
        "action_type": str(action.action_type),
        "performed_by": action.performed_by,
        "performed_at": _iso(action.performed_at),
        "details": action.details,
        "outcome": action.outcome,
        "call_duration_seconds": action.call_duration_seconds,
    }


def _action_from_json(data: dict[str, Any]) -> NdrAction:
    return NdrAction(
        action_type=NdrActionType(data["action_type"]),
        performed_by=data.get("performed_by"),
        performed_at=_from_iso(data["performed_at"]),
        details=data.get("details"),
        outcome=data.get("outcome"),
        call_duration_seconds=data.get("call_duration_seconds"),
    )


def _ndr_to_row(case: NdrCase) -> NdrCaseModel:
    return NdrCaseModel(
        id=case.id,
        tenant_id=case.tenant_id,
        shipment_id=case.shipment_id,
        tracking_number=case.tracking_number,
        reason_code=str(case.reason_code),
        reason_description=case.reason_description,
        status=str(case.status),
        assigned_to=case.assigned_to,
        assigned_at=case.assigned_at,
        attempt_count=case.attempt_count,
        actions=[_action_to_json(action) for action in case.actions],
        remarks=[
            {
                "text": remark.text,
                "author": remark.author,
                "created_at": _iso(remark.created_at),
            }
            for remark in case.remarks
        ],
        next_follow_up_at=case.next_follow_up_at,
        corrected_address=(
            _address_to_json(case.corrected_address)
            if case.corrected_address is not None
            else None
        ),
        resolution=case.resolution,
        resolved_at=case.resolved_at,
        opened_at=case.opened_at,
        updated_at=case.updated_at,
        version=case.version,
    )


def _ndr_from_row(row: NdrCaseModel) -> NdrCase:
    return NdrCase(
        id=row.id,
        tenant_id=row.tenant_id,
        shipment_id=row.shipment_id,
        tracking_number=row.tracking_number,
        reason_code=NdrReasonCode(row.reason_code),
        reason_description=row.reason_description,
        status=NdrStatus(row.status),
        assigned_to=row.assigned_to,
        assigned_at=_aware(row.assigned_at),
        attempt_count=row.attempt_count,
        actions=[_action_from_json(action) for action in row.actions or []],
        remarks=[
            NdrRemark(
                text=remark["text"],
                author=remark.get("author"),
                created_at=_from_iso(remark["created_at"]),
            )
            for remark in row.remarks or []
        ],
        next_follow_up_at=_aware(row.next_follow_up_at),
        corrected_address=(
            _address_from_json(row.corrected_address)
            if row.corrected_address
            else None
        ),
        resolution=row.resolution,
        resolved_at=_aware(row.resolved_at),
        opened_at=_aware(row.opened_at),
        updated_at=_aware(row.updated_at),
        version=row.version,
    )


def _subscription_to_row(
    subscription: WebhookSubscription,
) -> WebhookSubscriptionModel:
    return WebhookSubscriptionModel(
        id=subscription.id,
        tenant_id=subscription.tenant_id,
        name=subscription.name,
        url=subscription.url,
        secret=subscription.secret,
        events=[str(event) for event in subscription.events],
        max_retries=subscription.max_retries,
        timeout_seconds=subscription.timeout_seconds,
        is_active=subscription.is_active,
        headers=dict(subscription.headers),
        total_deliveries=subscription.total_deliveries,
        successful_deliveries=subscription.successful_deliveries,
        failed_deliveries=subscription.failed_deliveries,
        last_triggered_at=subscription.last_triggered_at,
        created_at=subscription.created_at,
    )


def _subscription_from_row(
    row: WebhookSubscriptionModel,
) -> WebhookSubscription:
    return WebhookSubscription(
        id=row.id,
        tenant_id=row.tenant_id,
        name=row.name,
        url=row.url,
        secret=row.secret,
        events=[WebhookEvent(event) for event in row.events or []],
        max_retries=row.max_retries,
        timeout_seconds=row.timeout_seconds,
        is_active=row.is_active,
        headers=dict(row.headers or {}),
        total_deliveries=row.total_deliveries,
        successful_deliveries=row.successful_deliveries,
        failed_deliveries=row.failed_deliveries,
        last_triggered_at=_aware(row.last_triggered_at),
        created_at=_aware(row.created_at),
    )


def _delivery_to_row(delivery: WebhookDelivery) -> WebhookDeliveryModel:
    return WebhookDeliveryModel(
        id=delivery.id,
        subscription_id=delivery.subscription_id,
        tenant_id=delivery.tenant_id,
        event=str(delivery.event),
        payload=delivery.payload,
        status=str(delivery.status),
        attempt_count=delivery.attempt_count,
        last_status_code=delivery.last_status_code,
        last_error=delivery.last_error,
        response_body=delivery.response_body,
        duration_ms=delivery.duration_ms,
        next_retry_at=delivery.next_retry_at,
        created_at=delivery.created_at,
        delivered_at=delivery.delivered_at,
    )


def _delivery_from_row(row: WebhookDeliveryModel) -> WebhookDelivery:
    return WebhookDelivery(
        id=row.id,
        subscription_id=row.subscription_id,
        tenant_id=row.tenant_id,
        event=WebhookEvent(row.event),
        payload=row.payload,
        status=DeliveryStatus(row.status),
        attempt_count=row.attempt_count,
        last_status_code=row.last_status_code,
        last_error=row.last_error,
        response_body=row.response_body,
        duration_ms=row.duration_ms,
        next_retry_at=_aware(row.next_retry_at),
        created_at=_aware(row.created_at),
        delivered_at=_aware(row.delivered_at),
    )


class SQLAlchemyCourierAccountRepository:
    """Courier accounts backed by SQLAlchemy async sessions.

    Implements the CourierAccountRepository protocol.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def get_by_id(self, account_id: str) -> CourierAccount:
        """Get an account by ID. Raises KeyError if not found."""
        async with self._session_factory() as session:
            row = await session.get(CourierAccountModel, account_id)
            if row is None:
                raise KeyError(account_id)
            return _account_from_row(row)

    async def list_active(
        self, tenant_id: str, courier_type: CourierType | None = None
    ) -> list[CourierAccount]:
        """Active accounts for a tenant, highest priority first."""
        async with self._session_factory() as session:
            stmt = (
                select(CourierAccountModel)
                .where(CourierAccountModel.tenant_id == tenant_id)
                .where(CourierAccountModel.is_active.is_(True))
                .order_by(
                    CourierAccountModel.priority.desc(),
                    CourierAccountModel.name.asc(),
                )
            )
            if courier_type is not None:
                stmt = stmt.where(
                    CourierAccountModel.courier_type == str(courier_type)
                )
            result = await session.execute(stmt)
            return [_account_from_row(row) for row in result.scalars()]

    async def save(self, account: CourierAccount) -> CourierAccount:
        """Insert or update an account."""
        async with self._session_factory() as session:
            await session.merge(_account_to_row(account))
            await session.commit()
        return account


class SQLAlchemyShipmentRepository:
    """Shipment repository backed by SQLAlchemy async sessions.

    Implements the ShipmentRepository protocol.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def get_by_id(self, shipment_id: str) -> Shipment:
        """Get a shipment by ID. Raises KeyError if not found."""
        async with self._session_factory() as session:
            row = await session.get(ShipmentModel, shipment_id)
            if row is None:
                raise KeyError(shipment_id)
            return shipment_from_row(row)

    async def get_by_tracking_number(
        self, tracking_number: str
    ) -> Shipment | None:
        if not tracking_number:
            return None
        async with self._session_factory() as session:
            stmt = (
                select(ShipmentModel)
                .where(ShipmentModel.tracking_number == tracking_number)
                .limit(1)
            )
            result = await session.execute(stmt)
            row = result.scalar_one_or_none()
            return shipment_from_row(row) if row is not None else None

    async def create(self, shipment: Shipment) -> Shipment:
        async with self._session_factory() as session:
            session.add(shipment_to_row(shipment))
            await session.commit()
        return shipment

    async def save(self, shipment: Shipment) -> Shipment:
        """Save an existing shipment (merge and commit)."""
        async with self._session_factory() as session:
            await session.merge(shipment_to_row(shipment))
            await session.commit()
        return shipment

    async def list_by_order(self, order_id: str) -> list[Shipment]:
        """All shipments booked for an order, oldest first."""
        async with self._session_factory() as session:
            stmt = (
                select(ShipmentModel)
                .where(ShipmentModel.order_id == order_id)
                .order_by(ShipmentModel.created_at.asc())
            )
            result = await session.execute(stmt)
            return [shipment_from_row(row) for row in result.scalars()]


class SQLAlchemyNdrCaseRepository:
    """NDR cases backed by SQLAlchemy async sessions."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def get_by_id(self, case_id: str) -> NdrCase:
        """Get a case by ID. Raises KeyError if not found."""
        async with self._session_factory() as session:
            row = await session.get(NdrCaseModel, case_id)
            if row is None:
                raise KeyError(case_id)
            return _ndr_from_row(row)

    async def get_open_for_shipment(self, shipment_id: str) -> NdrCase | None:
        closed = (str(NdrStatus.RESOLVED), str(NdrStatus.ESCALATED))
        async with self._session_factory() as session:
            stmt = (
                select(NdrCaseModel)
                .where(NdrCaseModel.shipment_id == shipment_id)
                .where(NdrCaseModel.status.not_in(closed))
                .order_by(NdrCaseModel.opened_at.desc())
                .limit(1)
            )
            result = await session.execute(stmt)
            row = result.scalar_one_or_none()
            return _ndr_from_row(row) if row is not None else None

    async def list_for_shipment(self, shipment_id: str) -> list[NdrCase]:
        """Every case raised for a shipment, newest first."""
        async with self._session_factory() as session:
            stmt = (
                select(NdrCaseModel)
                .where(NdrCaseModel.shipment_id == shipment_id)
                .order_by(NdrCaseModel.opened_at.desc())
            )
            result = await session.execute(stmt)
            return [_ndr_from_row(row) for row in result.scalars()]

    async def create(self, case: NdrCase) -> NdrCase:
        async with self._session_factory() as session:
            session.add(_ndr_to_row(case))
            await session.commit()
        return case

    async def save(self, case: NdrCase) -> NdrCase:
        async with self._session_factory() as session:
            await session.merge(_ndr_to_row(case))
            await session.commit()
        return case


class SQLAlchemyWebhookSubscriptionRepository:
    """Outbound webhook subscriptions backed by SQLAlchemy."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def get_by_id(self, subscription_id: str) -> WebhookSubscription:
        """Get a subscription by ID. Raises KeyError if not found."""
        async with self._session_factory() as session:
            row = await session.get(WebhookSubscriptionModel, subscription_id)
            if row is None:
                raise KeyError(subscription_id)
            return _subscription_from_row(row)

    async def create(
        self, subscription: WebhookSubscription
    ) -> WebhookSubscription:
        async with self._session_factory() as session:
            session.add(_subscription_to_row(subscription))
            await session.commit()
        return subscription

    async def save(
        self, subscription: WebhookSubscription
    ) -> WebhookSubscription:
        async with self._session_factory() as session:
            await session.merge(_subscription_to_row(subscription))
            await session.commit()
        return subscription

    async def list_for_tenant(self, tenant_id: str) -> list[WebhookSubscription]:
        async with self._session_factory() as session:
            stmt = (
                select(WebhookSubscriptionModel)
                .where(WebhookSubscriptionModel.tenant_id == tenant_id)
                .order_by(WebhookSubscriptionModel.created_at.asc())
            )
            result = await session.execute(stmt)
            return [_subscription_from_row(row) for row in result.scalars()]

    async def list_active_for_event(
        self, tenant_id: str, event: WebhookEvent
    ) -> list[WebhookSubscription]:
        async with self._session_factory() as session:
            stmt = (
                select(WebhookSubscriptionModel)
                .where(WebhookSubscriptionModel.tenant_id == tenant_id)
                .where(WebhookSubscriptionModel.is_active.is_(True))
                .order_by(WebhookSubscriptionModel.created_at.asc())
            )
            result = await session.execute(stmt)
            subscriptions = [
                _subscription_from_row(row) for row in result.scalars()
            ]
        # Event lists are JSON; filtering them in SQL is dialect specific.
        return [s for s in subscriptions if s.is_subscribed_to(event)]


class SQLAlchemyWebhookDeliveryRepository:
    """Outbound delivery log backed by SQLAlchemy."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def get_by_id(self, delivery_id: str) -> WebhookDelivery:
        """Get a delivery by ID. Raises KeyError if not found."""
        async with self._session_factory() as session:
            row = await session.get(WebhookDeliveryModel, delivery_id)
            if row is None:
                raise KeyError(delivery_id)
            return _delivery_from_row(row)

    async def create(self, delivery: WebhookDelivery) -> WebhookDelivery:
        async with self._session_factory() as session:
            session.add(_delivery_to_row(delivery))
            await session.commit()
        return delivery

    async def save(self, delivery: WebhookDelivery) -> WebhookDelivery:
        async with self._session_factory() as session:
            await session.merge(_delivery_to_row(delivery))
            await session.commit()
        return delivery

    async def list_for_subscription(
        self, subscription_id: str, limit: int = 50
    ) -> list[WebhookDelivery]:
        """Newest first."""
        async with self._session_factory() as session:
            stmt = (
                select(WebhookDeliveryModel)
                .where(WebhookDeliveryModel.subscription_id == subscription_id)
                .order_by(WebhookDeliveryModel.created_at.desc())
                .limit(limit)
            )
            result = await session.execute(stmt)
            return [_delivery_from_row(row) for row in result.scalars()]

    async def get_due(self, limit: int = 10) -> list[WebhookDelivery]:
        """Pending deliveries whose next_retry_at has passed."""
        async with self._session_factory() as session:
            stmt = (
                select(WebhookDeliveryModel)
                .where(
                    WebhookDeliveryModel.status == str(DeliveryStatus.PENDING)
                )
                .where(WebhookDeliveryModel.next_retry_at.is_not(None))
                .where(WebhookDeliveryModel.next_retry_at <= utcnow())
                .order_by(WebhookDeliveryModel.next_retry_at.asc())
                .limit(limit)
            )
            result = await session.execute(stmt)
            return [_delivery_from_row(row) for row in result.scalars()]
