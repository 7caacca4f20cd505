"""SQLAlchemy 2.0 async models for the courier hub tables.

Nested value objects (addresses, items, status history, NDR actions) are
stored as JSON on their owning row; each aggregate is one row.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all courier hub models."""


class CourierAccountModel(Base):
    __tablename__ = "courierhub_courier_accounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), index=True)
    courier_type: Mapped[str] = mapped_column(String(32))
    name: Mapped[str] = mapped_column(String(255))
    credentials_ref: Mapped[str] = mapped_column(String(255))
    priority: Mapped[int] = mapped_column(Integer, default=0)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    settings: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)


class ShipmentModel(Base):
    __tablename__ = "courierhub_shipments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), index=True)
    order_id: Mapped[str] = mapped_column(String(64), index=True)
    order_number: Mapped[str] = mapped_column(String(64), default="")
    status: Mapped[str] = mapped_column(String(32), default="created")
    courier_account_id: Mapped[str | None] = mapped_column(
        String(36), nullable=True
    )
    courier_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    tracking_number: Mapped[str] = mapped_column(
        String(128), index=True, default=""
    )
    retired_awbs: Mapped[list[str]] = mapped_column(JSON, default=list)
    external_order_id: Mapped[str | None] = mapped_column(
        String(128), nullable=True
    )
    external_shipment_id: Mapped[str | None] = mapped_column(
        String(128), nullable=True
    )
    courier_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    awb_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    label_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    tracking_url: Mapped[str | None] = mapped_column(
        String(512), nullable=True
    )
    pickup_address: Mapped[dict[str, Any]] = mapped_column(JSON)
    delivery_address: Mapped[dict[str, Any]] = mapped_column(JSON)
    weight_kg: Mapped[Decimal] = mapped_column(Numeric(10, 3))
    length_cm: Mapped[Decimal | None] = mapped_column(
        Numeric(10, 2), nullable=True
    )
    width_cm: Mapped[Decimal | None] = mapped_column(
        Numeric(10, 2), nullable=True
    )
    height_cm: Mapped[Decimal | None] = mapped_column(
        Numeric(10, 2), nullable=True
    )
    is_cod: Mapped[bool] = mapped_column(Boolean, default=False)
    cod_amount: Mapped[Decimal | None] = mapped_column(
        Numeric(12, 2), nullable=True
    )
    declared_value: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    items: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    expected_delivery: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    picked_up_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    delivered_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    history: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    version: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class NdrCaseModel(Base):
    __tablename__ = "courierhub_ndr_cases"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), index=True)
    shipment_id: Mapped[str] = mapped_column(String(36), index=True)
    tracking_number: Mapped[str] = mapped_column(String(128), default="")
    reason_code: Mapped[str] = mapped_column(String(64))
    reason_description: Mapped[str | None] = mapped_column(
        Text, nullable=True
    )
    status: Mapped[str] = mapped_column(String(32), default="open")
    assigned_to: Mapped[str | None] = mapped_column(String(128), nullable=True)
    assigned_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    attempt_count: Mapped[int] = mapped_column(Integer, default=1)
    actions: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    remarks: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    next_follow_up_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    corrected_address: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True
    )
    resolution: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    opened_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    version: Mapped[int] = mapped_column(Integer, default=0)


class InboundWebhookModel(Base):
    """Idempotency ledger row; the key is unique."""

    __tablename__ = "courierhub_inbound_webhooks"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    carrier: Mapped[str] = mapped_column(String(32))
    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), index=True
    )


class WebhookSubscriptionModel(Base):
    __tablename__ = "courierhub_webhook_subscriptions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), index=True)
    name: Mapped[str] = mapped_column(String(255))
    url: Mapped[str] = mapped_column(String(1024))
    secret: Mapped[str] = mapped_column(String(255))
    events: Mapped[list[str]] = mapped_column(JSON, default=list)
    max_retries: Mapped[int] = mapped_column(Integer, default=3)
    timeout_seconds: Mapped[float] = mapped_column(Float, default=30.0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    headers: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    total_deliveries: Mapped[int] = mapped_column(Integer, default=0)
    successful_deliveries: Mapped[int] = mapped_column(Integer, default=0)
    failed_deliveries: Mapped[int] = mapped_column(Integer, default=0)
    last_triggered_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class WebhookDeliveryModel(Base):
    __tablename__ = "courierhub_webhook_deliveries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    subscription_id: Mapped[str] = mapped_column(String(36), index=True)
    tenant_id: Mapped[str] = mapped_column(String(64))
    event: Mapped[str] = mapped_column(String(64))
    payload: Mapped[str] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), default="pending")
    attempt_count: Mapped[int] = mapped_column(Integer, default=0)
    last_status_code: Mapped[int | None] = mapped_column(
        Integer, nullable=True
    )
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    response_body: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration_ms: Mapped[float | None] = mapped_column(Float, nullable=True)
    next_retry_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), index=True
    )
    delivered_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
