"""Shared enumerations for carriers, lifecycles and webhooks."""

from __future__ import annotations

from enum import StrEnum


class CourierType(StrEnum):
    SHIPROCKET = "shiprocket"
    DELHIVERY = "delhivery"
    BLUEDART = "bluedart"
    DTDC = "dtdc"
    ECOM_EXPRESS = "ecom_express"
    XPRESSBEES = "xpressbees"
    SHADOWFAX = "shadowfax"
    CUSTOM = "custom"


class ShipmentStatus(StrEnum):
    CREATED = "created"
    AWB_ASSIGNED = "awb_assigned"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    NDR_RAISED = "ndr_raised"
    RTO_INITIATED = "rto_initiated"
    RTO_DELIVERED = "rto_delivered"
    CANCELLED = "cancelled"
    LOST = "lost"


class TransitionSource(StrEnum):
    CARRIER = "carrier"
    MANUAL = "manual"


class NdrStatus(StrEnum):
    OPEN = "open"
    ASSIGNED = "assigned"
    REATTEMPT_SCHEDULED = "reattempt_scheduled"
    RESOLVED = "resolved"
    ESCALATED = "escalated"


class NdrReasonCode(StrEnum):
    CUSTOMER_NOT_AVAILABLE = "customer_not_available"
    CUSTOMER_REFUSED = "customer_refused"
    INCORRECT_ADDRESS = "incorrect_address"
    PREMISES_CLOSED = "premises_closed"
    COD_NOT_READY = "cod_not_ready"
    FUTURE_DELIVERY_REQUESTED = "future_delivery_requested"
    CUSTOMER_OUT_OF_STATION = "customer_out_of_station"
    CUSTOMER_UNREACHABLE = "customer_unreachable"
    ADDRESS_CHANGE_REQUESTED = "address_change_requested"
    OTHER = "other"


class NdrActionType(StrEnum):
    PHONE_CALL = "phone_call"
    SMS = "sms"
    WHATSAPP = "whatsapp"
    EMAIL = "email"
    REMARK = "remark"
    CALLBACK_SCHEDULED = "callback_scheduled"


class WebhookEvent(StrEnum):
    """Event types a tenant can subscribe to."""

    SHIPMENT_CREATED = "shipment.created"
    SHIPMENT_AWB_ASSIGNED = "shipment.awb_assigned"
    SHIPMENT_PICKED_UP = "shipment.picked_up"
    SHIPMENT_IN_TRANSIT = "shipment.in_transit"
    SHIPMENT_OUT_FOR_DELIVERY = "shipment.out_for_delivery"
    SHIPMENT_DELIVERED = "shipment.delivered"
    SHIPMENT_NDR_RAISED = "shipment.ndr_raised"
    SHIPMENT_RTO_INITIATED = "shipment.rto_initiated"
    SHIPMENT_RTO_DELIVERED = "shipment.rto_delivered"
    SHIPMENT_CANCELLED = "shipment.cancelled"
    SHIPMENT_LOST = "shipment.lost"
    NDR_OPENED = "ndr.opened"
    NDR_UPDATED = "ndr.updated"
    NDR_ASSIGNED = "ndr.assigned"
    NDR_REATTEMPT_SCHEDULED = "ndr.reattempt_scheduled"
    NDR_RESOLVED = "ndr.resolved"
    NDR_ESCALATED = "ndr.escalated"

    @classmethod
    def for_shipment_status(cls, status: ShipmentStatus) -> WebhookEvent:
        return cls(f"shipment.{status.value}")

    @classmethod
    def for_ndr_status(cls, status: NdrStatus) -> WebhookEvent:
        if status == NdrStatus.OPEN:
            return cls.NDR_OPENED
        return cls(f"ndr.{status.value}")


class DeliveryStatus(StrEnum):
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"
    EXHAUSTED = "exhausted"
