"""Schema tests."""

from __future__ import annotations

from decimal import Decimal

import pytest
from pydantic import ValidationError

from litestar_courierhub.enums import (
    NdrReasonCode,
    NdrStatus,
    WebhookEvent,
)
from litestar_courierhub.models import NdrCase, WebhookSubscription
from litestar_courierhub.schemas import (
    CreateShipmentRequest,
    CreateSubscriptionRequest,
    NdrCaseResponse,
    RateQuoteRequest,
    SubscriptionCreatedResponse,
    SubscriptionResponse,
    UpdateNdrOutcomeRequest,
)

from conftest import make_address

ADDRESS = {
    "name": "Asha Verma",
    "phone": "9876543210",
    "line1": "12 MG Road",
    "city": "New Delhi",
    "state": "Delhi",
    "pincode": "110001",
}


class TestCreateShipmentRequest:
    def _payload(self, **overrides):
        payload = {
            "tenant_id": "t-1",
            "order_id": "o-1",
            "order_number": "ORD-1",
            "pickup": ADDRESS,
            "delivery": ADDRESS,
            "weight_kg": "0.75",
            "items": [{"name": "Saree", "quantity": 2, "unit_price": "1500"}],
        }
        payload.update(overrides)
        return payload

    def test_to_request(self) -> None:
        request = CreateShipmentRequest(**self._payload()).to_request()
        assert request.weight_kg == Decimal("0.75")
        assert request.delivery.country == "India"
        assert request.items[0].quantity == 2
        assert request.items[0].unit_price == Decimal("1500")

    def test_account_is_optional(self) -> None:
        assert CreateShipmentRequest(**self._payload()).account_id is None

    @pytest.mark.parametrize(
        "overrides",
        [
            {"weight_kg": "0"},
            {"items": [{"name": "x", "quantity": 0, "unit_price": "1"}]},
            {"delivery": {"name": "No address"}},
        ],
    )
    def test_invalid_payloads(self, overrides) -> None:
        with pytest.raises(ValidationError):
            CreateShipmentRequest(**self._payload(**overrides))


class TestRateQuoteRequest:
    def test_to_request_drops_tenant(self) -> None:
        quote = RateQuoteRequest(
            tenant_id="t-1",
            pickup_pincode="400001",
            delivery_pincode="110001",
            weight_kg="2",
            is_cod=True,
            cod_amount="1200",
        )
        request = quote.to_request()
        assert request.is_cod
        assert request.cod_amount == Decimal("1200")
        assert not hasattr(request, "tenant_id")


class TestSubscriptionSchemas:
    def test_unknown_event_rejected(self) -> None:
        with pytest.raises(ValidationError):
            CreateSubscriptionRequest(
                tenant_id="t-1",
                name="x",
                url="https://hooks.example.com",
                events=["shipment.teleported"],
            )

    def test_secret_only_in_created_response(self) -> None:
        subscription = WebhookSubscription(
            tenant_id="t-1",
            name="Shop",
            url="https://hooks.example.com",
            secret="whsec_1",
            events=[WebhookEvent.SHIPMENT_DELIVERED],
        )
        created = SubscriptionCreatedResponse.from_subscription(subscription)
        assert created.secret == "whsec_1"
        assert created.events == ["shipment.delivered"]
        plain = SubscriptionResponse.from_subscription(subscription)
        assert "secret" not in plain.model_dump()


class TestNdrSchemas:
    def test_case_response(self) -> None:
        case = NdrCase(
            tenant_id="t-1",
            shipment_id="s-1",
            tracking_number="AWB1",
            reason_code=NdrReasonCode.INCORRECT_ADDRESS,
            corrected_address=make_address(pincode="110002"),
        )
        response = NdrCaseResponse.from_case(case)
        assert response.status == "open"
        assert response.reason_code == "incorrect_address"
        assert response.corrected_address.pincode == "110002"

    def test_outcome_needs_resolution(self) -> None:
        with pytest.raises(ValidationError):
            UpdateNdrOutcomeRequest(outcome=NdrStatus.RESOLVED, resolution="")
