"""Tests for exception-to-HTTP-response mapping."""

import pytest
from litestar import Litestar, get
from litestar.testing import TestClient

from litestar_courierhub.exceptions import (
    EXCEPTION_HANDLERS,
    CarrierError,
    ConfigurationError,
    CourierHubError,
    DuplicateEventError,
    ExhaustedRetriesError,
    InvalidCredentialsError,
    InvalidTransitionError,
    MalformedPayloadError,
    NdrCaseNotFoundError,
    NotServiceableError,
    ShipmentNotFoundError,
    SignatureInvalidError,
    TransportError,
    status_code_for,
)
from litestar_courierhub.types import AccessToken, CourierCredentials


def _client_raising(exc: Exception) -> TestClient:
    @get("/boom")
    async def handler() -> None:
        raise exc

    app = Litestar(
        route_handlers=[handler],
        exception_handlers=EXCEPTION_HANDLERS,
    )
    return TestClient(app)


@pytest.mark.parametrize(
    ("exc", "status"),
    [
        (InvalidCredentialsError(), 401),
        (SignatureInvalidError(), 401),
        (MalformedPayloadError(), 400),
        (ShipmentNotFoundError("s-1"), 404),
        (NdrCaseNotFoundError("n-1"), 404),
        (InvalidTransitionError("delivered", "in_transit"), 409),
        (NotServiceableError(), 422),
        (TransportError(), 502),
        (CarrierError(), 502),
        (ExhaustedRetriesError("d-1", 4), 502),
        (ConfigurationError("missing"), 500),
        (DuplicateEventError("k"), 400),
    ],
)
def test_status_codes(exc, status):
    assert status_code_for(exc) == status


def test_not_found_returns_404_body():
    with _client_raising(ShipmentNotFoundError("s-404")) as client:
        resp = client.get("/boom")
        assert resp.status_code == 404
        data = resp.json()
        assert data["code"] == "not_found"
        assert data["detail"] == "Shipment 's-404' not found"


def test_invalid_transition_returns_409():
    with _client_raising(
        InvalidTransitionError("delivered", "in_transit")
    ) as client:
        resp = client.get("/boom")
        assert resp.status_code == 409
        assert resp.json() == {
            "detail": "Cannot move shipment from 'delivered' to 'in_transit'",
            "code": "invalid_transition",
        }


def test_value_error_returns_400_validation_error():
    with _client_raising(ValueError("Reattempt date is past")) as client:
        resp = client.get("/boom")
        assert resp.status_code == 400
        assert resp.json()["code"] == "validation_error"


def test_default_message_used_when_none_given():
    assert str(CarrierError()) == "Courier rejected the request"
    assert isinstance(CarrierError(), CourierHubError)


def test_shipment_not_found_exposes_id():
    assert ShipmentNotFoundError("s-9").shipment_id == "s-9"


def test_credentials_repr_hides_secrets():
    credentials = CourierCredentials(
        tenant_id="t",
        account_id="a",
        api_key="key-123",
        api_secret="secret-456",
        access_token="token-789",
    )
    text = repr(credentials)
    assert "key-123" not in text
    assert "secret-456" not in text
    assert "token-789" not in text
    assert "account_id='a'" in text


def test_access_token_repr_hides_value():
    from datetime import UTC, datetime

    token = AccessToken(value="bearer-xyz", expires_at=datetime.now(tz=UTC))
    assert "bearer-xyz" not in repr(token)
