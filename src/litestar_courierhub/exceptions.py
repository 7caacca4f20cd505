"""Error taxonomy and exception handling for litestar-courierhub."""

from __future__ import annotations

from litestar import Request, Response


class CourierHubError(Exception):
    """Base class for every error raised by the integration core."""

    code = "courierhub_error"
    default_message = "Courier integration error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class InvalidCredentialsError(CourierHubError):
    code = "invalid_credentials"
    default_message = "Courier credentials were rejected"


class TransportError(CourierHubError):
    """Network failure or timeout talking to a carrier or subscriber."""

    code = "transport_error"
    default_message = "Remote endpoint could not be reached"


class NotServiceableError(CourierHubError):
    code = "not_serviceable"
    default_message = "No courier can deliver on this route"


class CarrierError(CourierHubError):
    """Carrier refused a request for a reason other than auth or transport."""

    code = "carrier_error"
    default_message = "Courier rejected the request"


class InvalidTransitionError(CourierHubError):
    code = "invalid_transition"

    def __init__(
        self, current: str, target: str, entity: str = "shipment"
    ) -> None:
        self.current = str(current)
        self.target = str(target)
        super().__init__(
            f"Cannot move {entity} from '{current}' to '{target}'"
        )


class DuplicateEventError(CourierHubError):
    """Idempotency hit. Signals a no-op, not a failure."""

    code = "duplicate_event"

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__("Event already processed")


class SignatureInvalidError(CourierHubError):
    code = "signature_invalid"
    default_message = "Webhook signature verification failed"


class MalformedPayloadError(CourierHubError):
    code = "malformed_payload"
    default_message = "Webhook payload could not be parsed"


class ExhaustedRetriesError(CourierHubError):
    code = "exhausted_retries"

    def __init__(self, delivery_id: str, attempts: int) -> None:
        self.delivery_id = delivery_id
        self.attempts = attempts
        super().__init__(
            f"Delivery {delivery_id!r} gave up after {attempts} attempts"
        )


class _NotFoundError(CourierHubError):
    code = "not_found"
    entity = "Object"

    def __init__(self, object_id: str) -> None:
        self.object_id = object_id
        super().__init__(f"{self.entity} {object_id!r} not found")


class ShipmentNotFoundError(_NotFoundError):
    entity = "Shipment"

    @property
    def shipment_id(self) -> str:
        return self.object_id


class NdrCaseNotFoundError(_NotFoundError):
    entity = "NDR case"


class SubscriptionNotFoundError(_NotFoundError):
    entity = "Webhook subscription"


class CourierAccountNotFoundError(_NotFoundError):
    entity = "Courier account"


class ConfigurationError(CourierHubError):
    """A required component is not configured."""

    code = "configuration_error"


_STATUS_CODES: dict[type[CourierHubError], int] = {
    InvalidCredentialsError: 401,
    SignatureInvalidError: 401,
    MalformedPayloadError: 400,
    _NotFoundError: 404,
    InvalidTransitionError: 409,
    NotServiceableError: 422,
    TransportError: 502,
    CarrierError: 502,
    ExhaustedRetriesError: 502,
    ConfigurationError: 500,
}


def status_code_for(exc: CourierHubError) -> int:
    for exc_type in type(exc).__mro__:
        if exc_type in _STATUS_CODES:
            return _STATUS_CODES[exc_type]
    return 400


def handle_courierhub_error(
    request: Request, exc: CourierHubError
) -> Response:
    """Map any CourierHubError to a stable JSON error body."""
    return Response(
        content={"detail": str(exc), "code": exc.code},
        status_code=status_code_for(exc),
    )


def handle_value_error(request: Request, exc: ValueError) -> Response:
    """Domain validation failures (bad URL, past reattempt date) map to 400."""
    return Response(
        content={"detail": str(exc), "code": "validation_error"},
        status_code=400,
    )


EXCEPTION_HANDLERS = {
    CourierHubError: handle_courierhub_error,
    ValueError: handle_value_error,
}
