"""Litestar integration hub for Indian courier carriers."""

from typing import TYPE_CHECKING

__version__ = "0.1.0"

__all__ = [
    "AdapterRegistry",
    "CarrierError",
    "ConfigurationError",
    "CourierHub",
    "CourierHubConfig",
    "CourierHubError",
    "CreateShipmentRequest",
    "InvalidTransitionError",
    "NdrCaseResponse",
    "NdrService",
    "OutboundWebhookDispatcher",
    "RateShopper",
    "ShipmentNotFoundError",
    "ShipmentResponse",
    "ShipmentService",
    "WebhookAck",
    "WebhookIngestion",
    "__version__",
    "create_courier_router",
]

if TYPE_CHECKING:
    from litestar_courierhub.config import CourierHubConfig
    from litestar_courierhub.dispatcher import OutboundWebhookDispatcher
    from litestar_courierhub.exceptions import (
        CarrierError,
        ConfigurationError,
        CourierHubError,
        InvalidTransitionError,
        ShipmentNotFoundError,
    )
    from litestar_courierhub.ingestion import WebhookIngestion
    from litestar_courierhub.ndr import NdrService
    from litestar_courierhub.plugin import CourierHub, create_courier_router
    from litestar_courierhub.rates import RateShopper
    from litestar_courierhub.registry import AdapterRegistry
    from litestar_courierhub.schemas import (
        CreateShipmentRequest,
        NdrCaseResponse,
        ShipmentResponse,
        WebhookAck,
    )
    from litestar_courierhub.shipments import ShipmentService


def __getattr__(name: str):
    # Lazy imports to avoid loading all submodules on package import.
    if name == "CourierHubConfig":
        from litestar_courierhub.config import CourierHubConfig

        return CourierHubConfig
    if name in ("create_courier_router", "CourierHub"):
        from litestar_courierhub import plugin

        return getattr(plugin, name)
    if name == "AdapterRegistry":
        from litestar_courierhub.registry import AdapterRegistry

        return AdapterRegistry
    if name == "ShipmentService":
        from litestar_courierhub.shipments import ShipmentService

        return ShipmentService
    if name == "NdrService":
        from litestar_courierhub.ndr import NdrService

        return NdrService
    if name == "RateShopper":
        from litestar_courierhub.rates import RateShopper

        return RateShopper
    if name == "WebhookIngestion":
        from litestar_courierhub.ingestion import WebhookIngestion

        return WebhookIngestion
    if name == "OutboundWebhookDispatcher":
        from litestar_courierhub.dispatcher import OutboundWebhookDispatcher

        return OutboundWebhookDispatcher
    if name in (
        "CourierHubError",
        "CarrierError",
        "ConfigurationError",
        "InvalidTransitionError",
        "ShipmentNotFoundError",
    ):
        from litestar_courierhub import exceptions

        return getattr(exceptions, name)
    if name in (
        "CreateShipmentRequest",
        "ShipmentResponse",
        "NdrCaseResponse",
        "WebhookAck",
    ):
        from litestar_courierhub import schemas

        return getattr(schemas, name)
    raise AttributeError(
        f"module 'litestar_courierhub' has no attribute {name!r}"
    )
