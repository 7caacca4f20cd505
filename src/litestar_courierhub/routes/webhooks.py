"""Inbound carrier webhook endpoints."""

from __future__ import annotations

from typing import Annotated, ClassVar

from litestar import Controller, Request, Response, get, post
from litestar.params import Dependency

from litestar_courierhub.enums import CourierType
from litestar_courierhub.ingestion import WebhookIngestion
from litestar_courierhub.schemas import WebhookAck

# Carriers that push status callbacks.
WEBHOOK_CARRIERS = frozenset(
    {
        CourierType.SHIPROCKET,
        CourierType.DELHIVERY,
        CourierType.BLUEDART,
        CourierType.DTDC,
    }
)


class WebhookController(Controller):
    """Carrier callback endpoints."""

    path = "/webhooks"
    tags: ClassVar[list[str]] = ["webhooks"]

    @get("/health")
    async def webhooks_health(self) -> dict[str, str]:
        """Healthcheck endpoint for webhook routes."""
        return {"status": "ok"}

    @post("/{carrier:str}", status_code=200)
    async def receive_webhook(
        self,
        carrier: str,
        request: Request,
        ingestion: Annotated[
            WebhookIngestion, Dependency(skip_validation=True)
        ],
    ) -> Response[WebhookAck]:
        """Verify, deduplicate and apply a carrier status callback."""
        if carrier not in WEBHOOK_CARRIERS:
            return Response(
                WebhookAck(
                    success=False, message=f"Unknown carrier {carrier!r}"
                ),
                status_code=404,
            )
        result = await ingestion.handle(
            carrier, await request.body(), dict(request.headers)
        )
        return Response(
            WebhookAck(success=result.success, message=result.message),
            status_code=result.status_code,
        )
