"""Outbound webhook subscription endpoints."""

from __future__ import annotations

from typing import Annotated, ClassVar

from litestar import Controller, get, post, put
from litestar.params import Dependency

from litestar_courierhub.dispatcher import OutboundWebhookDispatcher
from litestar_courierhub.schemas import (
    CreateSubscriptionRequest,
    SubscriptionCreatedResponse,
    SubscriptionResponse,
    UpdateSubscriptionRequest,
    WebhookDeliveryResponse,
    WebhookTestRequest,
    WebhookTestResponse,
)

DispatcherDep = Annotated[
    OutboundWebhookDispatcher, Dependency(skip_validation=True)
]


class SubscriptionController(Controller):
    """Tenant webhook subscriptions and their delivery log."""

    path = "/webhook-subscriptions"
    tags: ClassVar[list[str]] = ["webhook-subscriptions"]

    @post("/")
    async def create_subscription(
        self, data: CreateSubscriptionRequest, dispatcher: DispatcherDep
    ) -> SubscriptionCreatedResponse:
        """Register a subscriber URL. The signing secret is returned once."""
        subscription = await dispatcher.create_subscription(
            data.tenant_id,
            name=data.name,
            url=data.url,
            events=data.events,
            secret=data.secret,
            max_retries=data.max_retries,
            timeout_seconds=data.timeout_seconds,
            headers=data.headers,
        )
        return SubscriptionCreatedResponse.from_subscription(subscription)

    @post("/test", status_code=200)
    async def test_url(
        self, data: WebhookTestRequest, dispatcher: DispatcherDep
    ) -> WebhookTestResponse:
        """Send one test event and report what came back."""
        result = await dispatcher.test_url(
            data.url, secret=data.secret, timeout_seconds=data.timeout_seconds
        )
        return WebhookTestResponse(
            success=result.success,
            status_code=result.status_code,
            duration_ms=result.duration_ms,
            response_body=result.response_body,
            error=result.error,
        )

    @get("/")
    async def list_subscriptions(
        self, tenant_id: str, dispatcher: DispatcherDep
    ) -> list[SubscriptionResponse]:
        subscriptions = await dispatcher.list_subscriptions(tenant_id)
        return [SubscriptionResponse.from_subscription(s) for s in subscriptions]

    @get("/{subscription_id:str}")
    async def get_subscription(
        self, subscription_id: str, dispatcher: DispatcherDep
    ) -> SubscriptionResponse:
        subscription = await dispatcher.get_subscription(subscription_id)
        return SubscriptionResponse.from_subscription(subscription)

    @put("/{subscription_id:str}")
    async def update_subscription(
        self,
        subscription_id: str,
        data: UpdateSubscriptionRequest,
        dispatcher: DispatcherDep,
    ) -> SubscriptionResponse:
        subscription = await dispatcher.update_subscription(
            subscription_id,
            name=data.name,
            url=data.url,
            events=data.events,
            headers=data.headers,
            max_retries=data.max_retries,
            timeout_seconds=data.timeout_seconds,
            is_active=data.is_active,
        )
        return SubscriptionResponse.from_subscription(subscription)

    @post("/{subscription_id:str}/regenerate-secret", status_code=200)
    async def regenerate_secret(
        self, subscription_id: str, dispatcher: DispatcherDep
    ) -> SubscriptionCreatedResponse:
        """Rotate the signing secret and return the new one."""
        subscription = await dispatcher.regenerate_secret(subscription_id)
        return SubscriptionCreatedResponse.from_subscription(subscription)

    @post("/{subscription_id:str}/deactivate", status_code=200)
    async def deactivate_subscription(
        self, subscription_id: str, dispatcher: DispatcherDep
    ) -> SubscriptionResponse:
        subscription = await dispatcher.deactivate_subscription(subscription_id)
        return SubscriptionResponse.from_subscription(subscription)

    @get("/{subscription_id:str}/deliveries")
    async def list_deliveries(
        self,
        subscription_id: str,
        dispatcher: DispatcherDep,
        limit: int = 50,
    ) -> list[WebhookDeliveryResponse]:
        """Delivery attempts for a subscription, newest first."""
        deliveries = await dispatcher.get_deliveries(
            subscription_id, limit=min(max(limit, 1), 200)
        )
        return [WebhookDeliveryResponse.from_delivery(d) for d in deliveries]
