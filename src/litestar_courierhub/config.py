"""Courier hub configuration."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CourierHubConfig(BaseSettings):
    """Runtime config for the courier integration core.

    Reads from environment variables with COURIERHUB_ prefix.
    """

    model_config = SettingsConfigDict(env_prefix="COURIERHUB_")

    # Carrier calls
    adapter_timeout_seconds: float = 30.0
    carrier_base_urls: dict[str, str] = Field(default_factory=dict)
    token_refresh_margin_seconds: int = 60

    # Inbound webhooks
    webhook_secrets: dict[str, str] = Field(default_factory=dict, repr=False)
    inbound_event_retention_days: int = 30

    # Outbound webhooks
    dispatch_backoff_seconds: float = 60.0
    dispatch_deadline_seconds: float | None = None
    default_subscription_max_retries: int = 3
    default_subscription_timeout_seconds: float = 30.0
    response_body_limit: int = 1000

    def base_url_for(self, carrier: str, default: str) -> str:
        return self.carrier_base_urls.get(carrier, default).rstrip("/")

    def webhook_secret_for(self, carrier: str) -> str | None:
        return self.webhook_secrets.get(carrier) or None
