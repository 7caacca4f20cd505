"""Adapter registry."""

from __future__ import annotations

from collections.abc import Iterator

import httpx

from litestar_courierhub.adapters.base import BaseCourierAdapter
from litestar_courierhub.adapters.bluedart import BlueDartAdapter
from litestar_courierhub.adapters.custom import CustomCourierAdapter
from litestar_courierhub.adapters.delhivery import DelhiveryAdapter
from litestar_courierhub.adapters.dtdc import DtdcAdapter
from litestar_courierhub.adapters.ecom_express import EcomExpressAdapter
from litestar_courierhub.adapters.shadowfax import ShadowfaxAdapter
from litestar_courierhub.adapters.shiprocket import ShiprocketAdapter
from litestar_courierhub.adapters.xpressbees import XpressBeesAdapter
from litestar_courierhub.config import CourierHubConfig
from litestar_courierhub.credentials import TokenCache
from litestar_courierhub.enums import CourierType
from litestar_courierhub.exceptions import ConfigurationError

ADAPTER_CLASSES: tuple[type[BaseCourierAdapter], ...] = (
    ShiprocketAdapter,
    DelhiveryAdapter,
    BlueDartAdapter,
    DtdcAdapter,
    EcomExpressAdapter,
    XpressBeesAdapter,
    ShadowfaxAdapter,
    CustomCourierAdapter,
)


class AdapterRegistry:
    """Maps each courier type to its adapter instance.

    Built once at startup; lookups are plain dictionary reads.
    """

    def __init__(self) -> None:
        self._adapters: dict[CourierType, BaseCourierAdapter] = {}

    @classmethod
    def from_config(
        cls,
        config: CourierHubConfig,
        client: httpx.AsyncClient,
        token_cache: TokenCache | None = None,
    ) -> AdapterRegistry:
        tokens = token_cache or TokenCache(
            refresh_margin_seconds=config.token_refresh_margin_seconds
        )
        registry = cls()
        for adapter_cls in ADAPTER_CLASSES:
            registry.register(
                adapter_cls(
                    client,
                    base_url=config.base_url_for(
                        adapter_cls.courier_type, adapter_cls.default_base_url
                    ),
                    timeout=config.adapter_timeout_seconds,
                    token_cache=tokens,
                )
            )
        return registry

    def register(self, adapter: BaseCourierAdapter) -> None:
        self._adapters[adapter.courier_type] = adapter

    def get(self, courier_type: CourierType | str) -> BaseCourierAdapter:
        try:
            return self._adapters[CourierType(courier_type)]
        except (KeyError, ValueError) as exc:
            raise ConfigurationError(
                f"No adapter registered for courier {courier_type!r}"
            ) from exc

    def __contains__(self, courier_type: object) -> bool:
        return courier_type in self._adapters

    def __iter__(self) -> Iterator[BaseCourierAdapter]:
        return iter(self._adapters.values())
