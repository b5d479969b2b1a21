from __future__ import annotations

from typing import Iterator, Optional

from tracker.core.config import Settings, settings as default_settings
from tracker.couriers.acs import AcsProvider
from tracker.couriers.base import CourierProvider
from tracker.couriers.elta import EltaProvider
from tracker.couriers.generic import GenericProvider
from tracker.couriers.geniki import GenikiProvider
from tracker.couriers.http import CourierHttpClient
from tracker.couriers.speedex import SpeedexProvider


BUILTIN_PROVIDERS: tuple[type[CourierProvider], ...] = (
    AcsProvider,
    GenikiProvider,
    EltaProvider,
    SpeedexProvider,
    GenericProvider,
)


class CourierProviderRegistry:
    """
    Catalogue of courier providers keyed by id. Registering an id twice
    replaces the earlier provider, so tests and deployments can swap one in.
    """

    def __init__(self, providers: Optional[list[CourierProvider]] = None) -> None:
        self._providers: dict[str, CourierProvider] = {}
        for provider in providers or []:
            self.register(provider)

    def register(self, provider: CourierProvider) -> None:
        if not provider.id:
            raise ValueError(f"{type(provider).__name__} has no id")
        self._providers[provider.id] = provider

    def get(self, provider_id: Optional[str]) -> Optional[CourierProvider]:
        if not provider_id:
            return None
        return self._providers.get(provider_id)

    def all(self) -> list[CourierProvider]:
        return list(self._providers.values())

    def ids(self) -> list[str]:
        return list(self._providers)

    def has(self, provider_id: str) -> bool:
        return provider_id in self._providers

    def clear(self) -> None:
        self._providers.clear()

    def __iter__(self) -> Iterator[CourierProvider]:
        return iter(self.all())

    def __len__(self) -> int:
        return len(self._providers)


def build_default_registry(
    settings_obj: Settings | None = None,
    *,
    http_client: CourierHttpClient | None = None,
) -> CourierProviderRegistry:
    cfg = settings_obj or default_settings
    client = http_client or CourierHttpClient(timeout=cfg.COURIER_HTTP_TIMEOUT_SECONDS)
    registry = CourierProviderRegistry()
    for provider_cls in BUILTIN_PROVIDERS:
        courier_id = provider_cls.id
        registry.register(
            provider_cls(
                http_client=client,
                endpoint=cfg.COURIER_API_ENDPOINTS.get(courier_id),
                api_key=cfg.COURIER_API_KEYS.get(courier_id),
                credentials=cfg.COURIER_API_CREDENTIALS.get(courier_id),
            )
        )
    return registry


_REGISTRY: CourierProviderRegistry | None = None


def get_courier_registry() -> CourierProviderRegistry:
    global _REGISTRY
    if _REGISTRY is None:
        _REGISTRY = build_default_registry()
    return _REGISTRY


def reset_courier_registry() -> None:
    global _REGISTRY
    _REGISTRY = None
