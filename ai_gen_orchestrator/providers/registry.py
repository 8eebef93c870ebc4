"""
Adapter selection by provider key.

Models in the capability registry name a provider key; this module turns the
key into a configured adapter instance, created lazily and reused.
"""

from typing import Callable, Dict, Optional, Type

import httpx

from .base import ProviderAdapter
from .kie_base import DEFAULT_BASE_URL, DEFAULT_UPLOAD_BASE_URL, KieAdapter
from .market import NanoBananaAdapter, SoraAdapter, WanAdapter
from .veo import VeoAdapter

ADAPTER_CLASSES: Dict[str, Type[KieAdapter]] = {
    "kie-veo": VeoAdapter,
    "kie-wan": WanAdapter,
    "kie-sora": SoraAdapter,
    "kie-nano-banana": NanoBananaAdapter,
}


class AdapterFactory:
    """Creates and caches one adapter per provider key."""

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        upload_base_url: str = DEFAULT_UPLOAD_BASE_URL,
        timeout_seconds: float = 30.0,
        client: Optional[httpx.Client] = None
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.upload_base_url = upload_base_url
        self.timeout_seconds = timeout_seconds
        self.client = client
        self._adapters: Dict[str, ProviderAdapter] = {}

    def __call__(self, provider_key: str) -> ProviderAdapter:
        return self.get(provider_key)

    def get(self, provider_key: str) -> ProviderAdapter:
        """Return the adapter for a provider key.

        Raises:
            KeyError: If no adapter is registered for the key
        """
        if provider_key not in self._adapters:
            if provider_key not in ADAPTER_CLASSES:
                raise KeyError(f"No adapter registered for provider '{provider_key}'")
            adapter_class = ADAPTER_CLASSES[provider_key]
            self._adapters[provider_key] = adapter_class(
                api_key=self.api_key,
                base_url=self.base_url,
                upload_base_url=self.upload_base_url,
                timeout_seconds=self.timeout_seconds,
                client=self.client,
            )
        return self._adapters[provider_key]

    def close(self) -> None:
        for adapter in self._adapters.values():
            adapter.close()
        self._adapters.clear()


def static_adapters(adapters: Dict[str, ProviderAdapter]) -> Callable[[str], ProviderAdapter]:
    """Adapter lookup over a fixed mapping, for tests and embedding."""
    def lookup(provider_key: str) -> ProviderAdapter:
        if provider_key not in adapters:
            raise KeyError(f"No adapter registered for provider '{provider_key}'")
        return adapters[provider_key]
    return lookup
