"""
Provider adapters for third-party generation back-ends.

Each adapter implements the same submit / check_status / upload_asset
contract so the orchestrator never branches on provider identity.
"""

from .base import ProviderAdapter, ProviderError, ProviderRequest, ProviderStatus, StatusResult
from .market import NanoBananaAdapter, SoraAdapter, WanAdapter
from .registry import AdapterFactory, static_adapters
from .veo import VeoAdapter

__all__ = [
    "AdapterFactory",
    "NanoBananaAdapter",
    "ProviderAdapter",
    "ProviderError",
    "ProviderRequest",
    "ProviderStatus",
    "SoraAdapter",
    "StatusResult",
    "VeoAdapter",
    "WanAdapter",
    "static_adapters",
]
