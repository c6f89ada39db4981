"""Provider adapter registry: network name -> adapter instance"""

from functools import lru_cache
from typing import Callable, Dict, Iterator, Mapping, Optional

import httpx

from app.core.config import ProviderConfig, Settings, build_provider_configs, settings
from app.services.social.errors import UnsupportedNetworkError
from app.services.social.platforms.base import BaseProviderAdapter
from app.services.social.platforms.facebook import FacebookAdapter
from app.services.social.platforms.instagram import InstagramAdapter
from app.services.social.platforms.linkedin import LinkedInAdapter
from app.services.social.platforms.tiktok import TikTokAdapter
from app.services.social.platforms.x import XAdapter
from app.services.social.platforms.youtube import YouTubeAdapter

ADAPTER_CLASSES = {
    "facebook": FacebookAdapter,
    "instagram": InstagramAdapter,
    "x": XAdapter,
    "linkedin": LinkedInAdapter,
    "tiktok": TikTokAdapter,
    "youtube": YouTubeAdapter,
}


class ProviderRegistry:
    """Maps a network name to the adapter implementing it"""

    def __init__(self, adapters: Optional[Mapping[str, BaseProviderAdapter]] = None):
        self._adapters: Dict[str, BaseProviderAdapter] = dict(adapters or {})

    def register(self, adapter: BaseProviderAdapter) -> None:
        self._adapters[adapter.network] = adapter

    def get(self, network) -> BaseProviderAdapter:
        """Adapter for a network

        Raises:
            UnsupportedNetworkError: If nothing is registered for the network
        """
        key = getattr(network, "value", network)
        adapter = self._adapters.get(key)
        if adapter is None:
            raise UnsupportedNetworkError(key)
        return adapter

    def __contains__(self, network) -> bool:
        return getattr(network, "value", network) in self._adapters

    def __iter__(self) -> Iterator[str]:
        return iter(self._adapters)

    @classmethod
    def from_settings(
        cls,
        cfg: Settings = settings,
        configs: Optional[Mapping[str, ProviderConfig]] = None,
        http_client: Optional[httpx.Client] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> "ProviderRegistry":
        configs = configs or build_provider_configs(cfg)
        poll = {
            "instagram": (cfg.INSTAGRAM_POLL_INTERVAL_SECONDS, cfg.INSTAGRAM_POLL_MAX_ATTEMPTS),
            "tiktok": (cfg.TIKTOK_POLL_INTERVAL_SECONDS, cfg.TIKTOK_POLL_MAX_ATTEMPTS),
        }
        registry = cls()
        for network, adapter_cls in ADAPTER_CLASSES.items():
            kwargs = {"http_client": http_client}
            if sleep is not None:
                kwargs["sleep"] = sleep
            if network in poll:
                kwargs["poll_interval"], kwargs["poll_max_attempts"] = poll[network]
            registry.register(adapter_cls(configs[network], **kwargs))
        return registry


@lru_cache(maxsize=1)
def get_provider_registry() -> ProviderRegistry:
    """Process-wide registry built from settings"""
    return ProviderRegistry.from_settings()
