"""Transport factory and initialization."""

from __future__ import annotations

from typing import Dict, Optional

from ..config import FollowupConfig, load_config
from .base import BaseTransport, build_payload
from .inmemory import InMemoryTransport


def get_transport(channel: str, config: Optional[FollowupConfig] = None) -> BaseTransport:
    """Factory function to get the configured transport for ``channel``."""

    config = config or load_config()
    provider = getattr(config.providers, channel, None)
    if provider is None:
        raise ValueError(f"Unsupported channel: {channel}")

    if provider.backend == "inmemory":
        return InMemoryTransport(channel=channel)
    elif provider.backend == "http":
        from .http import HttpTransport

        if not provider.url:
            raise ValueError(f"providers.{channel}.url is required for the http backend")
        return HttpTransport(
            channel=channel,
            url=provider.url,
            api_key=provider.api_key,
            timeout=provider.timeout,
            max_attempts=provider.max_attempts,
        )
    else:
        raise ValueError(f"Unsupported transport backend: {provider.backend}")


def get_transports(config: Optional[FollowupConfig] = None) -> Dict[str, BaseTransport]:
    config = config or load_config()
    return {channel: get_transport(channel, config) for channel in ("email", "whatsapp")}


__all__ = [
    "BaseTransport",
    "InMemoryTransport",
    "build_payload",
    "get_transport",
    "get_transports",
]
