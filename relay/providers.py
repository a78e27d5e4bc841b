"""
Realtime provider registry.

Maps the `provider` query parameter onto the upstream WebSocket URL and the
auth headers that provider expects.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Mapping, Optional, Tuple
from urllib.parse import quote

from logging_setup import get_logger, Component, redact_url
from .errors import ConfigError

logger = get_logger(Component.PROVIDER_REGISTRY)


class RealtimeProvider(str, Enum):
    OPENAI_REALTIME = "openai_realtime"
    GEMINI_LIVE = "gemini_live"
    HUME_EVI3 = "hume_evi3"
    ELEVENLABS_CONV = "elevenlabs_conv"


DEFAULT_MODELS = {
    RealtimeProvider.OPENAI_REALTIME: "gpt-4o-realtime-preview",
    RealtimeProvider.GEMINI_LIVE: "gemini-2.0-flash-live-001",
}


@dataclass(frozen=True)
class UpstreamTarget:
    """Where and how to connect for one provider."""

    provider: RealtimeProvider
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    protocols: Tuple[str, ...] = ()
    model: Optional[str] = None

    @property
    def safe_url(self) -> str:
        """URL with credentials removed, for logs and events."""
        return redact_url(self.url)


class ProviderRegistry:
    """Resolves provider ids to upstream targets using the configured API keys."""

    def __init__(self, api_keys: Optional[Mapping[str, str]] = None):
        self._keys: Dict[str, str] = dict(api_keys or {})

    def _key(self, name: str) -> str:
        return self._keys.get(name, "")

    @staticmethod
    def parse(provider_id: Optional[str]) -> RealtimeProvider:
        if not provider_id:
            raise ConfigError("Missing provider param")
        try:
            return RealtimeProvider(provider_id)
        except ValueError:
            raise ConfigError(f"Unknown provider: {provider_id}") from None

    def resolve(self, provider_id: Optional[str], model: Optional[str] = None) -> UpstreamTarget:
        """
        Build the upstream target for ``provider_id``.

        Raises:
            ConfigError: the provider id is missing or not recognised.
        """
        provider = self.parse(provider_id)
        model = model or DEFAULT_MODELS.get(provider)

        if provider is RealtimeProvider.OPENAI_REALTIME:
            target = UpstreamTarget(
                provider=provider,
                url=f"wss://api.openai.com/v1/realtime?model={quote(model)}",
                headers={
                    "Authorization": f"Bearer {self._key('openai')}",
                    "OpenAI-Beta": "realtime=v1",
                },
                model=model,
            )
        elif provider is RealtimeProvider.GEMINI_LIVE:
            target = UpstreamTarget(
                provider=provider,
                url=(
                    "wss://generativelanguage.googleapis.com/v1alpha/models/"
                    f"{quote(model)}:streamGenerateContent?key={quote(self._key('google'))}"
                ),
                model=model,
            )
        elif provider is RealtimeProvider.HUME_EVI3:
            target = UpstreamTarget(
                provider=provider,
                url="wss://api.hume.ai/v0/evi/chat",
                headers={"X-Hume-Api-Key": self._key("hume")},
                model=model,
            )
        else:
            target = UpstreamTarget(
                provider=provider,
                url="wss://api.elevenlabs.io/v1/convai/conversation",
                headers={"xi-api-key": self._key("elevenlabs")},
                model=model,
            )

        logger.debug("Provider resolved", provider=provider.value, url=target.safe_url, model=model)
        return target
