"""
Voice client configuration.

Loads endpointing and provider-hint settings from environment variables.
"""
import os
from dataclasses import dataclass
from typing import Optional

from .endpointing import EndpointConfig, SpeechPaceProfile
from .hints import HintStore, InMemoryHintStore, JsonFileHintStore


def _parse_bool_env(key: str, default: bool) -> bool:
    """Parse a boolean env var; accepts 1/0, true/false, yes/no (comments stripped)."""
    value = os.environ.get(key)
    if not value:
        return default
    value = value.split("#")[0].strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    return default


@dataclass
class VoiceClientConfig:
    """Client-side voice configuration."""

    pace_profile: SpeechPaceProfile = SpeechPaceProfile.BALANCED
    provider_hints_path: Optional[str] = None
    use_stored_provider_hints: bool = True

    @property
    def endpointing(self) -> EndpointConfig:
        return EndpointConfig.for_profile(self.pace_profile)

    def hint_store(self) -> HintStore:
        if self.provider_hints_path:
            return JsonFileHintStore(self.provider_hints_path)
        return InMemoryHintStore()

    @classmethod
    def from_env(cls) -> "VoiceClientConfig":
        raw_profile = os.environ.get("SPEECH_PACE_PROFILE", "balanced").strip().lower()
        try:
            profile = SpeechPaceProfile(raw_profile)
        except ValueError:
            profile = SpeechPaceProfile.BALANCED
        return cls(
            pace_profile=profile,
            provider_hints_path=os.environ.get("PROVIDER_HINTS_PATH") or None,
            use_stored_provider_hints=_parse_bool_env("USE_STORED_PROVIDER_HINTS", True),
        )
