"""
Client-local voice logic.

- endpointing: decides when the user has finished an utterance
- capture: async loop feeding audio levels into a detector
- provider_policy: picks the provider a conversation uses, with fallback

No I/O beyond the optional provider hint file.
"""

from voice_client.endpointing import (
    EndpointAction, EndpointConfig, EndpointDetector, EndpointReason,
    SpeechPaceProfile, PROFILES, normalized_level, pcm16_level,
)
from voice_client.capture import UtteranceOutcome, capture_utterance
from voice_client.provider_policy import (
    ProviderType, SubscriptionTier, ProviderSurface, FallbackReason,
    FallbackResult, NoProviderAvailableError, ProviderFallbackResolver,
    resolve_provider,
)

__all__ = [
    "EndpointAction", "EndpointConfig", "EndpointDetector", "EndpointReason",
    "SpeechPaceProfile", "PROFILES", "normalized_level", "pcm16_level",
    "UtteranceOutcome", "capture_utterance",
    "ProviderType", "SubscriptionTier", "ProviderSurface", "FallbackReason",
    "FallbackResult", "NoProviderAvailableError", "ProviderFallbackResolver",
    "resolve_provider",
]
