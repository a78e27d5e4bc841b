"""
Provider access policy and fallback resolution.

Picks the provider a conversation should actually use given what the user
asked for, their subscription tier, the OS runtime they are on and which
providers are configured. When the requested provider cannot be used a
replacement is chosen in a deterministic order and the reason is disclosed.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterator, Optional, Tuple

from logging_setup import get_logger, Component
from .hints import HintStore, InMemoryHintStore

logger = get_logger(Component.PROVIDER_POLICY)


class ProviderType(str, Enum):
    """Conversation providers, in canonical order."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    GROK = "grok"
    APPLE = "apple"
    OLLAMA = "ollama"
    OPENCLAW = "openclaw"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @property
    def minimum_runtime_major_version(self) -> Optional[int]:
        """Lowest OS major version the provider runs on, or None if ungated."""
        return _RUNTIME_MINIMUMS.get(self)

    @property
    def is_available(self) -> bool:
        """Whether this build ships the provider at all."""
        return True

    @property
    def requires_api_key(self) -> bool:
        return self not in (ProviderType.APPLE, ProviderType.OLLAMA, ProviderType.OPENCLAW)

    @property
    def is_local(self) -> bool:
        return self in (ProviderType.APPLE, ProviderType.OLLAMA)

    @property
    def supports_realtime_voice(self) -> bool:
        return self in (ProviderType.OPENAI, ProviderType.GEMINI)

    def is_runtime_supported(self, runtime_major_version: int) -> bool:
        minimum = self.minimum_runtime_major_version
        return minimum is None or runtime_major_version >= minimum

    def is_allowed_for_tier(self, tier: "SubscriptionTier") -> bool:
        return self in tier.available_providers


_DISPLAY_NAMES = {
    ProviderType.OPENAI: "OpenAI",
    ProviderType.ANTHROPIC: "Anthropic",
    ProviderType.GEMINI: "Google Gemini",
    ProviderType.GROK: "xAI Grok",
    ProviderType.APPLE: "Apple Intelligence",
    ProviderType.OLLAMA: "Ollama",
    ProviderType.OPENCLAW: "OpenClaw",
}

_RUNTIME_MINIMUMS = {
    ProviderType.APPLE: 26,
}

# Order used when picking a replacement. On-device Apple models are never an
# automatic fallback target.
FALLBACK_ORDER: Tuple[ProviderType, ...] = (
    ProviderType.OPENAI,
    ProviderType.ANTHROPIC,
    ProviderType.GEMINI,
    ProviderType.GROK,
    ProviderType.OPENCLAW,
    ProviderType.OLLAMA,
)


class SubscriptionTier(str, Enum):
    FREE = "free"
    STANDARD = "standard"
    PREMIUM = "premium"
    BYOK = "byok"

    @property
    def available_providers(self) -> Tuple[ProviderType, ...]:
        if self is SubscriptionTier.FREE:
            return (ProviderType.OPENAI,)
        if self is SubscriptionTier.STANDARD:
            return (ProviderType.OPENAI, ProviderType.ANTHROPIC, ProviderType.GEMINI, ProviderType.GROK)
        if self is SubscriptionTier.PREMIUM:
            return tuple(p for p in ProviderType if p.is_available)
        return tuple(ProviderType)

    @property
    def fallback_order(self) -> Tuple[ProviderType, ...]:
        """The tier's canonical replacement order."""
        return tuple(p for p in FALLBACK_ORDER if p in self.available_providers)

    @property
    def monthly_minutes(self) -> Optional[int]:
        """Included minutes per month; None means unlimited."""
        return _MONTHLY_MINUTES[self]

    @property
    def max_session_minutes(self) -> Optional[int]:
        """Longest single session; None means unlimited."""
        return _MAX_SESSION_MINUTES[self]

    @property
    def supports_realtime(self) -> bool:
        return self in (SubscriptionTier.PREMIUM, SubscriptionTier.BYOK)

    @classmethod
    def parse(cls, value: Optional[str], default: "SubscriptionTier | None" = None) -> "SubscriptionTier":
        """Parse a stored tier name, falling back to ``default`` (free) on junk."""
        try:
            return cls(value)
        except ValueError:
            return default or cls.FREE


_MONTHLY_MINUTES = {
    SubscriptionTier.FREE: 10,
    SubscriptionTier.STANDARD: 120,
    SubscriptionTier.PREMIUM: 120,
    SubscriptionTier.BYOK: None,
}

_MAX_SESSION_MINUTES = {
    SubscriptionTier.FREE: 5,
    SubscriptionTier.STANDARD: 30,
    SubscriptionTier.PREMIUM: 60,
    SubscriptionTier.BYOK: None,
}


class ProviderSurface(str, Enum):
    """Where the conversation is running."""

    IPHONE = "iphone"
    CARPLAY = "carplay"
    WATCH = "watch"


class FallbackReason(str, Enum):
    OS_UNSUPPORTED = "os_unsupported"
    TIER_RESTRICTED = "tier_restricted"
    PROVIDER_UNAVAILABLE = "provider_unavailable"


@dataclass(frozen=True)
class FallbackResult:
    requested: ProviderType
    effective: ProviderType
    fallback_reason: Optional[FallbackReason] = None
    message: Optional[str] = None

    @property
    def did_fallback(self) -> bool:
        return self.effective != self.requested


class NoProviderAvailableError(Exception):
    """No provider passes the policy for this user right now."""


ProviderCheck = Callable[[ProviderType], bool]


def _always(_provider: ProviderType) -> bool:
    return True


class ProviderFallbackResolver:
    """
    Resolves requested -> effective provider.

    The only state is the hint store holding the last provider that worked
    (and the user's selected provider); everything else is passed in.
    """

    LAST_WORKING_PROVIDER_KEY = "lastWorkingProvider"
    SELECTED_PROVIDER_KEY = "selectedProvider"

    def __init__(self, hints: Optional[HintStore] = None):
        self.hints = hints if hints is not None else InMemoryHintStore()

    # --- hints ---

    def mark_provider_as_working(self, provider: ProviderType) -> None:
        self.hints.set(self.LAST_WORKING_PROVIDER_KEY, provider.value)

    def last_working_provider(self) -> Optional[ProviderType]:
        return self._hinted(self.LAST_WORKING_PROVIDER_KEY)

    def selected_provider(self) -> Optional[ProviderType]:
        return self._hinted(self.SELECTED_PROVIDER_KEY)

    def _hinted(self, key: str) -> Optional[ProviderType]:
        raw = self.hints.get(key)
        if raw is None:
            return None
        try:
            return ProviderType(raw)
        except ValueError:
            return None

    # --- policy ---

    @staticmethod
    def can_show_in_ui(
        provider: ProviderType,
        tier: SubscriptionTier,
        runtime_major_version: int,
    ) -> bool:
        """Static eligibility: shipped, tier-permitted, runtime supported."""
        return (
            provider.is_available
            and provider.is_allowed_for_tier(tier)
            and provider.is_runtime_supported(runtime_major_version)
        )

    def can_use_at_runtime(
        self,
        provider: ProviderType,
        tier: SubscriptionTier,
        runtime_major_version: int,
        is_configured: ProviderCheck,
        is_runtime_available: ProviderCheck = _always,
    ) -> bool:
        if not self.can_show_in_ui(provider, tier, runtime_major_version):
            return False
        if not is_runtime_available(provider):
            return False
        return is_configured(provider)

    def resolve_provider(
        self,
        requested: ProviderType,
        tier: SubscriptionTier,
        *,
        runtime_major_version: int,
        is_configured: ProviderCheck,
        is_runtime_available: ProviderCheck = _always,
        surface: ProviderSurface = ProviderSurface.IPHONE,
        use_stored_hints: bool = True,
    ) -> FallbackResult:
        """
        Return the provider to use for ``requested``.

        Raises:
            NoProviderAvailableError: neither the requested provider nor any
                replacement is usable.
        """
        if self.can_use_at_runtime(
            requested, tier, runtime_major_version, is_configured, is_runtime_available
        ):
            return FallbackResult(requested=requested, effective=requested)

        reason = self._fallback_reason(requested, tier, runtime_major_version)

        for candidate in self._candidates(requested, tier, use_stored_hints):
            if self.can_use_at_runtime(
                candidate, tier, runtime_major_version, is_configured, is_runtime_available
            ):
                logger.info(
                    "Provider fallback",
                    requested=requested.value,
                    effective=candidate.value,
                    reason=reason.value,
                    tier=tier.value,
                    surface=surface.value,
                )
                return FallbackResult(
                    requested=requested,
                    effective=candidate,
                    fallback_reason=reason,
                    message=fallback_message(requested, candidate, reason),
                )

        logger.warning(
            "No provider available",
            requested=requested.value,
            reason=reason.value,
            tier=tier.value,
            surface=surface.value,
        )
        raise NoProviderAvailableError("No configured providers are available right now")

    @staticmethod
    def _fallback_reason(
        provider: ProviderType,
        tier: SubscriptionTier,
        runtime_major_version: int,
    ) -> FallbackReason:
        if not provider.is_runtime_supported(runtime_major_version):
            return FallbackReason.OS_UNSUPPORTED
        if not provider.is_allowed_for_tier(tier):
            return FallbackReason.TIER_RESTRICTED
        return FallbackReason.PROVIDER_UNAVAILABLE

    def _candidates(
        self,
        requested: ProviderType,
        tier: SubscriptionTier,
        use_stored_hints: bool,
    ) -> Iterator[ProviderType]:
        ordered = []
        if use_stored_hints:
            last = self.last_working_provider()
            if last is not None:
                ordered.append(last)
            selected = self.selected_provider()
            if selected is not None and selected is not ProviderType.APPLE:
                ordered.append(selected)
        ordered.extend(tier.fallback_order)

        seen = set()
        for candidate in ordered:
            if candidate is requested or candidate in seen:
                continue
            seen.add(candidate)
            yield candidate


def fallback_message(
    requested: ProviderType,
    effective: ProviderType,
    reason: FallbackReason,
) -> str:
    """User-facing explanation of a fallback."""
    if reason is FallbackReason.TIER_RESTRICTED:
        return f"{requested.display_name} needs Premium or BYOK. Using {effective.display_name}."
    if reason is FallbackReason.OS_UNSUPPORTED:
        minimum = requested.minimum_runtime_major_version
        return f"{requested.display_name} needs OS version {minimum} or later. Using {effective.display_name}."
    return (
        f"{requested.display_name} is unavailable right now. Using {effective.display_name}. "
        "You can switch providers in Settings."
    )


def resolve_provider(
    requested: ProviderType,
    tier: SubscriptionTier,
    *,
    runtime_major_version: int,
    is_configured: ProviderCheck,
    is_runtime_available: ProviderCheck = _always,
    surface: ProviderSurface = ProviderSurface.IPHONE,
    use_stored_hints: bool = True,
    hints: Optional[HintStore] = None,
) -> FallbackResult:
    """Module-level shortcut for ProviderFallbackResolver(hints).resolve_provider."""
    return ProviderFallbackResolver(hints).resolve_provider(
        requested,
        tier,
        runtime_major_version=runtime_major_version,
        is_configured=is_configured,
        is_runtime_available=is_runtime_available,
        surface=surface,
        use_stored_hints=use_stored_hints,
    )
