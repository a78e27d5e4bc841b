"""
Tests for relay and voice client configuration.

Verifies:
- Configuration loading from environment
- Default values
- Tolerant parsing of numeric/boolean values
"""
import pytest

from relay.config import RelayConfig, parse_static_tokens
from voice_client.config import VoiceClientConfig
from voice_client.endpointing import PROFILES, SpeechPaceProfile
from voice_client.hints import InMemoryHintStore, JsonFileHintStore


RELAY_VARS = (
    "SUPABASE_URL",
    "SUPABASE_SERVICE_ROLE_KEY",
    "OPENAI_API_KEY",
    "GOOGLE_API_KEY",
    "HUME_API_KEY",
    "ELEVENLABS_API_KEY",
    "RELAY_UPSTREAM_CONNECT_TIMEOUT_SECONDS",
    "RELAY_STATIC_TOKENS",
    "RELAY_ENFORCE_SESSION_LIMITS",
    "RELAY_HOST",
    "RELAY_PORT",
    "LOG_LEVEL",
)


@pytest.fixture
def clean_env(monkeypatch):
    for key in RELAY_VARS + ("SPEECH_PACE_PROFILE", "PROVIDER_HINTS_PATH", "USE_STORED_PROVIDER_HINTS"):
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


def test_relay_config_from_env_all_fields(clean_env):
    """Test configuration loading with all fields set."""
    clean_env.setenv("SUPABASE_URL", "https://proj.supabase.co/")
    clean_env.setenv("SUPABASE_SERVICE_ROLE_KEY", "service_key")
    clean_env.setenv("OPENAI_API_KEY", "sk-test")
    clean_env.setenv("GOOGLE_API_KEY", "g-test")
    clean_env.setenv("HUME_API_KEY", "h-test")
    clean_env.setenv("ELEVENLABS_API_KEY", "e-test")
    clean_env.setenv("RELAY_UPSTREAM_CONNECT_TIMEOUT_SECONDS", "3.5")
    clean_env.setenv("RELAY_STATIC_TOKENS", "tok1:user-1,tok2:user-2")
    clean_env.setenv("RELAY_ENFORCE_SESSION_LIMITS", "false")
    clean_env.setenv("RELAY_HOST", "127.0.0.1")
    clean_env.setenv("RELAY_PORT", "9000")
    clean_env.setenv("LOG_LEVEL", "DEBUG")

    config = RelayConfig.from_env()

    assert config.supabase_url == "https://proj.supabase.co"
    assert config.uses_supabase
    assert config.provider_api_keys == {
        "openai": "sk-test",
        "google": "g-test",
        "hume": "h-test",
        "elevenlabs": "e-test",
    }
    assert config.upstream_connect_timeout_seconds == 3.5
    assert config.static_tokens == {"tok1": "user-1", "tok2": "user-2"}
    assert config.enforce_session_limits is False
    assert config.host == "127.0.0.1"
    assert config.port == 9000
    assert config.log_level == "DEBUG"


def test_relay_config_defaults(clean_env):
    config = RelayConfig.from_env()

    assert not config.uses_supabase
    assert config.upstream_connect_timeout_seconds == 10.0
    assert config.enforce_session_limits is True
    assert config.static_tokens == {}
    assert config.port == 8080


def test_relay_config_tolerates_inline_comments(clean_env):
    clean_env.setenv("RELAY_PORT", "8181  # local port")
    clean_env.setenv("RELAY_UPSTREAM_CONNECT_TIMEOUT_SECONDS", "5 # seconds")

    config = RelayConfig.from_env()

    assert config.port == 8181
    assert config.upstream_connect_timeout_seconds == 5.0


def test_relay_config_bad_numbers_use_defaults(clean_env):
    clean_env.setenv("RELAY_PORT", "eighty")
    clean_env.setenv("RELAY_UPSTREAM_CONNECT_TIMEOUT_SECONDS", "soon")

    config = RelayConfig.from_env()

    assert config.port == 8080
    assert config.upstream_connect_timeout_seconds == 10.0


def test_parse_static_tokens_skips_malformed_entries():
    assert parse_static_tokens("a:1, bad, :2, c:, d:4") == {"a": "1", "d": "4"}
    assert parse_static_tokens("") == {}


def test_voice_client_config_defaults(clean_env):
    config = VoiceClientConfig.from_env()

    assert config.pace_profile is SpeechPaceProfile.BALANCED
    assert config.endpointing is PROFILES[SpeechPaceProfile.BALANCED]
    assert config.use_stored_provider_hints is True
    assert isinstance(config.hint_store(), InMemoryHintStore)


def test_voice_client_config_from_env(clean_env, tmp_path):
    clean_env.setenv("SPEECH_PACE_PROFILE", "Fast")
    clean_env.setenv("PROVIDER_HINTS_PATH", str(tmp_path / "hints.json"))
    clean_env.setenv("USE_STORED_PROVIDER_HINTS", "0")

    config = VoiceClientConfig.from_env()

    assert config.pace_profile is SpeechPaceProfile.FAST
    assert config.use_stored_provider_hints is False
    assert isinstance(config.hint_store(), JsonFileHintStore)


def test_voice_client_config_unknown_profile(clean_env):
    clean_env.setenv("SPEECH_PACE_PROFILE", "glacial")
    assert VoiceClientConfig.from_env().pace_profile is SpeechPaceProfile.BALANCED
