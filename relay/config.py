"""
Relay configuration.

Loads from environment variables. .env_local / .env.local in the repo root
are read first for local development and never override real env vars.
"""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from dotenv import load_dotenv


def load_local_env() -> None:
    root = Path(__file__).parent.parent
    for name in (".env_local", ".env.local"):
        p = root / name
        if p.exists():
            load_dotenv(p, override=False)


def _clean(value: Optional[str]) -> str:
    """Strip inline comments ("10  # seconds") and whitespace."""
    if not value:
        return ""
    if "#" in value:
        value = value.split("#")[0]
    return value.strip()


def _parse_int_env(key: str, default: int) -> int:
    value = _clean(os.environ.get(key))
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _parse_float_env(key: str, default: float) -> float:
    value = _clean(os.environ.get(key))
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _parse_bool_env(key: str, default: bool) -> bool:
    value = _clean(os.environ.get(key)).lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    return default


def parse_static_tokens(raw: str) -> Dict[str, str]:
    """
    Parse "token:user_id,token2:user_id2" into a mapping.

    Entries without a colon are skipped.
    """
    tokens: Dict[str, str] = {}
    for entry in raw.split(","):
        token, sep, user_id = entry.strip().partition(":")
        if sep and token.strip() and user_id.strip():
            tokens[token.strip()] = user_id.strip()
    return tokens


@dataclass
class RelayConfig:
    """Relay server configuration."""

    # Supabase (auth + quota storage). Empty url means local in-memory mode.
    supabase_url: str = ""
    supabase_service_key: str = ""

    # Upstream provider credentials
    openai_api_key: str = ""
    google_api_key: str = ""
    hume_api_key: str = ""
    elevenlabs_api_key: str = ""

    # Relay behaviour
    upstream_connect_timeout_seconds: float = 10.0
    enforce_session_limits: bool = True
    static_tokens: Dict[str, str] = field(default_factory=dict)

    # Server
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"

    @property
    def uses_supabase(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_key)

    @property
    def provider_api_keys(self) -> Dict[str, str]:
        return {
            "openai": self.openai_api_key,
            "google": self.google_api_key,
            "hume": self.hume_api_key,
            "elevenlabs": self.elevenlabs_api_key,
        }

    @classmethod
    def from_env(cls) -> "RelayConfig":
        """Load configuration from environment variables."""
        load_local_env()
        return cls(
            supabase_url=os.environ.get("SUPABASE_URL", "").rstrip("/"),
            supabase_service_key=os.environ.get("SUPABASE_SERVICE_ROLE_KEY", ""),
            openai_api_key=os.environ.get("OPENAI_API_KEY", ""),
            google_api_key=os.environ.get("GOOGLE_API_KEY", ""),
            hume_api_key=os.environ.get("HUME_API_KEY", ""),
            elevenlabs_api_key=os.environ.get("ELEVENLABS_API_KEY", ""),
            upstream_connect_timeout_seconds=_parse_float_env(
                "RELAY_UPSTREAM_CONNECT_TIMEOUT_SECONDS", default=10.0
            ),
            enforce_session_limits=_parse_bool_env("RELAY_ENFORCE_SESSION_LIMITS", True),
            static_tokens=parse_static_tokens(os.environ.get("RELAY_STATIC_TOKENS", "")),
            host=os.environ.get("RELAY_HOST", "0.0.0.0"),
            port=_parse_int_env("RELAY_PORT", default=8080),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
        )


def get_config() -> RelayConfig:
    """Get or create the process config (used by the CLI entry point only)."""
    global _config
    if _config is None:
        _config = RelayConfig.from_env()
    return _config


_config: Optional[RelayConfig] = None
