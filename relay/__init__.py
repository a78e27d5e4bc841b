"""Authenticated WebSocket relay between voice clients and realtime providers."""

from .errors import AuthError, ConfigError, MeteringError, QuotaError, RelayError, UpstreamError
from .relay_server import create_app
from .supervisor import RelaySupervisor, build_supervisor

__all__ = [
    "AuthError",
    "ConfigError",
    "MeteringError",
    "QuotaError",
    "RelayError",
    "UpstreamError",
    "RelaySupervisor",
    "build_supervisor",
    "create_app",
]
