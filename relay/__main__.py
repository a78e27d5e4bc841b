"""
Entry point for running the relay server.

Usage:
    python -m relay

Listens on RELAY_HOST:RELAY_PORT (default 0.0.0.0:8080).
"""
import uvicorn

from logging_setup import setup_logging
from .config import get_config

if __name__ == "__main__":
    config = get_config()
    setup_logging(level=config.log_level, use_json=True)

    uvicorn.run(
        "relay.relay_server:create_app",
        factory=True,
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
    )
