"""
Structured lifecycle event emission for the relay.

Each event is written to stdout as one JSON line and recorded in an
EventStore so the control read API can return a session's history.
"""

from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from .event_store import EventStore, event_store


class Component(str, Enum):
    """Event-producing components."""

    RELAY = "relay"
    METERING = "metering"


class Severity(str, Enum):
    """Event severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class EventEmitter:
    """Emits structured JSON events."""

    def __init__(self, component: Component, store: Optional[EventStore] = None):
        self.component = component
        self.store = store if store is not None else event_store

    def emit(
        self,
        event_type: str,
        session_id: str,
        severity: Severity = Severity.INFO,
        correlation_id: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        """
        Emit an event.

        Args:
            event_type: Stable event type string (e.g. "session.accepted")
            session_id: Relay session identifier ("-" before a session exists)
            severity: Event severity level
            correlation_id: Optional correlation id, defaults to session_id
            **kwargs: Event-specific fields; None values are dropped
        """
        event = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "session_id": session_id,
            "component": self.component.value,
            "event_type": event_type,
            "severity": severity.value,
            "correlation_id": correlation_id or session_id,
        }
        event.update({k: v for k, v in kwargs.items() if v is not None})

        sys.stdout.write(json.dumps(event, ensure_ascii=False, default=str))
        sys.stdout.write("\n")
        sys.stdout.flush()

        self.store.store(event)

    def relay_rejected(
        self,
        category: str,
        status_code: int,
        provider: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> None:
        """Emit relay.rejected for a pre-upgrade denial."""
        self.emit(
            "relay.rejected",
            "-",
            severity=Severity.WARN,
            correlation_id=correlation_id,
            category=category,
            status_code=status_code,
            provider=provider,
        )

    def session_accepted(
        self,
        session_id: str,
        provider: str,
        tier: str,
        model: Optional[str] = None,
        quota_enforced: bool = True,
    ) -> None:
        """Emit session.accepted."""
        self.emit(
            "session.accepted",
            session_id,
            provider=provider,
            tier=tier,
            model=model,
            quota_enforced=quota_enforced,
        )

    def upstream_connected(
        self,
        session_id: str,
        provider: str,
        latency_ms: int,
        queued_frames: int = 0,
    ) -> None:
        """Emit upstream.connected once the outbound socket is open."""
        self.emit(
            "upstream.connected",
            session_id,
            provider=provider,
            latency_ms=latency_ms,
            queued_frames=queued_frames,
        )

    def upstream_error(
        self,
        session_id: str,
        category: str,
        provider: Optional[str] = None,
        detail: Optional[str] = None,
    ) -> None:
        """Emit upstream.error."""
        self.emit(
            "upstream.error",
            session_id,
            severity=Severity.WARN,
            category=category,
            provider=provider,
            detail=detail,
        )

    def session_closed(
        self,
        session_id: str,
        reason: str,
        duration_seconds: int,
        frames_to_upstream: int,
        frames_to_client: int,
    ) -> None:
        """Emit session.closed."""
        self.emit(
            "session.closed",
            session_id,
            reason=reason,
            duration_seconds=duration_seconds,
            frames_to_upstream=frames_to_upstream,
            frames_to_client=frames_to_client,
        )
