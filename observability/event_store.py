"""
In-memory store for relay lifecycle events, queryable by session.

Bounded FIFO: once max_events is reached the oldest events are dropped.
A persistent deployment would ship the stdout event stream to a log
aggregator instead of relying on this store.
"""

from __future__ import annotations

from collections import Counter, deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

ENVELOPE_FIELDS = ("ts", "session_id", "component", "event_type", "severity", "correlation_id")


@dataclass
class StoredEvent:
    """A lifecycle event held in memory."""

    ts: datetime
    session_id: str
    component: str
    event_type: str
    severity: str
    correlation_id: str
    payload: Dict[str, Any]

    @classmethod
    def from_dict(cls, event: Dict[str, Any]) -> "StoredEvent":
        ts = event.get("ts")
        if isinstance(ts, str):
            ts = datetime.fromisoformat(ts.replace("Z", "+00:00"))
        elif not isinstance(ts, datetime):
            ts = datetime.now(timezone.utc)
        session_id = event.get("session_id") or "-"
        return cls(
            ts=ts,
            session_id=session_id,
            component=event.get("component", "unknown"),
            event_type=event.get("event_type", "unknown"),
            severity=event.get("severity", "info"),
            correlation_id=event.get("correlation_id") or session_id,
            payload={k: v for k, v in event.items() if k not in ENVELOPE_FIELDS},
        )

    def matches(
        self,
        event_type: Optional[str],
        component: Optional[str],
        since: Optional[datetime],
        until: Optional[datetime],
    ) -> bool:
        if event_type and self.event_type != event_type:
            return False
        if component and self.component != component:
            return False
        if since and self.ts < since:
            return False
        if until and self.ts > until:
            return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "ts": self.ts.isoformat(),
            "session_id": self.session_id,
            "component": self.component,
            "event_type": self.event_type,
            "severity": self.severity,
            "correlation_id": self.correlation_id,
        }
        result.update(self.payload)
        return result


class EventStore:
    """Bounded in-memory event store (default 10,000 events)."""

    def __init__(self, max_events: int = 10000):
        if max_events < 1:
            raise ValueError("max_events must be positive")
        self._events: deque[StoredEvent] = deque()
        self._max_events = max_events
        # Events held per session id; lets lookups skip sessions already evicted
        self._per_session: Counter = Counter()

    def store(self, event: Dict[str, Any]) -> None:
        """Store an event dict carrying the standard envelope fields."""
        if len(self._events) >= self._max_events:
            evicted = self._events.popleft()
            self._per_session[evicted.session_id] -= 1
            if self._per_session[evicted.session_id] <= 0:
                del self._per_session[evicted.session_id]

        stored = StoredEvent.from_dict(event)
        self._events.append(stored)
        self._per_session[stored.session_id] += 1

    def has_session(self, session_id: str) -> bool:
        """True while at least one event for ``session_id`` is retained."""
        return self._per_session.get(session_id, 0) > 0

    def query(
        self,
        session_id: Optional[str] = None,
        event_type: Optional[str] = None,
        component: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Query events with optional filters.

        Bounds on since/until are inclusive. Results are ordered oldest first.
        """
        if session_id and not self.has_session(session_id):
            return []

        results: List[Dict[str, Any]] = []
        for event in self._events:
            if session_id and event.session_id != session_id:
                continue
            if not event.matches(event_type, component, since, until):
                continue
            results.append(event.to_dict())
            if limit and len(results) >= limit:
                break
        return results

    def clear(self) -> None:
        self._events.clear()
        self._per_session.clear()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "total_events": len(self._events),
            "max_events": self._max_events,
            "sessions": len(self._per_session),
            "oldest_event_ts": self._events[0].ts.isoformat() if self._events else None,
            "newest_event_ts": self._events[-1].ts.isoformat() if self._events else None,
        }


# Default store used when an emitter is not given one explicitly
event_store = EventStore()
