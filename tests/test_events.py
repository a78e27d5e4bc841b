"""
Lifecycle event emission and event store tests.
"""
import json
from datetime import datetime, timedelta, timezone

from observability.event_store import EventStore
from observability.events import Component, EventEmitter, Severity


def last_line(capsys):
    lines = [line for line in capsys.readouterr().out.splitlines() if line.strip()]
    return json.loads(lines[-1])


class TestEventFormat:
    def test_required_fields(self, capsys):
        emitter = EventEmitter(Component.RELAY, store=EventStore())
        emitter.emit("test.event", "test-session-123", severity=Severity.INFO)

        event = last_line(capsys)

        for field in ("ts", "session_id", "component", "event_type", "severity", "correlation_id"):
            assert field in event
        assert event["session_id"] == "test-session-123"
        assert event["component"] == "relay"
        assert event["event_type"] == "test.event"
        assert event["severity"] == "info"
        assert event["correlation_id"] == "test-session-123"

    def test_timestamp_is_rfc3339(self, capsys):
        EventEmitter(Component.METERING, store=EventStore()).emit("test.event", "s1")

        ts = datetime.fromisoformat(last_line(capsys)["ts"])
        assert ts.tzinfo is not None

    def test_none_fields_dropped(self, capsys):
        EventEmitter(Component.RELAY, store=EventStore()).emit(
            "test.event", "s1", provider=None, frames=3
        )

        event = last_line(capsys)
        assert "provider" not in event
        assert event["frames"] == 3

    def test_explicit_correlation_id(self, capsys):
        EventEmitter(Component.RELAY, store=EventStore()).emit(
            "test.event", "s1", correlation_id="req-9"
        )
        assert last_line(capsys)["correlation_id"] == "req-9"


class TestRelayEvents:
    def test_relay_rejected(self, capsys):
        store = EventStore()
        EventEmitter(Component.RELAY, store=store).relay_rejected(
            "quota.exhausted", 402, provider="openai_realtime"
        )

        event = last_line(capsys)
        assert event["event_type"] == "relay.rejected"
        assert event["session_id"] == "-"
        assert event["severity"] == "warn"
        assert event["status_code"] == 402
        assert store.query(event_type="relay.rejected")[0]["category"] == "quota.exhausted"

    def test_session_lifecycle_events(self, capsys):
        store = EventStore()
        emitter = EventEmitter(Component.RELAY, store=store)

        emitter.session_accepted("s1", provider="gemini_live", tier="standard", model="m")
        emitter.upstream_connected("s1", provider="gemini_live", latency_ms=42, queued_frames=2)
        emitter.upstream_error("s1", category="upstream.protocol_error", provider="gemini_live")
        emitter.session_closed("s1", reason="client_closed", duration_seconds=125,
                               frames_to_upstream=10, frames_to_client=20)

        types = [e["event_type"] for e in store.query(session_id="s1")]
        assert types == ["session.accepted", "upstream.connected", "upstream.error", "session.closed"]

        closed = store.query(session_id="s1", event_type="session.closed")[0]
        assert closed["duration_seconds"] == 125
        assert closed["frames_to_client"] == 20
        assert store.query(session_id="s1", event_type="upstream.connected")[0]["queued_frames"] == 2


class TestEventStore:
    def test_filters(self):
        store = EventStore()
        store.store({"session_id": "a", "event_type": "x", "component": "relay"})
        store.store({"session_id": "a", "event_type": "y", "component": "metering"})
        store.store({"session_id": "b", "event_type": "x", "component": "relay"})

        assert len(store.query(session_id="a")) == 2
        assert len(store.query(event_type="x")) == 2
        assert len(store.query(component="metering")) == 1
        assert len(store.query(limit=1)) == 1

    def test_time_window(self):
        store = EventStore()
        now = datetime.now(timezone.utc)
        for offset in (-10, 0, 10):
            store.store({"session_id": "a", "event_type": "t",
                         "ts": (now + timedelta(seconds=offset)).isoformat()})

        assert len(store.query(since=now)) == 2
        assert len(store.query(until=now)) == 2
        assert len(store.query(since=now, until=now)) == 1

    def test_bounded(self):
        store = EventStore(max_events=3)
        for i in range(5):
            store.store({"session_id": f"s{i}", "event_type": "t"})

        stats = store.get_stats()
        assert stats["total_events"] == 3
        assert [e["session_id"] for e in store.query()] == ["s2", "s3", "s4"]

    def test_evicted_sessions_are_forgotten(self):
        store = EventStore(max_events=2)
        store.store({"session_id": "old", "event_type": "t"})
        store.store({"session_id": "new", "event_type": "t"})
        assert store.has_session("old")

        store.store({"session_id": "new", "event_type": "u"})

        assert not store.has_session("old")
        assert store.query(session_id="old") == []
        assert store.get_stats()["sessions"] == 1

    def test_clear(self):
        store = EventStore()
        store.store({"session_id": "a", "event_type": "t"})
        store.clear()
        assert store.query() == []
        assert store.get_stats()["oldest_event_ts"] is None
