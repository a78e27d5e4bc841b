"""
Relay session lifecycle.

One Session per accepted WebSocket. States only move forward. The registry is
owned by the relay supervisor; there is no module-level instance.
"""
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional


class SessionState(str, Enum):
    """Session states, in lifecycle order."""
    ACCEPTED = "accepted"
    CONNECTING = "connecting"
    RELAYING = "relaying"
    CLOSING = "closing"
    CLOSED = "closed"


_ORDER = {state: i for i, state in enumerate(SessionState)}


@dataclass
class Session:
    """One client <-> upstream socket pair."""

    session_id: str
    user_id: str
    device_id: str
    provider: str
    tier: str
    created_at: datetime
    started_monotonic: float

    model: Optional[str] = None
    state: SessionState = SessionState.ACCEPTED
    quota_enforced: bool = True

    # Counters
    frames_to_upstream: int = 0
    frames_to_client: int = 0

    # Termination
    ended_at: Optional[datetime] = None
    end_reason: Optional[str] = None
    duration_seconds: Optional[int] = None

    def __post_init__(self):
        if not self.session_id:
            raise ValueError("session_id is required")
        if not self.user_id:
            raise ValueError("user_id is required")

    def transition_to(self, new_state: SessionState) -> SessionState:
        """
        Move to ``new_state`` and return the previous state.
        Moving backwards raises ValueError.
        """
        old_state = self.state
        if _ORDER[new_state] < _ORDER[old_state]:
            raise ValueError(f"cannot move session from {old_state.value} to {new_state.value}")
        self.state = new_state
        return old_state

    def elapsed_seconds(self, now: Optional[float] = None) -> float:
        return (time.monotonic() if now is None else now) - self.started_monotonic

    def end(self, reason: str, duration_seconds: int) -> None:
        """Mark session as closed."""
        if self.is_terminal():
            return
        self.transition_to(SessionState.CLOSED)
        self.ended_at = datetime.now(timezone.utc)
        self.end_reason = reason
        self.duration_seconds = duration_seconds

    def is_terminal(self) -> bool:
        return self.state == SessionState.CLOSED


class SessionRegistry:
    """Live sessions keyed by connection id."""

    def __init__(self):
        self._sessions: Dict[str, Session] = {}

    def create_session(
        self,
        user_id: str,
        provider: str,
        tier: str,
        device_id: Optional[str] = None,
        model: Optional[str] = None,
        quota_enforced: bool = True,
        started_monotonic: Optional[float] = None,
    ) -> Session:
        """Register a session at upgrade-accept time. The id is an opaque uuid4."""
        session = Session(
            session_id=str(uuid.uuid4()),
            user_id=user_id,
            device_id=device_id or "unknown",
            provider=provider,
            tier=tier,
            created_at=datetime.now(timezone.utc),
            started_monotonic=time.monotonic() if started_monotonic is None else started_monotonic,
            model=model,
            quota_enforced=quota_enforced,
        )
        self._sessions[session.session_id] = session
        return session

    def get_session(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def remove_session(self, session_id: str) -> Optional[Session]:
        return self._sessions.pop(session_id, None)

    def list_sessions(
        self,
        state: Optional[SessionState] = None,
        provider: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> List[Session]:
        sessions = list(self._sessions.values())

        if state:
            sessions = [s for s in sessions if s.state == state]
        if provider:
            sessions = [s for s in sessions if s.provider == provider]
        if user_id:
            sessions = [s for s in sessions if s.user_id == user_id]

        return sessions

    def __len__(self) -> int:
        return len(self._sessions)
