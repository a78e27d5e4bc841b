"""
Control read API: live sessions and per-session event history.

Sessions leave the registry when they close; their events stay in the
event store and remain queryable here.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel

from .session import Session, SessionState
from .supervisor import RelaySupervisor


router = APIRouter(prefix="/control", tags=["control"])


class SessionSummary(BaseModel):
    session_id: str
    state: str
    provider: str
    tier: str
    created_at: str


class SessionDetail(BaseModel):
    """Full session details."""
    session_id: str
    state: str
    provider: str
    tier: str
    created_at: str
    user_id: str
    device_id: str
    model: Optional[str] = None
    quota_enforced: bool
    frames_to_upstream: int
    frames_to_client: int
    elapsed_seconds: float


def _supervisor(request: Request) -> RelaySupervisor:
    return request.app.state.supervisor


def _summary(s: Session) -> SessionSummary:
    return SessionSummary(
        session_id=s.session_id,
        state=s.state.value,
        provider=s.provider,
        tier=s.tier,
        created_at=s.created_at.isoformat(),
    )


def _parse_ts(value: Optional[str], name: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        # "+" in a query string may arrive as a space
        cleaned = value.replace(" ", "+").replace("Z", "+00:00")
        if "+" not in cleaned and "-" not in cleaned[-6:]:
            cleaned += "+00:00"
        return datetime.fromisoformat(cleaned)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {name} timestamp: {value}")


@router.get("/sessions", response_model=List[SessionSummary])
async def list_sessions(
    request: Request,
    state: Optional[str] = Query(None, description="Filter by state (accepted, connecting, relaying, closing)"),
    provider: Optional[str] = Query(None, description="Filter by provider id"),
) -> List[SessionSummary]:
    """List live sessions with optional filters."""
    state_filter: Optional[SessionState] = None
    if state:
        try:
            state_filter = SessionState(state.lower())
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid state: {state}")

    sessions = _supervisor(request).registry.list_sessions(state=state_filter, provider=provider)
    return [_summary(s) for s in sessions]


@router.get("/sessions/{session_id}", response_model=SessionDetail)
async def get_session(request: Request, session_id: str) -> SessionDetail:
    session = _supervisor(request).registry.get_session(session_id)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")

    return SessionDetail(
        session_id=session.session_id,
        state=session.state.value,
        provider=session.provider,
        tier=session.tier,
        created_at=session.created_at.isoformat(),
        user_id=session.user_id,
        device_id=session.device_id,
        model=session.model,
        quota_enforced=session.quota_enforced,
        frames_to_upstream=session.frames_to_upstream,
        frames_to_client=session.frames_to_client,
        elapsed_seconds=round(session.elapsed_seconds(_supervisor(request).clock()), 3),
    )


@router.get("/sessions/{session_id}/events")
async def get_session_events(
    request: Request,
    session_id: str,
    event_type: Optional[str] = Query(None, description="Filter by event_type"),
    component: Optional[str] = Query(None, description="Filter by component"),
    since: Optional[str] = Query(None, description="ISO timestamp (inclusive)"),
    until: Optional[str] = Query(None, description="ISO timestamp (inclusive)"),
    limit: Optional[int] = Query(None, ge=1, le=1000, description="Max events to return"),
) -> dict:
    """Events for a live or finished session. 404 if the id was never seen."""
    supervisor = _supervisor(request)
    store = supervisor.event_store

    known = supervisor.registry.get_session(session_id) is not None or store.has_session(session_id)
    if not known:
        raise HTTPException(status_code=404, detail="Session not found")

    events = store.query(
        session_id=session_id,
        event_type=event_type,
        component=component,
        since=_parse_ts(since, "since"),
        until=_parse_ts(until, "until"),
        limit=limit,
    )
    return {
        "session_id": session_id,
        "events": events,
        "count": len(events),
    }
