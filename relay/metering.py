"""
Usage metering for finished sessions.

Runs after a session has closed: appends a usage event and, when the user
had a quota row at session start, debits the billable minutes. The two
steps are independent and neither one raises.
"""

from __future__ import annotations

from logging_setup import get_logger, Component
from observability.events import EventEmitter, Severity
from .errors import ErrorCategory, RelayError
from .quota import QuotaLedger, UsageEvent, minutes_for
from .session import Session

logger = get_logger(Component.QUOTA_LEDGER)


class UsageMeter:
    def __init__(self, ledger: QuotaLedger, emitter: EventEmitter):
        self.ledger = ledger
        self.emitter = emitter

    async def record(self, session: Session) -> None:
        """Log usage and debit quota for a closed session."""
        log = logger.with_session(session.session_id)
        duration_seconds = session.duration_seconds or 0

        event = UsageEvent(
            user_id=session.user_id,
            device_id=session.device_id,
            provider=session.provider,
            tier=session.tier,
            duration_seconds=duration_seconds,
        )
        try:
            await self.ledger.record_usage(event)
        except Exception as e:
            self._failed(session, e, ErrorCategory.LOG_FAILED)
        else:
            log.debug("Usage recorded", duration_seconds=duration_seconds)
            self.emitter.emit(
                "usage.recorded",
                session.session_id,
                provider=session.provider,
                tier=session.tier,
                duration_seconds=duration_seconds,
            )

        if not session.quota_enforced:
            return

        minutes = minutes_for(duration_seconds)
        try:
            balance = await self.ledger.debit(session.user_id, minutes)
        except Exception as e:
            self._failed(session, e, ErrorCategory.DEBIT_FAILED)
            return

        remaining = balance.free_minutes_remaining if balance is not None else None
        log.info("Quota debited", minutes=minutes, free_minutes_remaining=remaining)
        self.emitter.emit(
            "quota.debited",
            session.session_id,
            minutes=minutes,
            free_minutes_remaining=remaining,
        )

    def _failed(self, session: Session, error: Exception, default_category: str) -> None:
        category = error.category if isinstance(error, RelayError) else default_category
        logger.with_session(session.session_id).error(
            "Metering failed",
            category=category,
            error=str(error),
            error_type=type(error).__name__,
        )
        self.emitter.emit(
            "metering.failed",
            session.session_id,
            severity=Severity.ERROR,
            category=category,
            error_type=type(error).__name__,
        )
