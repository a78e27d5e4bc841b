"""
Quota ledger: per-user remaining minutes and the usage event log.

A balance is read once when a session starts and debited once when it ends.
Debits for the same user are serialized so concurrent sessions cannot lose
updates, and a balance never goes below zero.
"""

from __future__ import annotations

import asyncio
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

import aiohttp

from logging_setup import get_logger, Component
from .errors import ErrorCategory, MeteringError
from .supabase import SupabaseRest, read_json

logger = get_logger(Component.QUOTA_LEDGER)

# free_minutes_remaining value meaning "no minute limit"
UNLIMITED = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


def minutes_for(duration_seconds: float) -> int:
    """Billable minutes for a session: rounded up, at least one."""
    return max(1, math.ceil(duration_seconds / 60))


@dataclass(frozen=True)
class QuotaBalance:
    user_id: str
    tier: str = "free"
    free_minutes_remaining: Optional[int] = 0
    paid_credits_cents: int = 0
    updated_at: Optional[datetime] = None

    @property
    def is_unlimited(self) -> bool:
        return self.free_minutes_remaining is UNLIMITED

    @property
    def is_exhausted(self) -> bool:
        if self.is_unlimited:
            return False
        return self.free_minutes_remaining <= 0 and self.paid_credits_cents <= 0

    def debited(self, minutes: int) -> "QuotaBalance":
        """Balance after using ``minutes``, clamped at zero."""
        if self.is_unlimited:
            return self
        return replace(
            self,
            free_minutes_remaining=max(0, self.free_minutes_remaining - minutes),
            updated_at=_now(),
        )

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "QuotaBalance":
        updated_at = row.get("updated_at")
        if isinstance(updated_at, str):
            updated_at = datetime.fromisoformat(updated_at.replace("Z", "+00:00"))
        free = row.get("free_minutes_remaining")
        return cls(
            user_id=str(row.get("user_id", "")),
            tier=row.get("tier") or "free",
            free_minutes_remaining=None if free is None else int(free),
            paid_credits_cents=int(row.get("paid_credits_cents") or 0),
            updated_at=updated_at,
        )


@dataclass(frozen=True)
class UsageEvent:
    """Append-only record of one finished session."""

    user_id: Optional[str]
    device_id: str
    provider: str
    tier: str
    duration_seconds: int
    created_at: datetime = field(default_factory=_now)

    def to_row(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "device_id": self.device_id,
            "provider": self.provider,
            "tier": self.tier,
            "duration_seconds": self.duration_seconds,
            "created_at": self.created_at.isoformat(),
        }


class QuotaLedger(ABC):
    """Storage for quota balances and usage events."""

    @abstractmethod
    async def get_balance(self, user_id: str) -> Optional[QuotaBalance]:
        """Current balance, or None when the user has no quota row."""

    @abstractmethod
    async def debit(self, user_id: str, minutes: int) -> Optional[QuotaBalance]:
        """Atomically subtract ``minutes`` (clamped at zero). None if no row."""

    @abstractmethod
    async def record_usage(self, event: UsageEvent) -> None:
        """Append a usage event."""

    async def aclose(self) -> None:
        return None


class InMemoryQuotaLedger(QuotaLedger):
    """Process-local ledger with one asyncio.Lock per user."""

    def __init__(self, balances: Iterable[QuotaBalance] = ()):
        self._balances: Dict[str, QuotaBalance] = {b.user_id: b for b in balances}
        self._locks: Dict[str, asyncio.Lock] = {}
        self.usage_events: List[UsageEvent] = []

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    def set_balance(self, balance: QuotaBalance) -> None:
        self._balances[balance.user_id] = balance

    async def get_balance(self, user_id: str) -> Optional[QuotaBalance]:
        return self._balances.get(user_id)

    async def debit(self, user_id: str, minutes: int) -> Optional[QuotaBalance]:
        async with self._lock_for(user_id):
            current = self._balances.get(user_id)
            if current is None:
                return None
            updated = current.debited(minutes)
            self._balances[user_id] = updated
            return updated

    async def record_usage(self, event: UsageEvent) -> None:
        self.usage_events.append(event)


class SupabaseQuotaLedger(QuotaLedger):
    """
    Ledger backed by the user_quotas and usage_events tables.

    Debits go through the debit_quota SQL function (sql/debit_quota.sql),
    which updates the row in a single statement so Postgres serializes
    concurrent debits on the row lock.
    """

    QUOTA_COLUMNS = "user_id,tier,free_minutes_remaining,paid_credits_cents,updated_at"

    def __init__(self, rest: SupabaseRest):
        self.rest = rest

    async def get_balance(self, user_id: str) -> Optional[QuotaBalance]:
        try:
            async with self.rest.http().get(
                self.rest.rest_url("user_quotas"),
                params={"select": self.QUOTA_COLUMNS, "user_id": f"eq.{user_id}", "limit": "1"},
                headers=self.rest.headers(),
            ) as resp:
                if resp.status != 200:
                    logger.warning("Quota read failed", user_id=user_id, status=resp.status)
                    return None
                rows = await read_json(resp)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning("Quota read failed", user_id=user_id, error=str(e), error_type=type(e).__name__)
            return None

        if not rows:
            return None
        return QuotaBalance.from_row(rows[0])

    async def debit(self, user_id: str, minutes: int) -> Optional[QuotaBalance]:
        try:
            async with self.rest.http().post(
                self.rest.rest_url("rpc/debit_quota"),
                json={"p_user_id": user_id, "p_minutes": minutes},
                headers=self.rest.headers(),
            ) as resp:
                if resp.status != 200:
                    raise MeteringError(
                        f"debit_quota returned {resp.status}", category=ErrorCategory.DEBIT_FAILED
                    )
                body = await read_json(resp)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise MeteringError(str(e), category=ErrorCategory.DEBIT_FAILED) from e

        if isinstance(body, list):
            body = body[0] if body else None
        if not body:
            return None
        return QuotaBalance.from_row(body)

    async def record_usage(self, event: UsageEvent) -> None:
        try:
            async with self.rest.http().post(
                self.rest.rest_url("usage_events"),
                json=event.to_row(),
                headers=self.rest.headers(Prefer="return=minimal"),
            ) as resp:
                if resp.status not in (200, 201, 204):
                    raise MeteringError(
                        f"usage insert returned {resp.status}", category=ErrorCategory.LOG_FAILED
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise MeteringError(str(e), category=ErrorCategory.LOG_FAILED) from e

    async def aclose(self) -> None:
        await self.rest.aclose()
