"""
Relay supervisor.

Owns everything shared between sessions: the auth verifier, provider
registry, quota ledger, upstream connector, session registry and event
emitter. It runs the pre-upgrade checks, drives one SessionRelay per
accepted socket, and keeps track of background metering so shutdown can
wait for it.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Mapping, Optional, Set

from logging_setup import get_logger, Component
from observability.event_store import EventStore
from observability.events import Component as ObsComponent, EventEmitter
from voice_client.provider_policy import SubscriptionTier
from .auth import AuthVerifier, CallerIdentity, StaticTokenVerifier, SupabaseAuthVerifier, parse_bearer
from .config import RelayConfig
from .errors import QuotaError, UpstreamErrorHandler
from .metering import UsageMeter
from .providers import ProviderRegistry, UpstreamTarget
from .quota import InMemoryQuotaLedger, QuotaBalance, QuotaLedger, SupabaseQuotaLedger
from .session import Session, SessionRegistry
from .session_relay import ClientChannel, SessionRelay
from .supabase import SupabaseRest
from .upstream import AiohttpUpstreamConnector, UpstreamConnector

logger = get_logger(Component.SUPERVISOR)


@dataclass(frozen=True)
class Admission:
    """Result of the pre-upgrade checks for one connection."""

    identity: CallerIdentity
    target: UpstreamTarget
    balance: Optional[QuotaBalance]

    @property
    def tier(self) -> str:
        return self.balance.tier if self.balance is not None else SubscriptionTier.FREE.value

    @property
    def quota_enforced(self) -> bool:
        # No quota row: the user is let through unmetered
        return self.balance is not None


class RelaySupervisor:
    def __init__(
        self,
        *,
        auth: AuthVerifier,
        providers: ProviderRegistry,
        ledger: QuotaLedger,
        connector: UpstreamConnector,
        emitter: EventEmitter,
        connect_timeout_seconds: float = 10.0,
        enforce_session_limits: bool = True,
        session_limit_overrides: Optional[Mapping[str, Optional[float]]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.auth = auth
        self.providers = providers
        self.ledger = ledger
        self.connector = connector
        self.emitter = emitter
        self.connect_timeout_seconds = connect_timeout_seconds
        self.enforce_session_limits = enforce_session_limits
        self.session_limit_overrides = dict(session_limit_overrides or {})
        self.clock = clock

        self.registry = SessionRegistry()
        self.meter = UsageMeter(ledger, EventEmitter(ObsComponent.METERING, store=emitter.store))
        self.error_handler = UpstreamErrorHandler(emitter)
        self._metering_tasks: Set[asyncio.Task] = set()

    @property
    def event_store(self) -> EventStore:
        return self.emitter.store

    async def admit(
        self,
        authorization: Optional[str],
        provider_id: Optional[str],
        model: Optional[str] = None,
    ) -> Admission:
        """
        Run auth, provider and quota checks in that order.

        Raises:
            AuthError: missing or invalid bearer token (401)
            ConfigError: missing or unknown provider (400)
            QuotaError: quota row exists and is exhausted (402)
        """
        identity = await self.auth.verify(parse_bearer(authorization))
        target = self.providers.resolve(provider_id, model)

        balance = await self.ledger.get_balance(identity.user_id)
        if balance is not None and balance.is_exhausted:
            logger.info("Quota exhausted", user_id=identity.user_id, tier=balance.tier)
            raise QuotaError("Quota exhausted")

        return Admission(identity=identity, target=target, balance=balance)

    def session_limit_seconds(self, admission: Admission) -> Optional[float]:
        """Per-session time limit for the caller's tier, or None."""
        if not self.enforce_session_limits or not admission.quota_enforced:
            return None
        if admission.tier in self.session_limit_overrides:
            return self.session_limit_overrides[admission.tier]
        minutes = SubscriptionTier.parse(admission.tier).max_session_minutes
        return None if minutes is None else minutes * 60.0

    async def serve(
        self,
        client: ClientChannel,
        admission: Admission,
        device_id: Optional[str] = None,
    ) -> Session:
        """Relay an accepted client socket until it closes, then schedule metering."""
        session = self.registry.create_session(
            user_id=admission.identity.user_id,
            provider=admission.target.provider.value,
            tier=admission.tier,
            device_id=device_id,
            model=admission.target.model,
            quota_enforced=admission.quota_enforced,
            started_monotonic=self.clock(),
        )
        logger.with_session(session.session_id).info(
            "Session accepted",
            user_id=session.user_id,
            provider=session.provider,
            tier=session.tier,
            upstream=admission.target.safe_url,
        )
        self.emitter.session_accepted(
            session.session_id,
            provider=session.provider,
            tier=session.tier,
            model=session.model,
            quota_enforced=session.quota_enforced,
        )

        relay = SessionRelay(
            session,
            client,
            self.connector,
            admission.target,
            emitter=self.emitter,
            error_handler=self.error_handler,
            connect_timeout_seconds=self.connect_timeout_seconds,
            session_limit_seconds=self.session_limit_seconds(admission),
            clock=self.clock,
        )
        try:
            await relay.run()
        finally:
            self.registry.remove_session(session.session_id)
            if session.is_terminal():
                self._schedule_metering(session)
        return session

    def _schedule_metering(self, session: Session) -> None:
        task = asyncio.create_task(self.meter.record(session), name=f"metering:{session.session_id}")
        self._metering_tasks.add(task)
        task.add_done_callback(self._metering_tasks.discard)

    @property
    def pending_metering(self) -> int:
        return len(self._metering_tasks)

    async def drain(self) -> None:
        """Wait for in-flight metering tasks."""
        while self._metering_tasks:
            await asyncio.gather(*list(self._metering_tasks), return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        await self.connector.aclose()
        await self.ledger.aclose()
        await self.auth.aclose()


def build_supervisor(config: RelayConfig, store: Optional[EventStore] = None) -> RelaySupervisor:
    """
    Wire a supervisor from config: Supabase-backed auth and quota when
    Supabase is configured, static tokens and an in-memory ledger otherwise.
    """
    emitter = EventEmitter(ObsComponent.RELAY, store=store)

    if config.uses_supabase:
        rest = SupabaseRest(config.supabase_url, config.supabase_service_key)
        auth: AuthVerifier = SupabaseAuthVerifier(rest)
        ledger: QuotaLedger = SupabaseQuotaLedger(rest)
    else:
        logger.warning(
            "Supabase not configured, using static tokens and in-memory quota",
            static_tokens=len(config.static_tokens),
        )
        auth = StaticTokenVerifier(config.static_tokens)
        ledger = InMemoryQuotaLedger()

    return RelaySupervisor(
        auth=auth,
        providers=ProviderRegistry(config.provider_api_keys),
        ledger=ledger,
        connector=AiohttpUpstreamConnector(),
        emitter=emitter,
        connect_timeout_seconds=config.upstream_connect_timeout_seconds,
        enforce_session_limits=config.enforce_session_limits,
    )
