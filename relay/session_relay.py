"""
Per-session frame relay between one client WebSocket and one upstream socket.

SessionRelay holds the session's state and exposes one handler per lifecycle
step (on_open, on_client_frame, on_upstream_frame, on_upstream_error,
on_upstream_close, on_client_close). run() drives those handlers from asyncio
tasks:

- client pump: client frames -> outbound queue
- upstream task: connect, then upstream frames -> client
- forwarder: outbound queue -> upstream (started once upstream is open, so
  frames received while connecting are flushed first, in order)

Whichever side closes first closes the other.
"""

from __future__ import annotations

import asyncio
import math
import time
from typing import Callable, Optional, Protocol

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from logging_setup import get_logger, Component
from observability.events import EventEmitter, Severity
from .errors import UPSTREAM_ERROR_FRAME, ErrorCategory, RelayError, UpstreamError, UpstreamErrorHandler
from .providers import UpstreamTarget
from .session import Session, SessionState
from .upstream import Frame, UpstreamConnection, UpstreamConnector

logger = get_logger(Component.SESSION_RELAY)

NORMAL_CLOSURE = 1000
POLICY_VIOLATION = 1008


class CloseReason:
    CLIENT_CLOSED = "client_closed"
    UPSTREAM_CLOSED = "upstream_closed"
    UPSTREAM_CONNECT_FAILED = "upstream_connect_failed"
    SESSION_LIMIT = "session_limit"
    RELAY_ERROR = "relay_error"


class ClientChannel(Protocol):
    async def receive(self) -> Optional[Frame]:
        """Next client frame, or None once the client has disconnected."""
        ...

    async def send(self, frame: Frame) -> None: ...

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None: ...

    @property
    def is_open(self) -> bool: ...


class FastAPIClientChannel:
    """ClientChannel over an accepted FastAPI/Starlette WebSocket."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self._closed = False

    @property
    def is_open(self) -> bool:
        return (
            not self._closed
            and self.websocket.application_state == WebSocketState.CONNECTED
            and self.websocket.client_state == WebSocketState.CONNECTED
        )

    async def receive(self) -> Optional[Frame]:
        if self._closed:
            return None
        message = await self.websocket.receive()
        if message["type"] == "websocket.disconnect":
            self._closed = True
            return None
        text = message.get("text")
        if text is not None:
            return text
        return message.get("bytes") or b""

    async def send(self, frame: Frame) -> None:
        if not self.is_open:
            return
        try:
            if isinstance(frame, (bytes, bytearray)):
                await self.websocket.send_bytes(bytes(frame))
            else:
                await self.websocket.send_text(frame)
        except (WebSocketDisconnect, RuntimeError):
            # Client went away between the state check and the send
            self._closed = True

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        if not self.is_open:
            self._closed = True
            return
        self._closed = True
        try:
            await self.websocket.close(code=code, reason=reason)
        except RuntimeError:
            pass


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class SessionRelay:
    """Relays one session and records how it ended."""

    def __init__(
        self,
        session: Session,
        client: ClientChannel,
        connector: UpstreamConnector,
        target: UpstreamTarget,
        *,
        emitter: EventEmitter,
        error_handler: UpstreamErrorHandler,
        connect_timeout_seconds: float = 10.0,
        session_limit_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session = session
        self.client = client
        self.connector = connector
        self.target = target
        self.emitter = emitter
        self.error_handler = error_handler
        self.connect_timeout_seconds = connect_timeout_seconds
        self.session_limit_seconds = session_limit_seconds
        self._clock = clock
        self.logger = logger.with_session(session.session_id)

        self.upstream: Optional[UpstreamConnection] = None
        self._outbound: asyncio.Queue = asyncio.Queue()
        self._finished = False

    @property
    def queued_frames(self) -> int:
        return self._outbound.qsize()

    # --- handlers ---

    def on_client_frame(self, frame: Frame) -> None:
        """Queue a client frame; the forwarder sends it once upstream is open."""
        self._outbound.put_nowait(frame)

    async def on_open(self, upstream: UpstreamConnection, latency_ms: int) -> None:
        self.upstream = upstream
        self.session.transition_to(SessionState.RELAYING)
        self.logger.info(
            "Upstream connected",
            provider=self.session.provider,
            latency_ms=latency_ms,
            queued_frames=self.queued_frames,
        )
        self.emitter.upstream_connected(
            self.session.session_id,
            provider=self.session.provider,
            latency_ms=latency_ms,
            queued_frames=self.queued_frames,
        )

    async def on_upstream_frame(self, frame: Frame) -> None:
        if not self.client.is_open:
            return
        await self.client.send(frame)
        self.session.frames_to_client += 1

    async def on_upstream_error(self, error: BaseException) -> None:
        """Report an upstream failure in-band. Does not close the client."""
        self.error_handler.handle_error(self.session.session_id, error, provider=self.session.provider)
        if self.client.is_open:
            await self.client.send(UPSTREAM_ERROR_FRAME)

    async def on_upstream_close(self) -> None:
        if self.client.is_open:
            await self.client.close(NORMAL_CLOSURE, "Upstream closed")

    async def on_client_close(self, reason: str) -> Session:
        """
        Tear the session down: close upstream (no-op if already closed), close
        the client if still open, and stamp duration and reason on the session.
        Safe to call more than once.
        """
        if self._finished:
            return self.session
        self._finished = True

        if self.session.state != SessionState.CLOSED:
            self.session.transition_to(SessionState.CLOSING)

        await self._close_upstream()
        if self.client.is_open:
            await self.client.close(NORMAL_CLOSURE, "")

        duration_seconds = _round_half_up(max(0.0, self._clock() - self.session.started_monotonic))
        self.session.end(reason, duration_seconds)

        self.logger.info(
            "Session closed",
            reason=reason,
            duration_seconds=duration_seconds,
            frames_to_upstream=self.session.frames_to_upstream,
            frames_to_client=self.session.frames_to_client,
        )
        self.emitter.session_closed(
            self.session.session_id,
            reason=reason,
            duration_seconds=duration_seconds,
            frames_to_upstream=self.session.frames_to_upstream,
            frames_to_client=self.session.frames_to_client,
        )
        return self.session

    # --- driver ---

    async def run(self) -> Session:
        """Relay until either side closes, then finish the session."""
        client_task = asyncio.create_task(self._pump_client(), name=f"client:{self.session.session_id}")
        upstream_task = asyncio.create_task(self._run_upstream(), name=f"upstream:{self.session.session_id}")
        tasks = {client_task, upstream_task}
        limit_task = None
        if self.session_limit_seconds is not None:
            limit_task = asyncio.create_task(asyncio.sleep(self.session_limit_seconds))
            tasks.add(limit_task)

        reason = CloseReason.RELAY_ERROR
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            # Upstream first: closing the client from the upstream side also
            # ends the client pump in the same tick
            if upstream_task in done:
                reason = upstream_task.result() if not upstream_task.exception() else CloseReason.RELAY_ERROR
            elif client_task in done:
                reason = CloseReason.CLIENT_CLOSED
            elif limit_task in done:
                reason = CloseReason.SESSION_LIMIT
                self.logger.info("Session limit reached", limit_seconds=self.session_limit_seconds)
                self.emitter.emit(
                    "session.limit_reached",
                    self.session.session_id,
                    severity=Severity.INFO,
                    tier=self.session.tier,
                    limit_seconds=self.session_limit_seconds,
                )
                if self.client.is_open:
                    await self.client.close(POLICY_VIOLATION, "Session limit reached")
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    self.logger.error(
                        "Relay task failed",
                        error=str(result),
                        error_type=type(result).__name__,
                    )
            await self.on_client_close(reason)

        return self.session

    async def _pump_client(self) -> None:
        while True:
            frame = await self.client.receive()
            if frame is None:
                return
            self.on_client_frame(frame)

    async def _run_upstream(self) -> str:
        self.session.transition_to(SessionState.CONNECTING)
        started = self._clock()
        try:
            upstream = await asyncio.wait_for(
                self.connector.connect(self.target), timeout=self.connect_timeout_seconds
            )
        except asyncio.TimeoutError:
            await self.on_upstream_error(
                UpstreamError("upstream connect timeout", category=ErrorCategory.CONNECT_TIMEOUT)
            )
            await self.on_upstream_close()
            return CloseReason.UPSTREAM_CONNECT_FAILED
        except (RelayError, OSError) as e:
            await self.on_upstream_error(e)
            await self.on_upstream_close()
            return CloseReason.UPSTREAM_CONNECT_FAILED

        await self.on_open(upstream, latency_ms=int((self._clock() - started) * 1000))

        forwarder = asyncio.create_task(self._forward_to_upstream(upstream))
        try:
            while True:
                try:
                    frame = await upstream.receive()
                except UpstreamError as e:
                    await self.on_upstream_error(e)
                    if upstream.closed:
                        break
                    continue
                if frame is None:
                    break
                await self.on_upstream_frame(frame)
        finally:
            forwarder.cancel()
            await asyncio.gather(forwarder, return_exceptions=True)

        self.emitter.emit("upstream.closed", self.session.session_id, provider=self.session.provider)
        await self.on_upstream_close()
        return CloseReason.UPSTREAM_CLOSED

    async def _forward_to_upstream(self, upstream: UpstreamConnection) -> None:
        while True:
            frame = await self._outbound.get()
            try:
                await upstream.send(frame)
            except (RelayError, ConnectionError, RuntimeError) as e:
                await self.on_upstream_error(e)
                # Ends the receive loop, which closes the client
                await self._close_upstream()
                return
            self.session.frames_to_upstream += 1

    async def _close_upstream(self) -> None:
        upstream = self.upstream
        if upstream is None or upstream.closed:
            return
        try:
            await upstream.close()
        except (OSError, RuntimeError) as e:
            self.logger.debug("Upstream close failed", error=str(e), error_type=type(e).__name__)
