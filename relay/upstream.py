"""
Outbound WebSocket connections to realtime providers (aiohttp client).

Frames are passed through untouched: text stays text, binary stays binary.
"""

from __future__ import annotations

from typing import Optional, Protocol, Union

import aiohttp

from logging_setup import get_logger, Component
from .errors import ErrorCategory, UpstreamError
from .providers import UpstreamTarget

logger = get_logger(Component.UPSTREAM)

Frame = Union[str, bytes]


class UpstreamConnection(Protocol):
    async def send(self, frame: Frame) -> None: ...

    async def receive(self) -> Optional[Frame]:
        """Next frame, or None once the connection is closed."""
        ...

    async def close(self) -> None: ...

    @property
    def closed(self) -> bool: ...


class UpstreamConnector(Protocol):
    async def connect(self, target: UpstreamTarget) -> UpstreamConnection: ...

    async def aclose(self) -> None: ...


class AiohttpUpstreamConnection:
    """UpstreamConnection over an aiohttp client WebSocket."""

    def __init__(self, ws: aiohttp.ClientWebSocketResponse):
        self._ws = ws

    @property
    def closed(self) -> bool:
        return self._ws.closed

    async def send(self, frame: Frame) -> None:
        if isinstance(frame, (bytes, bytearray)):
            await self._ws.send_bytes(bytes(frame))
        else:
            await self._ws.send_str(frame)

    async def receive(self) -> Optional[Frame]:
        msg = await self._ws.receive()
        if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
            return msg.data
        if msg.type == aiohttp.WSMsgType.ERROR:
            raise UpstreamError(
                str(self._ws.exception() or "upstream websocket error"),
                category=ErrorCategory.PROTOCOL_ERROR,
            )
        # CLOSE / CLOSING / CLOSED
        return None

    async def close(self) -> None:
        if not self._ws.closed:
            await self._ws.close()


class AiohttpUpstreamConnector:
    """Opens provider WebSockets from one shared aiohttp session."""

    def __init__(self, heartbeat_seconds: Optional[float] = 20.0):
        self.heartbeat_seconds = heartbeat_seconds
        self._http: Optional[aiohttp.ClientSession] = None

    def _session(self) -> aiohttp.ClientSession:
        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession()
        return self._http

    async def connect(self, target: UpstreamTarget) -> AiohttpUpstreamConnection:
        try:
            ws = await self._session().ws_connect(
                target.url,
                headers=dict(target.headers),
                protocols=target.protocols,
                heartbeat=self.heartbeat_seconds,
                max_msg_size=0,
            )
        except aiohttp.WSServerHandshakeError as e:
            raise UpstreamError(
                f"handshake rejected with status {e.status}", category=ErrorCategory.CONNECT_FAILED
            ) from e
        except aiohttp.ClientError as e:
            raise UpstreamError(
                f"connect failed: {type(e).__name__}", category=ErrorCategory.CONNECT_FAILED
            ) from e

        logger.debug("Upstream socket open", provider=target.provider.value, url=target.safe_url)
        return AiohttpUpstreamConnection(ws)

    async def aclose(self) -> None:
        if self._http is not None and not self._http.closed:
            await self._http.close()
