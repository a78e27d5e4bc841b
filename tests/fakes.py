"""
Test doubles shared across relay tests.
"""
import asyncio
from typing import Any, List, Optional

import aiohttp

from relay.errors import ErrorCategory, UpstreamError


class FakeResponse:
    def __init__(self, status: int = 200, body: Any = None):
        self.status = status
        self._body = body

    async def json(self, content_type=None):
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeHttp:
    """Stands in for aiohttp.ClientSession; replies are queued per call."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls: List[dict] = []
        self.closed = False

    def _next(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        reply = self.responses.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    def get(self, url, **kwargs):
        return self._next("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self._next("POST", url, **kwargs)

    async def close(self):
        self.closed = True


def client_error(message: str = "connection reset") -> aiohttp.ClientError:
    return aiohttp.ClientConnectionError(message)


class FakeUpstream:
    """In-memory upstream socket. Frames pushed with feed() are received in order."""

    def __init__(self):
        self.sent: List[Any] = []
        self._inbox: "asyncio.Queue[Any]" = asyncio.Queue()
        self._closed = False
        self.close_calls = 0
        self.send_error: Optional[Exception] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def feed(self, frame) -> None:
        self._inbox.put_nowait(frame)

    def fail(self, message: str = "bad frame") -> None:
        self._inbox.put_nowait(UpstreamError(message, category=ErrorCategory.PROTOCOL_ERROR))

    def hang_up(self) -> None:
        self._inbox.put_nowait(None)

    async def send(self, frame) -> None:
        if self._closed:
            raise UpstreamError("send on closed upstream")
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(frame)

    async def receive(self) -> Optional[Any]:
        if self._closed and self._inbox.empty():
            return None
        item = await self._inbox.get()
        if isinstance(item, Exception):
            raise item
        if item is None:
            self._closed = True
        return item

    async def close(self) -> None:
        self.close_calls += 1
        self._closed = True
        self._inbox.put_nowait(None)


class FakeConnector:
    """
    UpstreamConnector returning FakeUpstream instances.

    ``gate`` lets a test hold the connect open; ``error`` makes it fail.
    """

    def __init__(self, error: Optional[Exception] = None, hang: bool = False, upstream_factory=None):
        self.error = error
        self.hang = hang
        self.upstream_factory = upstream_factory or FakeUpstream
        self.gate: Optional[asyncio.Event] = None
        self.targets = []
        self.upstreams: List[FakeUpstream] = []
        self.closed = False

    async def connect(self, target):
        self.targets.append(target)
        if self.gate is not None:
            await self.gate.wait()
        if self.hang:
            await asyncio.Event().wait()
        if self.error is not None:
            raise self.error
        upstream = self.upstream_factory()
        self.upstreams.append(upstream)
        return upstream

    async def aclose(self) -> None:
        self.closed = True


class FakeClient:
    """ClientChannel fed from a queue; None means the client disconnected."""

    def __init__(self):
        self.sent: List[Any] = []
        self.close_code: Optional[int] = None
        self.close_reason: Optional[str] = None
        self._inbox: "asyncio.Queue[Any]" = asyncio.Queue()
        self._open = True

    @property
    def is_open(self) -> bool:
        return self._open

    def feed(self, frame) -> None:
        self._inbox.put_nowait(frame)

    def disconnect(self) -> None:
        self._inbox.put_nowait(None)

    async def receive(self):
        if not self._open:
            return None
        frame = await self._inbox.get()
        if frame is None:
            self._open = False
        return frame

    async def send(self, frame) -> None:
        if self._open:
            self.sent.append(frame)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if not self._open:
            return
        self._open = False
        self.close_code = code
        self.close_reason = reason
        self._inbox.put_nowait(None)


class EchoUpstream(FakeUpstream):
    """Echoes every frame back; the text frame "hang up" closes it instead."""

    async def send(self, frame) -> None:
        await super().send(frame)
        if frame == "hang up":
            self.hang_up()
        else:
            self.feed(frame)
