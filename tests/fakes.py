"""Fake transport pieces for exercising the streamer without a network."""

import asyncio
from typing import Any, List, Optional
from urllib.parse import parse_qs, urlparse

from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK


class FakeWebSocket:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self, messages=(), fail_send_on: Optional[str] = None):
        self.sent: List[str] = []
        self.closed = False
        self.fail_send_on = fail_send_on
        self._incoming: asyncio.Queue = asyncio.Queue()
        for message in messages:
            self.feed(message)

    def feed(self, message: Any) -> None:
        """Queue a frame (or an exception to raise) for recv()."""
        self._incoming.put_nowait(message)

    def drop(self) -> None:
        """Simulate the remote end going away."""
        self.feed(ConnectionClosedError(None, None))

    async def send(self, message: str) -> None:
        if self.closed:
            raise ConnectionClosedOK(None, None)
        if self.fail_send_on and f'"{self.fail_send_on}"' in message:
            raise ConnectionClosedError(None, None)
        self.sent.append(message)

    async def recv(self):
        if self.closed:
            raise ConnectionClosedOK(None, None)
        item = await self._incoming.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._incoming.put_nowait(ConnectionClosedOK(None, None))


class BlockingSendWebSocket(FakeWebSocket):
    """FakeWebSocket whose send() parks until ``release`` is set."""

    def __init__(self, messages=()):
        super().__init__(messages)
        self.send_started = asyncio.Event()
        self.release = asyncio.Event()

    async def send(self, message: str) -> None:
        self.send_started.set()
        await self.release.wait()
        # Completes even if the socket was closed while parked
        self.sent.append(message)


class ScriptedConnect:
    """
    Connect factory that plays back outcomes in order.

    Each outcome is a FakeWebSocket to hand out or an exception to raise.
    Once the script runs out, ``default`` is used: an exception to raise on
    every call, or None to hand out fresh idle sockets.
    """

    def __init__(self, *outcomes, default: Optional[BaseException] = None):
        self.outcomes = list(outcomes)
        self.default = default
        self.calls: List[str] = []
        self.kwargs: List[dict] = []
        self.sockets: List[FakeWebSocket] = []
        self.open_sockets_at_connect: List[int] = []

    async def __call__(self, url: str, **kwargs):
        self.calls.append(url)
        self.kwargs.append(kwargs)
        self.open_sockets_at_connect.append(sum(1 for s in self.sockets if not s.closed))

        if self.outcomes:
            outcome = self.outcomes.pop(0)
        elif self.default is not None:
            outcome = self.default
        else:
            outcome = FakeWebSocket()

        if isinstance(outcome, BaseException):
            raise outcome
        self.sockets.append(outcome)
        return outcome


class RoutingConnect:
    """Routes connect calls to a per-token ScriptedConnect."""

    def __init__(self, **routes: ScriptedConnect):
        self.routes = routes

    async def __call__(self, url: str, **kwargs):
        token = parse_qs(urlparse(url).query)["token"][0]
        return await self.routes[token](url, **kwargs)


class RecordingSleep:
    """Backoff sleep that records the delay and returns immediately."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Yield to the loop until ``predicate()`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(0.001)
