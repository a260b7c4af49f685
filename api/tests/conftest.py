"""
Shared fixtures: a scripted fake of the fal HTTP API and a fake clock.
"""

import json
from typing import Any, Callable, Union

import httpx
import pytest

from falsprite.fal_client import FalClient


class FakeClock:
    """Monotonic clock whose time only moves when `sleep` is awaited."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


Reply = Union[httpx.Response, Callable[[httpx.Request], httpx.Response]]


class FakeFal:
    """
    Scripted HTTP backend.

    Routes are keyed by (method, url). A route holds a list of replies that
    are consumed in order; the last one repeats.
    """

    def __init__(self):
        self.routes: dict[tuple[str, str], list[Reply]] = {}
        self.requests: list[httpx.Request] = []

    def on(self, method: str, url: str, *replies: Reply) -> "FakeFal":
        self.routes.setdefault((method, url), []).extend(replies)
        return self

    def json(self, method: str, url: str, body: Any, status: int = 200) -> "FakeFal":
        return self.on(method, url, httpx.Response(status, json=body))

    def calls(self, method: str = None, url: str = None) -> list[httpx.Request]:
        return [
            r for r in self.requests
            if (method is None or r.method == method) and (url is None or str(r.url) == url)
        ]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        replies = self.routes.get((request.method, str(request.url)))
        if not replies:
            return httpx.Response(404, json={"error": f"no route for {request.method} {request.url}"})
        reply = replies.pop(0) if len(replies) > 1 else replies[0]
        return reply(request) if callable(reply) else reply

    def body_of(self, request: httpx.Request) -> Any:
        return json.loads(request.content) if request.content else None


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_fal():
    return FakeFal()


@pytest.fixture
def make_client(fake_fal, clock):
    """Factory building a FalClient wired to the fake backend and clock."""
    def _make(api_key: str = "test-key", poll_interval: float = 1.8) -> FalClient:
        http = httpx.AsyncClient(transport=httpx.MockTransport(fake_fal.handler))
        return FalClient(api_key, http_client=http, sleep=clock.sleep, clock=clock,
                         poll_interval=poll_interval)
    return _make
