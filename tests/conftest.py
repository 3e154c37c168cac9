"""Shared pytest fixtures for all tests."""

import asyncio
import inspect
import json
from typing import Any, Dict, List

import httpx
import pytest

from regis_client.chat.orchestrator import RequestOrchestrator
from regis_client.clients.context import ApiContext
from regis_client.clients.retry import RetryPolicy

BASE_URL = "http://edge.test/api"


def sse(*events: Any) -> str:
    """Encode events as an SSE body; strings are sent as raw data payloads."""
    lines = []
    for event in events:
        payload = event if isinstance(event, str) else json.dumps(event, ensure_ascii=False)
        lines.append(f"data: {payload}\n\n")
    return "".join(lines)


async def _aiter(pieces: List[bytes]):
    for piece in pieces:
        yield piece


def streamed(pieces: List[str], status: int = 200) -> httpx.Response:
    """A response whose body arrives as the given network reads."""
    return httpx.Response(
        status,
        headers={"content-type": "text/event-stream"},
        content=_aiter([p.encode("utf-8") for p in pieces]),
    )


def execute_body(text: str = "AI response", **overrides: Any) -> Dict[str, Any]:
    body = {
        "success": True,
        "response": text,
        "sources": [],
        "model_used": "claude-3",
        "grounding_performed": False,
    }
    body.update(overrides)
    return body


class FakeBackend:
    """
    Scripted edge backend for httpx.MockTransport.

    Each endpoint gets a list of outcomes consumed in order; the last one
    repeats. An outcome is a status code, a (status, json_body) tuple, a
    prepared response, an exception to raise, or a callable taking the
    request and returning a response (sync or async).
    """

    def __init__(self):
        self.routes: Dict[str, List[Any]] = {}
        self.requests: List[httpx.Request] = []

    def script(self, endpoint: str, *outcomes: Any) -> None:
        self.routes.setdefault(endpoint, []).extend(outcomes)

    def calls(self, endpoint: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path == f"/api/{endpoint}"]

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        endpoint = request.url.path.removeprefix("/api/")
        outcomes = self.routes.get(endpoint)
        if not outcomes:
            return httpx.Response(404)
        outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]

        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, httpx.Response):
            return outcome
        if isinstance(outcome, int):
            return httpx.Response(outcome)
        if isinstance(outcome, tuple):
            status, body = outcome
            if isinstance(body, str):
                return httpx.Response(status, text=body)
            return httpx.Response(status, json=body)
        response = outcome(request)
        if inspect.isawaitable(response):
            response = await response
        return response


@pytest.fixture
def backend():
    """Create a scripted fake backend."""
    return FakeBackend()


@pytest.fixture
def sleeps():
    """Records backoff delays instead of sleeping."""
    return []


@pytest.fixture
def make_orchestrator(backend, sleeps):
    """Factory for an orchestrator wired to the fake backend."""

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    def factory(request_timeout: float = 5.0, **policy: Any) -> RequestOrchestrator:
        policy.setdefault("jitter_ms", 0)
        context = ApiContext.create(
            base_url=BASE_URL,
            transport=httpx.MockTransport(backend),
            retry_policy=RetryPolicy(**policy),
            request_timeout=request_timeout,
        )
        return RequestOrchestrator(context, sleep=fake_sleep)

    return factory


@pytest.fixture
def orchestrator(make_orchestrator):
    """Create an orchestrator with default policy."""
    return make_orchestrator()


def never_responds(seconds: float = 30.0):
    """Outcome that hangs until cancelled."""

    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(seconds)
        return httpx.Response(200, json=execute_body("too late"))

    return handler
