import json
from typing import Callable, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

from chat_relay.config import RelaySettings, get_settings
from chat_relay.main import app
from chat_relay.services.context_store import InMemoryContextStore, get_context_store
from chat_relay.services.http_client import get_client

UPSTREAM_URL = "https://upstream.test/v1/chat/completions"


def make_settings(**overrides) -> RelaySettings:
    values = {
        "openai_api_key": "sk-test",
        "openai_api_url": UPSTREAM_URL,
        "relay_stream": True,
        "use_agent_mock": False,
    }
    values.update(overrides)
    return RelaySettings(_env_file=None, **values)


def sse(*fragments: str, done: bool = True) -> bytes:
    """Render fragments in the upstream streaming wire format."""
    lines = [
        "data: " + json.dumps({"choices": [{"index": 0, "delta": {"content": f}}]}) + "\n\n"
        for f in fragments
    ]
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode("utf-8")


def completion(content: str) -> dict:
    return {"id": "cmpl-1", "choices": [{"index": 0, "message": {"role": "assistant", "content": content}}]}


class UpstreamRecorder:
    """httpx.MockTransport handler that records every upstream request."""

    def __init__(self, responder: Optional[Callable[[httpx.Request], httpx.Response]] = None) -> None:
        self.responder = responder
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.responder is None:
            raise AssertionError(f"unexpected upstream call to {request.url}")
        return self.responder(request)

    def payloads(self) -> List[dict]:
        return [json.loads(r.content) for r in self.requests]


class RelayHarness:
    """The relay app wired to a mocked upstream, settings and context store."""

    def __init__(self, responder=None, **settings_overrides) -> None:
        self.settings = make_settings(**settings_overrides)
        self.upstream = UpstreamRecorder(responder)
        self.http = httpx.AsyncClient(transport=httpx.MockTransport(self.upstream))
        self.store = InMemoryContextStore()

        app.dependency_overrides[get_settings] = lambda: self.settings
        app.dependency_overrides[get_client] = lambda: self.http
        app.dependency_overrides[get_context_store] = lambda: self.store

    def client(self) -> TestClient:
        return TestClient(app)


@pytest.fixture
def relay():
    """Factory fixture: relay(responder, **settings) -> RelayHarness."""
    yield RelayHarness
    app.dependency_overrides.clear()
