import json
from collections.abc import Iterator

import httpx
import pytest
from fastapi.testclient import TestClient

from chatsdk_gateway.config.settings import clear_settings_cache
from chatsdk_gateway.main import create_app
from chatsdk_gateway.metrics import reset_metrics


def sse_body(*deltas: str, done: bool = True) -> bytes:
    lines = ['data: {"type":"start","messageId":"m-1"}']
    for delta in deltas:
        lines.append("data: " + json.dumps({"type": "text-delta", "id": "0", "delta": delta}))
    lines.append('data: {"type":"finish"}')
    if done:
        lines.append("data: [DONE]")
    return ("\n\n".join(lines) + "\n\n").encode()


class FakeChatSDK:
    """In-memory stand-in for the upstream deployment, served via MockTransport."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.chat_payloads: list[dict[str, object]] = []
        self.guest_status = 200
        self.register_status = 200
        self.register_sets_cookie = True
        self.chat_statuses: list[int] = []
        self.chat_deltas: tuple[str, ...] = ("Hel", "lo")

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "GET" and request.url.path == "/":
            return httpx.Response(self.guest_status, text="<html></html>")
        if request.method == "POST" and request.url.path == "/register":
            headers = {}
            if self.register_sets_cookie:
                headers["set-cookie"] = "authjs.session-token=abc; Path=/"
            return httpx.Response(self.register_status, headers=headers, text="ok")
        if request.method == "POST" and request.url.path == "/api/chat":
            self.chat_payloads.append(json.loads(request.content))
            status = self.chat_statuses.pop(0) if self.chat_statuses else 200
            if status != 200:
                return httpx.Response(status, text="slow down")
            return httpx.Response(
                200,
                headers={"content-type": "text/event-stream"},
                content=sse_body(*self.chat_deltas),
            )
        return httpx.Response(404)

    def paths(self) -> list[str]:
        return [request.url.path for request in self.requests]


class SequentialIds:
    def __init__(self) -> None:
        self._n = 0

    def new_id(self) -> str:
        self._n += 1
        return f"id-{self._n}"

    def new_email(self) -> str:
        return f"user{self._n}@example.com"

    def new_credential(self) -> str:
        return "s3cret-pass-1234"


@pytest.fixture
def ids() -> SequentialIds:
    return SequentialIds()


@pytest.fixture
def upstream() -> FakeChatSDK:
    return FakeChatSDK()


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch, upstream: FakeChatSDK) -> Iterator[TestClient]:
    monkeypatch.setenv("CSG_BASE_URL", "https://chat.test")
    monkeypatch.setenv("CSG_EGRESS_PROXIES", "")
    monkeypatch.setenv("CSG_IDENTITY_RETRY_DELAY_S", "0")
    monkeypatch.delenv("CSG_IDENTITY_MODE", raising=False)
    clear_settings_cache()
    reset_metrics()
    app = create_app(upstream_transport=upstream.transport())
    with TestClient(app) as test_client:
        yield test_client
    clear_settings_cache()
