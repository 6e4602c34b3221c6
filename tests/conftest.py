import asyncio
import os
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

import pytest
from aiohttp import web

import webhookq.settings as settings_module


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    """Run every test without WEBHOOKQ_* variables, .env files or cached settings."""
    for key in list(os.environ.keys()):
        if key.startswith("WEBHOOKQ_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    settings_module._settings = None
    yield
    settings_module._settings = None


@dataclass
class ReceivedRequest:
    method: str
    path: str
    headers: Dict[str, str]
    body: bytes
    raw_headers: List[Tuple[bytes, bytes]] = field(default_factory=list)

    def header_count(self, name: str) -> int:
        wanted = name.lower().encode("latin-1")
        return sum(1 for key, _ in self.raw_headers if key.lower() == wanted)


Behaviour = Union[int, Callable[[web.Request], Awaitable[web.StreamResponse]]]


class WebhookReceiver:
    """Local webhook endpoint that records requests and replays scripted responses."""

    def __init__(self):
        self.url: Optional[str] = None
        self.requests: List[ReceivedRequest] = []
        self.responses: List[Behaviour] = []
        self.default_status = 200
        self.received = asyncio.Event()

    def respond_with(self, *behaviours: Behaviour) -> None:
        self.responses.extend(behaviours)

    async def handle(self, request: web.Request) -> web.StreamResponse:
        body = await request.read()
        self.requests.append(
            ReceivedRequest(
                request.method,
                request.path,
                dict(request.headers),
                body,
                list(request.raw_headers),
            )
        )
        self.received.set()

        behaviour: Any = self.responses.pop(0) if self.responses else self.default_status
        if callable(behaviour):
            return await behaviour(request)
        return web.Response(status=behaviour, text=f"status {behaviour}")


@pytest.fixture
async def webhook_receiver():
    receiver = WebhookReceiver()

    app = web.Application()
    app.router.add_route("*", "/webhook", receiver.handle)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", 0)
    await site.start()

    port = site._server.sockets[0].getsockname()[1]
    receiver.url = f"http://127.0.0.1:{port}/webhook"

    try:
        yield receiver
    finally:
        await runner.cleanup()


class RecordingSleep:
    """Stand-in for asyncio.sleep that records backoff delays without waiting."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


@pytest.fixture
def recording_sleep():
    return RecordingSleep()
