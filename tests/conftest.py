"""
Pytest configuration and fixtures for Kesher tests.

Time never advances on its own here: FakeClock is moved by hand and
ManualScheduler only runs timers when a test fires them.
"""

import sys
from pathlib import Path
from typing import Any

import httpx
import pytest

# Add the repository root to path for imports
# This allows `from kesher.registry import ...` to work
repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from kesher.config.service import InMemoryMetadataStore  # noqa: E402
from kesher.credentials import InMemoryCredentialStore  # noqa: E402
from kesher.events import EventNormalizer  # noqa: E402
from kesher.instance import ReconnectPolicy  # noqa: E402
from kesher.registry import InstanceRegistry  # noqa: E402
from kesher.transports import (  # noqa: E402
    PairingArtifact,
    SendResult,
    TransportFamilyRegistry,
    TransportStatus,
    create_embedded_factory,
)
from kesher.webhooks import LogRing, WebhookDispatcher  # noqa: E402

# =============================================================================
# Time
# =============================================================================


class FakeClock:
    """Clock moved explicitly by tests."""

    def __init__(self, start: float = 1000.0, epoch_millis: int = 1_700_000_000_000):
        self._now = start
        self._epoch_millis = epoch_millis
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self._now

    def epoch_millis(self) -> int:
        return self._epoch_millis

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)

    def advance(self, seconds: float) -> None:
        self._now += seconds
        self._epoch_millis += int(seconds * 1000)


class FakeTimer:
    def __init__(self, delay: float, callback):
        self.delay = delay
        self.callback = callback
        self._cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self._cancelled = True

    def cancelled(self) -> bool:
        return self._cancelled

    async def fire(self) -> None:
        self.fired = True
        await self.callback()


class ManualScheduler:
    """Scheduler whose timers run only when fired."""

    def __init__(self) -> None:
        self.timers: list[FakeTimer] = []

    def call_later(self, delay: float, callback) -> FakeTimer:
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> list[FakeTimer]:
        return [t for t in self.timers if not t.cancelled() and not t.fired]

    async def fire_next(self) -> FakeTimer:
        timer = self.pending[0]
        await timer.fire()
        return timer


# =============================================================================
# Transports
# =============================================================================


class FakeProtocolSession:
    """Protocol session driven by the test through emit helpers."""

    def __init__(self, fail_start: bool = False):
        self.fail_start = fail_start
        self.auth = None
        self._emit = None
        self.user: dict[str, Any] | None = None
        self.sent: list[tuple[str, dict]] = []
        self.logged_out = False
        self.ended = False
        self._counter = 0

    async def start(self, auth, emit) -> None:
        if self.fail_start:
            raise RuntimeError("socket refused")
        self.auth = auth
        self._emit = emit

    async def send_message(self, jid: str, content: dict) -> dict:
        self._counter += 1
        self.sent.append((jid, content))
        return {"key": {"id": f"WAMID{self._counter}", "remoteJid": jid}}

    async def logout(self) -> None:
        self.logged_out = True

    async def end(self) -> None:
        self.ended = True

    # Helpers

    async def emit(self, raw: dict) -> None:
        await self._emit(raw)

    async def emit_qr(self, code: str = "2@pairing-code") -> None:
        await self.emit({"event": "connection.update", "qr": code})

    async def emit_open(self, user_id: str = "5511999990000:7@s.whatsapp.net") -> None:
        self.user = {"id": user_id, "name": "Sales"}
        await self.emit({"event": "connection.update", "connection": "open"})

    async def emit_close(self, status_code: int = 428) -> None:
        await self.emit(
            {
                "event": "connection.update",
                "connection": "close",
                "lastDisconnect": {"statusCode": status_code},
            }
        )

    async def emit_creds(self, creds: dict) -> None:
        await self.emit({"event": "creds.update", "creds": creds})

    async def emit_messages(self, *messages: dict) -> None:
        await self.emit({"event": "messages.upsert", "messages": list(messages), "type": "notify"})


class SessionFactory:
    """Zero-arg factory that remembers every session it created."""

    def __init__(self) -> None:
        self.sessions: list[FakeProtocolSession] = []
        self.fail_start = False

    def __call__(self) -> FakeProtocolSession:
        session = FakeProtocolSession(fail_start=self.fail_start)
        self.sessions.append(session)
        return session

    @property
    def latest(self) -> FakeProtocolSession:
        return self.sessions[-1]


class FakeAdapter:
    """In-memory TransportAdapter with configurable push support."""

    def __init__(self, family: str = "fake", supports_push: bool = True):
        self._family = family
        self._supports_push = supports_push
        self.listener = None
        self.connected = False
        self.artifact: PairingArtifact | None = None
        self.restart_error: Exception | None = None
        self.restart_gate = None
        self.send_result = SendResult(success=True, message_id="MSG1")
        self.calls: list[tuple] = []

    @property
    def family(self) -> str:
        return self._family

    @property
    def supports_push(self) -> bool:
        return self._supports_push

    def subscribe(self, listener) -> None:
        self.listener = listener

    async def status(self) -> TransportStatus:
        self.calls.append(("status",))
        return TransportStatus(connected=self.connected)

    async def request_pairing_artifact(self) -> PairingArtifact | None:
        self.calls.append(("pairing",))
        return self.artifact

    async def restart(self) -> None:
        self.calls.append(("restart",))
        if self.restart_gate is not None:
            await self.restart_gate.wait()
        if self.restart_error is not None:
            raise self.restart_error

    async def disconnect(self) -> None:
        self.calls.append(("disconnect",))

    async def close(self) -> None:
        self.calls.append(("close",))

    async def send_text(self, target, text) -> SendResult:
        self.calls.append(("send_text", target, text))
        return self.send_result

    async def send_image(self, target, url, caption=None) -> SendResult:
        self.calls.append(("send_image", target, url, caption))
        return self.send_result

    async def send_audio(self, target, url) -> SendResult:
        self.calls.append(("send_audio", target, url))
        return self.send_result

    async def send_document(self, target, url, filename=None) -> SendResult:
        self.calls.append(("send_document", target, url, filename))
        return self.send_result

    def called(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)


# =============================================================================
# Webhook endpoints
# =============================================================================


class WebhookServer:
    """
    httpx mock transport standing in for subscriber endpoints.

    URLs containing "fail" answer 500; URLs containing "down" raise a
    connection error.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if "down" in url:
            raise httpx.ConnectError("connection refused", request=request)
        if "fail" in url:
            return httpx.Response(500, text="boom")
        return httpx.Response(200, json={"ok": True})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def bodies(self, event: str | None = None) -> list[dict]:
        import json

        result = []
        for request in self.requests:
            if event is None or request.headers.get("X-Webhook-Event") == event:
                result.append(json.loads(request.content))
        return result


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def policy():
    return ReconnectPolicy(base=30.0, cap=120.0, max_attempts=3, extended_cooldown=600.0)


@pytest.fixture
def credential_store():
    return InMemoryCredentialStore()


@pytest.fixture
def metadata_store():
    return InMemoryMetadataStore()


@pytest.fixture
def webhook_server():
    return WebhookServer()


@pytest.fixture
def log_ring():
    return LogRing(capacity=50)


@pytest.fixture
def dispatcher(log_ring, clock, webhook_server):
    return WebhookDispatcher(log_ring, clock=clock, transport=webhook_server.transport)


@pytest.fixture
def normalizer(clock):
    return EventNormalizer(clock)


@pytest.fixture
def session_factory():
    return SessionFactory()


@pytest.fixture
def families(session_factory):
    registry = TransportFamilyRegistry()
    registry.register("embedded", create_embedded_factory(session_factory))
    return registry


@pytest.fixture
def registry(families, credential_store, metadata_store, dispatcher, normalizer, policy, clock, scheduler):
    return InstanceRegistry(
        families,
        credential_store=credential_store,
        metadata_store=metadata_store,
        dispatcher=dispatcher,
        normalizer=normalizer,
        policy=policy,
        clock=clock,
        scheduler=scheduler,
        force_reset_delay=2.0,
    )
