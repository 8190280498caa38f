"""
Tests for the embedded transport adapter.
"""

import base64

import pytest

from kesher.credentials import InMemoryCredentialStore, NamespacedCredentials
from kesher.errors import ErrorCode, TransportError
from kesher.transports import (
    CloseReason,
    ConnectionPhase,
    EmbeddedTransport,
    MessageReceived,
)
from kesher.transports.embedded import SessionAuthState, close_reason_for


class RecordingListener:
    def __init__(self):
        self.events = []

    async def on_transport_event(self, event):
        self.events.append(event)


@pytest.fixture
def credentials():
    return NamespacedCredentials(InMemoryCredentialStore(), "whatsapp-session-sales")


@pytest.fixture
def listener():
    return RecordingListener()


@pytest.fixture
def transport(credentials, session_factory, listener):
    transport = EmbeddedTransport("sales", credentials, session_factory)
    transport.subscribe(listener)
    return transport


class TestLifecycle:
    def test_family_and_push(self, transport):
        assert transport.family == "embedded"
        assert transport.supports_push is True

    @pytest.mark.asyncio
    async def test_restart_starts_a_new_session(self, transport, session_factory):
        await transport.restart()
        await transport.restart()

        assert len(session_factory.sessions) == 2
        assert session_factory.sessions[0].ended is True
        assert session_factory.sessions[0].logged_out is False

    @pytest.mark.asyncio
    async def test_start_failure_raises_transport_error(self, transport, session_factory):
        session_factory.fail_start = True

        with pytest.raises(TransportError) as exc:
            await transport.restart()

        assert exc.value.code == ErrorCode.TRANSPORT_UNREACHABLE

    @pytest.mark.asyncio
    async def test_disconnect_logs_out(self, transport, session_factory):
        await transport.restart()

        await transport.disconnect()

        assert session_factory.latest.logged_out is True
        assert (await transport.status()).connected is False

    @pytest.mark.asyncio
    async def test_close_ends_without_logout(self, transport, session_factory):
        await transport.restart()

        await transport.close()

        assert session_factory.latest.ended is True
        assert session_factory.latest.logged_out is False


class TestEvents:
    @pytest.mark.asyncio
    async def test_qr_becomes_pairing_artifact(self, transport, session_factory, listener):
        await transport.restart()

        await session_factory.latest.emit_qr("2@abc")

        assert len(listener.events) == 1
        assert listener.events[0].phase is None
        assert listener.events[0].artifact.code == "2@abc"
        assert (await transport.request_pairing_artifact()).code == "2@abc"

    @pytest.mark.asyncio
    async def test_pairing_artifact_carries_png_image(self, transport, session_factory, listener):
        await transport.restart()

        await session_factory.latest.emit_qr("2@abc,def,ghi")

        artifact = listener.events[0].artifact
        assert artifact.image.startswith("data:image/png;base64,")
        assert base64.b64decode(artifact.image.split(",", 1)[1])[:8] == b"\x89PNG\r\n\x1a\n"
        assert artifact.to_dict()["code"] == "2@abc,def,ghi"

    @pytest.mark.asyncio
    async def test_open_reports_user(self, transport, session_factory, listener):
        await transport.restart()

        await session_factory.latest.emit_open("5511999990000:7@s.whatsapp.net")

        event = listener.events[-1]
        assert event.phase == ConnectionPhase.OPEN
        assert event.user == {
            "id": "5511999990000:7@s.whatsapp.net",
            "name": "Sales",
            "phone": "5511999990000",
        }
        assert (await transport.status()).connected is True
        assert await transport.request_pairing_artifact() is None

    @pytest.mark.asyncio
    async def test_close_maps_reason(self, transport, session_factory, listener):
        await transport.restart()
        await session_factory.latest.emit_open()

        await session_factory.latest.emit_close(401)

        event = listener.events[-1]
        assert event.phase == ConnectionPhase.CLOSE
        assert event.close_reason == CloseReason.LOGGED_OUT
        assert (await transport.status()).connected is False

    @pytest.mark.asyncio
    async def test_events_from_old_generation_dropped(self, transport, session_factory, listener):
        await transport.restart()
        old = session_factory.latest
        await transport.restart()

        await old.emit_qr("stale")

        assert listener.events == []

    @pytest.mark.asyncio
    async def test_messages_upsert_emits_each_message(self, transport, session_factory, listener):
        await transport.restart()

        await session_factory.latest.emit_messages({"key": {"id": "A"}}, {"key": {"id": "B"}})

        assert [type(e) for e in listener.events] == [MessageReceived, MessageReceived]
        assert listener.events[1].raw == {"key": {"id": "B"}}

    @pytest.mark.asyncio
    async def test_creds_update_persists(self, transport, session_factory, credentials):
        await transport.restart()

        await session_factory.latest.emit_creds({"me": {"id": "5511"}})

        assert await credentials.get("creds") == {"me": {"id": "5511"}}

    @pytest.mark.asyncio
    async def test_restart_loads_stored_creds(self, transport, session_factory, credentials):
        await credentials.set("creds", {"registered": True})

        await transport.restart()

        assert session_factory.latest.auth.creds == {"registered": True}


class TestSends:
    @pytest.mark.asyncio
    async def test_send_requires_open_session(self, transport):
        await transport.restart()

        result = await transport.send_text("5511999999999", "hi")

        assert result.success is False
        assert result.error_code == ErrorCode.NOT_CONNECTED

    @pytest.mark.asyncio
    async def test_send_text_to_normalized_jid(self, transport, session_factory):
        await transport.restart()
        await session_factory.latest.emit_open()

        result = await transport.send_text("+55 (11) 99999-9999", "hi")

        assert result.success is True
        assert result.message_id == "WAMID1"
        assert session_factory.latest.sent == [
            ("5511999999999@s.whatsapp.net", {"text": "hi"})
        ]

    @pytest.mark.asyncio
    async def test_group_target_passes_through(self, transport, session_factory):
        await transport.restart()
        await session_factory.latest.emit_open()

        await transport.send_image("120363@g.us", "https://x/a.png", "look")

        jid, content = session_factory.latest.sent[0]
        assert jid == "120363@g.us"
        assert content == {"image": {"url": "https://x/a.png"}, "caption": "look"}

    @pytest.mark.asyncio
    async def test_short_target_is_invalid(self, transport, session_factory):
        await transport.restart()
        await session_factory.latest.emit_open()

        result = await transport.send_document("123", "https://x/a.pdf", "a.pdf")

        assert result.error_code == ErrorCode.INVALID_TARGET


class TestHelpers:
    def test_close_reason_for(self):
        assert close_reason_for({"statusCode": 515}) == CloseReason.RESTART_REQUIRED
        assert close_reason_for({"error": {"output": {"statusCode": 440}}}) == (
            CloseReason.CONNECTION_REPLACED
        )
        assert close_reason_for({"statusCode": 999}) == CloseReason.UNKNOWN
        assert close_reason_for(None) == CloseReason.UNKNOWN

    @pytest.mark.asyncio
    async def test_auth_state_keys(self, credentials):
        auth = await SessionAuthState.load(credentials)

        await auth.set_keys({"pre-key": {"1": {"k": 1}, "2": None}})

        assert await auth.get_keys("pre-key", ["1", "2"]) == {"1": {"k": 1}}
        assert await credentials.keys() == ["pre-key-1"]
