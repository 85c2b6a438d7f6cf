"""Tests for the WebSocket event channel: connection lifecycle, bounded
reconnection, inbound dispatch and outbound message shapes.

``websockets.connect`` is patched to hand out FakeWebSocket instances.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from websockets.exceptions import InvalidURI

from livetranslate.core.exceptions import (
    NotConnectedError,
    ReconnectExhaustedError,
    TranslationAlreadyActiveError,
    TransportError,
)
from livetranslate.core.models import ConnectionState, TranslationResult
from livetranslate.services.transport.session import TransportSession
from tests.conftest import FakeWebSocket, make_wav, result_event

CONNECT = "livetranslate.services.transport.session.websockets.connect"


async def _until(predicate, timeout: float = 1.0) -> None:
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.001)

    await asyncio.wait_for(_poll(), timeout)


@pytest.fixture
def api():
    client = MagicMock()
    client.check_health = AsyncMock(return_value=True)
    client.translate = AsyncMock()
    client.aclose = AsyncMock()
    return client


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def session(api, sleeps):
    async def fake_sleep(delay):
        sleeps.append(delay)

    return TransportSession(
        api_client=api,
        ws_url="ws://test/ws",
        reconnect_attempts=5,
        reconnect_delay=1.0,
        connect_timeout=0.5,
        health_interval=60,
        health_timeout=0.5,
        sleep=fake_sleep,
    )


@pytest.fixture
def states(session):
    seen = []
    session.add_state_listener(seen.append)
    return seen


class TestConnect:
    async def test_connect_transitions(self, session, states, fake_ws):
        with patch(CONNECT, AsyncMock(return_value=fake_ws)) as connect:
            await session.connect()

        connect.assert_awaited_once_with("ws://test/ws", open_timeout=0.5)
        assert states == [ConnectionState.connecting, ConnectionState.connected]
        assert session.is_connected
        assert session.attempts_made == 1
        await session.disconnect()

    async def test_connect_when_connected_is_noop(self, session, fake_ws):
        with patch(CONNECT, AsyncMock(return_value=fake_ws)) as connect:
            await session.connect()
            await session.connect()
        assert connect.await_count == 1
        await session.disconnect()

    async def test_transient_failures_are_retried(self, session, sleeps, fake_ws):
        with patch(CONNECT, AsyncMock(side_effect=[OSError("refused"), TimeoutError(), fake_ws])):
            await session.connect()
        assert session.is_connected
        assert session.attempts_made == 3
        assert sleeps == [1.0, 1.0]
        await session.disconnect()

    async def test_budget_is_bounded(self, session, states, sleeps):
        connect = AsyncMock(side_effect=OSError("refused"))
        with patch(CONNECT, connect):
            with pytest.raises(ReconnectExhaustedError) as exc_info:
                await session.connect()
            await asyncio.sleep(0.01)

        assert exc_info.value.attempts == 5
        assert connect.await_count == 5
        assert sleeps == [1.0] * 4
        assert session.exhausted
        assert session.state == ConnectionState.disconnected
        assert states == [ConnectionState.connecting, ConnectionState.disconnected]

    async def test_explicit_connect_after_exhaustion_starts_fresh(self, session, fake_ws):
        with patch(CONNECT, AsyncMock(side_effect=OSError("refused"))):
            with pytest.raises(ReconnectExhaustedError):
                await session.connect()
        with patch(CONNECT, AsyncMock(return_value=fake_ws)):
            await session.connect()
        assert not session.exhausted
        assert session.is_connected
        await session.disconnect()

    async def test_invalid_url_is_not_retried(self, session, states, sleeps):
        connect = AsyncMock(side_effect=InvalidURI("htp://test/ws", "scheme isn't ws or wss"))
        with patch(CONNECT, connect):
            with pytest.raises(TransportError) as exc_info:
                await session.connect()

        assert exc_info.value.code == "CONNECT_FAILED"
        assert connect.await_count == 1
        assert sleeps == []
        assert not session.exhausted
        assert states == [ConnectionState.connecting, ConnectionState.disconnected]

    async def test_disconnect_does_not_reconnect(self, session, states, fake_ws):
        connect = AsyncMock(return_value=fake_ws)
        with patch(CONNECT, connect):
            await session.connect()
            await session.disconnect()
            await asyncio.sleep(0.01)

        assert fake_ws.closed
        assert connect.await_count == 1
        assert states[-1] == ConnectionState.disconnected
        assert not session.is_connected


class TestReconnect:
    async def test_drop_triggers_reconnect(self, session, states):
        first, second = FakeWebSocket(), FakeWebSocket()
        with patch(CONNECT, AsyncMock(side_effect=[first, second])):
            await session.connect()
            first.drop()
            await _until(lambda: len(states) == 5)

        assert states == [
            ConnectionState.connecting,
            ConnectionState.connected,
            ConnectionState.disconnected,
            ConnectionState.connecting,
            ConnectionState.connected,
        ]
        await session.disconnect()

    async def test_reconnect_exhaustion_is_terminal(self, session, sleeps):
        first = FakeWebSocket()
        connect = AsyncMock(side_effect=[first] + [OSError("refused")] * 5)
        with patch(CONNECT, connect):
            await session.connect()
            first.drop()
            await _until(lambda: session.exhausted)
            await asyncio.sleep(0.01)

        assert connect.await_count == 6
        assert sleeps == [1.0] * 4
        assert session.state == ConnectionState.disconnected

    async def test_drop_clears_active_translation(self, session):
        ws = FakeWebSocket()
        with patch(CONNECT, AsyncMock(side_effect=[ws, FakeWebSocket()])):
            await session.connect()
            await session.start_translation("en", "es")
            ws.drop()
            await _until(lambda: not session.translation_active)
        await session.disconnect()


    async def test_unretryable_failure_during_reconnect_settles(self, session, states):
        first = FakeWebSocket()
        connect = AsyncMock(side_effect=[first, InvalidURI("ws://test/ws", "rejected")])
        with patch(CONNECT, connect):
            await session.connect()
            first.drop()
            await _until(lambda: len(states) == 5)
            reconnector = session._reconnector
            await asyncio.wait_for(reconnector, 1)

        assert reconnector.exception() is None
        assert states[-2:] == [ConnectionState.connecting, ConnectionState.disconnected]
        assert session.state == ConnectionState.disconnected


class TestDispatch:
    async def test_translation_result_is_parsed(self, session, fake_ws):
        audio = make_wav()
        received = asyncio.Queue()
        session.on("translation_result", received.put_nowait)
        with patch(CONNECT, AsyncMock(return_value=fake_ws)):
            await session.connect()
        fake_ws.push(result_event(text="hello", audio=audio, is_final=True))

        result = await asyncio.wait_for(received.get(), 1)
        assert isinstance(result, TranslationResult)
        assert result.original_text == "hello"
        assert result.audio == audio
        assert result.is_final is True
        await session.disconnect()

    async def test_error_handler_receives_message(self, session, fake_ws):
        received = asyncio.Queue()
        session.on("error", received.put_nowait)
        with patch(CONNECT, AsyncMock(return_value=fake_ws)):
            await session.connect()
        fake_ws.push({"type": "error", "data": {"error": "Model not loaded"}})

        assert await asyncio.wait_for(received.get(), 1) == "Model not loaded"
        await session.disconnect()

    async def test_malformed_and_unknown_frames_are_ignored(self, session, fake_ws):
        received = asyncio.Queue()
        session.on("connected", received.put_nowait)
        with patch(CONNECT, AsyncMock(return_value=fake_ws)):
            await session.connect()
        fake_ws._inbox.put_nowait("{not json")
        fake_ws._inbox.put_nowait('["no", "envelope"]')
        fake_ws.push({"type": "mystery", "data": {}})
        fake_ws.push({"type": "connected", "data": {"message": "hi"}})

        assert await asyncio.wait_for(received.get(), 1) == {"message": "hi"}
        assert received.empty()
        assert session.is_connected
        await session.disconnect()

    async def test_async_handlers_and_failures(self, session, fake_ws):
        order = []

        async def slow(payload):
            await asyncio.sleep(0.005)
            order.append("slow")

        def broken(payload):
            raise RuntimeError("handler bug")

        session.on("connected", slow)
        session.on("connected", broken)
        session.on("connected", lambda p: order.append("fast"))
        with patch(CONNECT, AsyncMock(return_value=fake_ws)):
            await session.connect()
        fake_ws.push({"type": "connected", "data": {}})

        await _until(lambda: len(order) == 2)
        assert order == ["slow", "fast"]
        await session.disconnect()

    async def test_unsubscribe(self, session, fake_ws):
        received = []
        unsubscribe = session.on("connected", received.append)
        unsubscribe()
        marker = asyncio.Event()
        session.on("connected", lambda _: marker.set())
        with patch(CONNECT, AsyncMock(return_value=fake_ws)):
            await session.connect()
        fake_ws.push({"type": "connected", "data": {}})
        await asyncio.wait_for(marker.wait(), 1)
        assert received == []
        await session.disconnect()

    def test_unknown_event_subscription_rejected(self, session):
        with pytest.raises(ValueError):
            session.on("audio_chunk", print)


class TestOutbound:
    async def test_send_requires_connection(self, session):
        with pytest.raises(NotConnectedError):
            await session.send_chunk("AAAA", 16000)
        with pytest.raises(NotConnectedError):
            await session.start_translation("en", "es")
        assert not session.translation_active

    async def test_start_translation_message(self, session, fake_ws):
        started = asyncio.Event()
        session.on("translation_started", lambda _: started.set())
        with patch(CONNECT, AsyncMock(return_value=fake_ws)):
            await session.connect()
        await session.start_translation("en", "es")
        await asyncio.wait_for(started.wait(), 1)

        assert fake_ws.sent == [
            {"type": "start_translation", "data": {"source_lang": "en", "target_lang": "es"}}
        ]
        assert session.translation_active
        await session.disconnect()

    async def test_duplicate_start_rejected(self, session, fake_ws):
        with patch(CONNECT, AsyncMock(return_value=fake_ws)):
            await session.connect()
        await session.start_translation("en", "es")
        with pytest.raises(TranslationAlreadyActiveError):
            await session.start_translation("en", "fr")
        assert len(fake_ws.sent_of_type("start_translation")) == 1
        await session.disconnect()

    async def test_audio_chunk_shape(self, session, fake_ws):
        with patch(CONNECT, AsyncMock(return_value=fake_ws)):
            await session.connect()
        await session.send_chunk("AAAA", 16000)

        assert fake_ws.sent[0] == {
            "type": "audio_chunk",
            "data": {"audio": "AAAA", "sample_rate": 16000, "format": "raw_pcm"},
        }
        await session.disconnect()

    async def test_stop_translation(self, session, fake_ws):
        stopped = asyncio.Event()
        session.on("translation_stopped", lambda _: stopped.set())
        with patch(CONNECT, AsyncMock(return_value=fake_ws)):
            await session.connect()

        await session.stop_translation()
        assert fake_ws.sent == []

        await session.start_translation("en", "es")
        await session.stop_translation()
        await asyncio.wait_for(stopped.wait(), 1)
        assert fake_ws.sent_of_type("stop_translation") == [{"type": "stop_translation", "data": {}}]
        assert not session.translation_active
        await session.disconnect()

    async def test_send_utterance_uses_rest(self, session, api):
        expected = TranslationResult(original_text="a", translated_text="b")
        api.translate.return_value = expected
        assert await session.send_utterance(b"wav", "en", "es") is expected
        api.translate.assert_awaited_once_with(b"wav", "en", "es")


async def test_activate_probes_health_and_close_releases(session, api):
    await session.activate()
    assert session.backend_reachable
    assert session.health.running

    await session.close()
    assert not session.health.running
    api.aclose.assert_awaited_once()


def test_rejects_empty_budget(api):
    with pytest.raises(ValueError):
        TransportSession(api_client=api, ws_url="ws://test/ws", reconnect_attempts=0)
