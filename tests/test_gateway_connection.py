"""Tests for GatewayConnection against an in-memory transport.

Timers run for real with durations of a few tens of milliseconds; every
scenario runs inside its own ``asyncio.run``.
"""

import asyncio
from unittest.mock import MagicMock

import pytest

from rxinterpals.auth import SessionCredentials
from rxinterpals.config import GatewayConfig, RetryPolicy
from rxinterpals.errors import (
    AuthenticationError,
    GatewayConnectionError,
    GatewayTimeoutError,
)
from rxinterpals.gateway import ConnectRace, GatewayConnection, GatewayState, SequenceGap
from rxinterpals.intents import resolve_intents

from conftest import FakeConnector, FakeTransport

URL = "wss://gateway.test/ws"


def make_gateway(connector, logger_provider, credentials=None, **overrides):
    config = GatewayConfig(url=URL, **overrides)
    return GatewayConnection(
        credentials or SessionCredentials(auth_token="tok"),
        config,
        connector=connector,
        logger_provider=logger_provider,
    )


def collect(observable) -> list:
    received: list = []
    observable.subscribe(received.append)
    return received


async def run_frames(gateway, connector, frames, wait=0.02):
    await gateway.connect()
    for frame in frames:
        connector.transports[-1].feed(frame)
    await asyncio.sleep(wait)
    await gateway.disconnect()


class TestConnect:
    def test_url_headers_and_ready(self, connector, logger_provider):
        gateway = make_gateway(connector, logger_provider)
        ready = collect(gateway.ready)
        states = collect(gateway.connection_state)

        async def scenario():
            await gateway.connect()
            assert gateway.is_connected
            await gateway.disconnect()

        asyncio.run(scenario())

        assert connector.urls == [f"{URL}?token=tok&intents=37"]
        assert connector.headers[0]["Authorization"] == "Bearer tok"
        assert ready == [None]
        assert states == [
            GatewayState.DISCONNECTED,
            GatewayState.CONNECTING,
            GatewayState.CONNECTED,
            GatewayState.DISCONNECTED,
        ]

    def test_session_id_is_token_fallback_and_intents_configurable(
        self, connector, logger_provider
    ):
        gateway = make_gateway(
            connector,
            logger_provider,
            credentials=SessionCredentials(session_id="s/1"),
            intents=resolve_intents(["typing"]),
        )

        asyncio.run(run_frames(gateway, connector, []))

        assert connector.urls == [f"{URL}?token=s%2F1&intents=2"]

    def test_requires_credentials(self, connector, logger_provider):
        gateway = make_gateway(connector, logger_provider, credentials=SessionCredentials())

        with pytest.raises(AuthenticationError):
            asyncio.run(gateway.connect())

        assert connector.attempts == 0

    def test_failed_connect_schedules_no_reconnect(self, connector, logger_provider):
        connector.failures = 1
        gateway = make_gateway(connector, logger_provider)

        async def scenario():
            with pytest.raises(GatewayConnectionError):
                await gateway.connect()
            await asyncio.sleep(0.05)

        asyncio.run(scenario())

        assert gateway.state is GatewayState.DISCONNECTED
        assert not gateway.reconnect_pending
        assert connector.attempts == 1

    def test_connect_while_connected_is_noop(self, connector, logger_provider):
        gateway = make_gateway(connector, logger_provider)

        async def scenario():
            await gateway.connect()
            await gateway.connect()
            await gateway.disconnect()

        asyncio.run(scenario())

        assert connector.attempts == 1


class TestConnectTimeoutRace:
    """Open and timeout race; exactly one of them takes effect."""

    def test_race_settles_once(self):
        race = ConnectRace()
        assert race.open() is True
        assert race.timeout() is False
        assert race.outcome == "open"

        race = ConnectRace()
        assert race.timeout() is True
        assert race.open() is False
        assert race.outcome == "timeout"

        race = ConnectRace()
        assert race.cancel() is True
        assert race.open() is False
        assert race.timeout() is False
        assert race.outcome == "cancelled"

    def test_timeout_before_open(self, logger_provider):
        connector = FakeConnector(delay=0.5)
        gateway = make_gateway(connector, logger_provider, connect_timeout=0.05)

        with pytest.raises(GatewayTimeoutError) as info:
            asyncio.run(gateway.connect())

        assert isinstance(info.value, TimeoutError)
        assert connector.transports == []
        assert gateway.state is GatewayState.DISCONNECTED
        assert not gateway.reconnect_pending

    def test_open_arriving_after_timeout_is_discarded(self, logger_provider):
        late: list[FakeTransport] = []

        async def stubborn_connector(url, headers):
            transport = FakeTransport()
            late.append(transport)
            try:
                await asyncio.sleep(0.5)
            except asyncio.CancelledError:
                pass  # handshake completes regardless
            return transport

        gateway = make_gateway(stubborn_connector, logger_provider, connect_timeout=0.05)

        with pytest.raises(GatewayTimeoutError):
            asyncio.run(gateway.connect())

        assert late[0].aborted
        assert not gateway.is_connected
        assert gateway.state is GatewayState.DISCONNECTED

    def test_open_before_timeout_keeps_connection(self, logger_provider):
        connector = FakeConnector(delay=0.01)
        gateway = make_gateway(connector, logger_provider, connect_timeout=0.05)

        async def scenario():
            await gateway.connect()
            await asyncio.sleep(0.1)
            assert gateway.is_connected
            assert not connector.transports[0].aborted
            await gateway.disconnect()

        asyncio.run(scenario())


class TestDisconnect:
    def test_manual_disconnect_never_reconnects(self, connector, logger_provider):
        gateway = make_gateway(connector, logger_provider)
        closes = collect(gateway.disconnected)

        async def scenario():
            await gateway.connect()
            await gateway.disconnect()
            await asyncio.sleep(0.05)

        asyncio.run(scenario())

        assert connector.transports[0].closed
        assert not connector.transports[0].aborted
        assert connector.attempts == 1
        assert len(closes) == 1
        assert closes[0].manual is True
        assert gateway.state is GatewayState.DISCONNECTED

    def test_disconnect_cancels_connect_in_flight(self, logger_provider):
        """A disconnect() during the handshake wins; the connect never attaches."""
        connector = FakeConnector(delay=0.05)
        gateway = make_gateway(connector, logger_provider)
        ready = collect(gateway.ready)

        async def scenario():
            pending = asyncio.ensure_future(gateway.connect())
            await asyncio.sleep(0.01)
            await gateway.disconnect()
            with pytest.raises(GatewayConnectionError):
                await pending
            await asyncio.sleep(0.1)

        asyncio.run(scenario())

        assert not gateway.is_connected
        assert gateway.state is GatewayState.DISCONNECTED
        assert not gateway.reconnect_pending
        assert connector.attempts == 1
        assert connector.transports == []
        assert ready == []

    def test_disconnect_discards_handshake_that_ignores_cancel(self, logger_provider):
        late: list[FakeTransport] = []

        async def stubborn_connector(url, headers):
            transport = FakeTransport()
            late.append(transport)
            try:
                await asyncio.sleep(0.05)
            except asyncio.CancelledError:
                pass  # handshake completes regardless
            return transport

        gateway = make_gateway(stubborn_connector, logger_provider)

        async def scenario():
            pending = asyncio.ensure_future(gateway.connect())
            await asyncio.sleep(0.01)
            await gateway.disconnect()
            with pytest.raises(GatewayConnectionError):
                await pending

        asyncio.run(scenario())

        assert late[0].aborted
        assert not gateway.is_connected
        assert gateway.state is GatewayState.DISCONNECTED

    def test_disconnect_without_connection(self, connector, logger_provider):
        gateway = make_gateway(connector, logger_provider)
        asyncio.run(gateway.disconnect())
        assert gateway.state is GatewayState.DISCONNECTED

    def test_server_close_reconnects(self, connector, logger_provider):
        gateway = make_gateway(connector, logger_provider)
        closes = collect(gateway.disconnected)
        ready = collect(gateway.ready)

        async def scenario():
            await gateway.connect()
            connector.transports[0]._shut(1001, "going away")
            await asyncio.sleep(0.05)
            assert gateway.is_connected
            await gateway.disconnect()

        asyncio.run(scenario())

        assert connector.attempts == 2
        assert len(ready) == 2
        assert closes[0].code == 1001
        assert closes[0].manual is False

    def test_disconnect_cancels_pending_reconnect(self, connector, logger_provider):
        gateway = make_gateway(connector, logger_provider, reconnect_delay=0.2)

        async def scenario():
            await gateway.connect()
            connector.transports[0]._shut(1006, "")
            await asyncio.sleep(0.02)
            assert gateway.reconnect_pending
            await gateway.disconnect()
            assert not gateway.reconnect_pending
            await asyncio.sleep(0.3)

        asyncio.run(scenario())

        assert connector.attempts == 1


class TestSend:
    def test_send_requires_connection(self, connector, logger_provider):
        gateway = make_gateway(connector, logger_provider)

        with pytest.raises(GatewayConnectionError) as info:
            asyncio.run(gateway.send({"op": "HEARTBEAT"}))

        assert isinstance(info.value, ConnectionError)

    def test_send_serializes_json(self, connector, logger_provider):
        gateway = make_gateway(connector, logger_provider)

        async def scenario():
            await gateway.connect()
            await gateway.send({"op": "HEARTBEAT", "d": 1})
            await gateway.disconnect()

        asyncio.run(scenario())

        assert connector.transports[0].sent == [{"op": "HEARTBEAT", "d": 1}]

    def test_write_failure_is_connection_error(self, connector, logger_provider):
        gateway = make_gateway(connector, logger_provider)

        async def broken_send(data):
            raise OSError("broken pipe")

        async def scenario():
            await gateway.connect()
            connector.transports[0].send = broken_send
            try:
                with pytest.raises(GatewayConnectionError):
                    await gateway.send({"op": "HEARTBEAT"})
            finally:
                await gateway.disconnect()

        asyncio.run(scenario())


class TestHeartbeat:
    def test_pings_on_interval(self, connector, logger_provider):
        gateway = make_gateway(connector, logger_provider, heartbeat_interval=0.02)

        async def scenario():
            await gateway.connect()
            await asyncio.sleep(0.09)
            assert gateway.is_connected
            await gateway.disconnect()

        asyncio.run(scenario())

        assert connector.transports[0].pings >= 2
        assert gateway.last_pong is not None

    def test_pong_timeout_terminates_and_reconnects_once(self, logger_provider):
        connector = FakeConnector(pong_plan=[False, True])
        gateway = make_gateway(
            connector,
            logger_provider,
            heartbeat_interval=0.05,
            pong_timeout=0.02,
            reconnect_delay=0.1,
        )
        errors = collect(gateway.errors)
        closes = collect(gateway.disconnected)

        async def scenario():
            await gateway.connect()
            await asyncio.sleep(0.12)
            assert connector.transports[0].aborted
            assert connector.attempts == 1
            assert gateway.reconnect_pending
            assert gateway.state is GatewayState.RECONNECTING
            await asyncio.sleep(0.2)
            assert gateway.is_connected
            await gateway.disconnect()

        asyncio.run(scenario())

        assert connector.attempts == 2
        timeouts = [e for e in errors if isinstance(e, GatewayTimeoutError)]
        assert len(timeouts) == 1
        assert str(timeouts[0]) == "Ping timeout"
        assert [c.manual for c in closes] == [False, True]

    def test_heartbeat_ack_frame_clears_pong_timer(self, logger_provider):
        connector = FakeConnector(pong_plan=[False])
        gateway = make_gateway(
            connector, logger_provider, heartbeat_interval=0.1, pong_timeout=0.06
        )
        errors = collect(gateway.errors)

        async def scenario():
            await gateway.connect()
            await asyncio.sleep(0.12)
            connector.transports[0].feed({"op": "HEARTBEAT_ACK"})
            await asyncio.sleep(0.05)
            assert gateway.is_connected
            assert not connector.transports[0].aborted
            await gateway.disconnect()

        asyncio.run(scenario())

        assert errors == []

    def test_hello_replaces_interval(self, connector, logger_provider):
        gateway = make_gateway(connector, logger_provider)

        async def scenario():
            await gateway.connect()
            connector.transports[0].feed({"op": "HELLO", "d": {"heartbeat_interval": 20}})
            await asyncio.sleep(0.09)
            await gateway.disconnect()

        asyncio.run(scenario())

        assert gateway.heartbeat_interval == 0.02
        assert connector.transports[0].pings >= 2


class TestFrames:
    def test_sequence_gap_detected(self, connector, logger_provider):
        gateway = make_gateway(connector, logger_provider)
        gaps = collect(gateway.sequence_gaps)
        dispatched = collect(gateway.dispatch)

        frames = [{"t": "PING_EVENT", "s": seq, "d": {}} for seq in (1, 2, 4)]
        asyncio.run(run_frames(gateway, connector, frames))

        assert gaps == [SequenceGap(expected=3, got=4)]
        assert len(dispatched) == 3
        assert gateway.last_seq == 4

    def test_contiguous_sequence_has_no_gap(self, connector, logger_provider):
        gateway = make_gateway(connector, logger_provider)
        gaps = collect(gateway.sequence_gaps)

        frames = [{"t": "PING_EVENT", "seq": seq, "d": {}} for seq in (1, 2, 3)]
        asyncio.run(run_frames(gateway, connector, frames))

        assert gaps == []

    def test_first_sequence_number_never_gaps(self, connector, logger_provider):
        gateway = make_gateway(connector, logger_provider)
        gaps = collect(gateway.sequence_gaps)

        asyncio.run(run_frames(gateway, connector, [{"offset": 50, "d": {}}]))

        assert gaps == []

    def test_invalid_session_resets_sequence(self, connector, logger_provider):
        gateway = make_gateway(connector, logger_provider)
        gaps = collect(gateway.sequence_gaps)

        frames = [{"s": 1, "d": {}}, {"op": "INVALID_SESSION"}, {"s": 7, "d": {}}]
        asyncio.run(run_frames(gateway, connector, frames))

        assert gaps == []
        assert gateway.last_seq == 7

    def test_unknown_opcode_is_forwarded(self, connector, logger_provider):
        gateway = make_gateway(connector, logger_provider)
        dispatched = collect(gateway.dispatch)
        legacy = collect(gateway.events)

        asyncio.run(run_frames(gateway, connector, [{"op": 99, "d": {"x": 1}}]))

        assert [(t.tag, t.data) for t in dispatched] == [("unknown", {"x": 1})]
        assert legacy[0].tag == "unknown"
        assert legacy[0].data == {"x": 1, "event": "unknown", "type": "unknown"}

    def test_legacy_alias(self, connector, logger_provider):
        gateway = make_gateway(connector, logger_provider)
        messages = collect(gateway.on("message"))

        frame = {"op": "DISPATCH", "t": "THREAD_NEW_MESSAGE", "d": {"data": {"id": "1"}}}
        asyncio.run(run_frames(gateway, connector, [frame]))

        assert messages == [
            {"data": {"id": "1"}, "event": "THREAD_NEW_MESSAGE", "type": "THREAD_NEW_MESSAGE"}
        ]

    def test_non_json_is_forwarded_raw(self, connector, logger_provider):
        gateway = make_gateway(connector, logger_provider)
        raw = collect(gateway.raw)
        dispatched = collect(gateway.dispatch)

        asyncio.run(run_frames(gateway, connector, ["not json", b"\xff\xfe"]))

        assert raw == ["not json", b"\xff\xfe"]
        assert dispatched == []

    def test_heartbeat_ack_event_is_not_forwarded(self, connector, logger_provider):
        gateway = make_gateway(connector, logger_provider)
        dispatched = collect(gateway.dispatch)

        asyncio.run(run_frames(gateway, connector, [{"t": "HEARTBEAT_ACK"}]))

        assert dispatched == []

    def test_subscriber_error_does_not_stop_reader(self, connector, logger_provider):
        gateway = make_gateway(connector, logger_provider)
        errors = collect(gateway.errors)
        before = collect(gateway.dispatch)

        def fragile(tagged):
            if tagged.tag == "FIRST":
                raise ValueError("bad subscriber")

        gateway.dispatch.subscribe(fragile)
        after = collect(gateway.dispatch)
        asyncio.run(run_frames(gateway, connector, [{"t": "FIRST"}, {"t": "SECOND"}]))

        assert [t.tag for t in before] == ["FIRST", "SECOND"]
        assert [t.tag for t in after] == ["FIRST", "SECOND"]
        assert len(errors) == 1
        assert isinstance(errors[0], ValueError)


class TestReconnectPolicy:
    def test_failed_reconnects_are_retried_with_backoff(self, connector, logger_provider):
        gateway = make_gateway(
            connector,
            logger_provider,
            retry_policy=RetryPolicy(base_delay=0.01, jitter=0.0),
        )
        errors = collect(gateway.errors)

        async def scenario():
            await gateway.connect()
            connector.failures = 2
            connector.transports[0]._shut(1006, "")
            await asyncio.sleep(0.2)
            assert gateway.is_connected
            await gateway.disconnect()

        asyncio.run(scenario())

        assert connector.attempts == 4
        assert len(errors) == 2
        assert all(isinstance(e, GatewayConnectionError) for e in errors)
        assert "Reconnect failed" in str(errors[0])

    def test_gives_up_after_max_retries(self, connector, logger_provider):
        gateway = make_gateway(
            connector,
            logger_provider,
            retry_policy=RetryPolicy(max_retries=2, base_delay=0.01, jitter=0.0),
        )

        async def scenario():
            await gateway.connect()
            connector.failures = 10
            connector.transports[0]._shut(1006, "")
            await asyncio.sleep(0.2)

        asyncio.run(scenario())

        assert connector.attempts == 3
        assert gateway.state is GatewayState.DISCONNECTED
        assert not gateway.reconnect_pending


def test_unobserved_errors_go_to_the_log(connector):
    provider = MagicMock()
    gateway = make_gateway(connector, provider)
    otel_logger = provider.get_logger.return_value

    gateway._report_error(GatewayTimeoutError("Ping timeout"))

    record = otel_logger.emit.call_args[0][0]
    assert record.severity_text == "ERROR"
    assert "Ping timeout" in record.body
