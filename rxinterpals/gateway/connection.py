"""Persistent gateway connection with heartbeat, sequence tracking and reconnect.

:class:`GatewayConnection` owns one transport at a time. It authenticates
through the URL, pings on an interval and terminates the transport when a
pong does not arrive in time. It counts sequence numbers to report gaps and
reconnects after every close that the operator did not ask for.

Everything runs on the caller's asyncio loop. Timers are ``call_later``
handles and the frame reader is a single task, so frames are handled
strictly in arrival order and no state here needs a lock.

Signals are ``reactivex`` subjects:

* ``connection_state``: :class:`GatewayState` transitions (replays the latest)
* ``ready``: emitted once per successful open
* ``disconnected``: :class:`DisconnectInfo` after every close
* ``errors``: gateway errors; logged instead when nobody subscribes
* ``sequence_gaps``: :class:`SequenceGap`
* ``raw``: frames that were not JSON objects, verbatim
* ``dispatch``: ``TaggedData(event_type, data)`` for each dispatch frame
* ``events``: ``TaggedData(legacy_name, data + event/type keys)``
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any
from urllib.parse import urlencode

from opentelemetry.metrics import MeterProvider, NoOpMeterProvider
from opentelemetry.sdk._logs import LoggerProvider
from reactivex import Observable, Subject
from reactivex import operators as ops
from reactivex.subject import BehaviorSubject

from ..auth import SessionCredentials
from ..config import GatewayConfig
from ..errors import (
    AuthenticationError,
    GatewayConnectionError,
    GatewayTimeoutError,
    InterpalsError,
)
from ..intents import resolve_intents
from ..telemetry import MetricsHelper, OTelLogger, get_default_providers
from ..utils import (
    TaggedData,
    deliver,
    get_full_error_info,
    get_short_error_info,
    tag_filter,
    untag,
)
from .frames import GatewayFrame, Op, SequenceGap, encode_frame, legacy_event_name
from .transport import Connector, Transport, TransportClosed, websocket_connector

# How long disconnect() waits for the reader to observe the close.
CLOSE_WAIT_TIMEOUT = 5.0


class GatewayState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


@dataclass(frozen=True)
class DisconnectInfo:
    code: int | None
    reason: str = ""
    manual: bool = False


class ConnectRace:
    """Settle-once guard between a connect attempt, its timeout and
    :meth:`GatewayConnection.disconnect`.

    Whichever side calls first wins; the other sides' calls return False and
    must do nothing.
    """

    def __init__(self):
        self.outcome: str | None = None

    @property
    def settled(self) -> bool:
        return self.outcome is not None

    def open(self) -> bool:
        return self._settle("open")

    def timeout(self) -> bool:
        return self._settle("timeout")

    def cancel(self) -> bool:
        return self._settle("cancelled")

    def _settle(self, outcome: str) -> bool:
        if self.outcome is not None:
            return False
        self.outcome = outcome
        return True


class GatewayConnection:
    """Real-time event connection for one client.

    Parameters
    ----------
    credentials : SessionCredentials
        Read at every connect; the token (or session id) goes into the URL.
    config : GatewayConfig | None
        Timeouts, heartbeat, reconnect policy and intents.
    connector : Connector | None
        ``async (url, headers) -> Transport``. Defaults to a websocket.
    name : str | None
        Log source. Defaults to ``"Gateway"``.
    """

    def __init__(
        self,
        credentials: SessionCredentials,
        config: GatewayConfig | None = None,
        *,
        connector: Connector | None = None,
        name: str | None = None,
        logger_provider: LoggerProvider | None = None,
        meter_provider: MeterProvider | None = None,
    ):
        self.credentials = credentials
        self.config = config or GatewayConfig()
        self.intents = resolve_intents(self.config.intents)
        self._connector: Connector = connector or websocket_connector
        self._name = name or "Gateway"

        if logger_provider is None:
            logger_provider = get_default_providers()
        self._logger = OTelLogger(
            logger_provider.get_logger("rxinterpals.gateway"), source=self._name
        )
        metrics = MetricsHelper(meter_provider or NoOpMeterProvider(), "rxinterpals.gateway")
        self._frames_counter = metrics.counter(
            "interpals.gateway.frames", "Inbound gateway frames"
        )
        self._gaps_counter = metrics.counter(
            "interpals.gateway.sequence_gaps", "Detected sequence gaps"
        )
        self._reconnects_counter = metrics.counter(
            "interpals.gateway.reconnects", "Reconnect attempts"
        )

        # signals
        self._state_subject: BehaviorSubject[GatewayState] = BehaviorSubject(
            GatewayState.DISCONNECTED
        )
        self.ready: Subject[None] = Subject()
        self.disconnected: Subject[DisconnectInfo] = Subject()
        self.errors: Subject[Exception] = Subject()
        self.sequence_gaps: Subject[SequenceGap] = Subject()
        self.raw: Subject[str | bytes] = Subject()
        self.dispatch: Subject[TaggedData[str, dict[str, Any]]] = Subject()
        self.events: Subject[TaggedData[str, dict[str, Any]]] = Subject()

        # heartbeat state
        self.heartbeat_interval = self.config.heartbeat_interval
        self.last_pong: float | None = None
        self._ping_handle: asyncio.TimerHandle | None = None
        self._pong_handle: asyncio.TimerHandle | None = None
        self._pong_tasks: set[asyncio.Task] = set()

        # sequence counter
        self.last_seq = 0

        self._transport: Transport | None = None
        self._pending_open: tuple[ConnectRace, asyncio.Future] | None = None
        self._reader_task: asyncio.Task | None = None
        self._reconnect_handle: asyncio.TimerHandle | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._reconnect_attempt = 0
        self._manual_close = False

    # ------------------------------------------------------------------ #
    # public surface
    # ------------------------------------------------------------------ #
    @property
    def state(self) -> GatewayState:
        return self._state_subject.value

    @property
    def connection_state(self) -> Observable[GatewayState]:
        """State transitions; new subscribers get the current state first."""
        return self._state_subject.pipe(ops.distinct_until_changed())

    @property
    def is_connected(self) -> bool:
        return self._transport is not None and self._transport.is_open

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None or self._reconnect_task is not None

    def on(self, event_name: str) -> Observable[dict[str, Any]]:
        """Legacy-named events, e.g. ``on("message")`` or ``on("typing")``."""
        return self.events.pipe(tag_filter(event_name), untag())

    def build_url(self, token: str) -> str:
        query = urlencode({"token": token, "intents": self.intents})
        separator = "&" if "?" in self.config.url else "?"
        return f"{self.config.url}{separator}{query}"

    async def connect(self) -> None:
        """Open the gateway.

        Raises:
            AuthenticationError: no credential is available.
            GatewayTimeoutError: the transport did not open within
                ``connect_timeout``.
            GatewayConnectionError: the transport failed to open, or
                :meth:`disconnect` was called before it did.

        A failed call leaves the connection disconnected and schedules no
        reconnect.
        """
        self._cancel_reconnect()
        await self._connect(reconnecting=False)

    async def disconnect(self) -> None:
        """Close the gateway on the operator's request. No reconnect follows."""
        self._manual_close = True
        self._clear_timers()
        self._cancel_reconnect()
        self._cancel_open()

        transport = self._transport
        if transport is None:
            self._set_state(GatewayState.DISCONNECTED)
            return

        self._logger.info("Disconnecting")
        reader = self._reader_task
        try:
            await transport.close()
        except Exception as e:
            self._logger.warning(f"Error while closing transport: {get_short_error_info(e)}")
            transport.abort()

        if reader is not None and not reader.done():
            done, _ = await asyncio.wait({reader}, timeout=CLOSE_WAIT_TIMEOUT)
            if not done:
                reader.cancel()
                await asyncio.gather(reader, return_exceptions=True)
        # no-op if the reader already handled the close
        self._handle_close(transport, 1000, "disconnect")

    async def send(self, payload: dict[str, Any]) -> None:
        """Serialize ``payload`` as JSON and write it.

        Raises:
            GatewayConnectionError: not connected, or the write failed.
        """
        transport = self._transport
        if transport is None or not transport.is_open:
            raise GatewayConnectionError("Gateway not connected")
        try:
            await transport.send(encode_frame(payload))
        except Exception as e:
            raise GatewayConnectionError(
                f"Failed to send frame: {get_short_error_info(e)}"
            ) from e

    # ------------------------------------------------------------------ #
    # connect / close
    # ------------------------------------------------------------------ #
    async def _connect(self, reconnecting: bool) -> None:
        token = self.credentials.gateway_token
        if not token:
            raise AuthenticationError("No authentication token available")
        if self.is_connected:
            self._logger.debug("connect() called while already connected")
            return

        self._manual_close = False
        self._set_state(
            GatewayState.RECONNECTING if reconnecting else GatewayState.CONNECTING
        )
        self._logger.info(
            "Reconnecting" if reconnecting else "Connecting",
            url=self.config.url,
            intents=self.intents,
        )
        try:
            transport = await self._open(self.build_url(token))
        except BaseException:
            if not reconnecting:
                self._set_state(GatewayState.DISCONNECTED)
            raise
        self._attach(transport)

    async def _open(self, url: str) -> Transport:
        loop = asyncio.get_running_loop()
        race = ConnectRace()
        attempt = asyncio.ensure_future(self._connector(url, self.credentials.headers()))

        def on_timeout() -> None:
            if race.timeout():
                attempt.cancel()

        timer = loop.call_later(self.config.connect_timeout, on_timeout)
        self._pending_open = (race, attempt)
        try:
            transport = await attempt
        except asyncio.CancelledError:
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                raise
            raise self._unsettled_error(race) from None
        except InterpalsError:
            raise
        except Exception as e:
            raise GatewayConnectionError(
                f"Failed to open gateway: {get_short_error_info(e)}"
            ) from e
        finally:
            timer.cancel()
            if self._pending_open is not None and self._pending_open[0] is race:
                self._pending_open = None

        if not race.open():
            # Timed out or disconnected meanwhile; the late transport must not survive.
            transport.abort()
            raise self._unsettled_error(race)
        return transport

    @staticmethod
    def _unsettled_error(race: ConnectRace) -> InterpalsError:
        if race.outcome == "timeout":
            return GatewayTimeoutError("Connection timeout")
        return GatewayConnectionError("Connect cancelled by disconnect()")

    def _cancel_open(self) -> None:
        pending = self._pending_open
        self._pending_open = None
        if pending is not None:
            race, attempt = pending
            if race.cancel():
                attempt.cancel()

    def _attach(self, transport: Transport) -> None:
        self._transport = transport
        self._reconnect_attempt = 0
        self.last_seq = 0
        self.last_pong = None
        self._reader_task = asyncio.create_task(self._read_loop(transport))
        self._start_heartbeat()
        self._set_state(GatewayState.CONNECTED)
        self._logger.info("Connected")
        self._publish(self.ready, None)

    async def _read_loop(self, transport: Transport) -> None:
        code: int | None = None
        reason = ""
        try:
            while True:
                data = await transport.recv()
                try:
                    self._handle_message(data)
                except Exception as e:
                    self._report_error(e)
        except TransportClosed as e:
            code, reason = e.code, e.reason
        except Exception as e:
            self._logger.warning(f"Gateway read failed:\n{get_full_error_info(e)}")
            self._report_error(
                GatewayConnectionError(f"Gateway read failed: {get_short_error_info(e)}")
            )
            code, reason = 1006, get_short_error_info(e)
            transport.abort()
        self._handle_close(transport, code, reason)

    def _handle_close(self, transport: Transport, code: int | None, reason: str) -> None:
        if transport is not self._transport:
            return
        self._clear_timers()
        self._transport = None
        self._reader_task = None
        self._set_state(GatewayState.DISCONNECTED)
        self._logger.info(
            "Disconnected", code=code, reason=reason, manual=self._manual_close
        )
        self._publish(
            self.disconnected,
            DisconnectInfo(code=code, reason=reason, manual=self._manual_close),
        )
        if not self._manual_close:
            self._schedule_reconnect(self.config.reconnect_delay)

    # ------------------------------------------------------------------ #
    # reconnect
    # ------------------------------------------------------------------ #
    def _schedule_reconnect(self, delay: float) -> None:
        if self.reconnect_pending or self._manual_close:
            return
        self._set_state(GatewayState.RECONNECTING)
        self._logger.info(
            f"Reconnect in {delay:.2f}s", attempt=self._reconnect_attempt + 1
        )
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(delay, self._start_reconnect)

    def _start_reconnect(self) -> None:
        self._reconnect_handle = None
        self._reconnect_task = asyncio.get_running_loop().create_task(self._reconnect())

    async def _reconnect(self) -> None:
        self._reconnects_counter.add(1)
        try:
            await self._connect(reconnecting=True)
        except Exception as e:
            self._reconnect_task = None
            self._reconnect_attempt += 1
            self._report_error(
                GatewayConnectionError(f"Reconnect failed: {get_short_error_info(e)}")
            )
            policy = self.config.retry_policy
            if policy.exhausted(self._reconnect_attempt):
                self._logger.error(
                    f"Max retries ({policy.max_retries}) exhausted, giving up"
                )
                self._set_state(GatewayState.DISCONNECTED)
                return
            self._schedule_reconnect(policy.get_delay(self._reconnect_attempt - 1))
        else:
            self._reconnect_task = None

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None
        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    # ------------------------------------------------------------------ #
    # heartbeat
    # ------------------------------------------------------------------ #
    def _start_heartbeat(self) -> None:
        self._clear_timers()
        loop = asyncio.get_running_loop()
        self._ping_handle = loop.call_later(self.heartbeat_interval, self._heartbeat_tick)

    def _heartbeat_tick(self) -> None:
        loop = asyncio.get_running_loop()
        self._ping_handle = loop.call_later(self.heartbeat_interval, self._heartbeat_tick)
        self._send_ping()

    def _send_ping(self) -> None:
        transport = self._transport
        if transport is None or not transport.is_open:
            return
        self._arm_pong_timer(transport)
        task = asyncio.get_running_loop().create_task(self._await_pong(transport))
        self._pong_tasks.add(task)
        task.add_done_callback(self._pong_tasks.discard)

    async def _await_pong(self, transport: Transport) -> None:
        try:
            await transport.ping()
        except Exception as e:
            # the pong timer terminates the transport
            self._logger.debug(f"Ping failed: {get_short_error_info(e)}")
            return
        if transport is self._transport:
            self._pong_received()

    def _arm_pong_timer(self, transport: Transport) -> None:
        if self._pong_handle is not None:
            self._pong_handle.cancel()
        loop = asyncio.get_running_loop()
        self._pong_handle = loop.call_later(
            self.config.pong_timeout, self._on_pong_timeout, transport
        )

    def _pong_received(self) -> None:
        if self._pong_handle is not None:
            self._pong_handle.cancel()
            self._pong_handle = None
        self.last_pong = asyncio.get_running_loop().time()
        self._logger.debug("Pong")

    def _on_pong_timeout(self, transport: Transport) -> None:
        self._pong_handle = None
        if transport is not self._transport:
            return
        self._logger.warning(
            f"No pong within {self.config.pong_timeout}s, terminating connection"
        )
        self._report_error(GatewayTimeoutError("Ping timeout"))
        transport.abort()

    def _clear_timers(self) -> None:
        if self._ping_handle is not None:
            self._ping_handle.cancel()
            self._ping_handle = None
        if self._pong_handle is not None:
            self._pong_handle.cancel()
            self._pong_handle = None
        for task in list(self._pong_tasks):
            task.cancel()

    # ------------------------------------------------------------------ #
    # inbound frames
    # ------------------------------------------------------------------ #
    def _handle_message(self, data: str | bytes) -> None:
        try:
            frame = GatewayFrame.parse(data)
        except ValueError:
            self._frames_counter.add(1, {"op": "raw"})
            self._publish(self.raw, data)
            return

        self._frames_counter.add(1, {"op": str(frame.op)})
        self._track_sequence(frame.seq)

        if frame.is_dispatch:
            self._dispatch(frame.event_type, frame.data)
        elif frame.op == Op.HELLO:
            interval = frame.heartbeat_interval()
            if interval is not None:
                self._logger.debug(f"HELLO: heartbeat interval {interval}s")
                self.heartbeat_interval = interval
                if self._transport is not None:
                    self._start_heartbeat()
        elif frame.op == Op.HEARTBEAT_ACK:
            self._pong_received()
        elif frame.op == Op.INVALID_SESSION:
            self._logger.warning("Invalid session, sequence counter reset")
            self.last_seq = 0

    def _track_sequence(self, seq: int | None) -> None:
        if seq is None:
            return
        if self.last_seq and seq != self.last_seq + 1:
            gap = SequenceGap(expected=self.last_seq + 1, got=seq)
            self._logger.warning(
                f"Sequence gap: expected {gap.expected}, got {gap.got}"
            )
            self._gaps_counter.add(1)
            self._publish(self.sequence_gaps, gap)
        self.last_seq = seq

    def _dispatch(self, event_type: str, data: dict[str, Any]) -> None:
        if event_type == Op.HEARTBEAT_ACK:
            self._pong_received()
            return
        self._publish(self.dispatch, TaggedData(event_type, data))
        legacy = {**data, "event": event_type, "type": event_type}
        self._publish(self.events, TaggedData(legacy_event_name(event_type), legacy))

    # ------------------------------------------------------------------ #
    # helpers
    # ------------------------------------------------------------------ #
    def _set_state(self, state: GatewayState) -> None:
        if self._state_subject.value is not state:
            self._logger.debug(f"Connection state: {state.value}")
        self._state_subject.on_next(state)

    def _publish(self, subject: Subject, value: Any) -> None:
        deliver(subject, value, self._report_error)

    def _report_error(self, error: Exception) -> None:
        if self.errors.observers:
            deliver(
                self.errors,
                error,
                lambda e: self._logger.error(
                    f"Error subscriber failed: {get_short_error_info(e)}"
                ),
            )
        else:
            self._logger.error(f"Gateway error: {get_short_error_info(error)}")
