"""Turns gateway dispatches into domain events.

Each client owns one :class:`EventDispatcher`. It listens to a
:class:`~rxinterpals.gateway.GatewayConnection`, materializes the entities a
dispatch refers to through the resource managers, and emits the finished
event under a domain name:

==================== ======================= ==================
gateway event type   domain event            legacy alias
==================== ======================= ==================
THREAD_NEW_MESSAGE   ``message_create``      ``message``
THREAD_TYPING        ``typing_start``        ``typing``
COUNTER_UPDATE       ``notification_update`` ``notification``
PROFILE_VIEW         ``profile_view``
anything else        lowercased type
==================== ======================= ==================

Lifecycle signals are forwarded as ``ready``, ``disconnect``, ``error``,
``sequence_gap`` and ``raw``.
"""

from collections.abc import Callable
from typing import Any

from opentelemetry.sdk._logs import LoggerProvider
from reactivex import Observable, Subject
from reactivex.abc import DisposableBase

from .errors import DispatchError
from .events import (
    CounterUpdateEvent,
    EventCounters,
    ProfileViewEvent,
    ThreadNewMessageEvent,
    ThreadTypingEvent,
    event_time,
    typing_flag,
    typing_user_id,
)
from .gateway import GatewayConnection
from .managers import ResourceManager
from .telemetry import OTelLogger, get_default_providers
from .utils import TaggedData, deliver, get_short_error_info, normalize_id

EVENT_NAMES: dict[str, tuple[str, ...]] = {
    "THREAD_NEW_MESSAGE": ("message_create", "message"),
    "THREAD_TYPING": ("typing_start", "typing"),
    "COUNTER_UPDATE": ("notification_update", "notification"),
    "PROFILE_VIEW": ("profile_view",),
}


class EventDispatcher:
    """Per-client subscriber registry and dispatch materializer.

    ``on(name)`` returns an observable of the payloads emitted under
    ``name``; ``stream`` carries every emission as ``TaggedData``.
    """

    def __init__(
        self,
        users: ResourceManager,
        messages: ResourceManager,
        logger_provider: LoggerProvider | None = None,
    ):
        self.users = users
        self.messages = messages
        if logger_provider is None:
            logger_provider = get_default_providers()
        self._logger = OTelLogger(
            logger_provider.get_logger("rxinterpals.dispatcher"), source="EventDispatcher"
        )

        self._subjects: dict[str, Subject[Any]] = {}
        self.stream: Subject[TaggedData[str, Any]] = Subject()
        self._subscriptions: list[DisposableBase] = []
        self._handlers: dict[str, Callable[[dict[str, Any]], Any]] = {
            "THREAD_NEW_MESSAGE": self._materialize_new_message,
            "THREAD_TYPING": self._materialize_typing,
            "COUNTER_UPDATE": self._materialize_counters,
            "PROFILE_VIEW": self._materialize_profile_view,
        }

    # ------------------------------------------------------------------ #
    # registry
    # ------------------------------------------------------------------ #
    def _subject(self, name: str) -> Subject[Any]:
        subject = self._subjects.get(name)
        if subject is None:
            subject = self._subjects[name] = Subject()
        return subject

    def on(self, name: str) -> Observable[Any]:
        return self._subject(name)

    def has_listeners(self, name: str) -> bool:
        subject = self._subjects.get(name)
        return subject is not None and bool(subject.observers)

    def emit(self, name: str, payload: Any = None, event_type: str | None = None) -> None:
        """Deliver ``payload`` to the listeners of ``name`` and to ``stream``.

        A listener that raises is reported as a :class:`DispatchError` and
        the remaining listeners still receive the payload.
        """

        def on_error(e: Exception) -> None:
            if name == "error":
                self._logger.error(f"Error listener failed: {get_short_error_info(e)}")
            else:
                self.report_error(
                    DispatchError(e, event_type or name, note=f"subscriber of {name}")
                )

        deliver(self.stream, TaggedData(name, payload), on_error)
        subject = self._subjects.get(name)
        if subject is not None:
            deliver(subject, payload, on_error)

    def report_error(self, error: Exception) -> None:
        """Emit ``error``, or log it when nobody listens."""
        if self.has_listeners("error"):
            self.emit("error", error)
        else:
            self._logger.error(f"Unhandled error: {get_short_error_info(error)}")

    # ------------------------------------------------------------------ #
    # gateway wiring
    # ------------------------------------------------------------------ #
    def attach(self, gateway: GatewayConnection) -> None:
        """Subscribe to ``gateway``. Call :meth:`detach` to undo."""
        self.detach()
        self._subscriptions = [
            gateway.ready.subscribe(lambda _: self.emit("ready")),
            gateway.disconnected.subscribe(lambda info: self.emit("disconnect", info)),
            gateway.errors.subscribe(self.report_error),
            gateway.sequence_gaps.subscribe(lambda gap: self.emit("sequence_gap", gap)),
            gateway.raw.subscribe(lambda data: self.emit("raw", data)),
            gateway.dispatch.subscribe(
                lambda tagged: self.handle_dispatch(tagged.tag, tagged.data)
            ),
        ]

    def detach(self) -> None:
        for subscription in self._subscriptions:
            subscription.dispose()
        self._subscriptions = []

    def handle_dispatch(self, event_type: str, data: dict[str, Any]) -> None:
        """Materialize and emit one dispatch. Never raises.

        A failure to build the event, or an exception from a subscriber,
        becomes a :class:`DispatchError` on ``error``.
        """
        handler = self._handlers.get(event_type)
        try:
            payload = handler(data) if handler is not None else data
        except Exception as e:
            self.report_error(DispatchError(e, event_type, note="materialize"))
            return

        for name in EVENT_NAMES.get(event_type, (event_type.lower(),)):
            self.emit(name, payload, event_type)

    # ------------------------------------------------------------------ #
    # materializers
    # ------------------------------------------------------------------ #
    def _user(self, payload: Any, user_id: Any = None):
        if isinstance(payload, dict) and normalize_id(payload.get("id")) is not None:
            return self.users.create_or_update(payload)
        return self.users.resolve(user_id)

    def _materialize_new_message(self, data: dict[str, Any]) -> ThreadNewMessageEvent:
        body = data.get("data")
        message = self.messages.create_or_update(body if isinstance(body, dict) else data)
        return ThreadNewMessageEvent(
            message=message,
            sender=self._user(data.get("sender"), message.sender_id),
            counters=EventCounters.from_payload(data.get("counters")),
            click_url=data.get("click_url"),
            type=data.get("type") or "THREAD_NEW_MESSAGE",
            raw=data,
        )

    def _materialize_typing(self, data: dict[str, Any]) -> ThreadTypingEvent:
        user_id = typing_user_id(data)
        return ThreadTypingEvent(
            thread_id=normalize_id(data.get("thread_id")),
            is_typing=typing_flag(data),
            user_id=user_id,
            user=self._user(data.get("user"), user_id),
            type=data.get("type") or "THREAD_TYPING",
            raw=data,
        )

    def _materialize_counters(self, data: dict[str, Any]) -> CounterUpdateEvent:
        counters = data.get("counters") or data.get("data") or data
        return CounterUpdateEvent(
            counters=EventCounters.from_payload(counters),
            type=data.get("type") or "COUNTER_UPDATE",
            raw=data,
        )

    def _materialize_profile_view(self, data: dict[str, Any]) -> ProfileViewEvent:
        viewer = data.get("sender") or data.get("viewer")
        return ProfileViewEvent(
            viewer=self._user(viewer),
            counters=EventCounters.from_payload(data.get("counters")),
            click_url=data.get("click_url"),
            created_at=event_time(data),
            type=data.get("type") or "PROFILE_VIEW",
            raw=data,
        )
