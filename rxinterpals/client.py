"""The :class:`InterpalsClient` façade.

Wires one REST transport, three resource managers, one gateway connection
and one event dispatcher together. Everything a bot needs goes through here::

    client = InterpalsClient(SessionCredentials(auth_token="..."))
    client.on("message_create").subscribe(lambda event: print(event.content))
    await client.connect()
"""

from typing import Any

from opentelemetry.metrics import MeterProvider
from opentelemetry.sdk._logs import LoggerProvider
from reactivex import Observable

from .auth import SessionCredentials
from .builders import MessageBuilder
from .cache import IdentityCache
from .config import ClientConfig
from .dispatcher import EventDispatcher
from .errors import AuthenticationError, ValidationError
from .events import MessageDeleteEvent, ThreadNewMessageEvent
from .gateway import Connector, GatewayConnection, GatewayState
from .managers import ResourceManager
from .models import MESSAGE, THREAD, USER, Entity
from .rest import HTTPTransport, RestTransport
from .telemetry import OTelLogger, get_default_providers
from .utils import normalize_id

SELF_ROUTE = "/v1/account/self"


def _require_id(value: str | int | Entity | None, what: str) -> str:
    key = normalize_id(value.id if isinstance(value, Entity) else value)
    if key is None:
        raise ValidationError(f"A {what} id is required")
    return key


class InterpalsClient:
    """Client for the Interpals REST API and real-time gateway.

    Parameters
    ----------
    credentials : SessionCredentials
        Token and/or session id obtained elsewhere.
    config : ClientConfig | None
        REST, cache and gateway settings.
    transport : RestTransport | None
        Replaces the default :class:`~rxinterpals.rest.HTTPTransport`.
    connector : Connector | None
        Replaces the default websocket connector of the gateway.
    """

    def __init__(
        self,
        credentials: SessionCredentials,
        config: ClientConfig | None = None,
        *,
        transport: RestTransport | None = None,
        connector: Connector | None = None,
        logger_provider: LoggerProvider | None = None,
        meter_provider: MeterProvider | None = None,
    ):
        self.credentials = credentials
        self.config = config or ClientConfig()
        if logger_provider is None:
            logger_provider = get_default_providers()
        self._logger = OTelLogger(
            logger_provider.get_logger("rxinterpals.client"), source="InterpalsClient"
        )

        self.rest: RestTransport = transport or HTTPTransport(
            credentials,
            self.config.base_url,
            timeout=self.config.request_timeout,
            user_agent=self.config.user_agent,
            logger_provider=logger_provider,
        )

        self.users = ResourceManager(
            USER,
            self.rest,
            IdentityCache(USER.name, logger_provider=logger_provider),
            logger_provider=logger_provider,
        )
        self.threads = ResourceManager(
            THREAD,
            self.rest,
            IdentityCache(THREAD.name, logger_provider=logger_provider),
            logger_provider=logger_provider,
        )
        self.messages = ResourceManager(
            MESSAGE,
            self.rest,
            IdentityCache(
                MESSAGE.name,
                maxsize=self.config.max_messages,
                logger_provider=logger_provider,
            ),
            logger_provider=logger_provider,
        )

        self.gateway = GatewayConnection(
            credentials,
            self.config.gateway,
            connector=connector,
            logger_provider=logger_provider,
            meter_provider=meter_provider,
        )
        self.dispatcher = EventDispatcher(
            self.users, self.messages, logger_provider=logger_provider
        )
        self.dispatcher.attach(self.gateway)

        self.user: Entity | None = None

    def __repr__(self) -> str:
        return f"<InterpalsClient state={self.gateway.state.value}>"

    async def __aenter__(self) -> "InterpalsClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ------------------------------------------------------------------ #
    # events and gateway lifecycle
    # ------------------------------------------------------------------ #
    def on(self, event_name: str) -> Observable[Any]:
        """Observable of one event, e.g. ``"message_create"`` or ``"error"``."""
        return self.dispatcher.on(event_name)

    @property
    def events(self) -> Observable[Any]:
        """Every dispatcher emission as ``TaggedData(name, payload)``."""
        return self.dispatcher.stream

    @property
    def connection_state(self) -> Observable[GatewayState]:
        return self.gateway.connection_state

    @property
    def is_connected(self) -> bool:
        return self.gateway.is_connected

    async def connect(self) -> None:
        if not self.credentials.is_authenticated:
            raise AuthenticationError("Not authenticated")
        await self.gateway.connect()

    async def disconnect(self) -> None:
        await self.gateway.disconnect()

    async def send(self, payload: dict[str, Any]) -> None:
        await self.gateway.send(payload)

    async def aclose(self) -> None:
        """Disconnect the gateway and release the HTTP client."""
        await self.gateway.disconnect()
        self.dispatcher.detach()
        aclose = getattr(self.rest, "aclose", None)
        if aclose is not None:
            await aclose()
        self._logger.info("Closed")

    # ------------------------------------------------------------------ #
    # caches
    # ------------------------------------------------------------------ #
    def clear_caches(self) -> None:
        self.users.clear()
        self.threads.clear()
        self.messages.clear()
        self.user = None

    @property
    def stats(self) -> dict[str, dict[str, int]]:
        return {
            "users": self.users.cache.stats,
            "threads": self.threads.cache.stats,
            "messages": self.messages.cache.stats,
        }

    # ------------------------------------------------------------------ #
    # users
    # ------------------------------------------------------------------ #
    async def fetch_user(self, user: str | int | Entity, *, force: bool = False) -> Entity:
        return await self.users.fetch(user, force=force)

    async def fetch_self(self) -> Entity:
        user = await self.users.fetch_from(SELF_ROUTE)
        user.is_self = True
        self.user = user
        return user

    async def update_self(self, **fields: Any) -> Entity:
        data = await self.rest.put(SELF_ROUTE, fields)
        if isinstance(data, dict):
            user = self.users.create_or_update(data)
        elif self.user is not None:
            user = self.user.patch(fields)
        else:
            user = self.users.create_or_update(fields)
        user.is_self = True
        self.user = user
        return user

    async def search_users(
        self, *, limit: int | None = None, offset: int | None = None, **params: Any
    ) -> list[Entity]:
        return await self.users.list(limit=limit, offset=offset, **params)

    # ------------------------------------------------------------------ #
    # threads and messages
    # ------------------------------------------------------------------ #
    async def fetch_thread(self, thread: str | int | Entity, *, force: bool = False) -> Entity:
        return await self.threads.fetch(thread, force=force)

    async def fetch_threads(self, limit: int = 50, offset: int = 0) -> list[Entity]:
        return await self.threads.list(limit=limit, offset=offset)

    async def fetch_user_thread(
        self, user: str | int | Entity, include_relation: bool = False
    ) -> Entity:
        user_id = _require_id(user, "user")
        return await self.threads.fetch_from(
            f"/v1/thread/user/{user_id}", {"include_relation": include_relation}
        )

    async def fetch_thread_messages(
        self,
        thread: str | int | Entity,
        *,
        limit: int | None = None,
        offset: int | None = None,
        **params: Any,
    ) -> list[Entity]:
        thread_id = _require_id(thread, "thread")
        return await self.messages.list(
            limit=limit,
            offset=offset,
            route_params={"thread_id": thread_id},
            **params,
        )

    async def send_message(
        self,
        thread: str | int | Entity | None,
        content: str | MessageBuilder | dict[str, Any],
        **extra: Any,
    ) -> Entity:
        """POST a message and emit it as ``message_create``.

        ``content`` is plain text, a :class:`MessageBuilder` or a prepared
        payload. ``thread`` fills ``thread_id`` when the payload carries none.
        """
        if isinstance(content, MessageBuilder):
            payload = content.build()
        elif isinstance(content, dict):
            payload = dict(content)
        else:
            payload = {"message": content}
        payload.update(extra)
        if normalize_id(payload.get("thread_id")) is None:
            payload["thread_id"] = _require_id(thread, "thread")

        message = await self.messages.create(payload)
        self.dispatcher.emit(
            "message_create",
            ThreadNewMessageEvent(
                message=message,
                sender=self.users.resolve(message.sender_id) or self.user,
                type="MESSAGE_SENT",
                raw=payload,
            ),
        )
        return message

    async def send_gif(
        self, thread: str | int | Entity, gif_url: str, tmp_id: str = "tmp"
    ) -> Entity:
        return await self.send_message(
            thread,
            "",
            attachment_type="gif",
            gif_attachment_url=gif_url,
            tmp_id=tmp_id,
        )

    async def send_correction(
        self,
        thread: str | int | Entity,
        message: str,
        attachment_id: str,
        tmp_id: str | None = None,
    ) -> Entity:
        extra: dict[str, Any] = {
            "attachment_type": "correction",
            "attachment_id": attachment_id,
        }
        if tmp_id:
            extra["tmp_id"] = tmp_id
        return await self.send_message(thread, message, **extra)

    async def delete_message(
        self, message: str | int | Entity, thread: str | int | Entity | None = None
    ) -> None:
        if thread is None and isinstance(message, Entity):
            thread = message.thread_id
        thread_id = normalize_id(thread.id if isinstance(thread, Entity) else thread)
        message_id = _require_id(message, "message")
        await self.messages.delete(message_id, thread_id=thread_id)
        self.dispatcher.emit("message_delete", MessageDeleteEvent(message_id, thread_id))

    async def mark_as_read(
        self, thread: str | int | Entity, message: str | int | Entity
    ) -> None:
        thread_id = _require_id(thread, "thread")
        await self.rest.put(
            f"/v1/thread/{thread_id}/viewed",
            {"message_id": _require_id(message, "message")},
        )
        cached = self.threads.cache.peek(thread_id)
        if cached is not None:
            cached.patch({"unread": False})

    async def set_typing(self, thread: str | int | Entity, typing: bool = True) -> None:
        await self.rest.post(
            "/v1/thread/typing",
            {"thread_id": _require_id(thread, "thread"), "typing": typing},
        )

    # ------------------------------------------------------------------ #
    # notifications
    # ------------------------------------------------------------------ #
    async def fetch_notifications(self, limit: int = 20, offset: int = 0) -> Any:
        return await self.rest.get("/v1/notification", {"limit": limit, "offset": offset})

    async def mark_notification_read(self, notification_id: str | int) -> Any:
        key = _require_id(notification_id, "notification")
        return await self.rest.put(f"/v1/notification/{key}/read")

    async def mark_all_notifications_read(self) -> Any:
        return await self.rest.put("/v1/notification/read/all")

    async def delete_notification(self, notification_id: str | int) -> Any:
        key = _require_id(notification_id, "notification")
        return await self.rest.delete(f"/v1/notification/{key}")
