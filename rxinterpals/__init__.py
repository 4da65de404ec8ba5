"""Convenience exports for the :mod:`rxinterpals` package."""

__version__ = "0.1.0"

from .auth import SessionCredentials  # noqa: F401
from .builders import MessageBuilder  # noqa: F401
from .cache import IdentityCache  # noqa: F401
from .client import InterpalsClient  # noqa: F401
from .commands import Bot, Command, CommandContext  # noqa: F401
from .config import (  # noqa: F401
    API_BASE_URL,
    GATEWAY_URL,
    ClientConfig,
    GatewayConfig,
    RetryPolicy,
)
from .dispatcher import EventDispatcher  # noqa: F401
from .errors import (  # noqa: F401
    APIError,
    AuthenticationError,
    DispatchError,
    GatewayConnectionError,
    GatewayError,
    GatewayTimeoutError,
    InterpalsError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
    ValidationError,
)
from .events import (  # noqa: F401
    CounterUpdateEvent,
    EventCounters,
    MessageDeleteEvent,
    ProfileViewEvent,
    ThreadNewMessageEvent,
    ThreadTypingEvent,
)
from .gateway import (  # noqa: F401
    DisconnectInfo,
    GatewayConnection,
    GatewayState,
    SequenceGap,
)
from .intents import (  # noqa: F401
    ALL_INTENTS,
    DEFAULT_INTENTS,
    Intent,
    add_intent,
    has_intent,
    intent_names,
    remove_intent,
    resolve_intents,
)
from .managers import ResourceManager  # noqa: F401
from .models import MESSAGE, THREAD, USER, Entity, EntityKind  # noqa: F401
from .rest import HTTPTransport, RestTransport  # noqa: F401
from .utils import TaggedData, tag_filter, untag  # noqa: F401

__all__ = [
    "__version__",
    "InterpalsClient",
    "Bot",
    "Command",
    "CommandContext",
    "MessageBuilder",
    "SessionCredentials",
    "ClientConfig",
    "GatewayConfig",
    "RetryPolicy",
    "API_BASE_URL",
    "GATEWAY_URL",

    # entities and caching
    "Entity",
    "EntityKind",
    "USER",
    "THREAD",
    "MESSAGE",
    "IdentityCache",
    "ResourceManager",

    # REST
    "RestTransport",
    "HTTPTransport",

    # gateway
    "GatewayConnection",
    "GatewayState",
    "DisconnectInfo",
    "SequenceGap",
    "Intent",
    "ALL_INTENTS",
    "DEFAULT_INTENTS",
    "resolve_intents",
    "has_intent",
    "add_intent",
    "remove_intent",
    "intent_names",

    # events
    "EventDispatcher",
    "ThreadNewMessageEvent",
    "ThreadTypingEvent",
    "CounterUpdateEvent",
    "ProfileViewEvent",
    "MessageDeleteEvent",
    "EventCounters",
    "TaggedData",
    "tag_filter",
    "untag",

    # errors
    "InterpalsError",
    "AuthenticationError",
    "ValidationError",
    "APIError",
    "NotFoundError",
    "PermissionDeniedError",
    "RateLimitError",
    "GatewayError",
    "GatewayConnectionError",
    "GatewayTimeoutError",
    "DispatchError",
]
