"""Real-time gateway: frame parsing, transport, and the connection state machine."""

from .connection import (
    ConnectRace,
    DisconnectInfo,
    GatewayConnection,
    GatewayState,
)
from .frames import (
    LEGACY_EVENT_NAMES,
    GatewayFrame,
    Op,
    SequenceGap,
    encode_frame,
    legacy_event_name,
)
from .transport import (
    Connector,
    Transport,
    TransportClosed,
    WebSocketTransport,
    websocket_connector,
)

__all__ = [
    # connection
    "GatewayConnection",
    "GatewayState",
    "DisconnectInfo",
    "ConnectRace",
    # frames
    "GatewayFrame",
    "Op",
    "SequenceGap",
    "LEGACY_EVENT_NAMES",
    "legacy_event_name",
    "encode_frame",
    # transport
    "Transport",
    "TransportClosed",
    "Connector",
    "WebSocketTransport",
    "websocket_connector",
]
