"""Gateway frame parsing.

Inbound frames are JSON objects shaped like::

    {"op": "DISPATCH", "t": "THREAD_NEW_MESSAGE", "s": 42, "d": {...}}

Every field is optional. The event name is read from ``t``, then ``type``,
then ``event``, then a string ``op``, and falls back to ``"unknown"``. The
sequence number is read from ``s``, then ``seq``, then ``offset``.
"""

import json
import math
from dataclasses import dataclass, field
from typing import Any


class Op:
    """Gateway operation codes."""

    HEARTBEAT = "HEARTBEAT"
    HEARTBEAT_ACK = "HEARTBEAT_ACK"
    HELLO = "HELLO"
    DISPATCH = "DISPATCH"
    INVALID_SESSION = "INVALID_SESSION"


# Dispatch event types with a dedicated legacy signal name; anything else is
# forwarded under its lowercased type.
LEGACY_EVENT_NAMES = {
    "THREAD_NEW_MESSAGE": "message",
    "THREAD_TYPING": "typing",
    "COUNTER_UPDATE": "notification",
    "PROFILE_VIEW": "profile_view",
}

_EVENT_KEYS = ("t", "type", "event")
_SEQUENCE_KEYS = ("s", "seq", "offset")


def legacy_event_name(event_type: str) -> str:
    return LEGACY_EVENT_NAMES.get(event_type, event_type.lower())


@dataclass(frozen=True)
class SequenceGap:
    """A discontinuity in the per-connection frame counter."""

    expected: int
    got: int

    @property
    def missed(self) -> int:
        return self.got - self.expected


@dataclass
class GatewayFrame:
    """One decoded inbound frame."""

    op: str | int
    event_type: str
    data: dict[str, Any]
    seq: int | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def parse(cls, text: str | bytes) -> "GatewayFrame":
        """Decode a JSON frame.

        Raises:
            ValueError: the text is not JSON or not a JSON object.
        """
        payload = json.loads(text)
        if not isinstance(payload, dict):
            raise ValueError(f"Gateway frame must be an object, got {type(payload).__name__}")
        return cls.from_payload(payload)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "GatewayFrame":
        op = payload.get("op")
        if op is None:
            op = Op.DISPATCH

        event_type = next(
            (payload[key] for key in _EVENT_KEYS if payload.get(key) is not None),
            op if isinstance(op, str) else None,
        )
        if not event_type:
            event_type = "unknown"

        seq = next(
            (payload[key] for key in _SEQUENCE_KEYS if payload.get(key) is not None),
            None,
        )
        if isinstance(seq, bool) or not isinstance(seq, int):
            seq = None

        data = payload.get("d")
        if not isinstance(data, dict):
            data = payload

        return cls(op=op, event_type=str(event_type), data=data, seq=seq, raw=payload)

    @property
    def is_dispatch(self) -> bool:
        """True for DISPATCH, ``0`` and every opcode this client does not know."""
        return self.op not in (Op.HELLO, Op.HEARTBEAT_ACK, Op.INVALID_SESSION)

    def heartbeat_interval(self) -> float | None:
        """The HELLO interval in seconds, or None if absent or invalid."""
        value = self.data.get("heartbeat_interval")
        if isinstance(value, bool) or not isinstance(value, int | float):
            return None
        if not math.isfinite(value) or value <= 0:
            return None
        return value / 1000.0


def encode_frame(payload: dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"), default=str)
