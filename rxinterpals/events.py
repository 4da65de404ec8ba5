"""Domain events re-emitted by the dispatcher.

User and message objects inside these events are the cached entities, so a
consumer holding one keeps seeing later merges.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .models import Entity
from .utils import normalize_id, parse_timestamp


def _count(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


@dataclass
class EventCounters:
    new_friend_requests: int = 0
    new_messages: int = 0
    new_notifications: int = 0
    new_views: int = 0
    total_threads: int = 0
    unread_threads: int = 0

    @classmethod
    def from_payload(cls, data: dict[str, Any] | None) -> "EventCounters":
        data = data or {}
        return cls(
            new_friend_requests=_count(data.get("new_friend_requests")),
            new_messages=_count(data.get("new_messages")),
            new_notifications=_count(data.get("new_notifications")),
            new_views=_count(data.get("new_views")),
            total_threads=_count(data.get("total_threads")),
            unread_threads=_count(data.get("unread_threads")),
        )


@dataclass
class ThreadNewMessageEvent:
    message: Entity
    sender: Entity | None = None
    counters: EventCounters = field(default_factory=EventCounters)
    click_url: str | None = None
    type: str = "THREAD_NEW_MESSAGE"
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def message_id(self) -> str | None:
        return self.message.id

    @property
    def thread_id(self) -> str | None:
        return self.message.thread_id

    @property
    def content(self) -> str | None:
        return self.message.content


@dataclass
class MessageDeleteEvent:
    id: str
    thread_id: str | None = None
    type: str = "MESSAGE_DELETE"


@dataclass
class ThreadTypingEvent:
    thread_id: str | None
    is_typing: bool
    user_id: str | None = None
    user: Entity | None = None
    type: str = "THREAD_TYPING"
    raw: dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass
class CounterUpdateEvent:
    counters: EventCounters
    type: str = "COUNTER_UPDATE"
    raw: dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass
class ProfileViewEvent:
    viewer: Entity | None
    counters: EventCounters = field(default_factory=EventCounters)
    click_url: str | None = None
    created_at: datetime | None = None
    type: str = "PROFILE_VIEW"
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def viewer_id(self) -> str | None:
        return self.viewer.id if self.viewer is not None else None


def typing_flag(data: dict[str, Any]) -> bool:
    value = data.get("is_typing", data.get("typing", False))
    return bool(value)


def typing_user_id(data: dict[str, Any]) -> str | None:
    user = data.get("user")
    if isinstance(user, dict) and user.get("id") is not None:
        return normalize_id(user.get("id"))
    return normalize_id(data.get("user_id"))


def event_time(data: dict[str, Any]) -> datetime | None:
    return parse_timestamp(data.get("created"))
