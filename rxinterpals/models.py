"""Entity model shared by every resource kind.

There is one :class:`Entity` class. What makes an entity a user, a thread or
a message is its :class:`EntityKind`: the table of fields to read from raw
payloads plus the REST routes of that kind. Merging is always a
field-by-field patch; fields missing from a payload keep their value.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from .utils import normalize_id, parse_timestamp


def _identity(value: Any) -> Any:
    return value


def _int_or_none(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def _id_list(value: Any) -> list[str] | None:
    if value is None:
        return None
    return [i for i in (normalize_id(v) for v in value) if i is not None]


@dataclass(frozen=True)
class Field:
    """Maps raw payload keys onto one entity attribute.

    When several ``keys`` are given, the attribute is patched as soon as any
    of them is present, taking the first non-null value in key order.
    """

    attr: str
    keys: tuple[str, ...]
    convert: Callable[[Any], Any] = _identity

    def extract(self, data: dict[str, Any]) -> tuple[bool, Any]:
        present = [key for key in self.keys if key in data]
        if not present:
            return False, None
        for key in self.keys:
            value = data.get(key)
            if value is not None:
                return True, self.convert(value)
        return True, None


@dataclass(frozen=True, eq=False)
class EntityKind:
    """Kind tag: field table plus REST routes.

    Route templates use ``str.format`` placeholders, ``{id}`` for the
    entity id. A route left as None means the API has no such endpoint for
    this kind.
    """

    name: str
    fields: tuple[Field, ...]
    label_attrs: tuple[str, ...] = ()
    defaults: dict[str, Any] = field(default_factory=dict)
    fetch_route: str | None = None
    list_route: str | None = None
    list_keys: tuple[str, ...] = ()
    create_route: str | None = None
    update_route: str | None = None
    delete_route: str | None = None

    @property
    def title(self) -> str:
        return self.name.capitalize()

    def attrs(self) -> tuple[str, ...]:
        return tuple(f.attr for f in self.fields)


class Entity:
    """A cached domain object: a user, a thread or a message.

    Attributes named by the kind's field table are readable directly
    (``user.username``, ``message.thread_id``). ``raw`` accumulates every
    payload key ever merged into the entity.
    """

    def __init__(self, kind: EntityKind, data: dict[str, Any] | None = None):
        self.kind = kind
        self.raw: dict[str, Any] = {}
        for attr in kind.attrs():
            setattr(self, attr, None)
        for attr, value in kind.defaults.items():
            setattr(self, attr, value)
        self.patch(data or {})

    def patch(self, data: dict[str, Any]) -> "Entity":
        """Merge ``data`` into this entity in place and return it."""
        self.raw.update(data)
        for f in self.kind.fields:
            present, value = f.extract(data)
            if present:
                setattr(self, f.attr, value)
        return self

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for attr in (*self.kind.attrs(), *self.kind.defaults):
            value = getattr(self, attr)
            result[attr] = value.isoformat() if isinstance(value, datetime) else value
        return result

    def __str__(self) -> str:
        for attr in self.kind.label_attrs:
            value = getattr(self, attr, None)
            if value:
                return str(value)
        return f"{self.kind.title}[{self.id}]" if self.id else self.kind.title

    def __repr__(self) -> str:
        return f"<{self.kind.title} id={self.id!r}>"


USER = EntityKind(
    name="user",
    fields=(
        Field("id", ("id",), normalize_id),
        Field("name", ("name",)),
        Field("username", ("username",)),
        Field("country", ("country",)),
        Field("city", ("city",)),
        Field("gender", ("gender",)),
        Field("age", ("age",), _int_or_none),
        Field("last_login", ("last_login",), parse_timestamp),
        Field(
            "avatar_url",
            ("avatar_url", "avatar_thumb_medium", "avatar_thumb_small"),
        ),
    ),
    label_attrs=("username", "name"),
    defaults={"is_self": False},
    fetch_route="/v1/profile/{id}",
    list_route="/v1/search/user",
    list_keys=("results", "users"),
)

THREAD = EntityKind(
    name="thread",
    fields=(
        Field("id", ("id",), normalize_id),
        Field("subject", ("subject",)),
        Field("last_message", ("last_message",)),
        Field("last_message_id", ("last_message_id",), normalize_id),
        Field("participant_ids", ("participant_ids",), _id_list),
        Field("updated_at", ("updated",), parse_timestamp),
        Field("unread", ("unread",), bool),
    ),
    label_attrs=("subject",),
    fetch_route="/v1/thread/{id}",
    list_route="/v1/thread",
    list_keys=("threads",),
)

MESSAGE = EntityKind(
    name="message",
    fields=(
        Field("id", ("id",), normalize_id),
        Field("thread_id", ("thread_id",), normalize_id),
        Field("sender_id", ("sender_id",), normalize_id),
        Field("content", ("message",)),
        Field("created_at", ("created",), parse_timestamp),
        Field("attachment_type", ("attachment_type",)),
    ),
    label_attrs=("content",),
    list_route="/v1/thread/{thread_id}",
    list_keys=("messages",),
    create_route="/v1/message",
    delete_route="/v1/message/{id}",
)
