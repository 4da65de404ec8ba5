"""Utility helpers used across ``rxinterpals`` modules."""

import traceback
from datetime import UTC, datetime
from typing import Any, Callable, Generic, TypeVar

from reactivex import Observable, Subject
from reactivex import operators as ops

TagT = TypeVar("TagT")
InnerDataT = TypeVar("InnerDataT")


class TaggedData(Generic[TagT, InnerDataT]):
    """
    A class to hold data with a tag.

    Attributes:
        tag (TagT): The tag of the data.
        data (InnerDataT): The data itself.
    """

    def __init__(self, tag: TagT, data: InnerDataT):
        self.tag = tag
        self.data = data

    def __repr__(self) -> str:
        return f"(tag={self.tag}, {repr(self.data)})"

    def __str__(self) -> str:
        return f"(tag={self.tag}, {str(self.data)})"


def untag() -> Callable[[Observable[TaggedData[object, InnerDataT]]], Observable[InnerDataT]]:
    """Return an operator that extracts the ``data`` attribute."""

    return ops.map(lambda x: x.data)  # type: ignore


def tag_filter(tag: TagT) -> Callable[[Observable[InnerDataT]], Observable[TaggedData[TagT, InnerDataT]]]:
    """Return an operator that filters ``TaggedData`` by ``tag``. It will drop non-``TaggedData`` items."""

    return ops.filter(lambda x: isinstance(x, TaggedData) and x.tag == tag)


def get_short_error_info(e: BaseException) -> str:
    """
    Get a short error information from an exception.

    Args:
        e (Exception): The exception to get the error information from.

    Returns:
        str: A short error information.
    """
    return f"{type(e).__name__}: {str(e)}"


def get_full_error_info(e: BaseException) -> str:
    """
    Get the full error information from an exception.

    Args:
        e (Exception): The exception to get the error information from.

    Returns:
        str: The full error information.
    """
    return "".join(traceback.format_exception(type(e), e, e.__traceback__))


def normalize_id(value: Any) -> str | None:
    """Ids arrive as strings or numbers; store them as strings."""
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    return text or None


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an API timestamp into an aware ``datetime``.

    Accepts ``datetime`` objects, epoch numbers (seconds, or milliseconds when
    the value is at least ``1e12``), numeric strings and ISO-8601 strings.
    Returns ``None`` for anything that cannot be parsed.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            value = float(text)
        except ValueError:
            try:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError:
                return None
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    if isinstance(value, (int, float)):
        seconds = value / 1000 if abs(value) >= 1e12 else value
        try:
            return datetime.fromtimestamp(seconds, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None
    return None


def deliver(subject: Subject, value: Any, on_error: Callable[[Exception], None]) -> None:
    """Push ``value`` to every observer of ``subject`` one by one.

    ``Subject.on_next`` stops at the first observer that raises, so the
    observers after it would miss the value. Here each failure goes to
    ``on_error`` and delivery continues.
    """
    for observer in list(subject.observers):
        try:
            observer.on_next(value)
        except Exception as e:
            on_error(e)
