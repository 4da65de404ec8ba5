"""Fluent builder for outgoing message payloads."""

from typing import Any

from .utils import normalize_id


class MessageBuilder:
    """Build the body of ``POST /v1/message`` step by step.

    Every setter returns the builder, so calls chain::

        payload = MessageBuilder("see this").set_thread(5).set_reply_to(99).build()

    Pass the builder itself to :meth:`InterpalsClient.send_message`; the
    thread given there fills ``thread_id`` when the builder has none.
    """

    def __init__(self, content: str = ""):
        self._content = content
        self._thread_id: str | None = None
        self._attachment_type: str | None = None
        self._attachment_id: str | None = None
        self._gif_url: str | None = None
        self._tmp_id: str | None = None
        self._reply_to: str | None = None
        self._extra: dict[str, Any] = {}

    def __repr__(self) -> str:
        return f"MessageBuilder(thread_id={self._thread_id!r}, content={self._content!r})"

    @property
    def content(self) -> str:
        return self._content

    @property
    def thread_id(self) -> str | None:
        return self._thread_id

    def set_content(self, content: str) -> "MessageBuilder":
        self._content = content
        return self

    def set_thread(self, thread_id: str | int) -> "MessageBuilder":
        self._thread_id = normalize_id(thread_id)
        return self

    def set_reply_to(self, message_id: str | int) -> "MessageBuilder":
        self._reply_to = normalize_id(message_id)
        return self

    def set_gif(self, url: str) -> "MessageBuilder":
        self._attachment_type = "gif"
        self._gif_url = url
        return self

    def set_correction(self, attachment_id: str | int) -> "MessageBuilder":
        self._attachment_type = "correction"
        self._attachment_id = normalize_id(attachment_id)
        return self

    def set_attachment_type(self, attachment_type: str) -> "MessageBuilder":
        self._attachment_type = attachment_type
        return self

    def set_tmp_id(self, tmp_id: str) -> "MessageBuilder":
        self._tmp_id = tmp_id
        return self

    def add_extra(self, key: str, value: Any) -> "MessageBuilder":
        self._extra[key] = value
        return self

    def set_extra(self, **fields: Any) -> "MessageBuilder":
        """Replace every extra field at once."""
        self._extra = dict(fields)
        return self

    def build(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"message": self._content, **self._extra}
        optional = {
            "thread_id": self._thread_id,
            "attachment_type": self._attachment_type,
            "attachment_id": self._attachment_id,
            "gif_attachment_url": self._gif_url,
            "tmp_id": self._tmp_id,
            "reply_to": self._reply_to,
        }
        payload.update({k: v for k, v in optional.items() if v is not None})
        return payload
