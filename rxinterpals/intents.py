"""Gateway intents: bit flags selecting which event categories are pushed.

Consumers may describe intents as a flag, a flag name, a raw integer, or an
iterable of those. :func:`resolve_intents` turns any of them into the plain
integer that goes on the gateway URL; nothing past the client boundary sees
the polymorphic form.
"""

from collections.abc import Iterable
from enum import IntFlag

from .errors import ValidationError


class Intent(IntFlag):
    MESSAGES = 1 << 0  # THREAD_NEW_MESSAGE
    TYPING = 1 << 1  # THREAD_TYPING
    NOTIFICATIONS = 1 << 2  # COUNTER_UPDATE
    PROFILE_VIEWS = 1 << 3  # PROFILE_VIEW
    PRESENCE = 1 << 4
    THREADS = 1 << 5
    SOCIAL = 1 << 6


ALL_INTENTS = Intent(sum(flag.value for flag in Intent))
DEFAULT_INTENTS = Intent.MESSAGES | Intent.NOTIFICATIONS | Intent.THREADS

IntentResolvable = int | str | Intent | Iterable[int | str | Intent] | None


def _resolve_name(name: str) -> int:
    key = name.strip().upper().replace("-", "_").replace(" ", "_")
    try:
        return Intent[key].value
    except KeyError:
        raise ValidationError(f"Unknown intent: {name!r}") from None


def resolve_intents(intents: IntentResolvable) -> int:
    """Resolve any accepted intent description into an integer bitmask.

    ``None`` resolves to :data:`DEFAULT_INTENTS`.
    """
    if intents is None:
        return DEFAULT_INTENTS.value
    if isinstance(intents, bool):
        raise ValidationError(f"Invalid intent type: {type(intents).__name__}")
    if isinstance(intents, int):
        if intents < 0:
            raise ValidationError(f"Intent bitmask must be non-negative, got {intents}")
        return int(intents)
    if isinstance(intents, str):
        return _resolve_name(intents)
    if isinstance(intents, Iterable):
        bitmask = 0
        for intent in intents:
            if intent is None or not isinstance(intent, (int, str)):
                raise ValidationError(f"Invalid intent type: {type(intent).__name__}")
            bitmask |= resolve_intents(intent)
        return bitmask
    raise ValidationError(f"Invalid intent type: {type(intents).__name__}")


def has_intent(bitmask: int, intent: IntentResolvable) -> bool:
    resolved = resolve_intents(intent)
    return (bitmask & resolved) == resolved


def add_intent(bitmask: int, intent: IntentResolvable) -> int:
    return bitmask | resolve_intents(intent)


def remove_intent(bitmask: int, intent: IntentResolvable) -> int:
    return bitmask & ~resolve_intents(intent)


def intent_names(bitmask: int) -> list[str]:
    """Names of the flags set in ``bitmask``, in flag order."""
    return [flag.name for flag in Intent if flag.name and bitmask & flag.value]
