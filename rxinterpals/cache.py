"""Per-kind identity cache.

One cache holds the single live :class:`~rxinterpals.models.Entity` for each
id of one kind. Users and threads live in an unbounded insertion-ordered
dict. Messages live in a bounded ``cachetools.LRUCache``: reading through
:meth:`IdentityCache.get` or writing through :meth:`IdentityCache.set` makes
an entry most recently used, and going over capacity silently evicts the
least recently used entry.
"""

from collections.abc import Iterator
from typing import Callable

from cachetools import Cache, LRUCache
from opentelemetry.sdk._logs import LoggerProvider

from .models import Entity
from .telemetry import OTelLogger, get_default_providers


class _EvictingLRUCache(LRUCache):
    """LRUCache that reports what it evicts."""

    def __init__(self, maxsize: int, on_evict: Callable[[str, Entity], None]):
        super().__init__(maxsize)
        self._on_evict = on_evict

    def popitem(self):
        key, value = super().popitem()
        self._on_evict(key, value)
        return key, value


class IdentityCache:
    """Ordered id -> entity container for one entity kind.

    Parameters
    ----------
    kind_name : str
        Used in log records only.
    maxsize : int | None
        None for an unbounded cache, otherwise the LRU capacity.
    """

    def __init__(
        self,
        kind_name: str,
        maxsize: int | None = None,
        logger_provider: LoggerProvider | None = None,
    ):
        if maxsize is not None and maxsize <= 0:
            raise ValueError(f"maxsize must be positive, got {maxsize}")
        self.kind_name = kind_name
        self.maxsize = maxsize
        self._store: dict[str, Entity] | _EvictingLRUCache = (
            {} if maxsize is None else _EvictingLRUCache(maxsize, self._evicted)
        )

        if logger_provider is None:
            logger_provider = get_default_providers()
        self._logger = OTelLogger(
            logger_provider.get_logger("rxinterpals.cache"),
            source=f"IdentityCache:{kind_name}",
        )

        self._stats = {
            "cache_hits": 0,
            "cache_misses": 0,
            "objects_created": 0,
            "objects_updated": 0,
            "evictions": 0,
        }

    @property
    def bounded(self) -> bool:
        return self.maxsize is not None

    @property
    def stats(self) -> dict[str, int]:
        return dict(self._stats)

    def record(self, stat: str) -> None:
        self._stats[stat] += 1

    def _evicted(self, key: str, value: Entity) -> None:
        self._stats["evictions"] += 1
        self._logger.debug(f"Evicted {self.kind_name} {key}", cache_size=len(self._store))

    def get(self, key: str) -> Entity | None:
        """Look up ``key``, counting a hit or miss and refreshing LRU recency."""
        value = self._store.get(key)
        self._stats["cache_hits" if value is not None else "cache_misses"] += 1
        return value

    def peek(self, key: str) -> Entity | None:
        """Look up ``key`` without touching stats or LRU recency."""
        if key not in self._store:
            return None
        if isinstance(self._store, Cache):
            # LRUCache.__getitem__ would promote the key.
            return Cache.__getitem__(self._store, key)
        return self._store[key]

    def set(self, key: str, value: Entity) -> Entity:
        self._store[key] = value
        return value

    def pop(self, key: str) -> Entity | None:
        return self._store.pop(key, None)

    def clear(self) -> None:
        self._store.clear()

    def keys(self) -> list[str]:
        return list(self._store)

    def values(self) -> list[Entity]:
        return [v for v in (self.peek(k) for k in self.keys()) if v is not None]

    def items(self) -> list[tuple[str, Entity]]:
        return [(k, v) for k in self.keys() if (v := self.peek(k)) is not None]

    def find(self, predicate: Callable[[Entity], bool]) -> Entity | None:
        for value in self.values():
            if predicate(value):
                return value
        return None

    def find_key(self, value: object) -> str | None:
        """Key under which this exact object is stored, compared by identity."""
        for key, cached in self.items():
            if cached is value:
                return key
        return None

    def __contains__(self, key: object) -> bool:
        return key in self._store

    def __len__(self) -> int:
        return len(self._store)

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def __repr__(self) -> str:
        bound = f"maxsize={self.maxsize}" if self.bounded else "unbounded"
        return f"<IdentityCache {self.kind_name} size={len(self)} {bound}>"
