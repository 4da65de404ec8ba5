"""Generic resource manager: REST reads and writes layered over an identity cache.

One :class:`ResourceManager` class serves every entity kind; the
:class:`~rxinterpals.models.EntityKind` it is built with supplies the field
table and the REST routes. Both REST responses and gateway payloads go
through :meth:`ResourceManager.create_or_update`, which is what keeps exactly
one live object per id.

Concurrent ``fetch`` calls for the same id are not coalesced; each issues its
own request and the results merge into the same object.
"""

from typing import Any, Callable

from opentelemetry.sdk._logs import LoggerProvider

from .cache import IdentityCache
from .errors import APIError, ValidationError
from .models import Entity, EntityKind
from .rest import RestTransport
from .telemetry import OTelLogger, get_default_providers
from .utils import normalize_id


def unwrap_list(data: Any, keys: tuple[str, ...]) -> list[dict[str, Any]]:
    """Accept a bare JSON list or an envelope such as ``{"threads": [...]}``."""
    if isinstance(data, list):
        entries = data
    elif isinstance(data, dict):
        entries = next(
            (data[key] for key in keys if isinstance(data.get(key), list)), []
        )
    else:
        entries = []
    return [entry for entry in entries if isinstance(entry, dict)]


class ResourceManager:
    """Fetch, cache and merge entities of one kind.

    Parameters
    ----------
    kind : EntityKind
        Field table and REST routes.
    transport : RestTransport
        Where REST calls go.
    cache : IdentityCache | None
        Defaults to an unbounded cache for ``kind``.
    """

    def __init__(
        self,
        kind: EntityKind,
        transport: RestTransport,
        cache: IdentityCache | None = None,
        logger_provider: LoggerProvider | None = None,
    ):
        self.kind = kind
        self.transport = transport
        if logger_provider is None:
            logger_provider = get_default_providers()
        self.cache = cache or IdentityCache(kind.name, logger_provider=logger_provider)
        self._logger = OTelLogger(
            logger_provider.get_logger("rxinterpals.managers"),
            source=f"{kind.title}Manager",
        )

    def __repr__(self) -> str:
        return f"<ResourceManager {self.kind.name} cached={len(self.cache)}>"

    # ------------------------------------------------------------------ #
    # cache-only operations
    # ------------------------------------------------------------------ #
    def resolve(self, id_or_entity: str | int | Entity | None) -> Entity | None:
        """Return the cached entity for an id, or the entity itself if it is
        the live cached object. Returns None otherwise; never raises."""
        if isinstance(id_or_entity, Entity):
            if id_or_entity.kind is not self.kind:
                return None
            if id_or_entity.id and self.cache.peek(id_or_entity.id) is id_or_entity:
                return id_or_entity
            return id_or_entity if self.cache.find_key(id_or_entity) else None
        key = normalize_id(id_or_entity)
        if key is None:
            return None
        return self.cache.get(key)

    def resolve_id(self, id_or_entity: str | int | Entity | None) -> str | None:
        """Return the cache key for an id or a cached entity, or None."""
        if isinstance(id_or_entity, Entity):
            if id_or_entity.id and self.cache.peek(id_or_entity.id) is id_or_entity:
                return id_or_entity.id
            return self.cache.find_key(id_or_entity)
        key = normalize_id(id_or_entity)
        return key if key is not None and key in self.cache else None

    def find(self, predicate: Callable[[Entity], bool]) -> Entity | None:
        return self.cache.find(predicate)

    def create_or_update(self, data: dict[str, Any], cache: bool = True) -> Entity:
        """Merge ``data`` into the cached entity with the same id, or build one.

        The returned object is the cached one whenever the id was already
        known, so references held elsewhere observe the merge. Payloads
        without an id are never cached.
        """
        if not isinstance(data, dict):
            raise ValidationError(
                f"{self.kind.title} payload must be a mapping, got {type(data).__name__}"
            )
        key = normalize_id(data.get("id"))
        if key is not None:
            existing = self.cache.get(key)
            if existing is not None:
                existing.patch(data)
                self.cache.record("objects_updated")
                return existing

        entity = Entity(self.kind, data)
        self.cache.record("objects_created")
        if key is not None and cache:
            self.cache.set(key, entity)
        return entity

    def remove(self, id_or_entity: str | int | Entity) -> bool:
        key = self.resolve_id(id_or_entity)
        return key is not None and self.cache.pop(key) is not None

    def clear(self) -> None:
        self.cache.clear()

    # ------------------------------------------------------------------ #
    # REST operations
    # ------------------------------------------------------------------ #
    def _require_id(self, value: Any) -> str:
        key = normalize_id(value.id if isinstance(value, Entity) else value)
        if key is None:
            raise ValidationError(f"A {self.kind.name} id is required")
        return key

    def _route(self, name: str, **params: Any) -> str:
        template = getattr(self.kind, f"{name}_route")
        if template is None:
            raise ValidationError(f"{self.kind.title} does not support '{name}'")
        try:
            return template.format(**params)
        except KeyError as e:
            raise ValidationError(
                f"Missing route parameter {e} for {self.kind.name} {name}"
            ) from None

    def _expect_mapping(self, data: Any, operation: str) -> dict[str, Any]:
        if not isinstance(data, dict):
            raise APIError(
                f"Unexpected {self.kind.name} {operation} response: "
                f"{type(data).__name__}",
                response=data,
            )
        return data

    async def fetch(
        self, id: str | int | Entity, *, force: bool = False, cache: bool = True
    ) -> Entity:
        """Return the entity for ``id``, reading through to REST on a miss.

        With ``force=False`` a cached entity is returned without I/O.
        Otherwise exactly one REST read is made and the response is merged.
        REST errors propagate and leave the cache unchanged.
        """
        key = self._require_id(id)
        if not force:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        self._logger.debug(f"Fetching {self.kind.name} {key}", force=force)
        data = self._expect_mapping(
            await self.transport.get(self._route("fetch", id=key)), "fetch"
        )
        if normalize_id(data.get("id")) is None:
            data = {**data, "id": key}
        return self.create_or_update(data, cache=cache)

    async def fetch_from(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        *,
        cache: bool = True,
    ) -> Entity:
        """GET an arbitrary path that returns one entity of this kind."""
        data = self._expect_mapping(await self.transport.get(path, params), "fetch")
        return self.create_or_update(data, cache=cache)

    async def list(
        self,
        *,
        limit: int | None = None,
        offset: int | None = None,
        cache: bool = True,
        route_params: dict[str, Any] | None = None,
        **params: Any,
    ) -> list[Entity]:
        """GET the kind's list route and merge every entry."""
        path = self._route("list", **(route_params or {}))
        query = {"limit": limit, "offset": offset, **params}
        data = await self.transport.get(path, query)
        return [
            self.create_or_update(entry, cache=cache)
            for entry in unwrap_list(data, self.kind.list_keys)
        ]

    async def create(self, payload: dict[str, Any], *, cache: bool = True) -> Entity:
        data = await self.transport.post(self._route("create"), payload)
        return self.create_or_update(self._expect_mapping(data, "create"), cache=cache)

    async def update(
        self, id: str | int | Entity, payload: dict[str, Any], *, cache: bool = True
    ) -> Entity:
        key = self._require_id(id)
        data = self._expect_mapping(
            await self.transport.put(self._route("update", id=key), payload), "update"
        )
        if normalize_id(data.get("id")) is None:
            data = {**data, "id": key}
        return self.create_or_update(data, cache=cache)

    async def delete(self, id: str | int | Entity, **params: Any) -> None:
        """DELETE the entity on the server, then drop it from the cache."""
        key = self._require_id(id)
        await self.transport.delete(self._route("delete", id=key), params or None)
        self.cache.pop(key)
        self._logger.debug(f"Deleted {self.kind.name} {key}")
