from __future__ import annotations

import asyncio
from typing import Callable, Dict
from uuid import UUID, uuid4

from georesolve.core.config import get_settings
from georesolve.core.logging import get_logger
from georesolve.domain.address import EntryMode
from georesolve.services.cache import CatalogCache
from georesolve.services.gateway import CatalogGateway, get_catalog_gateway
from georesolve.services.resolver import AddressResolver


ResolverFactory = Callable[[CatalogCache, EntryMode], AddressResolver]

_logger = get_logger(__name__)


def _default_resolver(cache: CatalogCache, mode: EntryMode) -> AddressResolver:
    return AddressResolver(cache, mode=mode)


class AddressSessionRegistry:
    """Keeps one resolver per open form; all of them share one catalog cache."""

    def __init__(
        self,
        cache: CatalogCache,
        *,
        resolver_factory: ResolverFactory = _default_resolver,
    ) -> None:
        self._cache = cache
        self._resolver_factory = resolver_factory
        self._sessions: Dict[UUID, AddressResolver] = {}
        self._lock = asyncio.Lock()

    @property
    def cache(self) -> CatalogCache:
        return self._cache

    async def open(
        self, mode: EntryMode = "postal_code_first"
    ) -> tuple[UUID, AddressResolver]:
        session_id = uuid4()
        resolver = self._resolver_factory(self._cache, mode)
        async with self._lock:
            self._sessions[session_id] = resolver
        _logger.info("Address session opened", session_id=str(session_id), mode=mode)
        return session_id, resolver

    async def get(self, session_id: UUID) -> AddressResolver | None:
        async with self._lock:
            return self._sessions.get(session_id)

    async def close(self, session_id: UUID) -> bool:
        async with self._lock:
            resolver = self._sessions.pop(session_id, None)
        if resolver is None:
            return False
        resolver.close()
        _logger.info("Address session closed", session_id=str(session_id))
        return True

    async def count(self) -> int:
        async with self._lock:
            return len(self._sessions)


_registry: AddressSessionRegistry | None = None


def get_session_registry(
    gateway: CatalogGateway | None = None,
) -> AddressSessionRegistry:
    global _registry
    if _registry is None:
        settings = get_settings()
        cache = CatalogCache(
            gateway or get_catalog_gateway(), maxsize=settings.catalog_cache_size
        )
        _registry = AddressSessionRegistry(cache)
    return _registry
