from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Hashable

from cachetools import LRUCache

from georesolve.core.logging import get_logger
from georesolve.schemas.catalog import (
    GeoState,
    Municipality,
    PostalCodeLookup,
    PostalCodeSummary,
    Settlement,
)
from georesolve.services.gateway import CatalogGateway


_logger = get_logger(__name__)

CacheKey = tuple[Hashable, ...]


class CatalogCache:
    """
    Read-through cache of catalog fragments for one session.

    Entries are reference data and never expire. Misses for a key that is
    already being fetched await the same in-flight request instead of hitting
    the gateway again.
    """

    def __init__(self, gateway: CatalogGateway, *, maxsize: int = 4096) -> None:
        self._gateway = gateway
        self._entries: LRUCache[CacheKey, Any] = LRUCache(maxsize=maxsize)
        self._inflight: dict[CacheKey, asyncio.Future[Any]] = {}
        self._tasks: set[asyncio.Task[None]] = set()
        self._lock = asyncio.Lock()

    @property
    def gateway(self) -> CatalogGateway:
        return self._gateway

    def peek(self, *key: Hashable) -> Any | None:
        """Return a cached entry without touching the gateway."""

        return self._entries.get(key)

    async def states(self) -> tuple[GeoState, ...]:
        return await self._read_through(("states",), self._gateway.list_states)

    async def municipalities(self, state_id: int) -> tuple[Municipality, ...]:
        return await self._read_through(
            ("municipalities", state_id),
            lambda: self._gateway.list_municipalities(state_id),
        )

    async def settlements(
        self,
        municipality_id: int,
        search: str | None = None,
        *,
        limit: int = 1000,
        offset: int = 0,
    ) -> tuple[Settlement, ...]:
        term = (search or "").strip() or None
        return await self._read_through(
            ("settlements", municipality_id, term, limit, offset),
            lambda: self._gateway.list_settlements_by_municipality(
                municipality_id, term, limit, offset
            ),
        )

    async def postal_codes(
        self, municipality_id: int
    ) -> tuple[PostalCodeSummary, ...]:
        return await self._read_through(
            ("postal_codes", municipality_id),
            lambda: self._gateway.list_postal_codes_by_municipality(municipality_id),
        )

    async def postal_code_lookup(self, code: str) -> PostalCodeLookup | None:
        return await self._read_through(
            ("postal_code", code),
            lambda: self._gateway.lookup_by_postal_code(code),
            cache_empty=False,
        )

    async def _read_through(
        self,
        key: CacheKey,
        fetch: Callable[[], Awaitable[Any]],
        *,
        cache_empty: bool = True,
    ) -> Any:
        async with self._lock:
            if key in self._entries:
                _logger.debug("Catalog cache hit", key=key)
                return self._entries[key]
            future = self._inflight.get(key)
            if future is None:
                future = asyncio.get_running_loop().create_future()
                self._inflight[key] = future
                task = asyncio.ensure_future(
                    self._fetch(key, fetch, future, cache_empty)
                )
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
            else:
                _logger.debug("Catalog request coalesced", key=key)

        # Waiters that give up must not cancel the fetch for everyone else
        # sharing it.
        try:
            return await asyncio.shield(future)
        except asyncio.CancelledError:
            # The next miss for this key starts a fresh request instead of
            # joining one that already outlived a caller's timeout.
            self._release(key, future)
            raise

    async def _fetch(
        self,
        key: CacheKey,
        fetch: Callable[[], Awaitable[Any]],
        future: asyncio.Future[Any],
        cache_empty: bool,
    ) -> None:
        _logger.info("Catalog cache miss", key=key)
        try:
            result = await fetch()
        except asyncio.CancelledError:
            self._release(key, future)
            future.cancel()
            raise
        except Exception as exc:
            self._release(key, future)
            if not future.done():
                future.set_exception(exc)
                # Mark retrieved so an unobserved failure does not warn at GC.
                future.exception()
            return

        if isinstance(result, list):
            result = tuple(result)

        async with self._lock:
            if result is not None or cache_empty:
                self._entries[key] = result
            self._release(key, future)
        if not future.done():
            future.set_result(result)

    def _release(self, key: CacheKey, future: asyncio.Future[Any]) -> None:
        if self._inflight.get(key) is future:
            del self._inflight[key]
