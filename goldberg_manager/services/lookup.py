"""Game lookup over the catalog store with a TTL cache."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import aclosing

import structlog

from ..models import AppType, SteamApp, comparable_name
from .cache import TTLCache
from .catalog_store import CancelSignal, CatalogStore

log = structlog.stdlib.get_logger()

LOOKUP_TTL_SECONDS = 2 * 60 * 60

_DONE = object()


class LookupService:
    """Resolves games by normalized name or id.

    Point lookups are cached (including misses) for two hours; free-text
    searches always go to the store.
    """

    def __init__(
        self,
        store: CatalogStore,
        cache: TTLCache | None = None,
        ttl: float = LOOKUP_TTL_SECONDS,
    ) -> None:
        self._store = store
        self._cache = cache or TTLCache(default_ttl=ttl)
        self._ttl = ttl

    async def get_by_exact_comparable_name(self, name: str) -> SteamApp | None:
        normalized = comparable_name(name)
        if not normalized:
            return None

        key = f"app:name:{normalized}"
        cached = self._cache.get(key, _DONE)
        if cached is not _DONE:
            return cached

        app = await asyncio.to_thread(self._store.find_by_comparable_name, AppType.GAME, normalized)
        self._cache.set(key, app, self._ttl)
        log.debug("Name lookup", name=name, comparable_name=normalized, found=app is not None)
        return app

    async def get_by_id(self, app_id: int) -> SteamApp | None:
        key = f"app:id:{app_id}"
        cached = self._cache.get(key, _DONE)
        if cached is not _DONE:
            return cached

        app = await asyncio.to_thread(self._store.find_by_id, AppType.GAME, app_id)
        self._cache.set(key, app, self._ttl)
        log.debug("Id lookup", app_id=app_id, found=app is not None)
        return app

    async def search_by_name(
        self,
        name: str,
        cancel_event: CancelSignal | None = None,
    ) -> AsyncIterator[SteamApp]:
        """Yield games whose name contains every whitespace-separated term.

        Rows are pulled from the store on a worker thread so a large result
        never blocks the event loop. Setting ``cancel_event`` ends the
        iteration promptly.
        """
        terms = name.split()
        if not terms:
            return

        rows = self._store.search_by_name_terms(AppType.GAME, terms, cancel_event)
        try:
            while True:
                app = await asyncio.to_thread(next, rows, _DONE)
                if app is _DONE:
                    return
                if cancel_event is not None and cancel_event.is_set():
                    return
                yield app
        finally:
            try:
                rows.close()
            except ValueError:
                # Still running on a worker thread after a cancelled await
                log.debug("Search generator still busy at shutdown", terms=terms)

    async def list_by_name(self, name: str, limit: int | None = None) -> list[SteamApp]:
        cancel = asyncio.Event()
        results: list[SteamApp] = []
        async with aclosing(self.search_by_name(name, cancel)) as apps:
            async for app in apps:
                results.append(app)
                if limit is not None and len(results) >= limit:
                    cancel.set()
                    break
        return results

    def invalidate(self) -> None:
        """Drop cached lookups, e.g. after the catalog was replaced."""
        self._cache.clear()
