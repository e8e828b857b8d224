"""
In-memory cache module for Logseq Search MCP Server.

Contains the TTLCache primitive, the per-category CorpusCache service and
CachedCorpus, which reads the corpus through the cache.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import structlog

from .config import Settings, settings
from .models import Block, ContentRecord, Page
from .provider import CorpusProvider
from .utils import ProviderError, SearchError, ValidationError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass
class CacheEntry:
    data: Any
    written_at: float
    ttl: float

    def is_fresh(self, now: float) -> bool:
        return now <= self.written_at + self.ttl


class TTLCache:
    """Key/value cache whose entries expire after a per-entry TTL.

    Expired entries are removed lazily when read; there is no background
    sweep and no size-based eviction.
    """

    def __init__(self, name: str, default_ttl: float, clock: Callable[[], float] = time.monotonic):
        self.name = name
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not entry.is_fresh(self._clock()):
            del self._entries[key]
            return None
        return entry.data

    def set(self, key: str, data: Any, ttl: float | None = None) -> None:
        self._entries[key] = CacheEntry(
            data=data,
            written_at=self._clock(),
            ttl=self.default_ttl if ttl is None else ttl,
        )

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    @property
    def size(self) -> int:
        return len(self._entries)


class CacheKeys:
    """Cache key scheme shared by every category."""

    ALL_PAGES = "all_pages"
    TEMPLATE_LIST = "templates"

    @staticmethod
    def page_blocks(page_name: str) -> str:
        return f"page_blocks:{page_name.lower()}"

    @staticmethod
    def search_query(query: str, target: str, limit: int, shape: str = "") -> str:
        return f"search:{target}:{limit}:{query}:{shape}"


class CorpusCache:
    """Per-category TTL caches for pages, block trees and composed query results.

    Constructed once per process and handed to the engine; editing
    collaborators call invalidate() when they change the graph.
    """

    def __init__(self, config: Settings = settings, clock: Callable[[], float] = time.monotonic):
        self.config = config
        self.pages = TTLCache("pages", config.all_pages_ttl, clock)
        self.blocks = TTLCache("blocks", config.page_blocks_ttl, clock)
        self.queries = TTLCache("queries", config.search_results_ttl, clock)

    def invalidate(self, kind: str, identifier: str | None = None) -> None:
        """Invalidate cached data after an edit.

        Args:
            kind: "page", "block" or "all"
            identifier: page name for "page"; owning page name for "block"
        """
        if kind == "page":
            if identifier:
                self.blocks.delete(CacheKeys.page_blocks(identifier))
            # Any page change can alter the page and template listings
            self.pages.delete(CacheKeys.ALL_PAGES)
            self.pages.delete(CacheKeys.TEMPLATE_LIST)
        elif kind == "block":
            if identifier:
                self.blocks.delete(CacheKeys.page_blocks(identifier))
            else:
                self.blocks.clear()
        elif kind == "all":
            self.pages.clear()
            self.blocks.clear()
            self.queries.clear()
        else:
            raise ValidationError(f"Unknown invalidation kind '{kind}'. Valid kinds: page, block, all")

        logger.info("cache_invalidated", kind=kind, identifier=identifier)

    def stats(self) -> dict[str, int]:
        return {
            "pages": self.pages.size,
            "blocks": self.blocks.size,
            "queries": self.queries.size,
        }


class CachedCorpus:
    """Corpus reads through the CorpusCache, fetching from the provider on miss.

    Concurrent misses for the same key share one in-flight provider call.
    """

    def __init__(self, provider: CorpusProvider, cache: CorpusCache | None = None, config: Settings = settings):
        self.provider = provider
        self.config = config
        self.cache = cache if cache is not None else CorpusCache(config)
        self._inflight: dict[str, asyncio.Future] = {}

    async def _single_flight(self, key: str, fetch: Callable[[], Awaitable[T]]) -> T:
        pending = self._inflight.get(key)
        if pending is not None:
            return await asyncio.shield(pending)

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            result = await fetch()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved so an unawaited failure is not reported by asyncio
            future.exception()
            raise
        else:
            future.set_result(result)
            return result
        finally:
            self._inflight.pop(key, None)

    async def _fetch(self, operation: str, call: Callable[[], Awaitable[T]], **context: Any) -> T:
        start_time = time.time()
        try:
            result = await call()
        except SearchError:
            raise
        except Exception as e:
            logger.warning("provider_call_failed", operation=operation, error=str(e), **context)
            raise ProviderError(f"{operation} failed: {e}") from e
        logger.debug(
            "provider_call_completed",
            operation=operation,
            duration_ms=round((time.time() - start_time) * 1000, 2),
            **context,
        )
        return result

    async def get_all_pages(self) -> list[Page]:
        """Return every page, cached for all_pages_ttl."""
        cached = self.cache.pages.get(CacheKeys.ALL_PAGES)
        if cached is not None:
            return cached

        async def load() -> list[Page]:
            pages = await self._fetch("list_all_pages", self.provider.list_all_pages)
            self.cache.pages.set(CacheKeys.ALL_PAGES, pages, self.config.all_pages_ttl)
            logger.debug("pages_cached", page_count=len(pages))
            return pages

        return await self._single_flight(CacheKeys.ALL_PAGES, load)

    async def get_page_blocks(self, page_name: str) -> list[Block]:
        """Return the block tree of a page, cached for page_blocks_ttl."""
        key = CacheKeys.page_blocks(page_name)
        cached = self.cache.blocks.get(key)
        if cached is not None:
            return cached

        async def load() -> list[Block]:
            blocks = await self._fetch(
                "list_page_blocks",
                lambda: self.provider.list_page_blocks(page_name),
                page=page_name,
            )
            self.cache.blocks.set(key, blocks, self.config.page_blocks_ttl)
            return blocks

        return await self._single_flight(key, load)

    async def get_templates(self) -> list[Page]:
        """Return template pages, cached for templates_ttl."""
        cached = self.cache.pages.get(CacheKeys.TEMPLATE_LIST)
        if cached is not None:
            return cached

        templates = [page for page in await self.get_all_pages() if is_template_page(page)]
        self.cache.pages.set(CacheKeys.TEMPLATE_LIST, templates, self.config.templates_ttl)
        logger.debug("templates_cached", template_count=len(templates))
        return templates

    def get_cached_results(self, key: str) -> list[ContentRecord] | None:
        cached = self.cache.queries.get(key)
        if cached is not None:
            logger.debug("search_cache_hit", key=key, result_count=len(cached))
        return cached

    def set_cached_results(self, key: str, records: list[ContentRecord]) -> None:
        self.cache.queries.set(key, records, self.config.search_results_ttl)
        logger.debug("search_results_cached", key=key, result_count=len(records))


def is_template_page(page: Page) -> bool:
    """Template marker: "template" in the name or a template/page-type property."""
    if "template" in page.display_name.lower():
        return True
    properties = {str(k).lower(): v for k, v in page.properties.items()}
    if properties.get("template"):
        return True
    return str(properties.get("page-type", "")).lower() == "template"
