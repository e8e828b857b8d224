"""
Search entry point for Logseq Search MCP Server.

Runs a request through the pipeline: validate, evaluate (or reuse the cached
result set), scope and attribute filters, ranking, pagination.
"""

import time
from typing import Any

import structlog

from .cache import CacheKeys, CachedCorpus
from .evaluator import Evaluator
from .filters import apply_filters, apply_scope_filters
from .models import SearchRequest, SearchResult
from .pagination import paginate, parse_cursor
from .query import parse
from .ranking import apply_sorting
from .utils import InternalError, SearchError

logger = structlog.get_logger(__name__)


async def execute_search(corpus: CachedCorpus, request: SearchRequest | dict[str, Any]) -> SearchResult:
    """Execute a search request.

    The full ordered result set is cached per (query, target, limit, shape),
    so later cursor pages are served from it until it expires.

    Raises:
        ValidationError: malformed request
        BadQueryError: malformed root filter in strict mode
        InternalError: any unexpected failure during evaluation
    """
    request = SearchRequest.from_arguments(request, corpus.config)
    offset = parse_cursor(request.cursor)
    query = (request.query or "").strip()
    cache_key = CacheKeys.search_query(query, request.target, request.limit, request.shape_digest())

    start_time = time.time()
    records = corpus.get_cached_results(cache_key)
    if records is None:
        try:
            records = await _compute(corpus, request, query)
        except SearchError:
            raise
        except Exception as e:
            logger.error("search_failed", query=query, target=request.target, error=str(e))
            raise InternalError(f"Search failed: {e}") from e
        corpus.set_cached_results(cache_key, records)

    result = paginate(records, offset, request.limit)
    logger.debug(
        "search_completed",
        query=query,
        target=request.target,
        total=result.total_found,
        offset=offset,
        duration_ms=round((time.time() - start_time) * 1000, 2),
    )
    return result


async def _compute(corpus: CachedCorpus, request: SearchRequest, query: str) -> list:
    evaluator = Evaluator(corpus, corpus.config)
    if query:
        records = await evaluator.evaluate(parse(query), request.target, request.strict, request.scope)
    else:
        records = await evaluator.collect(request.target, request.scope)

    records = apply_scope_filters(records, request.scope)
    records = apply_filters(records, request.filter)
    return apply_sorting(records, query, request.sort, request.order)
