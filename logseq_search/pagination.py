"""
Cursor pagination for Logseq Search MCP Server.
"""

from collections.abc import Sequence

import structlog

from .models import BaseRecord, SearchResult

logger = structlog.get_logger(__name__)


def parse_cursor(cursor: str | None) -> int:
    """Decode a cursor into an offset; bad cursors restart at 0."""
    if cursor is None or cursor == "":
        return 0
    try:
        offset = int(cursor)
    except (TypeError, ValueError):
        logger.warning("invalid_cursor", cursor=cursor)
        return 0
    if offset < 0:
        logger.warning("invalid_cursor", cursor=cursor)
        return 0
    return offset


def paginate(records: Sequence[BaseRecord], offset: int, limit: int) -> SearchResult:
    total = len(records)
    has_more = total > offset + limit
    return SearchResult(
        results=list(records[offset:offset + limit]),
        total_found=total,
        has_more=has_more,
        next_cursor=str(offset + limit) if has_more else None,
    )
