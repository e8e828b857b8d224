"""
MCP Tools module for Logseq Search MCP Server.

Contains the MCP tool handlers (list_tools and call_tool) and the cache
statistics resource, bound to a CachedCorpus by create_server().
"""

import json
from typing import Any

import structlog
from mcp.server import Server
from mcp.types import (
    Resource,
    TextContent,
    Tool,
)

from .cache import CachedCorpus
from .search import execute_search
from .utils import SearchError, ValidationError

logger = structlog.get_logger(__name__)

SERVER_NAME = "logseq-search"
STATS_URI = "cache://stats"

TOOLS = [
    Tool(
        name="search",
        description=(
            "Search the Logseq graph. Queries combine atomic filters with AND/OR "
            "(OR binds loosest, no parentheses). Filters: *, empty, property:KEY=VALUE, "
            'properties:*, properties:page="X", date:today|yesterday|last-week|last-month|YYYY-MM-DD, '
            'templates:*, template:"X", backlinks:"X", references:"X", page:"X", or free text '
            '(use "quoted phrases" for exact matches).'
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "Query expression; empty returns every record of the target"
                },
                "target": {
                    "type": "string",
                    "enum": ["pages", "blocks", "templates", "tasks", "properties", "both"],
                    "description": "Kind of records to search (default: both)",
                    "default": "both"
                },
                "scope": {
                    "type": "object",
                    "description": "Restrict by namespace, journal flag, page_titles or tag",
                    "properties": {
                        "namespace": {"type": "string"},
                        "journal": {"type": "boolean"},
                        "page_titles": {"type": "array", "items": {"type": "string"}},
                        "tag": {"type": "string"}
                    }
                },
                "filter": {
                    "type": "object",
                    "description": (
                        "Attribute filters: lengthMin, lengthMax, properties_any, properties_all, "
                        "tags_any, tags_all, createdAfter, createdBefore, updatedAfter, updatedBefore, "
                        "contains, exclude, todoState, scheduledOn, deadlinedOn"
                    )
                },
                "sort": {
                    "type": "string",
                    "enum": [
                        "relevance", "created", "updated", "title", "page_title",
                        "length", "deadline", "scheduled"
                    ],
                    "default": "relevance"
                },
                "order": {
                    "type": "string",
                    "enum": ["asc", "desc"],
                    "default": "desc"
                },
                "limit": {
                    "type": "integer",
                    "description": "Page size, 1-100 (default: 20)",
                    "default": 20
                },
                "cursor": {
                    "type": "string",
                    "description": "next_cursor from a previous response"
                },
                "strict": {
                    "type": "boolean",
                    "description": "Fail on a malformed filter instead of matching nothing",
                    "default": False
                }
            }
        }
    ),
    Tool(
        name="invalidate_cache",
        description="Drop cached graph data after an edit so the next search sees it.",
        inputSchema={
            "type": "object",
            "properties": {
                "kind": {
                    "type": "string",
                    "enum": ["page", "block", "all"],
                    "description": "What changed"
                },
                "identifier": {
                    "type": "string",
                    "description": "Page name (for a block change: the owning page)"
                }
            },
            "required": ["kind"]
        }
    ),
]


def _error_payload(error: SearchError) -> str:
    return json.dumps({"error": error.to_dict()})


async def handle_search(corpus: CachedCorpus, arguments: dict[str, Any]) -> str:
    """Run a search and render the result envelope (or error) as JSON."""
    try:
        result = await execute_search(corpus, arguments)
    except SearchError as e:
        logger.info("search_rejected", code=e.code, error=str(e))
        return _error_payload(e)
    return json.dumps(result.model_dump(mode="json", exclude_none=True), indent=2)


async def handle_invalidate(corpus: CachedCorpus, arguments: dict[str, Any]) -> str:
    kind = arguments.get("kind")
    if not kind:
        return _error_payload(ValidationError("kind is required"))
    try:
        corpus.cache.invalidate(kind, arguments.get("identifier"))
    except SearchError as e:
        return _error_payload(e)
    return json.dumps({"invalidated": kind, "identifier": arguments.get("identifier")})


def create_server(corpus: CachedCorpus) -> Server:
    """Build the MCP server bound to a corpus."""
    server = Server(SERVER_NAME)

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        """List available tools."""
        return TOOLS

    @server.call_tool()
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
        """Handle tool calls."""
        arguments = arguments or {}

        if name == "search":
            return [TextContent(type="text", text=await handle_search(corpus, arguments))]

        elif name == "invalidate_cache":
            return [TextContent(type="text", text=await handle_invalidate(corpus, arguments))]

        return [TextContent(type="text", text=f"Unknown tool: {name}")]

    @server.list_resources()
    async def list_resources() -> list[Resource]:
        """List available resources."""
        return [
            Resource(
                uri=STATS_URI,
                name="Cache Statistics",
                description="Entry counts of the page, block and query caches",
                mimeType="application/json"
            ),
        ]

    @server.read_resource()
    async def read_resource(uri: Any) -> str:
        """Read a resource."""
        if str(uri) == STATS_URI:
            return json.dumps(corpus.cache.stats(), indent=2)

        return json.dumps({"error": f"Unknown resource: {uri}"})

    return server
