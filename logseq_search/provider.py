"""
Corpus provider module for Logseq Search MCP Server.

Defines the CorpusProvider protocol consumed by the engine and the HTTP
provider backed by the Logseq HTTP API server.
"""

from typing import Any, Protocol

import httpx
import structlog
from pydantic import ValidationError as PydanticValidationError

from .models import Block, Page
from .utils import ProviderError

logger = structlog.get_logger(__name__)


class CorpusProvider(Protocol):
    """Read access to a Logseq graph. Any call may raise."""

    async def list_all_pages(self) -> list[Page]:
        ...

    async def list_page_blocks(self, page_name: str) -> list[Block]:
        ...


def _with_page(items: list[Any], page_name: str) -> list[Any]:
    """Stamp the owning page name on raw blocks and their children."""
    stamped = []
    for item in items:
        if not isinstance(item, dict):
            continue
        item = dict(item)
        item["page"] = page_name
        item["children"] = _with_page(item.get("children") or [], page_name)
        stamped.append(item)
    return stamped


class LogseqApiProvider:
    """Corpus provider talking to Logseq's local HTTP API (POST /api)."""

    def __init__(
        self,
        api_url: str,
        api_token: str = "",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        headers = {"Content-Type": "application/json"}
        if api_token:
            headers["Authorization"] = f"Bearer {api_token}"

        self.api_url = api_url.rstrip("/")
        self.client = httpx.AsyncClient(
            base_url=self.api_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self) -> "LogseqApiProvider":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def call_api(self, method: str, *args: Any) -> Any:
        """Invoke a Logseq API method and unwrap its payload.

        Raises:
            ProviderError: on transport errors, HTTP errors or error payloads
        """
        try:
            response = await self.client.post("/api", json={"method": method, "args": list(args)})
        except httpx.ConnectError as e:
            raise ProviderError(
                "Connection refused: make sure Logseq is running with the HTTP API enabled"
            ) from e
        except httpx.HTTPError as e:
            raise ProviderError(f"{method} request failed: {e}") from e

        if response.status_code == 401:
            raise ProviderError("Unauthorized: invalid API token")
        if response.status_code >= 400:
            raise ProviderError(f"{method} failed with HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError as e:
            raise ProviderError(f"{method} returned invalid JSON") from e

        if isinstance(payload, dict):
            if payload.get("error"):
                raise ProviderError(f"{method} failed: {payload['error']}")
            if "data" in payload:
                return payload["data"]
        return payload

    async def list_all_pages(self) -> list[Page]:
        raw = await self.call_api("logseq.Editor.getAllPages")
        if not isinstance(raw, list):
            logger.warning("unexpected_pages_payload", payload_type=type(raw).__name__)
            return []

        pages: list[Page] = []
        invalid = 0
        for item in raw:
            try:
                pages.append(Page.model_validate(item))
            except PydanticValidationError:
                invalid += 1

        if invalid:
            logger.warning("invalid_pages_skipped", invalid_count=invalid)
        return pages

    async def list_page_blocks(self, page_name: str) -> list[Block]:
        raw = await self.call_api("logseq.Editor.getPageBlocksTree", page_name)
        if not raw:
            return []
        if not isinstance(raw, list):
            logger.warning("unexpected_blocks_payload", page=page_name, payload_type=type(raw).__name__)
            return []

        blocks: list[Block] = []
        invalid = 0
        for item in _with_page(raw, page_name):
            try:
                blocks.append(Block.model_validate(item))
            except PydanticValidationError:
                invalid += 1

        if invalid:
            logger.warning("invalid_blocks_skipped", page=page_name, invalid_count=invalid)
        return blocks

    async def raw_query(self, query: str) -> Any:
        """Pass a datascript query straight through to Logseq."""
        return await self.call_api("logseq.DB.datascriptQuery", query)
