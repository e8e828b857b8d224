"""
Graph directory provider for Logseq Search MCP Server.

Reads a Logseq graph straight from disk (pages/ and journals/ folders of
markdown outlines) for use without a running Logseq instance.
"""

import asyncio
import re
import uuid
from pathlib import Path
from typing import Any
from urllib.parse import unquote

import aiofiles
import structlog

from .config import MAX_NESTING_LEVEL
from .models import Block, Page
from .utils import parse_frontmatter, parse_property_line

logger = structlog.get_logger(__name__)

BULLET_PATTERN = re.compile(r'^(\s*)-(?:\s+(.*)|\s*)$')
JOURNAL_FILE_PATTERN = re.compile(r'^(\d{4})_(\d{2})_(\d{2})$')

PAGE_FOLDERS = ("pages", "journals")
ID_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "logseq-search")


def page_name_from_file(path: Path) -> tuple[str, int | None]:
    """Derive (page name, journal day) from a graph file name.

    Namespaces are stored as "a___b" (or url-encoded "a%2Fb").
    Journal files "2024_01_15.md" become page "2024-01-15".
    """
    stem = path.stem
    journal_match = JOURNAL_FILE_PATTERN.match(stem)
    if journal_match and path.parent.name == "journals":
        year, month, day = journal_match.groups()
        return f"{year}-{month}-{day}", int(f"{year}{month}{day}")
    return unquote(stem.replace("___", "/")), None


def stable_id(*parts: str) -> str:
    return str(uuid.uuid5(ID_NAMESPACE, "/".join(parts)))


def parse_outline(text: str, page_name: str, max_depth: int = MAX_NESTING_LEVEL) -> tuple[dict[str, Any], list[Block]]:
    """Parse a Logseq markdown outline into (page properties, block tree).

    Nesting deeper than max_depth is attached at max_depth.
    """
    frontmatter, body = parse_frontmatter(text)
    page_properties: dict[str, Any] = {str(k).lower(): v for k, v in frontmatter.items()}

    roots: list[dict] = []
    path: list[tuple[int, dict]] = []
    current: dict | None = None
    preamble: list[str] = []

    for line in body.splitlines():
        bullet = BULLET_PATTERN.match(line)
        if bullet:
            indent = len(bullet.group(1).expandtabs(2))
            while path and path[-1][0] >= indent:
                path.pop()
            del path[max_depth:]

            first_line = bullet.group(2) or ""
            prop = parse_property_line(first_line)
            node = {
                "lines": [] if prop else [first_line],
                "properties": dict([prop]) if prop else {},
                "children": [],
            }
            if path:
                path[-1][1]["children"].append(node)
            else:
                roots.append(node)
            path.append((indent, node))
            current = node
            continue

        prop = parse_property_line(line)
        if current is None:
            if prop:
                page_properties.setdefault(prop[0], prop[1])
            elif line.strip():
                preamble.append(line.strip())
            continue

        if prop:
            current["properties"][prop[0]] = prop[1]
        else:
            current["lines"].append(line.strip())

    if preamble:
        roots.insert(0, {"lines": preamble, "properties": {}, "children": []})

    # A leading block holding only properties is the page's property block
    if roots and not roots[0]["children"] and not "".join(roots[0]["lines"]).strip():
        first = roots.pop(0)
        for key, value in first["properties"].items():
            page_properties.setdefault(key, value)

    def build(node: dict, parent: str | None, position: str) -> Block:
        properties = dict(node["properties"])
        block_uuid = str(properties.pop("id", "") or stable_id(page_name.lower(), position))
        block = Block(
            uuid=block_uuid,
            content="\n".join(node["lines"]).strip(),
            properties=properties,
            page=page_name,
            parent=parent,
        )
        block.children = [
            build(child, block_uuid, f"{position}.{index}")
            for index, child in enumerate(node["children"])
        ]
        return block

    blocks = [build(node, None, str(index)) for index, node in enumerate(roots)]
    return page_properties, blocks


class GraphDirectoryProvider:
    """Corpus provider reading a Logseq graph directory (read-only)."""

    def __init__(self, graph_path: Path, max_nesting_level: int = MAX_NESTING_LEVEL):
        self.graph_path = graph_path
        self.max_nesting_level = max_nesting_level
        self._files: dict[str, tuple[Path, str]] = {}

    def _scan_files(self) -> list[Path]:
        files: list[Path] = []
        for folder in PAGE_FOLDERS:
            root = self.graph_path / folder
            if not root.is_dir():
                continue
            for page_file in sorted(root.rglob("*.md")):
                rel_path = page_file.relative_to(self.graph_path)
                # Skip hidden folders and Logseq's backup/version folders
                if any(part.startswith(".") for part in rel_path.parts):
                    continue
                files.append(page_file)
        return files

    async def _read(self, page_file: Path) -> str:
        async with aiofiles.open(page_file, encoding="utf-8") as f:
            return await f.read()

    async def _load_page(self, page_file: Path) -> Page | None:
        """Load a single page file and return a Page or None on error."""
        name, journal_day = page_name_from_file(page_file)
        try:
            text = await self._read(page_file)
            properties, _ = parse_outline(text, name, self.max_nesting_level)
            title = properties.get("title")
            if isinstance(title, str) and title.strip() and journal_day is None:
                name = title.strip()
            return Page(
                id=stable_id("page", name.lower()),
                name=name.lower(),
                original_name=name,
                journal=journal_day is not None,
                journal_day=journal_day,
                properties=properties,
                updated_at=int(page_file.stat().st_mtime * 1000),
            )
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("page_read_failed", path=str(page_file), error=str(e))
            return None

    async def list_all_pages(self) -> list[Page]:
        page_files = self._scan_files()
        results = await asyncio.gather(*(self._load_page(f) for f in page_files))

        pages: list[Page] = []
        self._files = {}
        for page_file, page in zip(page_files, results):
            if page is None:
                continue
            pages.append(page)
            self._files[page.name] = (page_file, page.display_name)
        logger.debug("graph_scanned", graph=str(self.graph_path), page_count=len(pages))
        return pages

    async def list_page_blocks(self, page_name: str) -> list[Block]:
        key = page_name.lower()
        if key not in self._files:
            await self.list_all_pages()
        entry = self._files.get(key)
        if entry is None:
            return []

        page_file, display_name = entry
        text = await self._read(page_file)
        _, blocks = parse_outline(text, display_name, self.max_nesting_level)
        return blocks
