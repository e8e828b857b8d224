"""
Utility functions and compiled regex patterns for Logseq Search MCP Server.

Contains the error taxonomy, parsing helpers, tag extraction and the bounded
block-tree walk.
"""

from __future__ import annotations

import re
from collections.abc import Iterator, Mapping
from typing import TYPE_CHECKING, Any

import structlog
import yaml

from .config import MAX_NESTING_LEVEL, TAG_PROPERTY_KEYS, TASK_MARKERS

if TYPE_CHECKING:
    from .models import Block

logger = structlog.get_logger(__name__)

# Pre-compiled regex patterns for performance
FRONTMATTER_PATTERN = re.compile(r'^---\s*\n(.*?)\n---\s*\n', re.DOTALL)
PROPERTY_LINE_PATTERN = re.compile(r'^\s*([A-Za-z0-9_\-?]+)::\s*(.*?)\s*$')
HASHTAG_PATTERN = re.compile(r'#([\w][\w\-/]*[\w]|\w)')
PAGE_REF_PATTERN = re.compile(r'\[\[([^\]]+)\]\]')
TAGGED_REF_PATTERN = re.compile(r'#\[\[([^\]]+)\]\]')
QUOTED_PHRASE_PATTERN = re.compile(r'"([^"]+)"')
PLACEHOLDER_PATTERN = re.compile(r'(\{\{[^}]+\}\}|<%[^%]+%>)')
# Matched against the start of a block: only a leading marker makes a task
TASK_PATTERN = re.compile(r'[ \t]*(' + '|'.join(TASK_MARKERS) + r')[ \t]+([^\n]*\S)')
SCHEDULED_PATTERN = re.compile(r'SCHEDULED:\s*<([^>]+)>')
DEADLINE_PATTERN = re.compile(r'DEADLINE:\s*<([^>]+)>')

# Page references that read like tags: #x, Capitalized, CamelCase, hyphen-case
TAG_LIKE_REF_PATTERN = re.compile(
    r'^(#.+|[A-Z][a-z]*|[A-Z][a-zA-Z]*[A-Z][a-z]*|[a-z]+(-[a-z]+)*)$'
)


# ============== Exceptions ==============

class SearchError(Exception):
    """Base class for errors surfaced by the search engine."""

    code = "INTERNAL"

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": str(self)}


class ValidationError(SearchError):
    """Raised when a search request is malformed."""

    code = "INVALID_ARGUMENT"


class BadQueryError(SearchError):
    """Raised when an atomic filter cannot be parsed."""

    code = "BAD_QUERY"


class ProviderError(SearchError):
    """Raised when the corpus provider fails."""

    code = "PROVIDER_ERROR"


class InternalError(SearchError):
    """Raised when evaluation fails unexpectedly."""

    code = "INTERNAL"


# ============== Helper Functions ==============

def parse_frontmatter(content: str) -> tuple[dict, str]:
    """Extract YAML frontmatter and body from page content."""
    frontmatter = {}
    body = content

    match = FRONTMATTER_PATTERN.match(content)
    if match:
        try:
            frontmatter = yaml.safe_load(match.group(1)) or {}
        except yaml.YAMLError:
            pass
        if not isinstance(frontmatter, dict):
            frontmatter = {}
        body = content[match.end():]

    return frontmatter, body


def parse_property_value(raw: str) -> Any:
    """Convert a `key:: value` string into the value Logseq would store.

    Comma-separated lists become lists, integers become ints and
    true/false become booleans.
    """
    value = raw.strip()
    lowered = value.lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    if re.fullmatch(r'-?\d+', value):
        return int(value)
    if "," in value:
        return [part.strip() for part in value.split(",") if part.strip()]
    return value


def parse_property_line(line: str) -> tuple[str, Any] | None:
    """Parse a single `key:: value` line, or return None."""
    match = PROPERTY_LINE_PATTERN.match(line)
    if not match:
        return None
    return match.group(1).lower(), parse_property_value(match.group(2))


def find_property(properties: Mapping[str, Any], key: str) -> tuple[bool, Any]:
    """Look up a property by key, exact first then case-insensitive.

    Returns:
        (found, value)
    """
    if key in properties:
        return True, properties[key]
    key_lower = key.lower()
    for item_key, item_value in properties.items():
        if str(item_key).lower() == key_lower:
            return True, item_value
    return False, None


def normalize_tag(tag: str) -> str:
    """Normalize a tag string for consistent comparison."""
    return tag.strip().lstrip("#").lower()


def _is_tag_property(key: str) -> bool:
    key_lower = key.lower()
    return any(tag_key in key_lower for tag_key in TAG_PROPERTY_KEYS)


def extract_content_tags(content: str) -> set[str]:
    """Extract #hashtags and tag-like [[page]] references from text."""
    tags: set[str] = set()

    for tag in HASHTAG_PATTERN.findall(content):
        if tag.strip("-"):
            tags.add(normalize_tag(tag))

    for ref in TAGGED_REF_PATTERN.findall(content):
        tags.add(normalize_tag(ref))

    for ref in PAGE_REF_PATTERN.findall(content):
        if TAG_LIKE_REF_PATTERN.match(ref):
            tags.add(normalize_tag(ref.replace("#", "")))

    return tags


def extract_all_tags(properties: Mapping[str, Any], text: str = "") -> list[str]:
    """Derive the normalized tag set of a page, block or other record.

    Sources: tag-like property keys (tags, category, labels, ...) and
    #hashtags / tag-like page references in the text.
    """
    tags: set[str] = set()

    for key, value in properties.items():
        if not _is_tag_property(str(key)):
            continue
        values = value if isinstance(value, (list, tuple, set)) else [value]
        for item in values:
            if isinstance(item, str) and item.strip():
                tags.add(normalize_tag(item))

    if text:
        tags.update(extract_content_tags(text))

    return sorted(tags)


def extract_template_placeholders(blocks: list[Block], max_depth: int = MAX_NESTING_LEVEL) -> list[str]:
    """Extract template placeholders ({{variable}}, <%variable%>) from blocks."""
    placeholders: dict[str, None] = {}
    for block, _ in walk_blocks(blocks, max_depth):
        for match in PLACEHOLDER_PATTERN.findall(block.content):
            placeholders.setdefault(match, None)
    return list(placeholders)


# ============== Block Tree Traversal ==============

def walk_blocks(blocks: list[Block], max_depth: int = MAX_NESTING_LEVEL) -> Iterator[tuple[Block, int]]:
    """Yield (block, depth) in document order, never deeper than max_depth.

    Uses an explicit stack. Top-level blocks are depth 0; children below
    max_depth are skipped.
    """
    stack: list[tuple[Block, int]] = [(block, 0) for block in reversed(blocks)]
    truncated = False

    while stack:
        block, depth = stack.pop()
        yield block, depth

        if not block.children:
            continue
        if depth + 1 > max_depth:
            truncated = True
            continue
        for child in reversed(block.children):
            stack.append((child, depth + 1))

    if truncated:
        logger.debug("block_walk_truncated", max_depth=max_depth)


def is_blank_tree(blocks: list[Block], max_depth: int = MAX_NESTING_LEVEL) -> bool:
    """True when no block in the tree has non-whitespace content."""
    return all(not block.content.strip() for block, _ in walk_blocks(blocks, max_depth))


def parse_task(content: str) -> tuple[str, str] | None:
    """Return (status, text) when a block is a task, else None."""
    match = TASK_PATTERN.match(content)
    if not match:
        return None
    status = match.group(1).upper()
    if status == "CANCELLED":
        status = "CANCELED"
    return status, match.group(2)


def extract_scheduled(content: str) -> str | None:
    match = SCHEDULED_PATTERN.search(content)
    return match.group(1) if match else None


def extract_deadline(content: str) -> str | None:
    match = DEADLINE_PATTERN.search(content)
    return match.group(1) if match else None


def stringify_value(value: Any) -> str:
    """Render a property value as text for substring matching."""
    if isinstance(value, (list, tuple, set)):
        return ", ".join(str(item) for item in value)
    if value is None:
        return ""
    return str(value)
