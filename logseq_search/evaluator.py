"""
Filter evaluator for Logseq Search MCP Server.

Evaluates a parsed filter expression against the cached corpus and builds
content records. Atomic filters are recognised by prefix, in a fixed order;
anything unrecognised is a plain text match.
"""

import asyncio
from collections.abc import Iterable

import structlog

from .cache import CachedCorpus, is_template_page
from .config import MAX_NESTING_LEVEL, Settings, settings
from .dates import parse_date_query, parse_date_value, parse_journal_day
from .models import (
    Block,
    BlockRecord,
    ContentRecord,
    Page,
    PageRecord,
    PropertyRecord,
    SearchScope,
    TaskRecord,
    TemplateRecord,
)
from .query import And, Filter, Or
from .ranking import matches_query
from .utils import (
    QUOTED_PHRASE_PATTERN,
    BadQueryError,
    ProviderError,
    extract_all_tags,
    extract_deadline,
    extract_scheduled,
    extract_template_placeholders,
    find_property,
    is_blank_tree,
    parse_task,
    stringify_value,
    walk_blocks,
)

logger = structlog.get_logger(__name__)

WILDCARD_TOKENS = ("*", "all", "everything")
EMPTY_PAGE_MARKERS = ("empty", "no content", "blank")


# ============== Record builders ==============

def page_to_record(page: Page, match_reason: str | None = None) -> PageRecord:
    return PageRecord(
        id=page.id,
        name=page.display_name,
        content=page.content,
        properties=page.properties,
        tags=extract_all_tags(page.properties, page.content),
        created=page.created_at,
        updated=page.updated_at,
        journal=page.journal,
        journal_day=page.journal_day,
        match_reason=match_reason,
    )


def block_to_record(block: Block, page_name: str) -> BlockRecord:
    return BlockRecord(
        id=block.uuid,
        name=page_name,
        content=block.content,
        properties=block.properties,
        tags=extract_all_tags(block.properties, block.content),
        created=block.created_at,
        updated=block.updated_at,
        page=page_name,
        parent=block.parent,
        children=[child.uuid for child in block.children],
    )


def block_to_task(block: Block, page_name: str) -> TaskRecord | None:
    task = parse_task(block.content)
    if task is None:
        return None
    status, text = task
    return TaskRecord(
        id=block.uuid,
        name=page_name,
        content=text,
        properties=block.properties,
        tags=extract_all_tags(block.properties, block.content),
        created=block.created_at,
        updated=block.updated_at,
        page=page_name,
        status=status,
        scheduled=extract_scheduled(block.content),
        deadline=extract_deadline(block.content),
    )


def page_to_template(page: Page, blocks: list[Block] | None = None,
                     max_depth: int = MAX_NESTING_LEVEL) -> TemplateRecord:
    found, template_type = find_property(page.properties, "template-type")
    content = page.content
    placeholders: list[str] = []
    if blocks:
        content = "\n".join(block.content for block, _ in walk_blocks(blocks, max_depth) if block.content.strip())
        placeholders = extract_template_placeholders(blocks, max_depth)
    return TemplateRecord(
        id=page.id,
        name=page.display_name,
        content=content,
        properties=page.properties,
        tags=extract_all_tags(page.properties, content),
        created=page.created_at,
        updated=page.updated_at,
        template_type=str(template_type) if found and template_type else "page",
        placeholders=placeholders,
    )


def property_records(owner_id: str, owner: str, page_name: str, properties: dict,
                     created=None, updated=None) -> list[PropertyRecord]:
    return [
        PropertyRecord(
            id=f"{owner_id}:{key}",
            name=str(key),
            content=stringify_value(value),
            properties={key: value},
            created=created,
            updated=updated,
            owner=owner,
            page=page_name,
            key=str(key),
            value=value,
        )
        for key, value in properties.items()
    ]


def _quoted_argument(text: str, prefix: str) -> str:
    """Return the quoted argument of `prefix"VALUE"` or raise BadQueryError."""
    match = QUOTED_PHRASE_PATTERN.match(text[len(prefix):].strip())
    if not match or not match.group(1).strip():
        raise BadQueryError(f'{prefix} requires a quoted page name, e.g. {prefix}"Page"')
    return match.group(1).strip()


# ============== Set algebra ==============

def intersect_records(result_sets: list[list[ContentRecord]]) -> list[ContentRecord]:
    """Records of the first set whose id appears in every other set."""
    if not result_sets:
        return []
    first, *others = result_sets
    other_ids = [{record.id for record in records} for records in others]
    return [record for record in first if all(record.id in ids for ids in other_ids)]


def union_records(result_sets: list[list[ContentRecord]]) -> list[ContentRecord]:
    """Union by id, first occurrence wins."""
    seen: set[str] = set()
    merged: list[ContentRecord] = []
    for records in result_sets:
        for record in records:
            if record.id not in seen:
                seen.add(record.id)
                merged.append(record)
    return merged


# ============== Evaluator ==============

class Evaluator:
    """Evaluates filter expressions against a CachedCorpus."""

    def __init__(self, corpus: CachedCorpus, config: Settings = settings):
        self.corpus = corpus
        self.config = config

    async def evaluate(
        self,
        expr: Filter | And | Or,
        target: str = "both",
        strict: bool = False,
        scope: SearchScope | None = None,
    ) -> list[ContentRecord]:
        """Evaluate an expression tree.

        With strict=True a malformed root filter raises BadQueryError instead
        of matching nothing.
        """
        return await self._evaluate(expr, target, scope, strict and isinstance(expr, Filter))

    async def _evaluate(self, expr, target: str, scope: SearchScope | None, strict: bool) -> list[ContentRecord]:
        if isinstance(expr, Filter):
            return await self.evaluate_filter(expr.text, target, scope, strict)

        results = await asyncio.gather(
            *(self._evaluate(operand, target, scope, False) for operand in expr.operands)
        )
        if isinstance(expr, And):
            return intersect_records(list(results))
        return union_records(list(results))

    async def evaluate_filter(
        self,
        text: str,
        target: str = "both",
        scope: SearchScope | None = None,
        strict: bool = False,
    ) -> list[ContentRecord]:
        """Evaluate one atomic filter; bad filters and provider failures match nothing."""
        if not text.strip():
            return []
        try:
            return await self._dispatch(text.strip(), target, scope)
        except BadQueryError as e:
            if strict:
                raise
            logger.warning("filter_rejected", filter=text, error=str(e))
            return []
        except ProviderError as e:
            logger.warning("filter_provider_failed", filter=text, error=str(e))
            return []

    async def _dispatch(self, text: str, target: str, scope: SearchScope | None) -> list[ContentRecord]:
        lowered = text.lower()

        if lowered in WILDCARD_TOKENS:
            return [page_to_record(page) for page in await self.corpus.get_all_pages()]
        if any(marker in lowered for marker in EMPTY_PAGE_MARKERS):
            return await self._empty_pages()
        if lowered.startswith("property:"):
            return await self._property_equals(text[len("property:"):])
        if lowered.startswith("properties:"):
            return await self._properties(text[len("properties:"):])
        if lowered.startswith("date:"):
            return await self._date_pages(text[len("date:"):])
        if lowered.startswith("templates:"):
            return await self._template_listing(text[len("templates:"):])
        if lowered.startswith("template:"):
            return await self._template_by_name(_quoted_argument(text, "template:"))
        if lowered.startswith("backlinks:"):
            return await self._linking_pages(_quoted_argument(text, "backlinks:"), mentions=False)
        if lowered.startswith("references:"):
            return await self._linking_pages(_quoted_argument(text, "references:"), mentions=True)
        if lowered.startswith("page:"):
            return await self._page_blocks(_quoted_argument(text, "page:"))
        return await self._text_match(text, target, scope)

    # ----- bounded page scans -----

    async def _blocks_or_none(self, page: Page) -> list[Block] | None:
        """Fetch one page's blocks; a failure skips only that page."""
        try:
            return await self.corpus.get_page_blocks(page.name)
        except ProviderError as e:
            logger.warning("page_blocks_unavailable", page=page.display_name, error=str(e))
            return None

    async def _page_trees(self, pages: list[Page]) -> list[tuple[Page, list[Block]]]:
        trees = await asyncio.gather(*(self._blocks_or_none(page) for page in pages))
        return [(page, blocks) for page, blocks in zip(pages, trees) if blocks is not None]

    async def _scan_pages(self, scope: SearchScope | None = None) -> list[Page]:
        """Pages whose blocks are scanned: scope.page_titles, or the first N pages."""
        pages = await self.corpus.get_all_pages()
        if scope is not None and scope.page_titles:
            wanted = {title.lower() for title in scope.page_titles}
            return [page for page in pages if page.display_name.lower() in wanted or page.name.lower() in wanted]
        return pages[:self.config.block_scan_page_limit]

    def _walk(self, blocks: list[Block]) -> Iterable[Block]:
        for block, _ in walk_blocks(blocks, self.config.max_nesting_level):
            yield block

    # ----- atomic filters -----

    async def _empty_pages(self) -> list[ContentRecord]:
        pages = (await self.corpus.get_all_pages())[:self.config.empty_page_scan_limit]
        return [
            page_to_record(page, match_reason="empty page")
            for page, blocks in await self._page_trees(pages)
            if is_blank_tree(blocks, self.config.max_nesting_level)
        ]

    async def _property_equals(self, argument: str) -> list[ContentRecord]:
        if "=" not in argument:
            raise BadQueryError("property filter must look like property:KEY=VALUE")
        key, value = (part.strip() for part in argument.split("=", 1))
        value = value.strip('"')
        if not key or not value:
            raise BadQueryError("property filter needs both a key and a value")

        needle = value.lower()
        records: list[ContentRecord] = []
        for page in await self.corpus.get_all_pages():
            found, page_value = find_property(page.properties, key)
            if not found or page_value is None:
                continue
            if needle in stringify_value(page_value).lower():
                records.append(page_to_record(page, match_reason=f"property {key}"))
        return records

    async def _properties(self, argument: str) -> list[ContentRecord]:
        argument = argument.strip()
        if argument.lower() in ("*", "all"):
            return [
                page_to_record(page, match_reason="has properties")
                for page in await self.corpus.get_all_pages()
                if page.properties
            ]
        if argument.lower().startswith("page="):
            name = argument[len("page="):].strip().strip('"').strip()
            if not name:
                raise BadQueryError('properties:page= requires a page name')
            for page in await self.corpus.get_all_pages():
                if page.display_name.lower() == name.lower() or page.name.lower() == name.lower():
                    return property_records(
                        page.id, "page", page.display_name, page.properties, page.created_at, page.updated_at
                    )
            return []
        raise BadQueryError('properties filter must be properties:* or properties:page="NAME"')

    async def _date_pages(self, token: str) -> list[ContentRecord]:
        date_range = parse_date_query(token)
        if date_range is None:
            raise BadQueryError(
                f"Unknown date '{token}'. Use today, yesterday, last-week, last-month or YYYY-MM-DD"
            )
        start, end = date_range

        records: list[ContentRecord] = []
        for page in (await self.corpus.get_all_pages())[:self.config.date_scan_limit]:
            candidates = [parse_journal_day(page.journal_day)] if page.journal else []
            for value in page.properties.values():
                values = value if isinstance(value, (list, tuple)) else [value]
                candidates.extend(parse_date_value(item) for item in values)
            if any(day is not None and start <= day <= end for day in candidates):
                records.append(page_to_record(page, match_reason="date"))
        return records

    async def _template_listing(self, argument: str) -> list[ContentRecord]:
        if argument.strip().lower() not in ("*", "all"):
            raise BadQueryError('templates filter must be templates:* or templates:all')
        return [page_to_template(page) for page in await self.corpus.get_templates()]

    async def _template_by_name(self, name: str) -> list[ContentRecord]:
        wanted = name.lower()
        pages = await self.corpus.get_all_pages()
        match = next((page for page in pages if page.display_name.lower() == wanted), None)
        if match is None:
            match = next(
                (page for page in pages if wanted in page.display_name.lower() and is_template_page(page)),
                None,
            )
        if match is None:
            return []
        return [page_to_template(match, await self._blocks_or_none(match), self.config.max_nesting_level)]

    async def _linking_pages(self, target_name: str, mentions: bool) -> list[ContentRecord]:
        target = target_name.lower()
        patterns = {f"[[{target}]]", f"#[[{target}]]", f"#{target}"}
        segments = target.split("/")
        if len(segments) > 1:
            for segment in segments:
                if segment:
                    patterns.update({f"[[{segment}]]", f"#{segment}"})

        def references(content: str) -> bool:
            lowered = content.lower()
            if any(pattern in lowered for pattern in patterns):
                return True
            return mentions and target in lowered

        pages = (await self.corpus.get_all_pages())[:self.config.link_scan_limit]
        reason = "reference" if mentions else "backlink"
        records: list[ContentRecord] = []
        for page, blocks in await self._page_trees(pages):
            if page.display_name.lower() == target:
                continue
            if any(references(block.content) for block in self._walk(blocks)):
                records.append(page_to_record(page, match_reason=reason))
        return records

    async def _page_blocks(self, name: str) -> list[ContentRecord]:
        page = next(
            (p for p in await self.corpus.get_all_pages()
             if p.display_name.lower() == name.lower() or p.name.lower() == name.lower()),
            None,
        )
        if page is None:
            return []
        blocks = await self.corpus.get_page_blocks(page.name)
        return [block_to_record(block, page.display_name) for block in self._walk(blocks)]

    async def _text_match(self, text: str, target: str, scope: SearchScope | None) -> list[ContentRecord]:
        if target == "pages":
            return [r for r in await self.collect_pages() if matches_query(r.name, text)]
        if target == "blocks":
            return [r for r in await self.collect_blocks(scope) if matches_query(r.content, text)]
        if target == "both":
            pages = [r for r in await self.collect_pages() if matches_query(r.name, text)]
            blocks = [r for r in await self.collect_blocks(scope) if matches_query(r.content, text)]
            return pages + blocks
        if target == "templates":
            return [
                r for r in await self.collect_templates()
                if matches_query(r.name, text) or matches_query(r.content, text)
            ]
        if target == "tasks":
            return [r for r in await self.collect_tasks(scope) if matches_query(r.content, text)]
        return [
            r for r in await self.collect_properties(scope)
            if matches_query(r.key, text) or matches_query(r.content, text)
        ]

    # ----- target collectors -----

    async def collect_pages(self) -> list[PageRecord]:
        return [page_to_record(page) for page in await self.corpus.get_all_pages()]

    async def collect_blocks(self, scope: SearchScope | None = None) -> list[BlockRecord]:
        records: list[BlockRecord] = []
        for page, blocks in await self._page_trees(await self._scan_pages(scope)):
            records.extend(
                block_to_record(block, page.display_name) for block in self._walk(blocks) if block.content.strip()
            )
        return records

    async def collect_tasks(self, scope: SearchScope | None = None) -> list[TaskRecord]:
        records: list[TaskRecord] = []
        for page, blocks in await self._page_trees(await self._scan_pages(scope)):
            for block in self._walk(blocks):
                task = block_to_task(block, page.display_name)
                if task is not None:
                    records.append(task)
        return records

    async def collect_templates(self) -> list[TemplateRecord]:
        return [page_to_template(page) for page in await self.corpus.get_templates()]

    async def collect_properties(self, scope: SearchScope | None = None) -> list[PropertyRecord]:
        records: list[PropertyRecord] = []
        for page in await self.corpus.get_all_pages():
            records.extend(property_records(
                page.id, "page", page.display_name, page.properties, page.created_at, page.updated_at
            ))
        for page, blocks in await self._page_trees(await self._scan_pages(scope)):
            for block in self._walk(blocks):
                records.extend(property_records(
                    block.uuid, "block", page.display_name, block.properties, block.created_at, block.updated_at
                ))
        return records

    async def collect(self, target: str, scope: SearchScope | None = None) -> list[ContentRecord]:
        """Every record of a target, used when the query is empty."""
        try:
            return await self._collect(target, scope)
        except ProviderError as e:
            logger.warning("collect_provider_failed", target=target, error=str(e))
            return []

    async def _collect(self, target: str, scope: SearchScope | None) -> list[ContentRecord]:
        if target == "pages":
            return await self.collect_pages()
        if target == "blocks":
            return await self.collect_blocks(scope)
        if target == "both":
            return [*await self.collect_pages(), *await self.collect_blocks(scope)]
        if target == "templates":
            return await self.collect_templates()
        if target == "tasks":
            return await self.collect_tasks(scope)
        return await self.collect_properties(scope)
