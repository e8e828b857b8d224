"""
Pytest configuration and fixtures for logseq-search tests.
"""

import asyncio
from collections import Counter
from datetime import date
from pathlib import Path

import pytest


class FakeProvider:
    """In-memory corpus provider that counts calls and can be told to fail."""

    def __init__(self, pages, blocks):
        self.pages = list(pages)
        self.blocks = dict(blocks)
        self.page_calls = 0
        self.block_calls = Counter()
        self.fail_pages = False
        self.fail_blocks: set[str] = set()
        self.delay = 0.0

    async def list_all_pages(self):
        self.page_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_pages:
            raise ConnectionError("graph unavailable")
        return list(self.pages)

    async def list_page_blocks(self, page_name):
        key = page_name.lower()
        self.block_calls[key] += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if key in self.fail_blocks:
            raise ConnectionError(f"cannot read {page_name}")
        return self.blocks.get(key, [])


def make_block(uuid, content, children=None, **fields):
    from logseq_search.models import Block

    return Block(uuid=uuid, content=content, children=children or [], **fields)


@pytest.fixture
def today() -> date:
    return date.today()


@pytest.fixture
def sample_pages(today):
    """Eight pages: projects, a namespace, a template, an empty page and today's journal."""
    from logseq_search.models import Page

    return [
        Page(
            id="p1",
            name="alpha project",
            original_name="Alpha Project",
            properties={"status": "open", "tags": ["work", "python"], "date": today.isoformat()},
            created_at=1_700_000_000_000,
            updated_at=1_700_000_500_000,
        ),
        Page(
            id="p2",
            name="gamma notes",
            original_name="Gamma Notes",
            properties={"status": "open", "date": "2020-01-01"},
            created_at=1_600_000_000_000,
            updated_at=1_600_000_500_000,
        ),
        Page(
            id="p3",
            name=today.isoformat(),
            journal=True,
            journal_day=int(today.strftime("%Y%m%d")),
            properties={"status": "closed"},
        ),
        Page(id="p4", name="beta/one", original_name="Beta/One"),
        Page(id="p5", name="beta/two", original_name="Beta/Two"),
        Page(id="p6", name="betamax", original_name="Betamax"),
        Page(
            id="p7",
            name="meeting template",
            original_name="Meeting Template",
            properties={"template": True, "template-type": "meeting"},
        ),
        Page(id="p8", name="empty page", original_name="Empty Page"),
    ]


@pytest.fixture
def sample_blocks(today):
    """Block trees keyed by lower-case page name."""
    return {
        "alpha project": [
            make_block(
                "b1",
                "TODO write the search engine\nSCHEDULED: <2024-05-01 Wed>",
                children=[make_block("b2", "Links to [[Gamma Notes]] and #python", parent="b1")],
            ),
            make_block("b3", "Café crème tasting notes"),
        ],
        "gamma notes": [
            make_block("b4", "DONE review #[[Beta/One]]"),
            make_block("b5", "mentions alpha project in passing"),
        ],
        "beta/one": [make_block("b6", "intro to beta")],
        "beta/two": [make_block("b7", "second beta page", properties={"owner": "sam"})],
        "betamax": [make_block("b8", "tape format")],
        "meeting template": [
            make_block(
                "b9",
                "Attendees: {{attendees}}",
                children=[make_block("b10", "Date: <%today%>", parent="b9")],
            ),
        ],
        "empty page": [make_block("b11", "   ")],
        today.isoformat(): [make_block("b12", "LATER call mom DEADLINE: <2024-06-01 Sat>")],
    }


@pytest.fixture
def provider(sample_pages, sample_blocks):
    return FakeProvider(sample_pages, sample_blocks)


@pytest.fixture
def corpus(provider):
    """CachedCorpus over the fake provider with a fresh cache."""
    from logseq_search.cache import CachedCorpus, CorpusCache
    from logseq_search.config import Settings

    config = Settings()
    return CachedCorpus(provider, CorpusCache(config), config)


@pytest.fixture
def evaluator(corpus):
    from logseq_search.evaluator import Evaluator

    return Evaluator(corpus, corpus.config)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def temp_graph(tmp_path: Path):
    """Create a temporary Logseq graph directory."""
    graph_path = tmp_path / "graph"
    (graph_path / "pages").mkdir(parents=True)
    (graph_path / "journals").mkdir()
    (graph_path / "pages" / ".recycle").mkdir()

    (graph_path / "pages" / "Alpha.md").write_text(
        "title:: Alpha Project\n"
        "tags:: work, python\n"
        "\n"
        "- TODO write the search engine\n"
        "  SCHEDULED: <2024-05-01 Wed>\n"
        "\t- links to [[Beta/One]]\n"
        "\t  id:: 6650a1b2-0000-4000-8000-000000000001\n"
        "- second root\n",
        encoding="utf-8",
    )

    (graph_path / "pages" / "Beta___One.md").write_text(
        "- intro to beta\n"
        "  owner:: sam\n",
        encoding="utf-8",
    )

    (graph_path / "pages" / "Frontmatter.md").write_text(
        "---\n"
        "status: draft\n"
        "tags:\n"
        "  - yaml\n"
        "---\n"
        "- body block\n",
        encoding="utf-8",
    )

    (graph_path / "pages" / "Props Block.md").write_text(
        "- type:: reference\n"
        "- real content\n",
        encoding="utf-8",
    )

    (graph_path / "journals" / "2024_01_15.md").write_text(
        "- DONE morning run\n"
        "- met with [[Alpha Project]]\n",
        encoding="utf-8",
    )

    (graph_path / "pages" / ".recycle" / "Deleted.md").write_text("- gone\n", encoding="utf-8")

    return graph_path
