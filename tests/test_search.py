"""
End-to-end tests for execute_search.
"""

import pytest


def ids(result):
    return [record.id for record in result.results]


class TestExecuteSearch:
    """Tests for the full search pipeline."""

    async def test_wildcard_returns_every_page(self, corpus):
        """Test '*' over N pages finds N page records."""
        from logseq_search.search import execute_search

        result = await execute_search(corpus, {"query": "*", "target": "pages", "limit": 100})

        assert result.total_found == 8
        assert all(record.type == "page" for record in result.results)
        assert result.has_more is False
        assert result.next_cursor is None

    async def test_property_and_date(self, corpus):
        """Test 'property:status=open AND date:today' finds the open page dated today."""
        from logseq_search.search import execute_search

        result = await execute_search(corpus, {"query": "property:status=open AND date:today"})

        assert ids(result) == ["p1"]

    async def test_namespace_scope(self, corpus):
        """Test the Beta namespace keeps Beta/One and Beta/Two."""
        from logseq_search.search import execute_search

        result = await execute_search(
            corpus, {"query": "", "target": "pages", "scope": {"namespace": "Beta"}, "sort": "title", "order": "asc"}
        )

        assert [record.name for record in result.results] == ["Beta/One", "Beta/Two"]

    async def test_stringified_scope_and_filter(self, corpus):
        """Test scope and filter may arrive as JSON strings."""
        from logseq_search.search import execute_search

        result = await execute_search(
            corpus,
            {
                "query": "*",
                "target": "pages",
                "scope": '{"tag": "python"}',
                "filter": '{"properties_all": {"status": "open"}}',
            },
        )

        assert ids(result) == ["p1"]

    async def test_relevance_ranking(self, corpus):
        """Test results are ordered by relevance by default."""
        from logseq_search.search import execute_search

        result = await execute_search(corpus, {"query": "beta", "target": "both"})

        # Every match has the token "beta" except Betamax, which only contains it
        assert result.results[-1].id == "p6"
        assert result.results[0].relevance_score == 60
        scores = [record.relevance_score for record in result.results]
        assert scores == sorted(scores, reverse=True)

    async def test_pagination_continuity(self, corpus):
        """Test cursor pages cover the whole result set exactly once."""
        from logseq_search.search import execute_search

        seen = []
        cursor = None
        pages = 0
        while True:
            request = {"query": "*", "target": "pages", "limit": 3}
            if cursor:
                request["cursor"] = cursor
            result = await execute_search(corpus, request)
            seen.extend(ids(result))
            pages += 1
            if not result.has_more:
                assert result.next_cursor is None
                break
            cursor = result.next_cursor

        assert pages == 3
        assert len(seen) == len(set(seen)) == 8

    async def test_second_call_served_from_cache(self, corpus, provider):
        """Test an identical request does not reach the provider again."""
        from logseq_search.search import execute_search

        request = {"query": "beta", "target": "blocks"}
        first = await execute_search(corpus, request)
        page_calls = provider.page_calls
        block_calls = sum(provider.block_calls.values())

        second = await execute_search(corpus, request)

        assert ids(first) == ids(second)
        assert provider.page_calls == page_calls
        assert sum(provider.block_calls.values()) == block_calls

    async def test_cached_results_until_invalidated(self, corpus, provider):
        """Test cursor pages reuse the cached set until the cache is invalidated."""
        from logseq_search.models import Page
        from logseq_search.search import execute_search

        request = {"query": "*", "target": "pages"}
        assert (await execute_search(corpus, request)).total_found == 8

        provider.pages.append(Page(id="p9", name="new page"))
        assert (await execute_search(corpus, request)).total_found == 8

        corpus.cache.invalidate("all")
        assert (await execute_search(corpus, request)).total_found == 9

    async def test_different_filters_not_shared(self, corpus):
        """Test requests differing only in filter get their own results."""
        from logseq_search.search import execute_search

        plain = await execute_search(corpus, {"query": "*", "target": "pages"})
        filtered = await execute_search(
            corpus, {"query": "*", "target": "pages", "filter": {"properties_all": {"status": "open"}}}
        )

        assert plain.total_found == 8
        assert filtered.total_found == 2

    async def test_limit_bounds(self, corpus):
        """Test limit 100 is accepted and 101 is rejected."""
        from logseq_search.search import execute_search
        from logseq_search.utils import ValidationError

        result = await execute_search(corpus, {"query": "*", "limit": 100})
        assert result.total_found == 8

        with pytest.raises(ValidationError):
            await execute_search(corpus, {"query": "*", "limit": 101})
        with pytest.raises(ValidationError):
            await execute_search(corpus, {"query": "*", "limit": 0})

    async def test_limit_follows_corpus_settings(self, provider):
        """Test the corpus's own settings give the default and maximum limit."""
        from logseq_search.cache import CachedCorpus
        from logseq_search.config import Settings
        from logseq_search.search import execute_search
        from logseq_search.utils import ValidationError

        corpus = CachedCorpus(provider, config=Settings(default_limit=3, max_limit=5))

        default = await execute_search(corpus, {"query": "*", "target": "pages"})
        widest = await execute_search(corpus, {"query": "*", "target": "pages", "limit": 5})

        assert len(default.results) == 3
        assert len(widest.results) == 5
        with pytest.raises(ValidationError, match="between 1 and 5"):
            await execute_search(corpus, {"query": "*", "limit": 6})

    async def test_numeric_string_limit(self, corpus):
        """Test a numeric string limit is accepted."""
        from logseq_search.search import execute_search

        result = await execute_search(corpus, {"query": "*", "target": "pages", "limit": "2"})

        assert len(result.results) == 2

    async def test_invalid_cursor_starts_at_zero(self, corpus):
        """Test a non-numeric cursor behaves like no cursor."""
        from logseq_search.search import execute_search

        first = await execute_search(corpus, {"query": "*", "target": "pages", "limit": 3})
        bad = await execute_search(corpus, {"query": "*", "target": "pages", "limit": 3, "cursor": "not-a-number"})

        assert ids(bad) == ids(first)

    async def test_invalid_target(self, corpus):
        """Test an unknown target is a validation error."""
        from logseq_search.search import execute_search
        from logseq_search.utils import ValidationError

        with pytest.raises(ValidationError):
            await execute_search(corpus, {"query": "x", "target": "graphs"})

    async def test_strict_bad_query(self, corpus):
        """Test strict mode surfaces a malformed root filter."""
        from logseq_search.search import execute_search
        from logseq_search.utils import BadQueryError

        lenient = await execute_search(corpus, {"query": "date:someday"})
        assert lenient.total_found == 0

        with pytest.raises(BadQueryError):
            await execute_search(corpus, {"query": "date:someday", "strict": True})

    async def test_provider_down_gives_empty_result(self, corpus, provider):
        """Test provider failures are absorbed into an empty result."""
        from logseq_search.search import execute_search

        provider.fail_pages = True

        result = await execute_search(corpus, {"query": "*"})

        assert result.total_found == 0
        assert result.results == []

    async def test_unexpected_error_is_internal(self, corpus, monkeypatch):
        """Test unexpected exceptions are wrapped as InternalError."""
        from logseq_search import search
        from logseq_search.utils import InternalError

        def broken(*args, **kwargs):
            raise KeyError("boom")

        monkeypatch.setattr(search, "apply_sorting", broken)

        with pytest.raises(InternalError) as excinfo:
            await search.execute_search(corpus, {"query": "*"})

        assert isinstance(excinfo.value.__cause__, KeyError)

    async def test_empty_query_collects_tasks(self, corpus):
        """Test an empty task query lists every task, filterable by state."""
        from logseq_search.search import execute_search

        everything = await execute_search(corpus, {"target": "tasks"})
        done = await execute_search(corpus, {"target": "tasks", "filter": {"todoState": "DONE"}})

        assert sorted(ids(everything)) == ["b1", "b12", "b4"]
        assert ids(done) == ["b4"]

    async def test_journal_scope_and_sort(self, corpus):
        """Test journal scope and sorting by created date."""
        from logseq_search.search import execute_search

        journals = await execute_search(corpus, {"query": "*", "target": "pages", "scope": {"journal": True}})
        by_created = await execute_search(corpus, {"query": "property:status=open", "sort": "created", "order": "asc"})

        assert ids(journals) == ["p3"]
        assert ids(by_created) == ["p2", "p1"]
