"""
Tests for request validation and record models.
"""

import pytest


class TestSearchRequest:
    """Tests for SearchRequest.from_arguments."""

    def test_defaults(self):
        """Test the default target, sort, order and limit."""
        from logseq_search.models import SearchRequest

        request = SearchRequest.from_arguments({})

        assert request.target == "both"
        assert request.sort == "relevance"
        assert request.order == "desc"
        assert request.limit == 20
        assert request.strict is False

    def test_filter_aliases(self):
        """Test camelCase filter keys populate their fields."""
        from logseq_search.models import SearchRequest

        request = SearchRequest.from_arguments({"filter": {"lengthMin": 3, "createdAfter": "2024-01-01"}})

        assert request.filter.length_min == 3
        assert request.filter.created_after == "2024-01-01"

    def test_stringified_lists(self):
        """Test stringified tag and page lists are decoded."""
        from logseq_search.models import SearchRequest

        request = SearchRequest.from_arguments({
            "filter": {"tags_all": '["a", "b"]'},
            "scope": {"page_titles": '["Alpha"]'},
        })

        assert request.filter.tags_all == ["a", "b"]
        assert request.scope.page_titles == ["Alpha"]

    def test_none_values_use_defaults(self):
        """Test explicit nulls fall back to defaults."""
        from logseq_search.models import SearchRequest

        request = SearchRequest.from_arguments({"limit": None, "target": None, "cursor": 40})

        assert request.limit == 20
        assert request.target == "both"
        assert request.cursor == "40"

    def test_validation_error_message(self):
        """Test pydantic errors become ValidationError with the field location."""
        from logseq_search.models import SearchRequest
        from logseq_search.utils import ValidationError

        with pytest.raises(ValidationError, match="limit"):
            SearchRequest.from_arguments({"limit": 500})

        with pytest.raises(ValidationError, match="length_min|lengthMin"):
            SearchRequest.from_arguments({"filter": {"lengthMin": -1}})

    def test_request_instance_checked_against_config(self):
        """Test a prebuilt request is re-checked against the given settings."""
        from logseq_search.config import Settings
        from logseq_search.models import SearchRequest
        from logseq_search.utils import ValidationError

        request = SearchRequest.from_arguments({"query": "a", "limit": 50, "filter": {"lengthMin": 2}})

        with pytest.raises(ValidationError, match="limit"):
            SearchRequest.from_arguments(request, Settings(max_limit=10))
        again = SearchRequest.from_arguments(request, Settings())
        assert again.limit == 50
        assert again.filter.length_min == 2

    def test_shape_digest(self):
        """Test the digest ignores query/limit/cursor but not filters or sort."""
        from logseq_search.models import SearchRequest

        base = SearchRequest.from_arguments({"query": "a", "limit": 5})
        other_query = SearchRequest.from_arguments({"query": "b", "cursor": "10"})
        sorted_by_title = SearchRequest.from_arguments({"query": "a", "sort": "title"})
        filtered = SearchRequest.from_arguments({"query": "a", "filter": {"contains": "x"}})

        assert base.shape_digest() == other_query.shape_digest()
        assert base.shape_digest() != sorted_by_title.shape_digest()
        assert base.shape_digest() != filtered.shape_digest()


class TestRecords:
    """Tests for content record variants."""

    def test_discriminated_union(self):
        """Test result records round-trip through the type tag."""
        from logseq_search.models import SearchResult

        result = SearchResult.model_validate({
            "results": [
                {"type": "page", "id": "p1", "name": "Alpha"},
                {"type": "task", "id": "t1", "content": "ship it", "status": "DOING"},
            ],
            "total_found": 2,
            "has_more": False,
        })

        assert [type(r).__name__ for r in result.results] == ["PageRecord", "TaskRecord"]

    def test_records_are_frozen(self):
        """Test records cannot be mutated."""
        from pydantic import ValidationError as PydanticValidationError

        from logseq_search.models import PageRecord

        record = PageRecord(id="p1", name="Alpha")

        with pytest.raises(PydanticValidationError):
            record.name = "Beta"

    def test_primary_and_scope_text(self):
        """Test per-variant primary text and scope name."""
        from logseq_search.models import BlockRecord, PageRecord

        page = PageRecord(id="p1", name="Alpha", content="")
        block = BlockRecord(id="b1", content="hello", page="Alpha/Notes")

        assert page.primary_text() == "Alpha"
        assert block.primary_text() == "hello"
        assert block.scope_name() == "Alpha/Notes"
        assert page.is_journal() is False
