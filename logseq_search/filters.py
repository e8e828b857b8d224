"""
Scope and attribute filters for Logseq Search MCP Server.

Applied after query evaluation. Every category present in the request must
hold for a record to survive.
"""

from collections.abc import Sequence
from typing import Any

from .dates import to_timestamp
from .models import BaseRecord, SearchFilter, SearchScope, TaskRecord
from .utils import find_property, normalize_tag


def matches_property_value(item_value: Any, filter_value: Any) -> bool:
    """Compare a record's property value with a requested value.

    Rules, first match wins: True means "exists", a missing value only
    matches None, lists intersect or test membership, strings compare
    case-insensitively, numbers and booleans are coerced.
    """
    if filter_value is True:
        return item_value is not None
    if item_value is None:
        return filter_value is None

    item_is_list = isinstance(item_value, (list, tuple, set))
    filter_is_list = isinstance(filter_value, (list, tuple, set))
    if item_is_list and filter_is_list:
        return any(
            matches_property_value(item, wanted) for item in item_value for wanted in filter_value
        )
    if item_is_list:
        return any(matches_property_value(item, filter_value) for item in item_value)
    if filter_is_list:
        return any(matches_property_value(item_value, wanted) for wanted in filter_value)

    if isinstance(item_value, str) and isinstance(filter_value, str):
        return item_value.strip().lower() == filter_value.strip().lower()
    if isinstance(filter_value, (int, float)) and not isinstance(filter_value, bool):
        try:
            return float(item_value) == float(filter_value)
        except (TypeError, ValueError):
            return False
    if isinstance(filter_value, bool):
        if isinstance(item_value, str):
            return (item_value.strip().lower() in ("true", "yes", "1")) == filter_value
        return bool(item_value) == filter_value
    return item_value == filter_value


def _has_property(record: BaseRecord, key: str, wanted: Any) -> bool:
    found, value = find_property(record.properties, key)
    if not found:
        value = None
    return matches_property_value(value, wanted)


def _in_namespace(name: str, namespace: str) -> bool:
    name = name.lower()
    namespace = namespace.strip().strip("/").lower()
    return name == namespace or name.startswith(f"{namespace}/")


def matches_scope(record: BaseRecord, scope: SearchScope) -> bool:
    if scope.namespace and not _in_namespace(record.scope_name(), scope.namespace):
        return False
    if scope.page_titles is not None:
        titles = {title.lower() for title in scope.page_titles}
        if record.scope_name().lower() not in titles:
            return False
    if scope.journal is not None and record.is_journal() != scope.journal:
        return False
    if scope.tag and normalize_tag(scope.tag) not in record.tags:
        return False
    return True


def apply_scope_filters(records: Sequence[BaseRecord], scope: SearchScope | None) -> list[BaseRecord]:
    if scope is None:
        return list(records)
    return [record for record in records if matches_scope(record, scope)]


def _date_clause(value: Any, bound: Any, after: bool) -> bool:
    """Strict before/after comparison; unparseable sides skip the clause."""
    value_ts = to_timestamp(value)
    bound_ts = to_timestamp(bound)
    if value_ts is None or bound_ts is None:
        return True
    return value_ts > bound_ts if after else value_ts < bound_ts


def _matches_task_clauses(record: BaseRecord, search_filter: SearchFilter) -> bool:
    if not isinstance(record, TaskRecord):
        return True
    if search_filter.todo_state and record.status.lower() != search_filter.todo_state.strip().lower():
        return False
    if search_filter.scheduled_on and not (record.scheduled or "").startswith(search_filter.scheduled_on):
        return False
    if search_filter.deadlined_on and not (record.deadline or "").startswith(search_filter.deadlined_on):
        return False
    return True


def matches_filter(record: BaseRecord, search_filter: SearchFilter) -> bool:
    text = record.primary_text()

    if search_filter.length_min is not None and len(text) < search_filter.length_min:
        return False
    if search_filter.length_max is not None and len(text) > search_filter.length_max:
        return False

    if search_filter.properties_all and not all(
        _has_property(record, key, wanted) for key, wanted in search_filter.properties_all.items()
    ):
        return False
    if search_filter.properties_any and not any(
        _has_property(record, key, wanted) for key, wanted in search_filter.properties_any.items()
    ):
        return False

    tags = set(record.tags)
    if search_filter.tags_all and not all(normalize_tag(tag) in tags for tag in search_filter.tags_all):
        return False
    if search_filter.tags_any and not any(normalize_tag(tag) in tags for tag in search_filter.tags_any):
        return False

    date_clauses = (
        (record.created, search_filter.created_after, True),
        (record.created, search_filter.created_before, False),
        (record.updated, search_filter.updated_after, True),
        (record.updated, search_filter.updated_before, False),
    )
    for value, bound, after in date_clauses:
        if bound is not None and not _date_clause(value, bound, after):
            return False

    lowered = text.lower()
    if search_filter.contains and search_filter.contains.lower() not in lowered:
        return False
    if search_filter.exclude and search_filter.exclude.lower() in lowered:
        return False

    return _matches_task_clauses(record, search_filter)


def apply_filters(records: Sequence[BaseRecord], search_filter: SearchFilter | None) -> list[BaseRecord]:
    if search_filter is None:
        return list(records)
    return [record for record in records if matches_filter(record, search_filter)]
