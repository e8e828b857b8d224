"""
Relevance scoring and sorting for Logseq Search MCP Server.
"""

import re
import unicodedata
from collections.abc import Sequence

from .dates import to_timestamp
from .models import BaseRecord
from .utils import QUOTED_PHRASE_PATTERN

NON_WORD_PATTERN = re.compile(r'[^\w\s-]')
WHITESPACE_PATTERN = re.compile(r'\s+')

# Missing or unparseable dates sort as the earliest possible timestamp
EARLIEST = float("-inf")


def normalize_text(text: str) -> str:
    """Lower-case, strip diacritics and punctuation, collapse whitespace."""
    decomposed = unicodedata.normalize("NFD", text.lower())
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    stripped = NON_WORD_PATTERN.sub(" ", stripped)
    return WHITESPACE_PATTERN.sub(" ", stripped).strip()


def matches_query(text: str, query: str) -> bool:
    """Case-insensitive match used by the fallback text filter.

    Quoted phrases must all be contained; otherwise the whole query must be
    a substring.
    """
    haystack = text.lower()
    phrases = QUOTED_PHRASE_PATTERN.findall(query)
    if phrases:
        return all(phrase.lower() in haystack for phrase in phrases)
    return query.strip().lower() in haystack


def relevance_score(text: str, query: str) -> float:
    """Score text against a query.

    Quoted phrases score 100 each and short-circuit token scoring. Otherwise
    an exact match adds 100 and a substring match 50, then each exact token
    pair adds 10 and each partial token pair 5.
    """
    if not query or not text:
        return 0.0

    phrases = QUOTED_PHRASE_PATTERN.findall(query)
    if phrases:
        lowered = text.lower()
        return float(sum(100 for phrase in phrases if phrase.lower() in lowered))

    norm_text = normalize_text(text)
    norm_query = normalize_text(query)
    if not norm_query:
        return 0.0

    score = 0.0
    # An exact match also counts as a substring match
    if norm_text == norm_query:
        score += 100
    if norm_query in norm_text:
        score += 50

    text_tokens = norm_text.split()
    for query_token in norm_query.split():
        for text_token in text_tokens:
            if text_token == query_token:
                score += 10
            elif query_token in text_token:
                score += 5
    return score


def _sort_key(record: BaseRecord, sort: str):
    if sort == "title":
        return record.name.lower()
    if sort == "page_title":
        return record.scope_name().lower()
    if sort == "length":
        return len(record.primary_text())
    if sort in ("created", "updated", "deadline", "scheduled"):
        value = getattr(record, sort, None)
        timestamp = to_timestamp(value)
        return EARLIEST if timestamp is None else timestamp
    return record.relevance_score


def apply_sorting(
    records: Sequence[BaseRecord],
    query: str | None,
    sort: str = "relevance",
    order: str = "desc",
) -> list[BaseRecord]:
    """Score every record and return a stably sorted list of scored copies."""
    scored = [
        record.model_copy(update={"relevance_score": relevance_score(record.ranking_text(), query or "")})
        for record in records
    ]
    return sorted(scored, key=lambda record: _sort_key(record, sort), reverse=order == "desc")
