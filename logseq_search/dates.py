"""
Date helpers for Logseq Search MCP Server.

Parses `date:` query tokens, journal days and the timestamp formats seen in
page/block metadata and request filters.
"""

import calendar
import re
from datetime import date, datetime, timedelta, timezone
from typing import Any

DATE_LIKE_PATTERNS = (
    re.compile(r'^\d{4}-\d{2}-\d{2}$'),
    re.compile(r'^\d{2}/\d{2}/\d{4}$'),
    re.compile(r'^\d{4}/\d{2}/\d{2}$'),
    re.compile(r'^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}'),
)

DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%Y/%m/%d")

# SCHEDULED/DEADLINE bodies: "2024-05-01 Wed", "2024-05-01 Wed 10:30", "2024-05-01 Wed .+1w"
LOGSEQ_TIMESTAMP_PATTERN = re.compile(r'^(\d{4}-\d{2}-\d{2})\s+[A-Za-z]{2,3}\b(?:\s+(\d{1,2}:\d{2}))?')

DateRange = tuple[date, date]


def subtract_months(day: date, months: int) -> date:
    """Calendar month subtraction, clamped to the last day of the target month."""
    month_index = day.year * 12 + (day.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def parse_date_query(token: str, today: date | None = None) -> DateRange | None:
    """Resolve a `date:` token into an inclusive date range.

    Returns None for unknown tokens.
    """
    today = today or date.today()
    value = token.strip().lower()

    if value == "today":
        return today, today
    if value == "yesterday":
        day = today - timedelta(days=1)
        return day, day
    if value in ("last-week", "last week"):
        return today - timedelta(days=7), today
    if value in ("last-month", "last month"):
        return subtract_months(today, 1), today

    try:
        day = datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        return None
    return day, day


def parse_journal_day(journal_day: Any) -> date | None:
    """Convert Logseq's yyyymmdd journal day integer to a date."""
    if journal_day is None or isinstance(journal_day, bool):
        return None
    try:
        return datetime.strptime(str(int(journal_day)), "%Y%m%d").date()
    except (TypeError, ValueError):
        return None


def is_date_like(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    value = value.strip()
    return any(pattern.match(value) for pattern in DATE_LIKE_PATTERNS)


def parse_date_value(value: Any) -> date | None:
    """Parse a date-like property value, or None."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not is_date_like(value):
        return None

    value = value.strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def to_timestamp(value: Any) -> float | None:
    """Convert an epoch number or date string to epoch milliseconds.

    Numbers (and numeric strings) are taken as epoch milliseconds.
    Logseq SCHEDULED/DEADLINE values ("2024-05-01 Wed 10:30") are accepted.
    Naive datetimes are treated as UTC. Returns None when unparseable.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, date):
        moment = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if re.fullmatch(r'-?\d+(\.\d+)?', text):
            return float(text)
        moment = None
        for fmt in DATE_FORMATS:
            try:
                moment = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
        if moment is None:
            org = LOGSEQ_TIMESTAMP_PATTERN.match(text)
            if org:
                try:
                    moment = datetime.strptime(f"{org.group(1)} {org.group(2) or '00:00'}", "%Y-%m-%d %H:%M")
                except ValueError:
                    return None
        if moment is None:
            try:
                moment = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError:
                return None
    else:
        return None

    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.timestamp() * 1000
