"""
Helper Functions
================

Common utility functions used across the application.
"""

from datetime import date, datetime, timezone
from typing import Any, Iterable, Optional


def utc_now() -> datetime:
    """Get current UTC datetime with timezone info."""
    return datetime.now(timezone.utc)


def truncate(text: Optional[str], length: int, omission: str = "...") -> str:
    """Cut ``text`` to at most ``length`` characters, ending with ``omission``."""
    text = text or ""
    if len(text) <= length:
        return text
    return text[: max(length - len(omission), 0)] + omission


def present(value: Any) -> bool:
    """True for non-blank strings and any other non-empty value."""
    if isinstance(value, str):
        return bool(value.strip())
    return value is not None and value != [] and value != {}


def unique_ordered(values: Iterable[Any]) -> list:
    """De-duplicate while keeping first-seen order."""
    seen = set()
    result = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        result.append(value)
    return result


def format_due_date(value: Optional[date]) -> Optional[str]:
    """'Mar 04, 2026'."""
    if value is None:
        return None
    return value.strftime("%b %d, %Y")


def parse_date(date_str: str) -> datetime:
    """Parse ISO 8601 date string to datetime."""
    return datetime.fromisoformat(date_str.replace("Z", "+00:00"))
