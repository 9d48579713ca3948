"""Shared utility functions used across Cofound modules."""
from __future__ import annotations

import json
import uuid
from datetime import UTC, datetime
from typing import Any

_MISSING = object()


def json_parse(value: str | None, default: Any = _MISSING) -> Any:
    """Safely parse a JSON string, returning *default* on failure.

    If no default is given, returns ``{}`` on parse error.
    """
    try:
        return json.loads(value or "")
    except (json.JSONDecodeError, TypeError):
        return {} if default is _MISSING else default


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(UTC)


def current_month(now: datetime | None = None) -> str:
    """Return the ``YYYY-MM`` key for *now* (defaults to the current UTC time)."""
    now = now or utcnow()
    return f"{now.year}-{now.month:02d}"


def isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def naive_utc(value: datetime | None) -> datetime | None:
    """Convert an aware datetime to naive UTC, the form DateTime columns store.

    Naive values are taken to be UTC already.
    """
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)
