"""Deduplication and limit/since windowing of conversation records."""

from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from typing import TypeVar

from ..core import NormalizedRecord

T = TypeVar("T")


def parse_since(since: str | None) -> datetime | str | None:
    """Classify a `since` cursor as a timestamp (datetime) or a record id (str).

    Only values containing a "T" are tried as ISO-8601; naive timestamps are
    taken as UTC.
    """
    if not since:
        return None
    if "T" in since:
        value = since[:-1] + "+00:00" if since.endswith("Z") else since
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return since
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return since


def apply_since(
    items: Sequence[T],
    since: str | None,
    id_of: Callable[[T], str],
    time_of: Callable[[T], datetime],
) -> list[T]:
    """Keep the items after a `since` cursor.

    A timestamp cursor keeps items whose time is strictly later. An id cursor
    keeps the items after the first item with that id; an unknown id keeps
    everything.
    """
    cursor = parse_since(since)
    if cursor is None:
        return list(items)
    if isinstance(cursor, datetime):
        return [item for item in items if time_of(item) > cursor]
    for index, item in enumerate(items):
        if id_of(item) == cursor:
            return list(items[index + 1:])
    return list(items)


def dedupe(records: Sequence[NormalizedRecord], include_empty: bool = False) -> list[NormalizedRecord]:
    """Collapse records sharing (role, trimmed text), keeping the highest row.

    Empty-text records are dropped unless `include_empty`, in which case each
    gets its own key and is never merged. Output is in ascending row order.
    """
    kept: dict[tuple, NormalizedRecord] = {}
    for index, record in enumerate(records):
        if record.text:
            key = ("text", record.role, record.text.strip())
            existing = kept.get(key)
            if existing is None or record.row_ordinal > existing.row_ordinal:
                kept[key] = record
        elif include_empty:
            kept[("empty", index)] = record
    return sorted(kept.values(), key=lambda r: r.row_ordinal)


def tail(items: Sequence[T], limit: int) -> list[T]:
    """Keep the last `limit` items."""
    if limit <= 0:
        return []
    return list(items[-limit:])


def dedupe_and_window(
    records: Sequence[NormalizedRecord],
    limit: int,
    since: str | None = None,
    include_empty: bool = False,
    read_at: datetime | None = None,
) -> list[NormalizedRecord]:
    """Dedupe, keep the most recent `limit` records, then apply `since`.

    Records carry no trustworthy authored time, so a timestamp cursor is
    compared against `read_at`, the time the request read the store.
    """
    read_at = read_at or datetime.now(timezone.utc)
    windowed = tail(dedupe(records, include_empty), limit)
    return apply_since(
        windowed,
        since,
        id_of=lambda r: r.record_id,
        time_of=lambda r: read_at,
    )
