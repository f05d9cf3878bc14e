"""Tests for deduplication and limit/since windowing."""

from datetime import datetime, timedelta, timezone

from cursor_chat_browser.bubbles.window import apply_since, dedupe, dedupe_and_window, parse_since, tail
from cursor_chat_browser.core import NormalizedRecord

READ_AT = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


def rec(row, text, role="user", record_id=None):
    record_id = record_id or f"r{row}"
    return NormalizedRecord(
        conversation_id="c",
        record_id=record_id,
        row_ordinal=row,
        key=f"bubbleId:c:{record_id}",
        role=role,
        text=text,
    )


def test_parse_since():
    assert parse_since(None) is None
    assert parse_since("") is None
    assert parse_since("abc-123") == "abc-123"
    assert parse_since("2025-01-15T10:00:00Z") == datetime(2025, 1, 15, 10, tzinfo=timezone.utc)
    assert parse_since("2025-01-15T10:00:00").tzinfo == timezone.utc
    # contains a T but is not a timestamp
    assert parse_since("Trecord") == "Trecord"


def test_dedupe_keeps_highest_row_per_text():
    records = [rec(1, "hello"), rec(2, "other"), rec(3, "hello  ")]
    result = dedupe(records)
    assert [r.row_ordinal for r in result] == [2, 3]


def test_dedupe_distinguishes_roles():
    result = dedupe([rec(1, "same", "user"), rec(2, "same", "assistant")])
    assert len(result) == 2


def test_dedupe_empty_records():
    records = [rec(1, ""), rec(2, "x"), rec(3, "")]
    assert [r.row_ordinal for r in dedupe(records)] == [2]
    assert [r.row_ordinal for r in dedupe(records, include_empty=True)] == [1, 2, 3]


def test_dedupe_output_sorted_by_row():
    result = dedupe([rec(5, "b"), rec(1, "a"), rec(3, "c")])
    assert [r.row_ordinal for r in result] == [1, 3, 5]


def test_tail():
    assert tail([1, 2, 3, 4], 2) == [3, 4]
    assert tail([1, 2], 10) == [1, 2]
    assert tail([1, 2], 0) == []


def test_apply_since_by_id():
    items = [rec(1, "a"), rec(2, "b"), rec(3, "c")]
    result = apply_since(items, "r1", id_of=lambda r: r.record_id, time_of=lambda r: READ_AT)
    assert [r.record_id for r in result] == ["r2", "r3"]


def test_apply_since_unknown_id_keeps_everything():
    items = [rec(1, "a"), rec(2, "b")]
    result = apply_since(items, "missing", id_of=lambda r: r.record_id, time_of=lambda r: READ_AT)
    assert len(result) == 2


def test_apply_since_last_id_yields_nothing():
    items = [rec(1, "a"), rec(2, "b")]
    assert apply_since(items, "r2", id_of=lambda r: r.record_id, time_of=lambda r: READ_AT) == []


def test_since_timestamp_compares_against_read_time():
    records = [rec(1, "a"), rec(2, "b")]
    earlier = (READ_AT - timedelta(minutes=5)).isoformat()
    later = (READ_AT + timedelta(minutes=5)).isoformat()
    assert len(dedupe_and_window(records, 10, since=earlier, read_at=READ_AT)) == 2
    assert dedupe_and_window(records, 10, since=later, read_at=READ_AT) == []


def test_limit_applies_before_since():
    records = [rec(i, f"t{i}") for i in range(1, 11)]
    # r3 falls outside the last-five window, so the cursor is unknown
    result = dedupe_and_window(records, 5, since="r3", read_at=READ_AT)
    assert [r.row_ordinal for r in result] == [6, 7, 8, 9, 10]
    result = dedupe_and_window(records, 5, since="r8", read_at=READ_AT)
    assert [r.row_ordinal for r in result] == [9, 10]


def test_window_never_exceeds_limit():
    records = [rec(i, f"t{i}") for i in range(1, 30)]
    assert len(dedupe_and_window(records, 7, read_at=READ_AT)) == 7


def test_dedupe_then_limit():
    records = [rec(1, "a"), rec(2, "b"), rec(3, "a"), rec(4, "c")]
    result = dedupe_and_window(records, 2, read_at=READ_AT)
    assert [r.text for r in result] == ["a", "c"]


def test_tail_of_hundred_keeps_ten_largest_rows_ascending():
    records = [rec(row, f"t{row}") for row in reversed(range(1, 101))]
    result = dedupe_and_window(records, 10, read_at=READ_AT)
    assert [r.row_ordinal for r in result] == list(range(91, 101))


def test_since_id_scenario():
    records = [rec(i, t, record_id=t) for i, t in enumerate("abcd", start=1)]
    result = dedupe_and_window(records, 10, since="b", read_at=READ_AT)
    assert [r.record_id for r in result] == ["c", "d"]
