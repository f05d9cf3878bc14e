"""Tests for bubble parsing and normalization."""

import json

import pytest

from cursor_chat_browser.bubbles.normalize import normalize, normalize_batch, parse_key, resolve_role
from cursor_chat_browser.core import RawRecord
from cursor_chat_browser.exceptions import MalformedKey, RecordParseFailure


def raw(value, key="bubbleId:conv-1:rec-1", row=1):
    if not isinstance(value, str):
        value = json.dumps(value)
    return RawRecord(key=key, row_ordinal=row, value_json=value)


def test_parse_key():
    assert parse_key("bubbleId:conv-1:rec-1") == ("conv-1", "rec-1")


@pytest.mark.parametrize("key", ["bubbleId", "bubbleId:conv-1", "bubbleId::rec", "bubbleId:conv-1:"])
def test_parse_key_malformed(key):
    with pytest.raises(MalformedKey):
        parse_key(key)


@pytest.mark.parametrize(
    "value,expected",
    [(1, "user"), (2, "assistant"), ("user", "user"), ("assistant", "assistant"),
     (3, "unknown"), ("system", "unknown"), (None, "unknown"), (True, "unknown")],
)
def test_resolve_role(value, expected):
    assert resolve_role(value) == expected


def test_normalize_plain_text():
    record = normalize(raw({"type": 1, "text": "hello"}, row=7))
    assert record.conversation_id == "conv-1"
    assert record.record_id == "rec-1"
    assert record.row_ordinal == 7
    assert record.role == "user"
    assert record.text == "hello"
    assert record.code_blocks == []
    assert record.flags.has_code is False


def test_text_falls_back_to_rich_text():
    record = normalize(raw({"type": 2, "text": "", "richText": "rich body"}))
    assert record.text == "rich body"


def test_text_falls_back_to_code_blocks_joined():
    record = normalize(raw({
        "type": 2,
        "codeBlocks": [{"code": "a = 1"}, {"text": "b = 2"}],
    }))
    assert record.text == "a = 1\n\nb = 2"
    assert record.flags.has_code is True


def test_text_falls_back_to_tool_output():
    record = normalize(raw({
        "type": 2,
        "text": "   ",
        "toolResults": [{"name": "grep", "text": "3 matches"}],
    }))
    assert record.text == "3 matches"
    assert record.tool_results[0].tool == "grep"


def test_whitespace_only_content_yields_empty_text():
    record = normalize(raw({"type": 2, "text": "  ", "codeBlocks": [{"code": " "}]}))
    assert record.text == ""


def test_field_name_variants():
    record = normalize(raw({
        "type": 2,
        "text": "x",
        "attachedCodeChunks": [{"path": "a.py", "text": "print()"}],
        "gitDiffs": [{"filename": "b.py", "content": "+x"}],
        "lints": [{"text": "unused import"}],
        "toolResults": [{"tool": "shell", "cwd": "/tmp", "args": ["-l"]}],
    }))
    assert record.attached_files[0].filename == "a.py"
    assert record.attached_files[0].content == "print()"
    assert record.git_diffs[0].diff == "+x"
    assert record.git_diffs[0].change_type == "modified"
    assert record.lints[0].message == "unused import"
    assert record.lints[0].severity == "info"
    assert record.tool_results[0].working_directory == "/tmp"
    assert record.tool_results[0].arguments == ["-l"]


def test_non_array_payloads_are_empty():
    record = normalize(raw({
        "type": 2,
        "text": "x",
        "codeBlocks": None,
        "toolResults": {"tool": "oops"},
        "gitDiffs": "nope",
        "capabilities": "all",
    }))
    assert record.code_blocks == []
    assert record.tool_results == []
    assert record.git_diffs == []
    assert record.capabilities == []


def test_defaults_for_missing_subfields():
    record = normalize(raw({"type": 2, "text": "x", "codeBlocks": [{}], "toolResults": [{}]}))
    block = record.code_blocks[0]
    assert block.language == "text"
    assert block.code == ""
    assert block.is_complete is True
    result = record.tool_results[0]
    assert result.tool == "unknown"
    assert result.success is True


def test_tool_result_failure_flag():
    record = normalize(raw({"type": 2, "toolResults": [{"tool": "t", "output": "boom", "success": False}]}))
    assert record.tool_results[0].success is False


def test_recently_viewed_files_accept_strings_and_objects():
    record = normalize(raw({
        "type": 1,
        "text": "x",
        "recentlyViewedFiles": ["a.py", {"path": "b.py", "viewCount": 3}, 42],
    }))
    assert [f.filename for f in record.recently_viewed_files] == ["a.py", "b.py"]
    assert record.recently_viewed_files[1].view_count == 3


def test_agentic_capabilities_and_tokens():
    record = normalize(raw({"type": 2, "text": "x", "isAgentic": True, "capabilities": [5], "tokenCount": 12}))
    assert record.flags.is_agentic is True
    assert record.capabilities == [5]
    assert record.token_count == 12


def test_embedded_timestamp_is_kept_as_stored():
    record = normalize(raw({"type": 1, "text": "x", "createdAt": 1700000000000}))
    assert record.embedded_timestamp == 1700000000000


def test_invalid_json_raises():
    with pytest.raises(RecordParseFailure):
        normalize(raw("{not json"))


def test_non_object_json_raises():
    with pytest.raises(RecordParseFailure):
        normalize(raw("[1, 2, 3]"))


def test_normalize_batch_counts_drops():
    raws = [
        raw({"type": 1, "text": "ok"}, row=1),
        raw("{bad", row=2),
        raw({"type": 1, "text": "ok"}, key="bubbleId:only-two", row=3),
        raw({"type": 2, "text": "fine"}, key="bubbleId:conv-1:rec-2", row=4),
    ]
    records, stats = normalize_batch(raws)
    assert [r.row_ordinal for r in records] == [1, 4]
    assert stats.parsed == 2
    assert stats.parse_failures == 1
    assert stats.malformed_keys == 1
    assert stats.dropped == 2


def test_normalize_is_idempotent():
    row = raw({"type": 2, "text": "", "codeBlocks": [{"code": "x"}], "toolResults": [{"tool": "t"}]})
    assert normalize(row) == normalize(row)


def test_batch_of_five_with_one_corrupt_row():
    raws = [raw({"type": 1, "text": f"m{i}"}, key=f"bubbleId:c:r{i}", row=i) for i in range(1, 6)]
    raws[2] = RawRecord(key="bubbleId:c:r3", row_ordinal=3, value_json="{not json")
    records, stats = normalize_batch(raws)
    assert [r.record_id for r in records] == ["r1", "r2", "r4", "r5"]
    assert stats.parse_failures == 1
