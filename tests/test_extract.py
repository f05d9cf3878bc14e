"""Tests for the tool result, code block and file context feeds."""

from datetime import datetime, timezone

import pytest

from cursor_chat_browser.bubbles.extract import (
    code_block_stats,
    extract_code_blocks,
    extract_file_contexts,
    extract_tool_results,
    file_context_stats,
    tool_result_stats,
)
from cursor_chat_browser.bubbles.normalize import normalize_batch
from cursor_chat_browser.store import BUBBLE_PREFIX, RecordStore

READ_AT = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def records(make_store):
    db = make_store([
        ("bubbleId:c1:r1", {
            "type": 1,
            "text": "look at this",
            "attachedCodeChunks": [{"filename": "app/main.py", "content": "print(1)\nprint(2)"}],
            "recentlyViewedFiles": ["README.md"],
        }),
        ("bubbleId:c1:r2", {
            "type": 2,
            "codeBlocks": [
                {"language": "python", "code": "x = 1\ny = 2", "filename": "app/main.py"},
                {"language": "bash", "code": "ls", "isGenerated": True},
            ],
            "toolResults": [{"tool": "run_terminal_cmd", "output": "ok", "command": "make"}],
        }),
        ("bubbleId:c2:r3", {
            "type": 2,
            "text": "done",
            "toolResults": [{"name": "read_file", "output": "", "success": False, "error": "ENOENT"}],
            "gitDiffs": [{"filename": "app/util.py", "diff": "-a\n+b", "additions": 1, "deletions": 1}],
            "contextPieces": [{"type": "docs", "content": "some docs"}],
        }),
    ])
    with RecordStore(db) as store:
        found, _ = normalize_batch(store.list_recent_by_prefix(BUBBLE_PREFIX, 100))
    return found


def test_tool_results(records):
    results = extract_tool_results(records, read_at=READ_AT)
    assert [r["tool"]["name"] for r in results] == ["run_terminal_cmd", "read_file"]
    assert results[0]["context"]["command"] == "make"
    assert results[1]["execution"]["success"] is False
    assert results[1]["output"]["error"] == "ENOENT"
    assert results[0]["timestamp"] == READ_AT.isoformat()

    stats = tool_result_stats(results)
    assert stats["successCount"] == 1
    assert stats["errorCount"] == 1
    assert stats["successRate"] == "50.0%"
    assert stats["lastBubbleId"] == "r3"


def test_tool_filter_and_since(records):
    assert len(extract_tool_results(records, tool_filter="READ")) == 1
    results = extract_tool_results(records, since="r2")
    assert [r["bubbleId"] for r in results] == ["r3"]


def test_tool_results_limit_keeps_newest(records):
    results = extract_tool_results(records, limit=1)
    assert [r["bubbleId"] for r in results] == ["r3"]


def test_code_blocks(records):
    blocks = extract_code_blocks(records, read_at=READ_AT)
    assert [b["language"] for b in blocks] == ["python", "bash"]
    assert blocks[0]["metadata"]["lineCount"] == 2
    assert blocks[0]["context"]["messageType"] == "assistant"
    assert blocks[0]["context"]["hasToolResults"] is True

    stats = code_block_stats(blocks)
    assert stats["totalBlocks"] == 2
    assert stats["totalLines"] == 3
    assert stats["generatedCount"] == 1
    assert stats["languageStats"] == {"python": 1, "bash": 1}


def test_code_blocks_language_filter_and_no_content(records):
    blocks = extract_code_blocks(records, language="py", include_content=False)
    assert len(blocks) == 1
    assert blocks[0]["content"] is None
    assert blocks[0]["metadata"]["characterCount"] == len("x = 1\ny = 2")


def test_file_contexts(records):
    contexts = extract_file_contexts(records, read_at=READ_AT)
    assert [c["type"] for c in contexts] == ["attached", "viewed", "git", "context"]

    stats = file_context_stats(contexts)
    assert stats["typeStats"] == {"attached": 1, "viewed": 1, "git": 1, "context": 1}
    assert stats["extensionStats"] == {".py": 2, ".md": 1}
    assert stats["topFiles"]["app/main.py"] == 1


def test_file_context_type_and_file_filter(records):
    git_only = extract_file_contexts(records, context_type="git")
    assert [c["filename"] for c in git_only] == ["app/util.py"]
    assert git_only[0]["metadata"]["additions"] == 1

    main_only = extract_file_contexts(records, file_filter="main")
    # context pieces without a filename are not excluded by the file filter
    assert [c["type"] for c in main_only] == ["attached", "context"]
