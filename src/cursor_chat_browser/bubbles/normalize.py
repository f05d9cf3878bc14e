"""Bubble parsing and normalization.

Cursor has written bubbles in several shapes over time: the same concept can
live under different field names (`tool` vs `name`, `filename` vs `path`),
and any array may be missing, null, or not an array at all. Every field-name
fallback lives in FIELDS below so the decode rules sit in one place.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any

from ..core import (
    ROLE_ASSISTANT,
    ROLE_UNKNOWN,
    ROLE_USER,
    AttachedFile,
    CodeBlock,
    ContentFlags,
    ContextPiece,
    GitDiff,
    Lint,
    NormalizedRecord,
    RawRecord,
    ToolResult,
    ViewedFile,
)
from ..exceptions import MalformedKey, RecordParseFailure

logger = logging.getLogger(__name__)

# Logical field -> raw field names, first non-empty wins.
FIELDS: dict[str, tuple[str, ...]] = {
    "text": ("text", "richText"),
    "code": ("code", "text"),
    "tool_name": ("tool", "name"),
    "tool_output": ("output", "text"),
    "filename": ("filename", "path"),
    "content": ("content", "text"),
    "diff": ("diff", "content"),
    "lint_message": ("message", "text"),
    "working_directory": ("workingDirectory", "cwd"),
    "arguments": ("arguments", "args"),
    "timestamp": ("timestamp", "createdAt"),
    "code_blocks": ("codeBlocks",),
    "tool_results": ("toolResults",),
    "attached_files": ("attachedCodeChunks",),
    "git_diffs": ("gitDiffs",),
    "lints": ("lints",),
    "context_pieces": ("contextPieces",),
    "recently_viewed_files": ("recentlyViewedFiles",),
}

_ROLE_CODES = {1: ROLE_USER, 2: ROLE_ASSISTANT}
_ROLE_NAMES = {"user": ROLE_USER, "assistant": ROLE_ASSISTANT}


@dataclass
class NormalizeStats:
    """Counts of what a batch normalization kept and dropped."""

    parsed: int = 0
    parse_failures: int = 0
    malformed_keys: int = 0

    @property
    def dropped(self) -> int:
        return self.parse_failures + self.malformed_keys


def parse_key(key: str) -> tuple[str, str]:
    """Split `<prefix>:<conversationId>:<recordId>` into its two ids."""
    parts = key.split(":")
    if len(parts) < 3 or not parts[1] or not parts[2]:
        raise MalformedKey(key)
    return parts[1], parts[2]


def parse_value(raw: RawRecord) -> dict:
    """Decode a record's JSON value; the top level must be an object."""
    try:
        data = json.loads(raw.value_json)
    except (json.JSONDecodeError, TypeError) as e:
        raise RecordParseFailure(f"Invalid JSON in {raw.key}: {e}", key=raw.key) from e
    if not isinstance(data, dict):
        raise RecordParseFailure(f"Record {raw.key} is not a JSON object", key=raw.key)
    return data


def resolve_role(value: Any) -> str:
    # bool is an int subclass; True must not read as the user code 1
    if isinstance(value, bool):
        return ROLE_UNKNOWN
    if isinstance(value, int):
        return _ROLE_CODES.get(value, ROLE_UNKNOWN)
    if isinstance(value, str):
        return _ROLE_NAMES.get(value, ROLE_UNKNOWN)
    return ROLE_UNKNOWN


def normalize(raw: RawRecord) -> NormalizedRecord:
    """Turn one raw bubble row into a NormalizedRecord.

    Raises MalformedKey or RecordParseFailure; missing optional data never
    raises.
    """
    conversation_id, record_id = parse_key(raw.key)
    data = parse_value(raw)
    return build_record(conversation_id, record_id, raw.row_ordinal, raw.key, data)


def build_record(
    conversation_id: str, record_id: str, row_ordinal: int, key: str, data: dict
) -> NormalizedRecord:
    """Normalize an already-decoded bubble object.

    Also used for bubbles stored inline in older composer bodies, which have
    no row of their own.
    """
    code_blocks = [_code_block(b) for b in _objects(data, "code_blocks")]
    tool_results = [_tool_result(r) for r in _objects(data, "tool_results")]
    attached_files = [_attached_file(c) for c in _objects(data, "attached_files")]
    git_diffs = [_git_diff(d) for d in _objects(data, "git_diffs")]
    lints = [_lint(item) for item in _objects(data, "lints")]
    context_pieces = [_context_piece(p) for p in _objects(data, "context_pieces")]
    viewed = [_viewed_file(f) for f in _array(data, "recently_viewed_files")]
    viewed = [f for f in viewed if f is not None]

    is_agentic = data.get("isAgentic")
    capabilities = data.get("capabilities")
    token_count = data.get("tokenCount")

    return NormalizedRecord(
        conversation_id=conversation_id,
        record_id=record_id,
        row_ordinal=row_ordinal,
        key=key,
        role=resolve_role(data.get("type")),
        text=resolve_text(data, code_blocks, tool_results),
        flags=ContentFlags(
            has_code=bool(code_blocks),
            has_tool_results=bool(tool_results),
            has_attached_files=bool(attached_files),
            has_git_diffs=bool(git_diffs),
            has_lints=bool(lints),
            is_agentic=is_agentic if isinstance(is_agentic, bool) else False,
        ),
        capabilities=list(capabilities) if isinstance(capabilities, list) else [],
        code_blocks=code_blocks,
        tool_results=tool_results,
        attached_files=attached_files,
        git_diffs=git_diffs,
        lints=lints,
        context_pieces=context_pieces,
        recently_viewed_files=viewed,
        token_count=token_count if _is_int(token_count) else 0,
        embedded_timestamp=_first_any(data, "timestamp"),
        raw=data,
    )


def normalize_batch(raws: list[RawRecord]) -> tuple[list[NormalizedRecord], NormalizeStats]:
    """Normalize many rows; bad rows are counted and skipped, never raised."""
    stats = NormalizeStats()
    records = []
    for raw in raws:
        try:
            records.append(normalize(raw))
        except MalformedKey as e:
            stats.malformed_keys += 1
            logger.debug("Skipping record: %s", e)
        except RecordParseFailure as e:
            stats.parse_failures += 1
            logger.debug("Skipping record: %s", e)
    stats.parsed = len(records)
    return records, stats


def resolve_text(data: dict, code_blocks: list[CodeBlock], tool_results: list[ToolResult]) -> str:
    """Direct text, else code-block contents, else tool outputs, else ""."""
    text = _first(data, "text", "")
    if text.strip():
        return text
    text = "\n\n".join(block.code for block in code_blocks)
    if text.strip():
        return text
    text = "\n\n".join(result.output for result in tool_results)
    if text.strip():
        return text
    return ""


# ── Sub-payloads ─────────────────────────────────────────────────


def _code_block(block: dict) -> CodeBlock:
    return CodeBlock(
        language=_str(block.get("language")) or "text",
        code=_first(block, "code", ""),
        filename=_first(block, "filename", None),
        start_line=_int_or_none(block.get("startLine")),
        end_line=_int_or_none(block.get("endLine")),
        is_complete=block.get("isComplete") is not False,
        is_generated=block.get("isGenerated") is True,
        has_changes=bool(block.get("changes") or block.get("diff")),
    )


def _tool_result(result: dict) -> ToolResult:
    return ToolResult(
        tool=_first(result, "tool_name", "unknown"),
        output=_first(result, "tool_output", ""),
        success=result.get("success") is not False,
        duration=result.get("duration") or None,
        type=_str(result.get("type")) or "unknown",
        version=result.get("version") or None,
        error=result.get("error") or None,
        exit_code=_int_or_none(result.get("exitCode")),
        start_time=result.get("startTime") or None,
        end_time=result.get("endTime") or None,
        data=result.get("data") or None,
        working_directory=_first(result, "working_directory", None),
        environment=result.get("environment") or None,
        arguments=_first_any(result, "arguments"),
        command=_str(result.get("command")) or None,
    )


def _attached_file(chunk: dict) -> AttachedFile:
    return AttachedFile(
        filename=_first(chunk, "filename", "unknown"),
        content=_first(chunk, "content", ""),
        start_line=_int_or_none(chunk.get("startLine")),
        end_line=_int_or_none(chunk.get("endLine")),
        language=_str(chunk.get("language")) or None,
        is_complete=chunk.get("isComplete") is not False,
    )


def _git_diff(diff: dict) -> GitDiff:
    return GitDiff(
        filename=_first(diff, "filename", "unknown"),
        diff=_first(diff, "diff", ""),
        change_type=_str(diff.get("type")) or "modified",
        additions=_int_or_none(diff.get("additions")),
        deletions=_int_or_none(diff.get("deletions")),
        is_binary=diff.get("isBinary") is True,
        is_new=diff.get("isNew") is True,
        is_deleted=diff.get("isDeleted") is True,
    )


def _lint(lint: dict) -> Lint:
    return Lint(
        filename=_first(lint, "filename", "unknown"),
        message=_first(lint, "lint_message", ""),
        severity=_str(lint.get("severity")) or "info",
        line=_int_or_none(lint.get("line")),
    )


def _context_piece(piece: dict) -> ContextPiece:
    return ContextPiece(
        type=_str(piece.get("type")) or "unknown",
        content=_first(piece, "content", ""),
        filename=_first(piece, "filename", None),
        relevance=piece.get("relevance"),
        source=piece.get("source"),
    )


def _viewed_file(item: Any) -> ViewedFile | None:
    if isinstance(item, str):
        return ViewedFile(filename=item)
    if isinstance(item, dict):
        return ViewedFile(
            filename=_first(item, "filename", "unknown"),
            last_viewed=item.get("lastViewed"),
            view_count=_int_or_none(item.get("viewCount")),
        )
    return None


# ── Field helpers ────────────────────────────────────────────────


def _first(data: dict, field: str, default):
    """Return the first non-empty string among the field's raw names."""
    for name in FIELDS[field]:
        value = data.get(name)
        if isinstance(value, str) and value:
            return value
    return default


def _first_any(data: dict, field: str):
    for name in FIELDS[field]:
        value = data.get(name)
        if value:
            return value
    return None


def _array(data: dict, field: str) -> list:
    for name in FIELDS[field]:
        value = data.get(name)
        if isinstance(value, list):
            return value
    return []


def _objects(data: dict, field: str) -> list[dict]:
    return [item for item in _array(data, field) if isinstance(item, dict)]


def _str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _int_or_none(value: Any) -> int | None:
    return value if _is_int(value) else None
