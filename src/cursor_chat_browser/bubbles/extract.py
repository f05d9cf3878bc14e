"""Activity feeds pulled out of recent bubbles: tool runs, code blocks, file context.

Each extractor walks normalized records and emits one JSON-ready dict per
payload item, in ascending row order. Timestamps are the request's read time,
not authored time.
"""

from collections import Counter
from datetime import datetime, timezone
from pathlib import PurePosixPath

from ..core import NormalizedRecord
from .window import apply_since, tail

CONTEXT_TYPES = ("attached", "git", "viewed", "context")


def _origin(record: NormalizedRecord, read_at: datetime) -> dict:
    return {
        "bubbleId": record.record_id,
        "chatId": record.conversation_id,
        "rowId": record.row_ordinal,
        "timestamp": read_at.isoformat(),
    }


def _context(record: NormalizedRecord) -> dict:
    return {"messageType": record.role, "isAgentic": record.flags.is_agentic}


def _window(items: list[dict], limit: int, since: str | None, read_at: datetime) -> list[dict]:
    items.sort(key=lambda item: item["rowId"])
    return apply_since(
        tail(items, limit),
        since,
        id_of=lambda item: item["bubbleId"],
        time_of=lambda item: read_at,
    )


# ── Tool results ─────────────────────────────────────────────────


def extract_tool_results(
    records: list[NormalizedRecord],
    limit: int = 20,
    since: str | None = None,
    tool_filter: str | None = None,
    read_at: datetime | None = None,
) -> list[dict]:
    read_at = read_at or datetime.now(timezone.utc)
    items = []
    for record in records:
        for index, result in enumerate(record.tool_results):
            if tool_filter and tool_filter.lower() not in result.tool.lower():
                continue
            items.append({
                "id": f"{record.record_id}-{index}",
                **_origin(record, read_at),
                "tool": {"name": result.tool, "type": result.type, "version": result.version},
                "execution": {
                    "success": result.success,
                    "duration": result.duration,
                    "startTime": result.start_time,
                    "endTime": result.end_time,
                },
                "output": {
                    "text": result.output,
                    "data": result.data,
                    "error": result.error,
                    "exitCode": result.exit_code,
                },
                "context": {
                    "workingDirectory": result.working_directory,
                    "environment": result.environment,
                    "arguments": result.arguments,
                    "command": result.command,
                },
            })
    return _window(items, limit, since, read_at)


def tool_result_stats(results: list[dict]) -> dict:
    success = sum(1 for r in results if r["execution"]["success"])
    rate = f"{success / len(results) * 100:.1f}%" if results else "0%"
    return {
        "totalResults": len(results),
        "successCount": success,
        "errorCount": len(results) - success,
        "successRate": rate,
        "toolStats": dict(Counter(r["tool"]["name"] for r in results)),
        "lastBubbleId": results[-1]["bubbleId"] if results else None,
    }


# ── Code blocks ──────────────────────────────────────────────────


def extract_code_blocks(
    records: list[NormalizedRecord],
    limit: int = 20,
    since: str | None = None,
    language: str | None = None,
    include_content: bool = True,
    read_at: datetime | None = None,
) -> list[dict]:
    read_at = read_at or datetime.now(timezone.utc)
    items = []
    for record in records:
        for index, block in enumerate(record.code_blocks):
            if language and language.lower() not in block.language.lower():
                continue
            items.append({
                "id": f"{record.record_id}-{index}",
                **_origin(record, read_at),
                "language": block.language,
                "filename": block.filename,
                "content": block.code if include_content else None,
                "metadata": {
                    "lineCount": len(block.code.split("\n")) if block.code else 0,
                    "characterCount": len(block.code),
                    "startLine": block.start_line,
                    "endLine": block.end_line,
                    "isComplete": block.is_complete,
                    "hasChanges": block.has_changes,
                    "isGenerated": block.is_generated,
                },
                "context": {
                    **_context(record),
                    "hasToolResults": record.flags.has_tool_results,
                    "hasAttachedFiles": record.flags.has_attached_files,
                },
            })
    return _window(items, limit, since, read_at)


def code_block_stats(blocks: list[dict]) -> dict:
    total_lines = sum(b["metadata"]["lineCount"] for b in blocks)
    return {
        "totalBlocks": len(blocks),
        "totalLines": total_lines,
        "totalCharacters": sum(b["metadata"]["characterCount"] for b in blocks),
        "averageLinesPerBlock": round(total_lines / len(blocks)) if blocks else 0,
        "languageStats": dict(Counter(b["language"] for b in blocks)),
        "generatedCount": sum(1 for b in blocks if b["metadata"]["isGenerated"]),
        "userBlocks": sum(1 for b in blocks if b["context"]["messageType"] == "user"),
        "assistantBlocks": sum(1 for b in blocks if b["context"]["messageType"] == "assistant"),
        "lastBubbleId": blocks[-1]["bubbleId"] if blocks else None,
    }


# ── File context ─────────────────────────────────────────────────


def extract_file_contexts(
    records: list[NormalizedRecord],
    limit: int = 20,
    since: str | None = None,
    file_filter: str | None = None,
    context_type: str | None = None,
    include_content: bool = True,
    read_at: datetime | None = None,
) -> list[dict]:
    """Attached chunks, git diffs, recently viewed files and context pieces.

    `context_type` is one of CONTEXT_TYPES or "all"; None means all.
    """
    read_at = read_at or datetime.now(timezone.utc)

    def wanted(kind: str) -> bool:
        return context_type in (None, "all", kind)

    def matches(filename: str | None) -> bool:
        # context pieces without a file name always pass the filter
        return not file_filter or not filename or file_filter.lower() in filename.lower()

    items = []
    for record in records:
        base = {**_origin(record, read_at), "context": _context(record)}

        if wanted("attached"):
            for i, chunk in enumerate(record.attached_files):
                if matches(chunk.filename):
                    items.append({
                        "id": f"{record.record_id}-attached-{i}",
                        **base,
                        "type": "attached",
                        "filename": chunk.filename,
                        "content": chunk.content if include_content else None,
                        "metadata": {
                            "startLine": chunk.start_line,
                            "endLine": chunk.end_line,
                            "lineCount": len(chunk.content.split("\n")) if chunk.content else 0,
                            "characterCount": len(chunk.content),
                            "language": chunk.language,
                            "isComplete": chunk.is_complete,
                        },
                    })

        if wanted("git"):
            for i, diff in enumerate(record.git_diffs):
                if matches(diff.filename):
                    items.append({
                        "id": f"{record.record_id}-git-{i}",
                        **base,
                        "type": "git",
                        "filename": diff.filename,
                        "content": diff.diff if include_content else None,
                        "metadata": {
                            "changeType": diff.change_type,
                            "additions": diff.additions,
                            "deletions": diff.deletions,
                            "isBinary": diff.is_binary,
                            "isNew": diff.is_new,
                            "isDeleted": diff.is_deleted,
                        },
                    })

        if wanted("viewed"):
            for i, viewed in enumerate(record.recently_viewed_files):
                if matches(viewed.filename):
                    items.append({
                        "id": f"{record.record_id}-viewed-{i}",
                        **base,
                        "type": "viewed",
                        "filename": viewed.filename,
                        "content": None,
                        "metadata": {"lastViewed": viewed.last_viewed, "viewCount": viewed.view_count},
                    })

        if wanted("context"):
            for i, piece in enumerate(record.context_pieces):
                if matches(piece.filename):
                    items.append({
                        "id": f"{record.record_id}-context-{i}",
                        **base,
                        "type": "context",
                        "filename": piece.filename,
                        "content": piece.content if include_content else None,
                        "metadata": {
                            "pieceType": piece.type,
                            "relevance": piece.relevance,
                            "source": piece.source,
                        },
                    })

    return _window(items, limit, since, read_at)


def file_context_stats(contexts: list[dict]) -> dict:
    type_stats = Counter(c["type"] for c in contexts)
    file_stats = Counter(c["filename"] for c in contexts if c["filename"])
    extension_stats = Counter(
        PurePosixPath(name).suffix.lower()
        for name in (c["filename"] for c in contexts if c["filename"])
        if PurePosixPath(name).suffix
    )
    return {
        "totalContexts": len(contexts),
        "typeStats": dict(type_stats),
        "topFiles": dict(file_stats.most_common(10)),
        "extensionStats": dict(extension_stats),
        "lastBubbleId": contexts[-1]["bubbleId"] if contexts else None,
    }
