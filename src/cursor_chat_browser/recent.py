"""The live "active chat": find it in the recent bubble window and render it.

Bubbles carry no trustworthy authored time. Row order is the only ordering
used, and the timestamps emitted here are the time the request read the
store (reported as `timestampSource: "read-time"`).
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from .bubbles.grouping import Scorer, content_score, group_records, score_conversations, select_active
from .bubbles.normalize import NormalizeStats, normalize_batch
from .bubbles.window import dedupe_and_window
from .core import ROLE_USER, NormalizedRecord
from .store import BUBBLE_PREFIX, RecordStore

logger = logging.getLogger(__name__)

METADATA_LEVELS = ("basic", "full", "raw")
TEXT_DELIMITER = "\n\n---\n\n"
ACTIVE_CHAT_WINDOW = 200


@dataclass
class RecentQuery:
    """Windowing options for a recent-messages request."""

    limit: int = 10
    since: str | None = None
    include_empty: bool = False
    metadata_level: str = "full"


@dataclass
class ActiveConversation:
    conversation_id: str
    records: list[NormalizedRecord]  # after dedup and windowing
    total_records: int  # in the conversation before windowing
    conversation_count: int
    score: int
    rows_scanned: int
    read_at: datetime
    title: str  # from the whole conversation, not the window
    stats: NormalizeStats = field(default_factory=NormalizeStats)


def recent_window_size(limit: int, per_record: int, cap: int) -> int:
    """How many recent rows to scan to fill `limit` records."""
    return min(limit * per_record, cap)


def find_active_conversation(
    store: RecordStore,
    query: RecentQuery,
    window_rows: int = ACTIVE_CHAT_WINDOW,
    scorer: Scorer = content_score,
    windowed: bool = True,
) -> ActiveConversation | None:
    """Pick the active conversation from the newest `window_rows` bubbles.

    With `windowed=False` the whole conversation (within the scanned rows) is
    returned without dedup or limit, which is what the active-chat view shows.
    """
    read_at = datetime.now(timezone.utc)
    raws = store.list_recent_by_prefix(BUBBLE_PREFIX, window_rows)
    records, stats = normalize_batch(raws)
    if stats.dropped:
        logger.info("Dropped %d of %d recent bubbles", stats.dropped, len(raws))

    groups = group_records(records)
    conversation_id = select_active(groups, scorer)
    if conversation_id is None:
        return None

    members = groups[conversation_id]
    score = score_conversations({conversation_id: members}, scorer)[conversation_id]
    logger.info("Selected conversation %s with %d bubbles (score %d)", conversation_id, len(members), score)

    if windowed:
        selected = dedupe_and_window(
            members, query.limit, query.since, query.include_empty, read_at=read_at
        )
    else:
        selected = list(members)

    return ActiveConversation(
        conversation_id=conversation_id,
        records=selected,
        total_records=len(members),
        conversation_count=len(groups),
        score=score,
        rows_scanned=len(raws),
        read_at=read_at,
        title=conversation_title(conversation_id, members),
        stats=stats,
    )


def conversation_title(conversation_id: str, records: list[NormalizedRecord]) -> str:
    """First line of the first user record, or a placeholder from the id."""
    for record in records:
        if record.role == ROLE_USER and record.text:
            first_line = record.text.split("\n")[0][:100]
            if first_line:
                return first_line
            break
    return f"Active Chat {conversation_id[:8]}"


# ── Rendering ────────────────────────────────────────────────────


def record_to_dict(record: NormalizedRecord, metadata_level: str, read_at: datetime) -> dict:
    """Render one record at the `basic`, `full` or `raw` metadata level."""
    message = {
        "id": record.record_id,
        "key": record.key,
        "rowId": record.row_ordinal,
        "role": record.role,
        "text": record.text,
        "readAt": read_at.isoformat(),
    }
    flags = record.flags
    metadata = {
        "hasContent": {
            "text": bool(record.text),
            "codeBlocks": flags.has_code,
            "toolResults": flags.has_tool_results,
            "attachedFiles": flags.has_attached_files,
            "gitDiffs": flags.has_git_diffs,
            "lints": flags.has_lints,
        },
        "isAgentic": flags.is_agentic,
        "tokenCount": record.token_count,
        "capabilities": record.capabilities,
    }
    if metadata_level in ("full", "raw"):
        if record.code_blocks:
            metadata["codeBlocks"] = [
                {"language": b.language, "code": b.code, "filename": b.filename}
                for b in record.code_blocks
            ]
        if record.tool_results:
            metadata["toolResults"] = [
                {"tool": r.tool, "output": r.output, "success": r.success, "duration": r.duration}
                for r in record.tool_results
            ]
        if record.attached_files:
            metadata["attachedFiles"] = [
                {"filename": f.filename, "content": f.content, "startLine": f.start_line, "endLine": f.end_line}
                for f in record.attached_files
            ]
        if record.git_diffs:
            metadata["gitDiffs"] = [
                {"filename": d.filename, "diff": d.diff, "type": d.change_type}
                for d in record.git_diffs
            ]
        if record.lints:
            metadata["lints"] = [
                {"filename": lint.filename, "message": lint.message, "severity": lint.severity, "line": lint.line}
                for lint in record.lints
            ]
        if record.recently_viewed_files:
            metadata["recentlyViewedFiles"] = [
                {"filename": f.filename, "lastViewed": f.last_viewed, "viewCount": f.view_count}
                for f in record.recently_viewed_files
            ]
        if record.context_pieces:
            metadata["contextPieces"] = [
                {"type": p.type, "content": p.content, "filename": p.filename}
                for p in record.context_pieces
            ]
    message["metadata"] = metadata
    if metadata_level == "raw":
        message["rawRecord"] = record.raw
    return message


def active_to_dict(active: ActiveConversation, query: RecentQuery) -> dict:
    records = active.records
    return {
        "conversationId": active.conversation_id,
        "title": active.title,
        "records": [record_to_dict(r, query.metadata_level, active.read_at) for r in records],
        "summary": {
            "totalRecords": len(records),
            "conversationRecords": active.total_records,
            "conversationCount": active.conversation_count,
            "rowsScanned": active.rows_scanned,
            "contentScore": active.score,
            "parseFailures": active.stats.parse_failures,
            "malformedKeys": active.stats.malformed_keys,
            "firstRowId": records[0].row_ordinal if records else None,
            "lastRowId": records[-1].row_ordinal if records else None,
            "lastRecordId": records[-1].record_id if records else None,
            "readAt": active.read_at.isoformat(),
            "timestampSource": "read-time",
            "metadataLevel": query.metadata_level,
            "includeEmpty": query.include_empty,
        },
    }


def empty_result(query: RecentQuery) -> dict:
    """Payload for "no active conversation": explicit, not an exception."""
    return {
        "error": "No active conversation found",
        "conversationId": None,
        "records": [],
        "summary": {
            "totalRecords": 0,
            "conversationCount": 0,
            "metadataLevel": query.metadata_level,
            "includeEmpty": query.include_empty,
        },
    }


def record_to_text(record: NormalizedRecord, metadata_level: str) -> str:
    output = f"[{record.role.upper()}] {record.text}"
    if metadata_level == "full":
        lines = []
        if record.code_blocks:
            lines.append(f"  Code blocks: {len(record.code_blocks)}")
        if record.tool_results:
            lines.append(f"  Tool results: {len(record.tool_results)}")
        if record.attached_files:
            lines.append(f"  Attached files: {len(record.attached_files)}")
        if record.git_diffs:
            lines.append(f"  Git diffs: {len(record.git_diffs)}")
        if record.lints:
            lines.append(f"  Lint issues: {len(record.lints)}")
        if record.flags.is_agentic:
            lines.append("  Agentic: true")
        if record.token_count > 0:
            lines.append(f"  Tokens: {record.token_count}")
        if lines:
            output += "\n" + "\n".join(lines)
    return output


def active_to_text(active: ActiveConversation, query: RecentQuery) -> str:
    return TEXT_DELIMITER.join(record_to_text(r, query.metadata_level) for r in active.records)
