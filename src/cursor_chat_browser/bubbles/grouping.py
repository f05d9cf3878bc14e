"""Conversation grouping and active-conversation selection."""

import logging
from collections.abc import Callable, Iterable

from ..core import NormalizedRecord
from ..store import BUBBLE_PREFIX, RecordStore
from .normalize import NormalizeStats, normalize_batch

logger = logging.getLogger(__name__)

Scorer = Callable[[list[NormalizedRecord]], int]


def group_records(records: Iterable[NormalizedRecord]) -> dict[str, list[NormalizedRecord]]:
    """Group records by conversation id, each group in ascending row order.

    Groups keep the order in which their first record was seen. Nothing is
    filtered out here; empty-text records stay so scoring sees the whole
    conversation.
    """
    groups: dict[str, list[NormalizedRecord]] = {}
    for record in records:
        groups.setdefault(record.conversation_id, []).append(record)
    for members in groups.values():
        members.sort(key=lambda r: r.row_ordinal)  # stable on duplicate rowids
    return groups


def record_weight(record: NormalizedRecord) -> int:
    """Content-richness weight of a single record."""
    weight = 0
    if record.text:
        weight += 10
    if record.tool_results:
        weight += 5
    if record.code_blocks:
        weight += 5
    if record.attached_files:
        weight += 3
    if record.git_diffs:
        weight += 3
    if record.lints:
        weight += 2
    if record.capabilities:
        weight += 1
    return weight


def content_score(records: list[NormalizedRecord]) -> int:
    return sum(record_weight(r) for r in records)


def text_record_count(records: list[NormalizedRecord]) -> int:
    return sum(1 for r in records if r.text)


def score_conversations(
    groups: dict[str, list[NormalizedRecord]], scorer: Scorer = content_score
) -> dict[str, int]:
    return {conversation_id: scorer(members) for conversation_id, members in groups.items()}


def select_active(
    groups: dict[str, list[NormalizedRecord]], scorer: Scorer = content_score
) -> str | None:
    """Return the id of the highest-scoring conversation, or None if all score 0.

    Ties go to the group seen first. Only meaningful over a bounded window of
    recent rows; it is a recency heuristic, not a history search.
    """
    best_id = None
    best_score = 0
    for conversation_id, score in score_conversations(groups, scorer).items():
        logger.debug("Conversation %s: %d records, score %d", conversation_id, len(groups[conversation_id]), score)
        if score > best_score:
            best_id, best_score = conversation_id, score
    return best_id


def load_conversation(
    store: RecordStore, conversation_id: str
) -> tuple[list[NormalizedRecord], NormalizeStats]:
    """Read the full history of one conversation, oldest record first."""
    raws = store.list_by_prefix(f"{BUBBLE_PREFIX}:{conversation_id}")
    records, stats = normalize_batch(raws)
    grouped = group_records(records)
    return grouped.get(conversation_id, []), stats
