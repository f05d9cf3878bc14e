"""Bubble record pipeline: normalize, group, select the active conversation, window."""

from .grouping import (
    content_score,
    group_records,
    load_conversation,
    select_active,
    text_record_count,
)
from .normalize import NormalizeStats, normalize, normalize_batch, parse_key
from .window import dedupe, dedupe_and_window

__all__ = [
    "NormalizeStats",
    "content_score",
    "dedupe",
    "dedupe_and_window",
    "group_records",
    "load_conversation",
    "normalize",
    "normalize_batch",
    "parse_key",
    "select_active",
    "text_record_count",
]
