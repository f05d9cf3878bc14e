"""Core data models for cursor-chat-browser."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLE_UNKNOWN = "unknown"


@dataclass
class Workspace:
    """A workspaceStorage folder that holds a state.vscdb."""

    id: str  # workspace hash directory name
    db_path: str
    folder: Optional[str] = None  # e.g. "file:///Users/me/dev/project"
    last_modified: Optional[datetime] = None
    chat_count: int = 0
    composer_count: int = 0


@dataclass
class ChatBubble:
    """A single bubble of an "ask" chat tab."""

    type: str  # "user" | "ai"
    text: str = ""
    model_type: Optional[str] = None
    selections: list[str] = field(default_factory=list)


@dataclass
class ChatTab:
    """An "ask" conversation stored inline in a workspace's ItemTable."""

    id: str
    title: str
    timestamp: Optional[datetime] = None  # lastSendTime, absent on older tabs
    bubbles: list[ChatBubble] = field(default_factory=list)


@dataclass
class Composer:
    """An "agent" conversation, listed per workspace, body in global storage."""

    id: str  # composerId
    workspace_id: str
    title: str
    created: Optional[datetime] = None
    updated: Optional[datetime] = None
    mode: Optional[str] = None  # unifiedMode: "agent" | "chat" | ...
    message_count: int = 0
    workspace_folder: Optional[str] = None
    data: dict = field(default_factory=dict)  # header merged with the stored body


@dataclass
class WorkspaceLog:
    """One entry of the merged chat/composer activity list."""

    id: str
    workspace_id: str
    title: str
    timestamp: Optional[datetime]
    type: str  # "chat" | "composer"
    message_count: int
    workspace_folder: Optional[str] = None


@dataclass
class SearchHit:
    """A chat tab or composer that matched a search query."""

    workspace_id: str
    chat_id: str
    chat_title: str
    matching_text: str
    type: str  # "chat" | "composer"
    timestamp: Optional[datetime] = None
    workspace_folder: str = ""


# ── Bubble records ───────────────────────────────────────────────


@dataclass
class RawRecord:
    """A row of cursorDiskKV as read from the store."""

    key: str  # "<prefix>:<conversationId>:<recordId>"
    row_ordinal: int  # sqlite rowid, the only dependable ordering
    value_json: str


@dataclass
class CodeBlock:
    language: str = "text"
    code: str = ""
    filename: Optional[str] = None
    start_line: Optional[int] = None
    end_line: Optional[int] = None
    is_complete: bool = True
    is_generated: bool = False
    has_changes: bool = False


@dataclass
class ToolResult:
    tool: str = "unknown"
    output: str = ""
    success: bool = True
    duration: Optional[float] = None
    type: str = "unknown"
    version: Optional[str] = None
    error: Optional[str] = None
    exit_code: Optional[int] = None
    start_time: Any = None
    end_time: Any = None
    data: Any = None
    working_directory: Optional[str] = None
    environment: Any = None
    arguments: Any = None
    command: Optional[str] = None


@dataclass
class AttachedFile:
    filename: str = "unknown"
    content: str = ""
    start_line: Optional[int] = None
    end_line: Optional[int] = None
    language: Optional[str] = None
    is_complete: bool = True


@dataclass
class GitDiff:
    filename: str = "unknown"
    diff: str = ""
    change_type: str = "modified"
    additions: Optional[int] = None
    deletions: Optional[int] = None
    is_binary: bool = False
    is_new: bool = False
    is_deleted: bool = False


@dataclass
class Lint:
    filename: str = "unknown"
    message: str = ""
    severity: str = "info"
    line: Optional[int] = None


@dataclass
class ContextPiece:
    type: str = "unknown"
    content: str = ""
    filename: Optional[str] = None
    relevance: Any = None
    source: Any = None


@dataclass
class ViewedFile:
    filename: str = "unknown"
    last_viewed: Any = None
    view_count: Optional[int] = None


@dataclass
class ContentFlags:
    """Which rich payloads a record carries."""

    has_code: bool = False
    has_tool_results: bool = False
    has_attached_files: bool = False
    has_git_diffs: bool = False
    has_lints: bool = False
    is_agentic: bool = False


@dataclass
class NormalizedRecord:
    """A bubble reshaped into one canonical form, whatever its stored version."""

    conversation_id: str
    record_id: str
    row_ordinal: int
    key: str
    role: str  # ROLE_USER | ROLE_ASSISTANT | ROLE_UNKNOWN
    text: str = ""  # never None; "" means no content
    flags: ContentFlags = field(default_factory=ContentFlags)
    capabilities: list = field(default_factory=list)
    code_blocks: list[CodeBlock] = field(default_factory=list)
    tool_results: list[ToolResult] = field(default_factory=list)
    attached_files: list[AttachedFile] = field(default_factory=list)
    git_diffs: list[GitDiff] = field(default_factory=list)
    lints: list[Lint] = field(default_factory=list)
    context_pieces: list[ContextPiece] = field(default_factory=list)
    recently_viewed_files: list[ViewedFile] = field(default_factory=list)
    token_count: int = 0
    embedded_timestamp: Any = None  # as stored; not trusted for ordering
    raw: dict = field(default_factory=dict)
