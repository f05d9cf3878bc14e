"""Workspace, chat tab and composer reading from Cursor's storage.

Each workspace folder under workspaceStorage holds a state.vscdb whose
ItemTable lists its "ask" chat tabs (inline) and its composers (headers only).
Composer bodies and their bubbles live in the global state.vscdb. All access
is read-only.
"""

import json
import logging
import urllib.parse
from datetime import datetime, timezone
from pathlib import Path

from .bubbles.grouping import group_records, load_conversation
from .bubbles.normalize import build_record, normalize_batch
from .config import Settings
from .core import ChatBubble, ChatTab, Composer, NormalizedRecord, SearchHit, Workspace, WorkspaceLog
from .exceptions import StoreUnavailable, WorkspaceNotFound
from .store import BUBBLE_PREFIX, RecordStore

logger = logging.getLogger(__name__)

CHAT_DATA_KEY = "workbench.panel.aichat.view.aichat.chatdata"
COMPOSER_DATA_KEY = "composer.composerData"
COMPOSER_BODY_PREFIX = "composerData"
SNIPPET_CONTEXT = 50


class WorkspaceReader:
    """Reads workspaces, chat tabs and composers for one resolved Settings."""

    def __init__(self, settings: Settings):
        self.settings = settings

    @property
    def base_path(self) -> Path:
        return self.settings.workspace_path

    def workspace_dirs(self) -> list[Path]:
        """Workspace folders that contain a state.vscdb."""
        if not self.base_path.is_dir():
            return []
        return sorted(
            d for d in self.base_path.iterdir()
            if d.is_dir() and (d / "state.vscdb").exists()
        )

    # ── Workspaces ───────────────────────────────────────────────

    def list_workspaces(self) -> list[Workspace]:
        workspaces = []
        for ws_dir in self.workspace_dirs():
            try:
                workspaces.append(self._read_workspace(ws_dir, with_counts=True))
            except (StoreUnavailable, OSError) as e:
                logger.warning("Skipping workspace %s: %s", ws_dir.name, e)
        return workspaces

    def get_workspace(self, workspace_id: str) -> Workspace:
        return self._read_workspace(self._workspace_dir(workspace_id), with_counts=False)

    def get_chats(self, workspace_id: str) -> tuple[list[ChatTab], list[Composer]]:
        """Return a workspace's chat tabs and composers (bodies from global storage)."""
        ws_dir = self._workspace_dir(workspace_id)
        folder = _read_workspace_path(ws_dir)
        with RecordStore(ws_dir / "state.vscdb") as store:
            tabs = _parse_tabs(store.get_item(CHAT_DATA_KEY))
            headers = _parse_composer_headers(store.get_item(COMPOSER_DATA_KEY))

        bodies = self._composer_bodies([h["composerId"] for h in headers])
        composers = [
            _to_composer(
                {**header, **bodies.get(header["composerId"], {}), "composerId": header["composerId"]},
                workspace_id,
                folder,
            )
            for header in headers
        ]
        return tabs, composers

    def get_tab(self, workspace_id: str, tab_id: str) -> ChatTab | None:
        tabs, _ = self.get_chats(workspace_id)
        return next((t for t in tabs if t.id == tab_id), None)

    # ── Composers ────────────────────────────────────────────────

    def list_composers(self) -> list[Composer]:
        """Composer headers from every workspace, most recently updated first."""
        composers = []
        for ws_dir in self.workspace_dirs():
            folder = _read_workspace_path(ws_dir)
            try:
                with RecordStore(ws_dir / "state.vscdb") as store:
                    headers = _parse_composer_headers(store.get_item(COMPOSER_DATA_KEY))
            except StoreUnavailable as e:
                logger.warning("Skipping workspace %s: %s", ws_dir.name, e)
                continue
            composers.extend(_to_composer(h, ws_dir.name, folder) for h in headers)
        composers.sort(key=lambda c: c.updated or c.created or _EPOCH, reverse=True)
        return composers

    def get_composer(self, composer_id: str) -> tuple[Composer, list[NormalizedRecord]] | None:
        """Return a composer and its conversation, oldest record first."""
        header = next((c for c in self.list_composers() if c.id == composer_id), None)
        if header is None:
            return None

        try:
            with RecordStore(self.settings.global_db_path) as store:
                body = _composer_body(store.get_by_key(f"{COMPOSER_BODY_PREFIX}:{composer_id}"))
                records, stats = load_conversation(store, composer_id)
        except StoreUnavailable as e:
            logger.warning("Global storage unavailable, returning header only for %s: %s", composer_id, e)
            return header, []

        if stats.dropped:
            logger.info("Dropped %d bubbles of composer %s", stats.dropped, composer_id)
        merged = {**header.data, **body, "composerId": composer_id}
        composer = _to_composer(merged, header.workspace_id, header.workspace_folder)
        if not records:
            records = inline_conversation(composer_id, body)
        return composer, records

    # ── Logs & search ────────────────────────────────────────────

    def list_logs(self) -> list[WorkspaceLog]:
        """Chat tabs and composers from every workspace, newest first."""
        logs = []
        for ws_dir in self.workspace_dirs():
            folder = _read_workspace_path(ws_dir)
            try:
                with RecordStore(ws_dir / "state.vscdb") as store:
                    tabs = _parse_tabs(store.get_item(CHAT_DATA_KEY))
                    headers = _parse_composer_headers(store.get_item(COMPOSER_DATA_KEY))
            except StoreUnavailable as e:
                logger.warning("Skipping workspace %s: %s", ws_dir.name, e)
                continue

            for tab in tabs:
                logs.append(WorkspaceLog(
                    id=tab.id,
                    workspace_id=ws_dir.name,
                    workspace_folder=folder,
                    title=tab.title,
                    timestamp=tab.timestamp,
                    type="chat",
                    message_count=len(tab.bubbles),
                ))
            for header in headers:
                composer = _to_composer(header, ws_dir.name, folder)
                logs.append(WorkspaceLog(
                    id=composer.id,
                    workspace_id=ws_dir.name,
                    workspace_folder=folder,
                    title=composer.title,
                    timestamp=composer.updated or composer.created,
                    type="composer",
                    message_count=composer.message_count,
                ))

        logs.sort(key=lambda log: log.timestamp or _EPOCH, reverse=True)
        return logs

    def search(self, query: str, kind: str = "all") -> list[SearchHit]:
        """Case-insensitive text search over chat tabs and composer conversations.

        `kind` is "chat", "composer" or "all".
        """
        if not query:
            return []
        needle = query.lower()
        hits = []

        if kind in ("all", "chat"):
            for ws_dir in self.workspace_dirs():
                folder = _read_workspace_path(ws_dir) or ""
                try:
                    with RecordStore(ws_dir / "state.vscdb") as store:
                        tabs = _parse_tabs(store.get_item(CHAT_DATA_KEY))
                except StoreUnavailable as e:
                    logger.warning("Skipping workspace %s: %s", ws_dir.name, e)
                    continue
                for tab in tabs:
                    match = _match_tab(tab, needle)
                    if match is not None:
                        hits.append(SearchHit(
                            workspace_id=ws_dir.name,
                            workspace_folder=folder,
                            chat_id=tab.id,
                            chat_title=tab.title,
                            timestamp=tab.timestamp,
                            matching_text=match,
                            type="chat",
                        ))

        if kind in ("all", "composer"):
            hits.extend(self._search_composers(needle))

        hits.sort(key=lambda h: h.timestamp or _EPOCH, reverse=True)
        return hits

    # ── Private helpers ──────────────────────────────────────────

    def _workspace_dir(self, workspace_id: str) -> Path:
        ws_dir = self.base_path / workspace_id
        # ids are single directory names
        if Path(workspace_id).name != workspace_id or not (ws_dir / "state.vscdb").exists():
            raise WorkspaceNotFound(workspace_id)
        return ws_dir

    def _read_workspace(self, ws_dir: Path, with_counts: bool) -> Workspace:
        db_path = ws_dir / "state.vscdb"
        workspace = Workspace(
            id=ws_dir.name,
            db_path=str(db_path),
            folder=_read_workspace_path(ws_dir),
            last_modified=datetime.fromtimestamp(db_path.stat().st_mtime, tz=timezone.utc),
        )
        if with_counts:
            with RecordStore(db_path) as store:
                workspace.chat_count = len(_parse_tabs(store.get_item(CHAT_DATA_KEY)))
                workspace.composer_count = len(_parse_composer_headers(store.get_item(COMPOSER_DATA_KEY)))
        return workspace

    def _composer_bodies(self, composer_ids: list[str]) -> dict[str, dict]:
        if not composer_ids:
            return {}
        keys = [f"{COMPOSER_BODY_PREFIX}:{cid}" for cid in composer_ids]
        try:
            with RecordStore(self.settings.global_db_path) as store:
                rows = store.list_by_keys(keys)
        except StoreUnavailable as e:
            logger.warning("Global storage unavailable, composer bodies skipped: %s", e)
            return {}
        bodies = {}
        for row in rows:
            body = _composer_body(row)
            bodies[row.key.split(":", 1)[1]] = body
        return bodies

    def _search_composers(self, needle: str) -> list[SearchHit]:
        composers = self.list_composers()
        if not composers:
            return []
        try:
            with RecordStore(self.settings.global_db_path) as store:
                records, _ = normalize_batch(store.list_by_prefix(BUBBLE_PREFIX))
                bodies = {
                    c.id: _composer_body(store.get_by_key(f"{COMPOSER_BODY_PREFIX}:{c.id}"))
                    for c in composers
                }
        except StoreUnavailable as e:
            logger.warning("Global storage unavailable, composer search skipped: %s", e)
            return []

        groups = group_records(records)
        hits = []
        for composer in composers:
            conversation = groups.get(composer.id) or inline_conversation(composer.id, bodies.get(composer.id, {}))
            for record in conversation:
                snippet = _snippet(record.text, needle)
                if snippet is not None:
                    hits.append(SearchHit(
                        workspace_id=composer.workspace_id,
                        workspace_folder=composer.workspace_folder or "",
                        chat_id=composer.id,
                        chat_title=composer.title,
                        timestamp=composer.updated or composer.created,
                        matching_text=snippet,
                        type="composer",
                    ))
                    break
        return hits


def inline_conversation(composer_id: str, body: dict) -> list[NormalizedRecord]:
    """Normalize bubbles stored inline in an older composer body's `conversation`."""
    conversation = body.get("conversation")
    if not isinstance(conversation, list):
        return []
    records = []
    for index, bubble in enumerate(conversation):
        if not isinstance(bubble, dict):
            continue
        bubble_id = bubble.get("bubbleId") if isinstance(bubble.get("bubbleId"), str) else str(index)
        key = f"{BUBBLE_PREFIX}:{composer_id}:{bubble_id}"
        records.append(build_record(composer_id, bubble_id, index, key, bubble))
    return records


def _read_workspace_path(ws_dir: Path) -> str | None:
    """Extract the project path from workspace.json."""
    ws_json = ws_dir / "workspace.json"
    if not ws_json.exists():
        return None
    try:
        data = json.loads(ws_json.read_text(encoding="utf-8"))
        folder_uri = data.get("folder", "") or data.get("workspace", "")
        if folder_uri.startswith("file://"):
            return urllib.parse.unquote(folder_uri[7:])
        return folder_uri or None
    except (json.JSONDecodeError, OSError, AttributeError) as e:
        logger.warning("Failed to read workspace.json in %s: %s", ws_dir, e)
        return None


def _load_json(raw: str | None, what: str):
    if not raw:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning("Corrupt %s: %s", what, e)
        return None


def _parse_tabs(raw: str | None) -> list[ChatTab]:
    data = _load_json(raw, CHAT_DATA_KEY)
    if not isinstance(data, dict) or not isinstance(data.get("tabs"), list):
        return []

    tabs = []
    for tab in data["tabs"]:
        if not isinstance(tab, dict) or not tab.get("tabId"):
            continue
        tab_id = str(tab["tabId"])
        title = _str(tab.get("chatTitle")).split("\n")[0] or f"Chat {tab_id[:8]}"
        bubbles = []
        for bubble in tab.get("bubbles") or []:
            if not isinstance(bubble, dict):
                continue
            selections = [
                s["text"] for s in bubble.get("selections") or []
                if isinstance(s, dict) and isinstance(s.get("text"), str)
            ]
            bubbles.append(ChatBubble(
                type="user" if bubble.get("type") == "user" else "ai",
                text=_str(bubble.get("text")),
                model_type=_str(bubble.get("modelType")) or None,
                selections=selections,
            ))
        tabs.append(ChatTab(
            id=tab_id,
            title=title,
            timestamp=_ms_to_datetime(tab.get("lastSendTime")),
            bubbles=bubbles,
        ))
    return tabs


def _parse_composer_headers(raw: str | None) -> list[dict]:
    data = _load_json(raw, COMPOSER_DATA_KEY)
    if not isinstance(data, dict) or not isinstance(data.get("allComposers"), list):
        return []
    return [c for c in data["allComposers"] if isinstance(c, dict) and _str(c.get("composerId"))]


def _composer_body(row) -> dict:
    if row is None:
        return {}
    data = _load_json(row.value_json, row.key)
    return data if isinstance(data, dict) else {}


def _to_composer(data: dict, workspace_id: str, folder: str | None) -> Composer:
    composer_id = data["composerId"]
    name = _str(data.get("name")).strip()
    text = _str(data.get("text")).strip()
    title = name or _truncate(text.split("\n")[0], 80) or f"Composer {composer_id[:8]}"

    conversation = data.get("conversation")
    headers = data.get("fullConversationHeadersOnly")
    if isinstance(conversation, list) and conversation:
        message_count = len(conversation)
    elif isinstance(headers, list):
        message_count = len(headers)
    else:
        message_count = 0

    return Composer(
        id=composer_id,
        workspace_id=workspace_id,
        title=title,
        created=_ms_to_datetime(data.get("createdAt")),
        updated=_ms_to_datetime(data.get("lastUpdatedAt")),
        mode=_str(data.get("unifiedMode")) or _str(data.get("forceMode")) or None,
        message_count=message_count,
        workspace_folder=folder,
        data=data,
    )


def _match_tab(tab: ChatTab, needle: str) -> str | None:
    """Snippet for the first bubble (or selection) of a tab containing `needle`."""
    for bubble in tab.bubbles:
        snippet = _snippet(bubble.text, needle)
        if snippet is not None:
            return snippet
        for selection in bubble.selections:
            if needle in selection.lower():
                suffix = "..." if len(selection) > 100 else ""
                return f"Selection: {selection[:100]}{suffix}"
    return None


def _snippet(text: str, needle: str) -> str | None:
    """Up to 50 characters either side of the first match, with ellipses."""
    index = text.lower().find(needle)
    if index < 0:
        return None
    start = max(0, index - SNIPPET_CONTEXT)
    end = min(len(text), index + len(needle) + SNIPPET_CONTEXT)
    prefix = "..." if start > 0 else ""
    suffix = "..." if end < len(text) else ""
    return f"{prefix}{text[start:end]}{suffix}"


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _ms_to_datetime(ms) -> datetime | None:
    """Convert millisecond timestamp to datetime, or None."""
    if not isinstance(ms, (int, float)) or isinstance(ms, bool):
        return None
    try:
        return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    except (ValueError, OSError, OverflowError):
        return None


def _truncate(text: str, max_len: int) -> str:
    """Truncate text to max_len, adding ellipsis if needed."""
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


def _str(value) -> str:
    """Stored string fields; anything else reads as empty."""
    return value if isinstance(value, str) else ""
