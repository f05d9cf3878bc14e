"""FastAPI web server for cursor-chat-browser."""

import logging
from datetime import datetime, timezone
from typing import Literal

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import BaseModel

from . import __version__
from .bubbles.extract import (
    code_block_stats,
    extract_code_blocks,
    extract_file_contexts,
    extract_tool_results,
    file_context_stats,
    tool_result_stats,
)
from .bubbles.grouping import text_record_count
from .bubbles.normalize import normalize_batch, parse_value
from .config import Settings, detect_environment, get_username, resolve_settings, validate_workspace_path
from .core import ChatTab, Composer, SearchHit, Workspace, WorkspaceLog
from .exceptions import RecordParseFailure, StoreUnavailable, WorkspaceNotFound
from .export import (
    records_to_html,
    records_to_json,
    records_to_markdown,
    tab_to_html,
    tab_to_json,
    tab_to_markdown,
)
from .recent import (
    RecentQuery,
    active_to_dict,
    active_to_text,
    empty_result,
    find_active_conversation,
    record_to_dict,
    recent_window_size,
)
from .store import BUBBLE_PREFIX, RecordStore
from .workspaces import WorkspaceReader

logger = logging.getLogger(__name__)

WORKSPACE_COOKIE = "workspacePath"
TEXT_FEED_SEPARATOR = "\n\n" + "=" * 80 + "\n\n"

app = FastAPI(title="cursor-chat-browser", version=__version__)


def get_settings(request: Request) -> Settings:
    """Resolve storage paths for this request.

    Order: the workspace cookie, then the path `serve` stored on `app.state`,
    then the environment, then the platform default.
    """
    workspace_path = request.cookies.get(WORKSPACE_COOKIE) or getattr(request.app.state, "workspace_path", None)
    return resolve_settings(workspace_path)


@app.exception_handler(StoreUnavailable)
async def store_unavailable_handler(request: Request, exc: StoreUnavailable):
    logger.error("Store unavailable for %s: %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": exc.message})


@app.exception_handler(WorkspaceNotFound)
async def workspace_not_found_handler(request: Request, exc: WorkspaceNotFound):
    return JSONResponse(status_code=404, content={"detail": exc.message})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error for %s", request.url.path)
    return JSONResponse(status_code=500, content={"detail": f"Internal server error: {type(exc).__name__}"})


def _iso(value):
    return value.isoformat() if value else None


def _workspace_to_dict(ws: Workspace) -> dict:
    return {
        "id": ws.id,
        "path": ws.db_path,
        "folder": ws.folder,
        "lastModified": _iso(ws.last_modified),
        "chatCount": ws.chat_count,
        "composerCount": ws.composer_count,
    }


def _tab_to_dict(tab: ChatTab) -> dict:
    return {
        "id": tab.id,
        "title": tab.title,
        "timestamp": _iso(tab.timestamp),
        "bubbles": [
            {"type": b.type, "text": b.text, "modelType": b.model_type, "selections": b.selections}
            for b in tab.bubbles
        ],
    }


def _composer_to_dict(composer: Composer, include_data: bool = False) -> dict:
    data = {
        "composerId": composer.id,
        "workspaceId": composer.workspace_id,
        "workspaceFolder": composer.workspace_folder,
        "title": composer.title,
        "createdAt": _iso(composer.created),
        "lastUpdatedAt": _iso(composer.updated),
        "mode": composer.mode,
        "messageCount": composer.message_count,
    }
    if include_data:
        data["data"] = composer.data
    return data


def _log_to_dict(log: WorkspaceLog) -> dict:
    return {
        "id": log.id,
        "workspaceId": log.workspace_id,
        "workspaceFolder": log.workspace_folder,
        "title": log.title,
        "timestamp": _iso(log.timestamp),
        "type": log.type,
        "messageCount": log.message_count,
    }


def _hit_to_dict(hit: SearchHit) -> dict:
    return {
        "workspaceId": hit.workspace_id,
        "workspaceFolder": hit.workspace_folder,
        "chatId": hit.chat_id,
        "chatTitle": hit.chat_title,
        "timestamp": _iso(hit.timestamp),
        "matchingText": hit.matching_text,
        "type": hit.type,
    }


def _safe_filename(title: str) -> str:
    return "".join(c if c.isalnum() or c in "-_ " else "" for c in title)[:50] or "chat"


def _export_response(content: str, fmt: str, title: str) -> Response:
    media_types = {"md": "text/markdown", "json": "application/json", "html": "text/html"}
    return Response(
        content=content,
        media_type=media_types[fmt],
        headers={"Content-Disposition": f'attachment; filename="{_safe_filename(title)}.{fmt}"'},
    )


# ── Workspaces & composers ───────────────────────────────────────


@app.get("/api/workspaces")
async def get_workspaces(settings: Settings = Depends(get_settings)):
    """Return every workspace that has a state.vscdb."""
    reader = WorkspaceReader(settings)
    return [_workspace_to_dict(ws) for ws in reader.list_workspaces()]


@app.get("/api/workspaces/{workspace_id}")
async def get_workspace(workspace_id: str, settings: Settings = Depends(get_settings)):
    return _workspace_to_dict(WorkspaceReader(settings).get_workspace(workspace_id))


@app.get("/api/workspaces/{workspace_id}/tabs")
async def get_workspace_tabs(workspace_id: str, settings: Settings = Depends(get_settings)):
    """Return a workspace's chat tabs and composers."""
    tabs, composers = WorkspaceReader(settings).get_chats(workspace_id)
    if not tabs and not composers:
        raise HTTPException(status_code=404, detail="No chat data found")
    return {
        "tabs": [_tab_to_dict(t) for t in tabs],
        "composers": [_composer_to_dict(c, include_data=True) for c in composers],
    }


@app.get("/api/composers")
async def get_composers(settings: Settings = Depends(get_settings)):
    return [_composer_to_dict(c) for c in WorkspaceReader(settings).list_composers()]


@app.get("/api/composers/{composer_id}")
async def get_composer(
    composer_id: str,
    metadataLevel: Literal["basic", "full", "raw"] = Query("basic"),
    settings: Settings = Depends(get_settings),
):
    """Return a composer with its full conversation."""

    found = WorkspaceReader(settings).get_composer(composer_id)
    if found is None:
        raise HTTPException(status_code=404, detail="Composer not found")
    composer, records = found
    read_at = datetime.now(timezone.utc)
    return {
        **_composer_to_dict(composer),
        "records": [record_to_dict(r, metadataLevel, read_at) for r in records],
    }


@app.get("/api/logs")
async def get_logs(settings: Settings = Depends(get_settings)):
    return {"logs": [_log_to_dict(log) for log in WorkspaceReader(settings).list_logs()]}


@app.get("/api/search")
async def search(
    q: str | None = Query(None, description="Text to search for"),
    type: Literal["all", "chat", "composer"] = Query("all"),
    settings: Settings = Depends(get_settings),
):
    if not q:
        return []
    return [_hit_to_dict(h) for h in WorkspaceReader(settings).search(q, type)]


# ── Active chat & recent activity ────────────────────────────────


@app.get("/api/active-chat")
async def get_active_chat(settings: Settings = Depends(get_settings)):
    """Return the whole conversation judged most active in the recent window."""
    query = RecentQuery(include_empty=True, metadata_level="basic")
    with RecordStore(settings.global_db_path) as store:
        active = find_active_conversation(store, query, windowed=False)
    if active is None:
        return JSONResponse(status_code=404, content=empty_result(query))
    return active_to_dict(active, query)


def _recent_response(active, query: RecentQuery, format: str):
    if active is None:
        return JSONResponse(status_code=404, content=empty_result(query))
    if format == "text":
        return PlainTextResponse(active_to_text(active, query))
    return active_to_dict(active, query)


@app.get("/api/recent-messages")
async def get_recent_messages(
    limit: int = Query(10, ge=1, le=50),
    since: str | None = Query(None, description="ISO timestamp or bubble id"),
    format: Literal["json", "text"] = Query("json"),
    includeEmpty: bool = Query(False),
    settings: Settings = Depends(get_settings),
):
    """Recent messages of the conversation with the most text bubbles."""
    query = RecentQuery(limit=limit, since=since, include_empty=includeEmpty, metadata_level="basic")
    with RecordStore(settings.global_db_path) as store:
        active = find_active_conversation(
            store, query, recent_window_size(limit, 5, 500), scorer=text_record_count
        )
    return _recent_response(active, query, format)


@app.get("/api/recent-messages-enhanced")
async def get_recent_messages_enhanced(
    limit: int = Query(10, ge=1, le=50),
    since: str | None = Query(None, description="ISO timestamp or bubble id"),
    format: Literal["json", "text"] = Query("json"),
    includeEmpty: bool = Query(False),
    metadataLevel: Literal["basic", "full", "raw"] = Query("full"),
    settings: Settings = Depends(get_settings),
):
    """Recent messages of the richest recent conversation, with metadata."""
    query = RecentQuery(limit=limit, since=since, include_empty=includeEmpty, metadata_level=metadataLevel)
    with RecordStore(settings.global_db_path) as store:
        active = find_active_conversation(store, query, recent_window_size(limit, 20, 1000))
    return _recent_response(active, query, format)


def _recent_records(settings: Settings, limit: int):
    with RecordStore(settings.global_db_path) as store:
        raws = store.list_recent_by_prefix(BUBBLE_PREFIX, recent_window_size(limit, 50, 2000))
    records, _ = normalize_batch(raws)
    return records, len(raws)


@app.get("/api/tool-results")
async def get_tool_results(
    limit: int = Query(20, ge=1, le=200),
    since: str | None = Query(None),
    format: Literal["json", "text"] = Query("json"),
    tool: str | None = Query(None, description="Filter by tool name"),
    settings: Settings = Depends(get_settings),
):
    records, scanned = _recent_records(settings, limit)
    results = extract_tool_results(records, limit, since, tool)
    if format == "text":
        blocks = []
        for r in results:
            status = "Success" if r["execution"]["success"] else "Failed"
            out = f"TOOL: {r['tool']['name']}\nStatus: {status}"
            if r["context"]["command"]:
                out += f"\nCommand: {r['context']['command']}"
            out += f"\nOutput:\n{r['output']['text'] or 'No output'}"
            if r["output"]["error"]:
                out += f"\nError: {r['output']['error']}"
            blocks.append(out)
        return PlainTextResponse(TEXT_FEED_SEPARATOR.join(blocks))
    return {
        "toolResults": results,
        "metadata": {**tool_result_stats(results), "totalBubbles": scanned, "toolFilter": tool},
    }


@app.get("/api/code-blocks")
async def get_code_blocks(
    limit: int = Query(20, ge=1, le=200),
    since: str | None = Query(None),
    format: Literal["json", "text"] = Query("json"),
    language: str | None = Query(None, description="Filter by language"),
    includeContent: bool = Query(True),
    settings: Settings = Depends(get_settings),
):
    records, scanned = _recent_records(settings, limit)
    blocks = extract_code_blocks(records, limit, since, language, includeContent)
    if format == "text":
        rendered = []
        for b in blocks:
            out = f"CODE BLOCK: {b['language'].upper()}"
            if b["filename"]:
                out += f" ({b['filename']})"
            out += f"\nSource: {b['context']['messageType']}"
            out += f"\nLines: {b['metadata']['lineCount']}, Characters: {b['metadata']['characterCount']}"
            if includeContent and b["content"]:
                out += f"\n{'-' * 60}\n{b['content']}\n{'-' * 60}"
            rendered.append(out)
        return PlainTextResponse(TEXT_FEED_SEPARATOR.join(rendered))
    return {
        "codeBlocks": blocks,
        "metadata": {
            **code_block_stats(blocks),
            "totalBubbles": scanned,
            "languageFilter": language,
            "includeContent": includeContent,
        },
    }


@app.get("/api/file-context")
async def get_file_context(
    limit: int = Query(20, ge=1, le=200),
    since: str | None = Query(None),
    format: Literal["json", "text"] = Query("json"),
    file: str | None = Query(None, description="Filter by file name"),
    type: Literal["attached", "git", "viewed", "context", "all"] | None = Query(None),
    includeContent: bool = Query(True),
    settings: Settings = Depends(get_settings),
):
    records, scanned = _recent_records(settings, limit)
    contexts = extract_file_contexts(records, limit, since, file, type, includeContent)
    if format == "text":
        rendered = []
        for c in contexts:
            out = f"FILE CONTEXT: {c['type'].upper()}"
            if c["filename"]:
                out += f" - {c['filename']}"
            out += f"\nSource: {c['context']['messageType']}"
            if includeContent and c["content"]:
                snippet = c["content"][:500] + ("..." if len(c["content"]) > 500 else "")
                out += f"\n{'-' * 60}\n{snippet}\n{'-' * 60}"
            rendered.append(out)
        return PlainTextResponse(TEXT_FEED_SEPARATOR.join(rendered))
    return {
        "fileContexts": contexts,
        "metadata": {
            **file_context_stats(contexts),
            "totalBubbles": scanned,
            "fileFilter": file,
            "contextType": type,
            "includeContent": includeContent,
        },
    }


@app.get("/api/debug-bubble")
async def debug_bubble(
    key: str | None = Query(None, description="Full bubble key"),
    settings: Settings = Depends(get_settings),
):
    """Return a single stored bubble as-is, for inspecting schema drift."""
    if not key:
        raise HTTPException(status_code=400, detail="Bubble key parameter required")
    with RecordStore(settings.global_db_path) as store:
        raw = store.get_by_key(key)
    if raw is None:
        raise HTTPException(status_code=404, detail="Bubble not found")
    try:
        data = parse_value(raw)
    except RecordParseFailure as e:
        raise HTTPException(status_code=422, detail=e.message)
    return {
        "key": raw.key,
        "rowId": raw.row_ordinal,
        "allKeys": list(data.keys()),
        "text": data.get("text"),
        "richText": data.get("richText"),
        "type": data.get("type"),
        "codeBlocks": data.get("codeBlocks"),
        "toolResults": data.get("toolResults"),
        "capabilities": data.get("capabilities"),
        "isAgentic": data.get("isAgentic"),
        "fullData": data,
    }


# ── Export ───────────────────────────────────────────────────────


@app.get("/api/export/tab/{workspace_id}/{tab_id}")
async def export_tab(
    workspace_id: str,
    tab_id: str,
    format: Literal["md", "json", "html"] = Query("md"),
    settings: Settings = Depends(get_settings),
):
    """Export an "ask" chat tab."""
    tab = WorkspaceReader(settings).get_tab(workspace_id, tab_id)
    if tab is None:
        raise HTTPException(status_code=404, detail="Chat not found")
    render = {"md": tab_to_markdown, "json": tab_to_json, "html": tab_to_html}[format]
    return _export_response(render(tab), format, tab.title)


@app.get("/api/export/conversation/{composer_id}")
async def export_conversation(
    composer_id: str,
    format: Literal["md", "json", "html"] = Query("md"),
    settings: Settings = Depends(get_settings),
):
    """Export a composer conversation."""
    found = WorkspaceReader(settings).get_composer(composer_id)
    if found is None:
        raise HTTPException(status_code=404, detail="Composer not found")
    composer, records = found
    if format == "json":
        content = records_to_json(composer.id, composer.title, records)
    elif format == "html":
        content = records_to_html(composer.title, records)
    else:
        content = records_to_markdown(composer.title, records)
    return _export_response(content, format, composer.title)


# ── Environment & configuration ──────────────────────────────────


class WorkspacePathBody(BaseModel):
    path: str


@app.get("/api/detect-environment")
async def get_environment():
    return detect_environment()


@app.get("/api/get-username")
async def get_user():
    return {"username": get_username()}


@app.post("/api/validate-path")
async def validate_path(body: WorkspacePathBody):
    return validate_workspace_path(body.path)


@app.post("/api/set-workspace")
async def set_workspace(body: WorkspacePathBody):
    """Remember a workspace path for this client in a cookie."""
    response = JSONResponse({"success": True})
    response.set_cookie(WORKSPACE_COOKIE, body.path, httponly=True, samesite="lax")
    return response
