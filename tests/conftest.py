"""Shared test fixtures for cursor-chat-browser."""

import json
import sqlite3
from datetime import datetime, timezone

import pytest

from cursor_chat_browser.config import resolve_settings

NOW_MS = int(datetime(2025, 1, 15, 10, 0, 0, tzinfo=timezone.utc).timestamp() * 1000)
LATER_MS = int(datetime(2025, 1, 15, 11, 0, 0, tzinfo=timezone.utc).timestamp() * 1000)
MUCH_LATER_MS = int(datetime(2025, 1, 15, 14, 0, 0, tzinfo=timezone.utc).timestamp() * 1000)


def create_store(db_path):
    """Create an empty state.vscdb with Cursor's two tables."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path))
    conn.execute("CREATE TABLE ItemTable (key TEXT UNIQUE ON CONFLICT REPLACE, value BLOB)")
    conn.execute("CREATE TABLE cursorDiskKV (key TEXT UNIQUE ON CONFLICT REPLACE, value BLOB)")
    conn.commit()
    return conn


def put_kv(conn, key, value):
    """Insert a cursorDiskKV row; dicts are stored as JSON, strings verbatim."""
    if not isinstance(value, str):
        value = json.dumps(value)
    conn.execute("INSERT INTO cursorDiskKV (key, value) VALUES (?, ?)", (key, value))


@pytest.fixture
def tmp_cursor_workspace(tmp_path):
    """Create a synthetic workspaceStorage with one workspace holding chat data."""
    ws_storage = tmp_path / "User" / "workspaceStorage"
    ws_dir = ws_storage / "abc123hash"
    ws_dir.mkdir(parents=True)

    workspace_json = {"folder": "file:///Users/testuser/dev/my-project"}
    (ws_dir / "workspace.json").write_text(json.dumps(workspace_json), encoding="utf-8")

    conn = create_store(ws_dir / "state.vscdb")

    chat_data = {
        "tabs": [
            {
                "tabId": "tab-001",
                "chatTitle": "Explain the router\nsecond line",
                "lastSendTime": LATER_MS,
                "bubbles": [
                    {
                        "type": "user",
                        "text": "How does the router work?",
                        "selections": [{"text": "app.use(router)"}],
                    },
                    {
                        "type": "ai",
                        "text": "The router maps paths to handlers.\n\n```js\nrouter.get('/', home)\n```",
                        "modelType": "gpt-4",
                    },
                ],
            },
            {
                "tabId": "tab-002",
                "chatTitle": "",
                "bubbles": [{"type": "user", "text": "Where is the config loaded?"}],
            },
        ]
    }

    composer_data = {
        "allComposers": [
            {
                "composerId": "comp-uuid-001",
                "name": "Fix auth bug",
                "createdAt": NOW_MS,
                "lastUpdatedAt": LATER_MS,
                "unifiedMode": "agent",
            },
            {
                "composerId": "comp-uuid-002",
                "name": "Add dark mode",
                "createdAt": LATER_MS + 1000,
                "lastUpdatedAt": MUCH_LATER_MS,
                "unifiedMode": "chat",
            },
        ],
        "selectedComposerIds": ["comp-uuid-001"],
    }

    conn.execute(
        "INSERT INTO ItemTable (key, value) VALUES (?, ?)",
        ("workbench.panel.aichat.view.aichat.chatdata", json.dumps(chat_data)),
    )
    conn.execute(
        "INSERT INTO ItemTable (key, value) VALUES (?, ?)",
        ("composer.composerData", json.dumps(composer_data)),
    )
    conn.commit()
    conn.close()

    # A folder without a state.vscdb is not a workspace
    (ws_storage / "not-a-workspace").mkdir()

    return ws_storage


@pytest.fixture
def tmp_cursor_global(tmp_cursor_workspace):
    """Create the global state.vscdb beside workspaceStorage.

    Row order (rowid) matters: an older conversation comes first, then the
    active composer's bubbles interleaved with a corrupt row and a malformed key.
    """
    global_db = tmp_cursor_workspace.parent / "globalStorage" / "state.vscdb"
    conn = create_store(global_db)

    put_kv(conn, "composerData:comp-uuid-001", {
        "composerId": "comp-uuid-001",
        "fullConversationHeadersOnly": [
            {"bubbleId": "b1", "type": 1},
            {"bubbleId": "b2", "type": 2},
            {"bubbleId": "b3", "type": 1},
            {"bubbleId": "b4", "type": 2},
        ],
    })
    put_kv(conn, "composerData:comp-uuid-002", {
        "composerId": "comp-uuid-002",
        "conversation": [
            {"bubbleId": "d1", "type": 1, "text": "Add dark mode support to the app"},
            {"bubbleId": "d2", "type": 2, "text": "Implemented dark mode with CSS variables"},
        ],
    })

    put_kv(conn, "bubbleId:conv-old:o1", {"type": 1, "text": "An older question"})
    put_kv(conn, "bubbleId:conv-old:o2", {"type": 2, "text": "An older answer"})

    put_kv(conn, "bubbleId:comp-uuid-001:b1", {
        "type": 1,
        "text": "Fix the login authentication bug in auth.ts",
    })
    put_kv(conn, "bubbleId:comp-uuid-001:b2", {
        "type": 2,
        "text": "I updated the token validation.",
        "codeBlocks": [
            {"language": "typescript", "code": "const token = await validateToken(input);", "filename": "auth.ts"},
        ],
        "toolResults": [
            {"tool": "run_terminal_cmd", "output": "12 tests passed", "success": True, "command": "npm test"},
        ],
        "attachedCodeChunks": [{"path": "src/auth.ts", "text": "export function login() {}"}],
        "gitDiffs": [{"filename": "src/auth.ts", "diff": "+ validateToken()", "type": "modified"}],
        "capabilities": [1, 2],
        "isAgentic": True,
        "tokenCount": 42,
    })
    put_kv(conn, "bubbleId:comp-uuid-001:bad", "{not json")
    put_kv(conn, "bubbleId:broken", {"type": 1, "text": "key has no record id"})
    put_kv(conn, "bubbleId:comp-uuid-001:b3", {
        "type": 1,
        "text": "Now add error handling for expired tokens",
    })
    put_kv(conn, "bubbleId:comp-uuid-001:b4", {"type": 2, "text": ""})

    conn.commit()
    conn.close()
    return global_db


@pytest.fixture
def settings(tmp_cursor_workspace, tmp_cursor_global):
    """Settings pointing at the synthetic workspace and global stores."""
    return resolve_settings(tmp_cursor_workspace)


@pytest.fixture
def make_store(tmp_path):
    """Factory for a state.vscdb holding the given cursorDiskKV rows, in order."""

    def _make(rows, name="state.vscdb"):
        db_path = tmp_path / name
        conn = create_store(db_path)
        for key, value in rows:
            put_kv(conn, key, value)
        conn.commit()
        conn.close()
        return db_path

    return _make


@pytest.fixture
def odd_typed_settings(settings):
    """Settings whose workspace stores numbers where Cursor writes strings."""
    chat_data = {
        "tabs": [
            {
                "tabId": "tab-odd",
                "chatTitle": 7,
                "lastSendTime": NOW_MS,
                "bubbles": [
                    {"type": "user", "text": 42, "modelType": ["gpt"]},
                    {"type": "ai", "text": "plain x answer"},
                ],
            }
        ]
    }
    composer_data = {
        "allComposers": [
            {"composerId": "c1", "name": 5, "text": {"rich": True}, "unifiedMode": 3, "createdAt": NOW_MS},
            {"composerId": 9, "name": "numeric id"},
        ]
    }
    conn = sqlite3.connect(str(settings.workspace_path / "abc123hash" / "state.vscdb"))
    conn.execute(
        "INSERT INTO ItemTable (key, value) VALUES (?, ?)",
        ("workbench.panel.aichat.view.aichat.chatdata", json.dumps(chat_data)),
    )
    conn.execute(
        "INSERT INTO ItemTable (key, value) VALUES (?, ?)",
        ("composer.composerData", json.dumps(composer_data)),
    )
    conn.commit()
    conn.close()
    return settings
