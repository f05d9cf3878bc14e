"""Exception hierarchy for cursor-chat-browser.

Store-level failures propagate to the request boundary. Per-record failures
(RecordParseFailure, MalformedKey) are raised by the normalizer and absorbed
by its batch helper.
"""

from typing import Any


class ChatBrowserError(Exception):
    """Base exception for all cursor-chat-browser errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class StoreUnavailable(ChatBrowserError):
    """Raised when a state.vscdb store cannot be opened or queried."""

    def __init__(self, message: str, path: str | None = None):
        super().__init__(message, {"path": path} if path else None)
        self.path = path


class RecordParseFailure(ChatBrowserError):
    """Raised when a record's value is not a JSON object."""

    def __init__(self, message: str, key: str | None = None):
        super().__init__(message, {"key": key} if key else None)
        self.key = key


class MalformedKey(ChatBrowserError):
    """Raised when a record key is not `<prefix>:<conversationId>:<recordId>`."""

    def __init__(self, key: str):
        super().__init__(f"Malformed record key: {key!r}", {"key": key})
        self.key = key


class WorkspaceNotFound(ChatBrowserError):
    """Raised when a workspace id has no state.vscdb."""

    def __init__(self, workspace_id: str):
        super().__init__(f"Workspace not found: {workspace_id}", {"workspace_id": workspace_id})
        self.workspace_id = workspace_id
