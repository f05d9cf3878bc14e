"""Platform-aware path resolution for Cursor's data directories.

The resolved paths travel as an explicit `Settings` value; nothing here writes
to process-wide state.
"""

import getpass
import logging
import os
import platform
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

WORKSPACE_PATH_ENV = "CURSOR_WORKSPACE_PATH"


@dataclass(frozen=True)
class Settings:
    """Resolved storage locations for one request."""

    workspace_path: Path  # .../User/workspaceStorage
    global_db_path: Path  # .../User/globalStorage/state.vscdb


def resolve_settings(workspace_path: str | Path | None = None) -> Settings:
    """Build Settings from an explicit path, the environment, or the platform default."""
    if workspace_path:
        base = expand_tilde_path(str(workspace_path))
    else:
        env = os.environ.get(WORKSPACE_PATH_ENV)
        base = expand_tilde_path(env) if env else get_default_workspace_path()
    return Settings(workspace_path=base, global_db_path=get_global_db_path(base))


def get_global_db_path(workspace_path: Path) -> Path:
    """Return the globalStorage state.vscdb that sits beside workspaceStorage."""
    return workspace_path.parent / "globalStorage" / "state.vscdb"


def get_default_workspace_path() -> Path:
    """Return the path to Cursor's workspaceStorage directory for this machine."""
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "Cursor" / "User" / "workspaceStorage"
    elif sys.platform == "win32":
        return Path(os.environ.get("APPDATA", "")) / "Cursor" / "User" / "workspaceStorage"
    elif is_wsl():
        return Path("/mnt/c/Users") / get_username() / "AppData" / "Roaming" / "Cursor" / "User" / "workspaceStorage"
    else:  # Linux
        return Path.home() / ".config" / "Cursor" / "User" / "workspaceStorage"


def expand_tilde_path(input_path: str) -> Path:
    """Expand `~/` and bare `Library/Application Support/...` paths against the home directory."""
    if input_path.startswith("~/"):
        return Path.home() / input_path[2:]
    if input_path.startswith("Library/Application Support"):
        return Path.home() / input_path
    return Path(input_path)


def is_wsl() -> bool:
    """Return True when running inside Windows Subsystem for Linux."""
    if not sys.platform.startswith("linux"):
        return False
    release = platform.uname().release.lower()
    return "microsoft" in release or "wsl" in release


def get_username() -> str:
    """Return the user name whose Cursor data should be read.

    Under WSL this is the Windows account name, since Cursor runs on the
    Windows side.
    """
    if sys.platform == "win32":
        return os.environ.get("USERNAME") or getpass.getuser()
    if is_wsl():
        try:
            result = subprocess.run(
                ["cmd.exe", "/c", "echo %USERNAME%"],
                capture_output=True, text=True, timeout=5, check=True,
            )
            name = result.stdout.strip()
            if name:
                return name
        except (OSError, subprocess.SubprocessError) as e:
            logger.debug("Cannot read Windows username from WSL: %s", e)
    return getpass.getuser()


def detect_environment() -> dict:
    """Describe the host OS for the configuration page."""
    return {"os": sys.platform, "isWSL": is_wsl()}


def count_workspaces(workspace_path: Path) -> int:
    """Count subdirectories that hold a state.vscdb."""
    if not workspace_path.is_dir():
        return 0
    return sum(
        1 for entry in workspace_path.iterdir()
        if entry.is_dir() and (entry / "state.vscdb").exists()
    )


def validate_workspace_path(raw_path: str) -> dict:
    """Check that a candidate workspaceStorage path exists and holds workspaces."""
    path = expand_tilde_path(raw_path)
    if not path.exists():
        return {"valid": False, "error": "Path does not exist"}
    try:
        workspace_count = count_workspaces(path)
    except OSError as e:
        logger.warning("Failed to validate workspace path %s: %s", path, e)
        return {"valid": False, "error": "Failed to validate path"}
    return {"valid": workspace_count > 0, "workspaceCount": workspace_count}
