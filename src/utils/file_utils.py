"""
File operation utilities for the workspace file tools.

Every path a tool receives is interpreted relative to the conversation's
workspace directory and rejected if it could escape it.
"""

from __future__ import annotations

from pathlib import Path

import aiofiles

from utils.logger import logger

ERROR_NULL_BYTE_IN_PATH = "Invalid path: null byte in path"
ERROR_PATH_TRAVERSAL = "Access denied: path traversal ('..') is not allowed"
ERROR_PATH_OUTSIDE_WORKSPACE = "Access denied: path is outside the workspace"
ERROR_SYMLINK_ESCAPE = "Access denied: path resolves outside the workspace"


def conversation_workspace(root: Path, conversation_id: str) -> Path:
    """Workspace directory for one conversation (created on demand)."""
    workspace = (root / conversation_id).resolve()
    workspace.mkdir(parents=True, exist_ok=True)
    return workspace


def validate_workspace_path(file_path: str, workspace: Path) -> tuple[Path, str | None]:
    """
    Validate a path within workspace boundaries.

    Args:
        file_path: Path relative to the workspace (a leading ``/`` is treated as the workspace root)
        workspace: Resolved workspace directory

    Returns:
        Tuple of (resolved_path, error_message)
        If error_message is None, validation passed
    """
    try:
        if "\0" in file_path:
            return Path(), ERROR_NULL_BYTE_IN_PATH

        normalized = file_path.replace("\\", "/").strip()
        if ".." in Path(normalized).parts:
            return Path(), ERROR_PATH_TRAVERSAL

        relative = normalized.lstrip("/") or "."
        target = workspace / relative

        try:
            target.relative_to(workspace)
        except ValueError:
            return Path(), ERROR_PATH_OUTSIDE_WORKSPACE

        resolved = target.resolve()
        try:
            resolved.relative_to(workspace)
        except ValueError:
            return Path(), ERROR_SYMLINK_ESCAPE

        return resolved, None

    except (ValueError, OSError) as e:
        return Path(), f"Path validation failed: {e!s}"


async def read_file_content(target_path: Path) -> tuple[str, str | None]:
    """
    Read text content from a file asynchronously.

    Returns:
        Tuple of (content, error_message)
        If error_message is None, read was successful
    """
    try:
        async with aiofiles.open(target_path, encoding="utf-8") as f:
            content = await f.read()
        return content, None
    except UnicodeDecodeError:
        return "", "File is not text/UTF-8 encoded"
    except FileNotFoundError:
        return "", f"File not found: {target_path.name}"
    except PermissionError:
        return "", f"Permission denied: {target_path.name}"
    except OSError as e:
        return "", f"Failed to read file: {e!s}"


async def write_file_content(target_path: Path, content: str, append: bool = False) -> str | None:
    """
    Write text content to a file asynchronously, creating parent directories.

    Returns:
        None on success, otherwise an error message
    """
    try:
        target_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(target_path, "a" if append else "w", encoding="utf-8") as f:
            await f.write(content)
        return None
    except PermissionError:
        return f"Permission denied: {target_path.name}"
    except OSError as e:
        logger.warning(f"Write failed for {target_path}: {e}")
        return f"Failed to write file: {e!s}"


__all__ = [
    "ERROR_NULL_BYTE_IN_PATH",
    "ERROR_PATH_OUTSIDE_WORKSPACE",
    "ERROR_PATH_TRAVERSAL",
    "ERROR_SYMLINK_ESCAPE",
    "conversation_workspace",
    "read_file_content",
    "validate_workspace_path",
    "write_file_content",
]
