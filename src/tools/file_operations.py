"""
File operation tools confined to the conversation workspace.
Provides directory listing, file reading and file writing.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from core.constants import MAX_FILE_SIZE, get_settings
from core.run_context import RunContext
from tools.registry import ToolDefinition
from utils.file_utils import (
    conversation_workspace,
    read_file_content,
    validate_workspace_path,
    write_file_content,
)
from utils.logger import logger

IMAGE_FILE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".gif", ".webp", ".bmp", ".svg"}


def _workspace(run_context: RunContext) -> Path:
    return conversation_workspace(get_settings().workspace_path, run_context.conversation_id)


def _relative(path: Path, workspace: Path) -> str:
    relative = path.relative_to(workspace).as_posix()
    return relative if relative != "." else ""


async def list_files(args: dict[str, Any], run_context: RunContext) -> dict[str, Any]:
    """List a workspace directory, folders first."""
    workspace = _workspace(run_context)
    requested = args.get("path") or "."
    target, error = validate_workspace_path(requested, workspace)
    if error:
        return {"success": False, "path": requested, "error": error}
    if not target.exists():
        return {"success": False, "path": requested, "error": f"Directory not found: {requested}"}
    if not target.is_dir():
        return {"success": False, "path": requested, "error": f"Not a directory: {requested}"}

    show_hidden = bool(args.get("show_hidden", False))
    items = []
    for item in target.iterdir():
        if item.name.startswith(".") and not show_hidden:
            continue
        is_dir = item.is_dir()
        items.append(
            {
                "name": item.name,
                "path": _relative(item, workspace),
                "type": "folder" if is_dir else "file",
                "size": 0 if is_dir else item.stat().st_size,
            }
        )
    items.sort(key=lambda i: (i["type"] != "folder", i["name"].lower()))

    logger.info(f"Listed {requested}: {len(items)} item(s)")
    return {"success": True, "path": _relative(target, workspace) or ".", "items": items, "count": len(items)}


async def read_file(args: dict[str, Any], run_context: RunContext) -> dict[str, Any]:
    """Read a UTF-8 text file from the workspace."""
    workspace = _workspace(run_context)
    requested = args["path"]
    target, error = validate_workspace_path(requested, workspace)
    if error:
        return {"success": False, "path": requested, "error": error}
    if not target.is_file():
        return {"success": False, "path": requested, "error": f"File not found: {requested}"}

    if target.suffix.lower() in IMAGE_FILE_EXTENSIONS:
        return {
            "success": False,
            "path": requested,
            "error": f"Cannot read image file '{requested}' as text.",
            "hint": "Image files cannot be read as text. Ask the user to attach the image to the chat instead.",
        }

    size = target.stat().st_size
    if size > MAX_FILE_SIZE:
        return {"success": False, "path": requested, "error": f"File too large: {size} bytes (max: {MAX_FILE_SIZE})"}

    content, read_error = await read_file_content(target)
    if read_error:
        return {"success": False, "path": requested, "error": read_error}

    logger.info(f"Read {requested}: {len(content):,} chars")
    return {"success": True, "path": _relative(target, workspace), "content": content, "size": size}


async def write_file(args: dict[str, Any], run_context: RunContext) -> dict[str, Any]:
    """Write (or append) text content to a workspace file."""
    workspace = _workspace(run_context)
    requested = args["path"]
    target, error = validate_workspace_path(requested, workspace)
    if error:
        return {"success": False, "path": requested, "error": error}
    if target.is_dir():
        return {"success": False, "path": requested, "error": f"Path is a directory: {requested}"}

    content = args["content"]
    append = bool(args.get("append", False))
    write_error = await write_file_content(target, content, append=append)
    if write_error:
        return {"success": False, "path": requested, "error": write_error}

    logger.info(f"{'Appended' if append else 'Wrote'} {len(content):,} chars to {requested}")
    return {
        "success": True,
        "path": _relative(target, workspace),
        "bytes_written": len(content.encode("utf-8")),
        "message": f"File {'appended' if append else 'written'} successfully.",
    }


FILE_TOOLS: list[ToolDefinition] = [
    ToolDefinition(
        name="list_files",
        description="List files and folders in the conversation workspace. Paths are relative to the workspace root.",
        parameters={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Directory to list (default: workspace root)."},
                "show_hidden": {"type": "boolean", "description": "Include hidden files (default: false)."},
            },
            "required": [],
        },
        handler=list_files,
    ),
    ToolDefinition(
        name="read_file",
        description="Read a text file from the conversation workspace.",
        parameters={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "File path relative to the workspace root."},
            },
            "required": ["path"],
        },
        handler=read_file,
    ),
    ToolDefinition(
        name="write_file",
        description=(
            "Write text content to a file in the conversation workspace, creating folders as needed. "
            "Content may be a {{DATA_REF:id}} reference to previously offloaded data."
        ),
        parameters={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "File path relative to the workspace root."},
                "content": {"type": "string", "description": "Text content to write."},
                "append": {"type": "boolean", "description": "Append instead of overwriting (default: false)."},
            },
            "required": ["path", "content"],
        },
        handler=write_file,
    ),
]


__all__ = ["FILE_TOOLS", "list_files", "read_file", "write_file"]
