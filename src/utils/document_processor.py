"""
Document conversion utilities backed by MarkItDown.

Converts uploaded files and fetched web pages (PDF, DOCX, HTML, ...) into
markdown text the model can read. Conversion is blocking and runs in a worker
thread.
"""

from __future__ import annotations

import asyncio
import tempfile

from functools import lru_cache
from pathlib import Path

from markitdown import MarkItDown

from utils.logger import logger


@lru_cache(maxsize=1)
def get_markitdown_converter() -> MarkItDown:
    """Shared MarkItDown converter instance."""
    return MarkItDown(enable_plugins=False)


def _convert_bytes_sync(data: bytes, extension: str) -> str:
    suffix = extension if extension.startswith(".") else f".{extension}"
    with tempfile.TemporaryDirectory(prefix="agnt-convert-") as tmp_dir:
        path = Path(tmp_dir) / f"document{suffix}"
        path.write_bytes(data)
        result = get_markitdown_converter().convert(str(path))
    return result.text_content or ""


async def convert_bytes_to_markdown(data: bytes, extension: str) -> str:
    """Convert a document's raw bytes to markdown.

    Args:
        data: File contents
        extension: File extension used to pick the converter (``.pdf``, ``html``, ...)

    Returns:
        Markdown text (empty when the document has no extractable text)

    Raises:
        Exception: Whatever MarkItDown raises for unsupported or corrupt input
    """
    text = await asyncio.to_thread(_convert_bytes_sync, data, extension)
    logger.debug(f"Converted {len(data):,} bytes ({extension}) to {len(text):,} chars of markdown")
    return text


__all__ = ["convert_bytes_to_markdown", "get_markitdown_converter"]
