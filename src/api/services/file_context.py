"""
Uploaded file processing for chat requests.

Images are kept as base64 for vision-capable models. Documents are turned
into text (markitdown for PDF/Office/HTML, UTF-8 decoding for text formats)
and prepended to the first user message as ``[FILE i/n: name]`` sections.
"""

from __future__ import annotations

import base64
import binascii
import mimetypes

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from core.constants import CONVERTIBLE_MIME_TYPES, IMAGE_MIME_TYPES
from models.api_models import UploadedFile
from utils.document_processor import convert_bytes_to_markdown
from utils.logger import logger

TEXT_MIME_TYPES = {
    "text/plain",
    "text/csv",
    "text/markdown",
    "text/javascript",
    "text/css",
    "application/json",
    "application/octet-stream",
}


@dataclass
class ProcessedFiles:
    """Text context and vision images extracted from one request's uploads."""

    file_context: str = ""
    images: list[dict[str, Any]] = field(default_factory=list)
    file_names: list[str] = field(default_factory=list)


def _extension_for(upload: UploadedFile) -> str:
    suffix = Path(upload.name).suffix
    return suffix or mimetypes.guess_extension(upload.mime_type) or ".bin"


async def _file_text(upload: UploadedFile, raw: bytes) -> str:
    mime_type = upload.mime_type.lower()
    if mime_type in TEXT_MIME_TYPES:
        return raw.decode("utf-8", errors="replace")
    if mime_type in CONVERTIBLE_MIME_TYPES:
        return await convert_bytes_to_markdown(raw, _extension_for(upload))
    return f"[Unsupported file type: {upload.mime_type}]"


async def process_uploaded_files(files: list[UploadedFile]) -> ProcessedFiles:
    """Split uploads into vision images and a text context block."""
    processed = ProcessedFiles(file_names=[f.name for f in files])
    total = len(files)

    for index, upload in enumerate(files, start=1):
        if upload.mime_type.lower() in IMAGE_MIME_TYPES or upload.mime_type.lower().startswith("image/"):
            processed.images.append({"name": upload.name, "mime_type": upload.mime_type, "data": upload.data})
            logger.info(f"Prepared image for vision model: {upload.name} ({upload.mime_type})")
            continue

        try:
            raw = base64.b64decode(upload.data, validate=False)
            text = await _file_text(upload, raw)
        except (binascii.Error, ValueError) as e:
            logger.error(f"Could not decode uploaded file {upload.name}: {e}")
            text = f"[Error processing file: {upload.name}]"
        except Exception as e:
            logger.error(f"Error processing file {upload.name}: {e}", exc_info=True)
            text = f"[Error processing file: {upload.name}]"

        processed.file_context += f"\n\n[FILE {index}/{total}: {upload.name}]\n{text}\n"

    return processed


def apply_file_context(messages: list[dict[str, Any]], file_context: str) -> list[dict[str, Any]]:
    """Prepend file text to the first user message (returns a new list)."""
    if not file_context.strip():
        return messages

    updated = list(messages)
    for i, message in enumerate(updated):
        if message.get("role") != "user":
            continue
        content = message.get("content")
        if isinstance(content, list):
            new_content: Any = [{"type": "text", "text": file_context}, *content]
        else:
            new_content = f"{file_context}\n\n{content or ''}"
        updated[i] = {**message, "content": new_content}
        break
    return updated


__all__ = ["ProcessedFiles", "apply_file_context", "process_uploaded_files"]
