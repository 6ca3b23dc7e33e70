from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import fitz

from rag_chat.exception.custom_exception import ERROR_CODES, RagChatException
from rag_chat.logger import GLOBAL_LOGGER as log
from rag_chat.utils.config_loader import get_config
from rag_chat.utils.thread_pool import run_sync

MARKDOWN_EXTENSIONS = {".md", ".markdown"}


@dataclass
class UploadedText:
    filename: str
    mime_type: str
    size: int
    content: str


def is_supported_upload(filename: str, mime_type: Optional[str]) -> bool:
    allowed = get_config()["upload"]["allowed_mime_types"]
    if mime_type in allowed:
        return True
    # browsers often send markdown as application/octet-stream
    return Path(filename).suffix.lower() in MARKDOWN_EXTENSIONS


def _pdf_to_text(data: bytes) -> str:
    with fitz.open(stream=data, filetype="pdf") as pdf:
        # blank line between pages so the paragraph chunker splits on them
        return "\n\n".join(page.get_text() for page in pdf)


async def extract_text(data: bytes, filename: str, mime_type: str) -> str:
    """
    Turn raw upload bytes into text.
    PDFs go through PyMuPDF in the thread pool, everything else is decoded as UTF-8.
    """
    if mime_type == "application/pdf" or filename.lower().endswith(".pdf"):
        try:
            return await run_sync(_pdf_to_text, data)
        except Exception as e:
            log.error("PDF text extraction failed | file=%s | error=%s", filename, str(e))
            raise RagChatException(
                f"Could not read PDF {filename}", 400, ERROR_CODES["INVALID_INPUT"]
            ) from e
    return data.decode("utf-8", errors="replace")


async def read_uploaded_file(uf) -> UploadedText:
    """
    Validate an uploaded file (presence, size, type) and return its text.

    `uf` is anything exposing `.filename`, `.content_type` and an async `.read()`,
    i.e. a Starlette UploadFile.
    """
    if uf is None or not getattr(uf, "filename", None):
        raise RagChatException("No file provided", 400, ERROR_CODES["FILE_REQUIRED"])

    name = uf.filename
    mime_type = uf.content_type or "application/octet-stream"

    if not is_supported_upload(name, mime_type):
        log.warning("Unsupported file type | file=%s | mime=%s", name, mime_type)
        raise RagChatException(
            "File type not supported", 400, ERROR_CODES["FILE_TYPE_NOT_SUPPORTED"]
        )

    data = await uf.read()
    max_size = get_config()["upload"]["max_file_size"]
    if len(data) > max_size:
        raise RagChatException(
            f"File exceeds the {max_size // (1024 * 1024)}MB limit",
            413,
            ERROR_CODES["FILE_TOO_LARGE"],
        )

    if Path(name).suffix.lower() in MARKDOWN_EXTENSIONS and mime_type not in (
        get_config()["upload"]["allowed_mime_types"]
    ):
        mime_type = "text/markdown"

    content = await extract_text(data, name, mime_type)
    log.info("Upload read | file=%s | mime=%s | bytes=%d", name, mime_type, len(data))
    return UploadedText(filename=name, mime_type=mime_type, size=len(data), content=content)


def title_from_filename(filename: str) -> str:
    """`notes.final.md` -> `notes.final`"""
    stem = Path(filename).stem
    return stem or filename
