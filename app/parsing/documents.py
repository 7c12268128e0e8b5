from __future__ import annotations

import logging
from io import BytesIO

from pypdf import PdfReader
from pypdf.errors import PdfReadError

logger = logging.getLogger(__name__)

IMAGE_MIME_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "webp": "image/webp",
    "gif": "image/gif",
    "bmp": "image/bmp",
}

DOCUMENT_MIME_TYPES = {
    "pdf": "application/pdf",
    **IMAGE_MIME_TYPES,
}

ALLOWED_EXTENSIONS = set(DOCUMENT_MIME_TYPES)


def file_extension(filename: str) -> str:
    return filename.rsplit(".", 1)[-1].lower() if "." in filename else ""


def mime_type_for(filename: str) -> str | None:
    return DOCUMENT_MIME_TYPES.get(file_extension(filename))


def is_image(filename: str) -> bool:
    return file_extension(filename) in IMAGE_MIME_TYPES


def count_pdf_pages(content: bytes) -> int:
    """Page count of a PDF, or 0 when the bytes cannot be read as one."""
    try:
        reader = PdfReader(BytesIO(content))
        return len(reader.pages)
    except (PdfReadError, ValueError, OSError) as exc:
        logger.debug("pdf_page_count_failed: %s", exc)
        return 0


def page_count(content: bytes, filename: str) -> int:
    if file_extension(filename) == "pdf":
        return count_pdf_pages(content)
    if is_image(filename):
        return 1
    return 0
