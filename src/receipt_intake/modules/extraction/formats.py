from __future__ import annotations

import enum
import mimetypes
from pathlib import PurePath


class DocumentFormat(str, enum.Enum):
    IMAGE = "image"
    PDF = "pdf"
    DOCX = "docx"
    UNSUPPORTED = "unsupported"


_EXTENSION_FORMATS: dict[str, DocumentFormat] = {
    ".png": DocumentFormat.IMAGE,
    ".jpg": DocumentFormat.IMAGE,
    ".jpeg": DocumentFormat.IMAGE,
    ".pdf": DocumentFormat.PDF,
    ".doc": DocumentFormat.DOCX,
    ".docx": DocumentFormat.DOCX,
}

_DEFAULT_MIME_TYPES: dict[DocumentFormat, str] = {
    DocumentFormat.IMAGE: "image/jpeg",
    DocumentFormat.PDF: "application/pdf",
    DocumentFormat.DOCX: (
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
    ),
}


def detect_format(filename: str | PurePath) -> DocumentFormat:
    suffix = PurePath(str(filename or "")).suffix.lower()
    return _EXTENSION_FORMATS.get(suffix, DocumentFormat.UNSUPPORTED)


def mime_type_for(fmt: DocumentFormat, filename: str | PurePath | None = None) -> str:
    if filename:
        guessed, _ = mimetypes.guess_type(str(filename))
        if guessed:
            return guessed
    return _DEFAULT_MIME_TYPES.get(fmt, "application/octet-stream")
