from __future__ import annotations

import os
from pathlib import Path

import pytest

# Set env before any receipt_intake imports (settings are created at import time).
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("LOG_LEVEL", "WARNING")


@pytest.fixture
def make_document():
    from receipt_intake.modules.extraction.formats import detect_format, mime_type_for
    from receipt_intake.modules.extraction.schemas import UploadedDocument

    def _make(filename: str, body: bytes = b"stub", mime_type: str | None = None):
        fmt = detect_format(filename)
        return UploadedDocument(
            path=Path("/uploads") / filename,
            mime_type=mime_type or mime_type_for(fmt, filename),
            format=fmt,
            body=body,
        )

    return _make
