"""Generated-document handling.

The platform returns PDFs as base64 text. All we do here is decode the payload,
pick the download filename and hand the bytes to a saver.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
from pathlib import Path
from typing import Any, Protocol

from src.backend.jobs.models.completion import DocumentKind

logger = logging.getLogger(__name__)

_PDF_MAGIC = b"%PDF"


class DocumentSaver(Protocol):
    def save(self, filename: str, content: bytes) -> Path: ...


def extract_encoded_payload(response: dict[str, Any]) -> str:
    """Pull the encoded document out of a generate-document response."""

    for key in ("pdf", "encodedPayload", "document"):
        value = response.get(key)
        if isinstance(value, str) and value.strip():
            return value
    raise ValueError("Response does not contain an encoded document")


def decode_document_payload(encoded: str, *, expect_pdf: bool = True) -> bytes:
    """Decode a base64 payload into raw bytes.

    Accepts data-URL prefixes ("data:application/pdf;base64,...") and missing
    padding. Raises ValueError on anything that is not valid base64.
    """

    s = (encoded or "").strip()
    if s.startswith("data:") and "," in s:
        s = s.split(",", 1)[1]
    s = re.sub(r"\s+", "", s)
    if not s:
        raise ValueError("Encoded document payload is empty")

    s += "=" * (-len(s) % 4)
    try:
        raw = base64.b64decode(s, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Invalid base64 document payload: {e}") from e

    if expect_pdf and not raw.startswith(_PDF_MAGIC):
        raise ValueError("Decoded document is not a PDF")
    return raw


def _safe_label(label: str) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9._-]+", "-", label.strip()).strip("-.")
    return cleaned or "document"


def document_filename(kind: DocumentKind | str, entity_label: str | int) -> str:
    """``{kind}-{entityNumberOrId}.pdf``"""

    kind_value = kind.value if isinstance(kind, DocumentKind) else str(kind)
    return f"{kind_value}-{_safe_label(str(entity_label))}.pdf"


class LocalDocumentSaver:
    """Writes downloaded documents into a directory on disk."""

    def __init__(self, download_dir: str | Path) -> None:
        self._download_dir = Path(download_dir)

    @property
    def download_dir(self) -> Path:
        return self._download_dir

    def save(self, filename: str, content: bytes) -> Path:
        self._download_dir.mkdir(parents=True, exist_ok=True)
        target = self._download_dir / filename
        target.write_bytes(content)
        logger.info("Saved %s (%d bytes)", target, len(content))
        return target
