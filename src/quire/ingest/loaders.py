"""Per-MIME-type file loaders.

Every loader turns raw bytes into one or more :class:`Document` objects.
Dispatch goes through the :data:`LOADERS` table keyed by the MIME type that
:func:`sniff_mime_type` settles on; unknown types raise
:class:`UnsupportedContentType`.
"""

from __future__ import annotations

import csv
import io
import json
import mimetypes
import re
import zipfile
from typing import Any, Iterator, List, Optional
from urllib.parse import urlparse

import docx
import pypdf

from quire.core.errors import UnsupportedContentType
from quire.ingest.base import Document

PDF = "application/pdf"
CSV = "text/csv"
DOC = "application/msword"
DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
JSON = "application/json"
TEXT = "text/plain"
MARKDOWN = "text/markdown"

_OLE2_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"
_ZIP_MAGIC = b"PK\x03\x04"

_EXTENSIONS = {
    ".pdf": PDF,
    ".csv": CSV,
    ".doc": DOC,
    ".docx": DOCX,
    ".json": JSON,
    ".txt": TEXT,
    ".md": MARKDOWN,
    ".markdown": MARKDOWN,
}


def _decode(data: bytes) -> str:
    text = data.decode("utf-8-sig", errors="replace")
    return text.replace("\r\n", "\n")


class PdfLoader:
    """One document per page with text; ``page`` is 1-based."""

    mime_type = PDF

    def load(self, data: bytes) -> List[Document]:
        reader = pypdf.PdfReader(io.BytesIO(data))
        documents: List[Document] = []
        for number, page in enumerate(reader.pages, start=1):
            text = (page.extract_text() or "").strip()
            if text:
                documents.append(Document(text=text, metadata={"page": number, "totalPages": len(reader.pages)}))
        return documents


class CsvLoader:
    """One document per row rendered as ``column: value`` lines."""

    mime_type = CSV

    def load(self, data: bytes) -> List[Document]:
        reader = csv.DictReader(io.StringIO(_decode(data)))
        documents: List[Document] = []
        for number, row in enumerate(reader, start=1):
            lines = [f"{(key or '').strip()}: {(value or '').strip()}" for key, value in row.items() if key is not None]
            text = "\n".join(lines)
            if text.strip():
                documents.append(Document(text=text, metadata={"row": number}))
        return documents


class DocxLoader:
    mime_type = DOCX

    def load(self, data: bytes) -> List[Document]:
        document = docx.Document(io.BytesIO(data))
        parts = [p.text for p in document.paragraphs if p.text.strip()]
        for table in document.tables:
            for row in table.rows:
                cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
                if cells:
                    parts.append(" | ".join(cells))
        text = "\n".join(parts)
        return [Document(text=text)] if text.strip() else []


class DocLoader:
    """Legacy Word (OLE2) files.

    The binary format stores body text either as UTF-16LE or as 8-bit runs;
    whichever decoding recovers more printable text wins.
    """

    mime_type = DOC

    _WIDE_RUN = re.compile(rb"(?:[\x20-\x7e\t\r\n]\x00){4,}")
    _NARROW_RUN = re.compile(rb"[\x20-\x7e\t\r\n]{4,}")

    def load(self, data: bytes) -> List[Document]:
        wide = "\n".join(m.group(0).decode("utf-16-le") for m in self._WIDE_RUN.finditer(data))
        narrow = "\n".join(m.group(0).decode("latin-1") for m in self._NARROW_RUN.finditer(data))
        text = wide if len(wide.strip()) >= len(narrow.strip()) else narrow
        text = "\n".join(line.strip() for line in text.replace("\r", "\n").splitlines() if line.strip())
        return [Document(text=text)] if text else []


class JsonLoader:
    """Top-level arrays yield one document per element; anything else one document.

    Leaves are rendered as ``/json/pointer: value`` lines.
    """

    mime_type = JSON

    def _leaves(self, value: Any, pointer: str) -> Iterator[str]:
        if isinstance(value, dict):
            for key, item in value.items():
                yield from self._leaves(item, f"{pointer}/{key}")
        elif isinstance(value, list):
            for idx, item in enumerate(value):
                yield from self._leaves(item, f"{pointer}/{idx}")
        elif value is not None:
            yield f"{pointer or '/'}: {value}"

    def load(self, data: bytes) -> List[Document]:
        payload = json.loads(_decode(data))
        items = list(enumerate(payload)) if isinstance(payload, list) else [(None, payload)]
        documents: List[Document] = []
        for idx, item in items:
            text = "\n".join(self._leaves(item, f"/{idx}" if idx is not None else ""))
            if text.strip():
                documents.append(Document(text=text, metadata={} if idx is None else {"index": idx}))
        return documents


class TextLoader:
    mime_type = TEXT

    def load(self, data: bytes) -> List[Document]:
        text = _decode(data)
        return [Document(text=text)] if text.strip() else []


class MarkdownLoader(TextLoader):
    mime_type = MARKDOWN


LOADERS = {
    loader.mime_type: loader
    for loader in (PdfLoader(), CsvLoader(), DocxLoader(), DocLoader(), JsonLoader(), TextLoader(), MarkdownLoader())
}

# Upload allow-list; identical to what can be parsed
SUPPORTED_MIME_TYPES = frozenset(LOADERS)


def guess_mime_type(name_or_url: str | None) -> Optional[str]:
    if not name_or_url:
        return None
    path = urlparse(name_or_url).path or name_or_url
    for extension, mime in _EXTENSIONS.items():
        if path.lower().endswith(extension):
            return mime
    guessed, _ = mimetypes.guess_type(path)
    return guessed


def normalize_mime_type(content_type: str | None) -> Optional[str]:
    if not content_type:
        return None
    return content_type.split(";", 1)[0].strip().lower() or None


def sniff_mime_type(data: bytes, declared: str | None = None, name_or_url: str | None = None) -> str:
    """Pick a loader key from the content first, then the declared type and extension."""
    hinted = normalize_mime_type(declared)
    if hinted not in LOADERS:
        hinted = guess_mime_type(name_or_url) or hinted
    if data.startswith(b"%PDF"):
        return PDF
    if data.startswith(_OLE2_MAGIC):
        return DOC
    if data.startswith(_ZIP_MAGIC):
        try:
            with zipfile.ZipFile(io.BytesIO(data)) as archive:
                if "word/document.xml" in archive.namelist():
                    return DOCX
        except zipfile.BadZipFile:
            pass
        raise UnsupportedContentType(hinted or "application/zip")
    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise UnsupportedContentType(hinted or "application/octet-stream")
    if hinted in (CSV, MARKDOWN):
        return hinted
    stripped = text.lstrip()
    if stripped[:1] in ("{", "["):
        try:
            json.loads(text)
            return JSON
        except ValueError:
            pass
    if hinted in LOADERS and hinted not in (PDF, DOC, DOCX, JSON):
        return hinted
    return TEXT


def load_file(data: bytes, declared: str | None = None, name_or_url: str | None = None) -> tuple[str, List[Document]]:
    mime_type = sniff_mime_type(data, declared, name_or_url)
    loader = LOADERS.get(mime_type)
    if loader is None:
        raise UnsupportedContentType(mime_type)
    return mime_type, loader.load(data)
