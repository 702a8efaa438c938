"""Recursive character chunking for source documents.

Text is cut on the coarsest structural boundary that yields pieces no longer
than the chunk size: paragraphs, then lines, then sentences, then words and,
for unbroken runs, single characters. Pieces keep their trailing separator so
every chunk is an exact substring of the document and ``startIndex`` locates
it; de-overlapping consecutive chunks by that offset gives back the original
text.

Adjacent chunks share up to ``CHUNK_OVERLAP`` characters made of whole
trailing pieces of the previous chunk.
"""

from __future__ import annotations

import re
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterable, List, Mapping

from quire.core.errors import ChunkMetadataError

if TYPE_CHECKING:  # pragma: no cover
    from quire.ingest.base import Document


CHUNK_SIZE = 1000
CHUNK_OVERLAP = 50

REQUIRED_METADATA = ("sourceId", "userId", "notebookId")

PARAGRAPH_SPLIT = re.compile(r"\n\s*\n")
LINE_SPLIT = re.compile(r"\n")
SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
WORD_SPLIT = re.compile(r"[ \t]+")

SEPARATORS = (PARAGRAPH_SPLIT, LINE_SPLIT, SENTENCE_SPLIT, WORD_SPLIT)

# Chunk ids are derived from (sourceId, chunkIndex) so a retried upsert
# overwrites instead of duplicating.
CHUNK_NAMESPACE = uuid.UUID("6f1c2a7e-52b4-4c4e-9d0b-3c1f0e9a8b21")


@dataclass(frozen=True)
class Span:
    """A chunk's location inside its document."""

    start: int
    end: int


@dataclass
class Chunk:
    """Chunk text plus the metadata bag stored alongside its vector."""

    text: str
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def id(self) -> str:
        return str(uuid.uuid5(CHUNK_NAMESPACE, f"{self.metadata.get('sourceId')}:{self.metadata.get('chunkIndex')}"))


def ensure_chunk_metadata(metadata: Mapping[str, Any]) -> None:
    """Reject metadata missing any of sourceId / userId / notebookId."""
    missing = [key for key in REQUIRED_METADATA if not str(metadata.get(key) or "").strip()]
    if missing:
        raise ChunkMetadataError(f"chunk metadata missing {', '.join(missing)}")


def _split_keep(text: str, pattern: re.Pattern[str]) -> List[str]:
    pieces: List[str] = []
    last = 0
    for match in pattern.finditer(text):
        end = match.end()
        if end <= last:
            continue
        pieces.append(text[last:end])
        last = end
    if last < len(text):
        pieces.append(text[last:])
    return pieces


def _atomize(text: str, size: int, level: int = 0) -> List[str]:
    if len(text) <= size:
        return [text]
    if level >= len(SEPARATORS):
        return list(text)
    pieces = _split_keep(text, SEPARATORS[level])
    if len(pieces) <= 1:
        return _atomize(text, size, level + 1)
    atoms: List[str] = []
    for piece in pieces:
        if len(piece) > size:
            atoms.extend(_atomize(piece, size, level + 1))
        else:
            atoms.append(piece)
    return atoms


def split_spans(text: str, size: int = CHUNK_SIZE, overlap: int = CHUNK_OVERLAP) -> List[Span]:
    """Greedily pack boundary pieces into spans of at most ``size`` characters."""
    if not text or not text.strip():
        return []
    if overlap >= size:
        raise ValueError("overlap must be smaller than the chunk size")

    spans: List[Span] = []
    window: deque[Span] = deque()
    total = 0
    offset = 0
    for atom in _atomize(text, size):
        piece = Span(offset, offset + len(atom))
        offset = piece.end
        length = piece.end - piece.start
        if window and total + length > size:
            spans.append(Span(window[0].start, window[-1].end))
            while window and (total > overlap or total + length > size):
                dropped = window.popleft()
                total -= dropped.end - dropped.start
        window.append(piece)
        total += length
    if window:
        spans.append(Span(window[0].start, window[-1].end))
    return spans


def split_text(text: str, size: int = CHUNK_SIZE, overlap: int = CHUNK_OVERLAP) -> List[str]:
    return [text[span.start:span.end] for span in split_spans(text, size, overlap)]


def split_documents(
    documents: Iterable["Document"],
    *,
    source_id: uuid.UUID | str,
    user_id: str,
    notebook_id: uuid.UUID | str,
    size: int = CHUNK_SIZE,
    overlap: int = CHUNK_OVERLAP,
) -> List[Chunk]:
    """Chunk every document of one source.

    Each chunk inherits its document's metadata and gains the
    sourceId/userId/notebookId scope, a source-wide ``chunkIndex`` and the
    ``startIndex`` of the chunk inside its document.
    """
    scope = {"sourceId": str(source_id), "userId": str(user_id), "notebookId": str(notebook_id)}
    ensure_chunk_metadata(scope)
    chunks: List[Chunk] = []
    for document in documents:
        for span in split_spans(document.text, size, overlap):
            metadata = dict(document.metadata)
            metadata.update(scope)
            metadata["chunkIndex"] = len(chunks)
            metadata["startIndex"] = span.start
            chunks.append(Chunk(text=document.text[span.start:span.end], metadata=metadata))
    return chunks


__all__ = [
    "CHUNK_SIZE",
    "CHUNK_OVERLAP",
    "REQUIRED_METADATA",
    "Chunk",
    "Span",
    "ensure_chunk_metadata",
    "split_spans",
    "split_text",
    "split_documents",
]
