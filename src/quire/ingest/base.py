from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

from quire.models.source import SourceType


@dataclass
class Document:
    """One logical document produced by an extractor (a page, a row, a transcript)."""

    text: str
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"text": self.text, "metadata": dict(self.metadata)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Document":
        return cls(text=data["text"], metadata=dict(data.get("metadata") or {}))


@dataclass
class SourceDescriptor:
    """What an extractor needs to know about a source."""

    source_id: uuid.UUID
    type: SourceType
    url: str = ""
    text: Optional[str] = None
    mime_type: Optional[str] = None


@dataclass
class Extraction:
    """Extractor result: documents plus the title the source should end up with.

    ``title`` is None when extraction learned nothing better than the title
    the source was created with.
    """

    documents: list[Document]
    title: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {"title": self.title, "documents": [d.to_dict() for d in self.documents]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Extraction":
        return cls(documents=[Document.from_dict(d) for d in data.get("documents", [])], title=data.get("title"))
