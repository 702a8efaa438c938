"""Vector index client.

One logical collection holds the chunks of every notebook and user, so the
index itself provides no tenant isolation. Every read, write and delete goes
through a :class:`MetadataFilter` that must pin both ``notebookId`` and
``userId``; :meth:`VectorIndex.search` and :meth:`VectorIndex.delete`
refuse filters that do not.
"""

from __future__ import annotations

import abc
import json
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from quire.core.chunking import Chunk, ensure_chunk_metadata
from quire.core.errors import ChunkMetadataError
from quire.core.modelhub import Embedder

logger = logging.getLogger("quire.vectors")

# Metadata keys stored as dedicated scalar fields in the collection
SCALAR_FIELDS = {"sourceId": "source_id", "userId": "user_id", "notebookId": "notebook_id"}


@dataclass(frozen=True)
class MetadataFilter:
    """Conjunction of equality and set-membership clauses over chunk metadata."""

    equals: Mapping[str, str] = field(default_factory=dict)
    any_of: Mapping[str, tuple[str, ...]] = field(default_factory=dict)

    @classmethod
    def for_notebook(cls, notebook_id, user_id, source_ids: Optional[Iterable] = None) -> "MetadataFilter":
        equals = {"notebookId": str(notebook_id), "userId": str(user_id)}
        any_of = {}
        if source_ids is not None:
            any_of["sourceId"] = tuple(str(s) for s in source_ids)
        return cls(equals=equals, any_of=any_of)

    @classmethod
    def for_source(cls, notebook_id, user_id, source_id) -> "MetadataFilter":
        return cls(equals={"notebookId": str(notebook_id), "userId": str(user_id), "sourceId": str(source_id)})

    def require_scope(self) -> None:
        for key in ("notebookId", "userId"):
            if not str(self.equals.get(key) or "").strip():
                raise ChunkMetadataError(f"vector filter must pin {key}")

    def matches(self, metadata: Mapping[str, Any]) -> bool:
        for key, value in self.equals.items():
            if str(metadata.get(key)) != value:
                return False
        for key, values in self.any_of.items():
            if str(metadata.get(key)) not in values:
                return False
        return True

    def to_expr(self) -> str:
        """Milvus boolean expression; literals are JSON-quoted."""
        clauses: List[str] = []

        def _field(key: str) -> str:
            return SCALAR_FIELDS.get(key) or f"metadata[{json.dumps(key)}]"

        for key, value in self.equals.items():
            clauses.append(f"{_field(key)} == {json.dumps(value)}")
        for key, values in self.any_of.items():
            clauses.append(f"{_field(key)} in {json.dumps(list(values))}")
        return " and ".join(clauses)


@dataclass
class ScoredChunk:
    id: str
    text: str
    metadata: dict[str, Any]
    score: Optional[float] = None


class VectorIndex(abc.ABC):
    """Embedding-backed chunk store.

    Subclasses implement the storage primitives; this base validates chunk
    metadata and filter scope and handles embedding.
    """

    def __init__(self, embedder: Embedder):
        self.embedder = embedder

    @abc.abstractmethod
    async def _write(self, chunks: Sequence[Chunk], vectors: Sequence[Sequence[float]]) -> None: ...

    @abc.abstractmethod
    async def _nearest(self, vector: Sequence[float], k: int, flt: MetadataFilter) -> List[ScoredChunk]: ...

    @abc.abstractmethod
    async def _scan(self, k: int, flt: MetadataFilter) -> List[ScoredChunk]: ...

    @abc.abstractmethod
    async def _remove(self, flt: MetadataFilter) -> int: ...

    async def upsert(self, chunks: Sequence[Chunk]) -> int:
        if not chunks:
            return 0
        for chunk in chunks:
            ensure_chunk_metadata(chunk.metadata)
        start = time.perf_counter()
        vectors = await self.embedder.embed([c.text for c in chunks])
        await self._write(chunks, vectors)
        logger.info(
            "vectors.upsert",
            extra={
                "count": len(chunks),
                "source_ids": sorted({c.metadata["sourceId"] for c in chunks}),
                "duration_ms": round((time.perf_counter() - start) * 1000, 2),
            },
        )
        return len(chunks)

    async def search(self, query: str, k: int, flt: MetadataFilter) -> List[ScoredChunk]:
        """Top-``k`` chunks matching ``flt``.

        An empty query lists matching chunks in stored order instead of
        ranking them, which is what bulk context assembly wants.
        """
        flt.require_scope()
        if k <= 0:
            return []
        if not query.strip():
            return await self._scan(k, flt)
        [vector] = await self.embedder.embed([query])
        return await self._nearest(vector, k, flt)

    async def delete(self, flt: MetadataFilter) -> int:
        """Remove all matching chunks; returns once the deletion is visible."""
        flt.require_scope()
        removed = await self._remove(flt)
        logger.info("vectors.delete", extra={"filter": flt.to_expr(), "removed": removed})
        return removed


def _cosine(a: Sequence[float], b: Sequence[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


class InMemoryVectorIndex(VectorIndex):
    """Process-local index with cosine ranking; used by tests and local runs."""

    def __init__(self, embedder: Embedder):
        super().__init__(embedder)
        self._records: dict[str, tuple[List[float], str, dict[str, Any]]] = {}

    def __len__(self) -> int:
        return len(self._records)

    def all_chunks(self) -> List[ScoredChunk]:
        return [ScoredChunk(id=i, text=t, metadata=dict(m)) for i, (_v, t, m) in self._records.items()]

    async def _write(self, chunks, vectors) -> None:
        for chunk, vector in zip(chunks, vectors):
            self._records[chunk.id] = (list(vector), chunk.text, dict(chunk.metadata))

    async def _nearest(self, vector, k, flt) -> List[ScoredChunk]:
        scored = [
            ScoredChunk(id=i, text=t, metadata=dict(m), score=_cosine(vector, v))
            for i, (v, t, m) in self._records.items()
            if flt.matches(m)
        ]
        scored.sort(key=lambda c: c.score or 0.0, reverse=True)
        return scored[:k]

    async def _scan(self, k, flt) -> List[ScoredChunk]:
        return [
            ScoredChunk(id=i, text=t, metadata=dict(m))
            for i, (_v, t, m) in self._records.items()
            if flt.matches(m)
        ][:k]

    async def _remove(self, flt) -> int:
        doomed = [i for i, (_v, _t, m) in self._records.items() if flt.matches(m)]
        for i in doomed:
            del self._records[i]
        return len(doomed)


__all__ = [
    "MetadataFilter",
    "ScoredChunk",
    "VectorIndex",
    "InMemoryVectorIndex",
]
