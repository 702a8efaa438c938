from __future__ import annotations
import asyncio
import logging
import time
from functools import lru_cache
from typing import Any, List, Sequence

from pymilvus import Collection, connections, utility
from pymilvus.exceptions import MilvusException

from quire.core.chunking import Chunk
from quire.core.config import Settings
from quire.core.errors import VectorIndexUnavailable
from quire.core.modelhub import Embedder
from quire.core.vectors import MetadataFilter, ScoredChunk, VectorIndex

logger = logging.getLogger("quire.milvus")

OUTPUT_FIELDS = ["id", "text", "metadata"]


class Milvus:
    """Encapsulates a resilient Milvus connection.

    On construction this (re)establishes the global 'default' PyMilvus
    connection, retrying every ``connect_interval`` seconds until
    ``utility.list_collections`` answers or ``connect_timeout`` elapses, in
    which case RuntimeError is raised.

    Only the 'default' alias is used: the first successful instance fixes the
    connection target for the process.
    """

    def __init__(self, host: str, port: int | str, connect_timeout: float = 60.0, connect_interval: float = 2.0):
        self.host = host
        self.port = str(port)

        deadline = time.time() + connect_timeout
        last_err: Exception | None = None
        attempt = 0
        while time.time() < deadline:
            attempt += 1
            try:
                if not connections.has_connection("default"):
                    connections.connect("default", host=self.host, port=self.port)
                utility.list_collections()
                if attempt > 1:
                    logger.info("milvus.connect.ready", extra={"host": self.host, "port": self.port, "attempts": attempt})
                return
            except MilvusException as e:
                last_err = e
                time.sleep(connect_interval)
        msg = f"Failed to connect to Milvus at {self.host}:{self.port} within {connect_timeout}s (last error: {last_err})"
        logger.error("milvus.connect.failed", extra={"host": self.host, "port": self.port, "error": repr(last_err)})
        raise RuntimeError(msg) from last_err

    def list_collections(self):
        return utility.list_collections()


@lru_cache
def get_milvus(host: str, port: int | str, connect_timeout: float = 60.0, connect_interval: float = 2.0) -> Milvus:
    """Return (and cache) a Milvus instance keyed by its connection parameters."""
    return Milvus(host, port, connect_timeout, connect_interval)


def connect_milvus(settings: Settings) -> Milvus:
    return get_milvus(
        settings.milvus_host or "127.0.0.1",
        settings.milvus_http_port or 19530,
        float(settings.milvus_connect_timeout),
        float(settings.milvus_connect_interval),
    )


class MilvusVectorIndex(VectorIndex):  # pragma: no cover - requires a Milvus server
    """Vector index backed by one shared Milvus collection.

    PyMilvus is synchronous; every call runs on the default executor so the
    event loop keeps serving other jobs. Searches use Strong consistency so a
    completed delete is never followed by stale hits.
    """

    def __init__(self, embedder: Embedder, settings: Settings):
        super().__init__(embedder)
        self.settings = settings
        self.collection_name = settings.milvus_collection
        self._collection: Collection | None = None

    def _ensure(self) -> Collection:
        if self._collection is None:
            from quire.milvus.collection.setup import sync_collections

            connect_milvus(self.settings)
            if self.collection_name not in sync_collections([self.collection_name], self.embedder.dim):
                raise RuntimeError(f"no collection definition for '{self.collection_name}'")
            self._collection = Collection(self.collection_name)
        return self._collection

    async def _call(self, op: str, fn, *args: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, *args)
        except (MilvusException, RuntimeError) as exc:
            logger.warning("milvus.call.failed", extra={"op": op, "collection": self.collection_name, "error": repr(exc)})
            raise VectorIndexUnavailable(f"milvus {op} failed: {exc}") from exc

    def _write_sync(self, chunks: Sequence[Chunk], vectors: Sequence[Sequence[float]]) -> None:
        rows = [
            {
                "id": chunk.id,
                "vector": list(vector),
                "text": chunk.text,
                "source_id": chunk.metadata["sourceId"],
                "user_id": chunk.metadata["userId"],
                "notebook_id": chunk.metadata["notebookId"],
                "metadata": chunk.metadata,
            }
            for chunk, vector in zip(chunks, vectors)
        ]
        coll = self._ensure()
        coll.upsert(rows)
        coll.flush()

    def _nearest_sync(self, vector: Sequence[float], k: int, expr: str) -> List[ScoredChunk]:
        results = self._ensure().search(
            data=[list(vector)],
            anns_field="vector",
            param={"metric_type": "COSINE", "params": {"ef": max(64, k)}},
            limit=k,
            expr=expr,
            output_fields=["text", "metadata"],
            consistency_level="Strong",
        )
        hits = results[0] if results else []
        return [
            ScoredChunk(
                id=str(hit.id),
                text=hit.entity.get("text"),
                metadata=dict(hit.entity.get("metadata") or {}),
                score=float(hit.distance),
            )
            for hit in hits
        ]

    def _scan_sync(self, k: int, expr: str) -> List[ScoredChunk]:
        rows = self._ensure().query(expr=expr, output_fields=OUTPUT_FIELDS, limit=k, consistency_level="Strong")
        chunks = [ScoredChunk(id=str(r["id"]), text=r["text"], metadata=dict(r.get("metadata") or {})) for r in rows]
        chunks.sort(key=lambda c: (str(c.metadata.get("sourceId")), int(c.metadata.get("chunkIndex") or 0)))
        return chunks

    def _remove_sync(self, expr: str) -> int:
        coll = self._ensure()
        result = coll.delete(expr)
        coll.flush()
        return int(getattr(result, "delete_count", 0) or 0)

    async def _write(self, chunks, vectors) -> None:
        await self._call("upsert", self._write_sync, chunks, vectors)

    async def _nearest(self, vector, k, flt: MetadataFilter) -> List[ScoredChunk]:
        return await self._call("search", self._nearest_sync, vector, k, flt.to_expr())

    async def _scan(self, k, flt: MetadataFilter) -> List[ScoredChunk]:
        return await self._call("query", self._scan_sync, k, flt.to_expr())

    async def _remove(self, flt: MetadataFilter) -> int:
        return await self._call("delete", self._remove_sync, flt.to_expr())


__all__ = ["Milvus", "MilvusVectorIndex", "connect_milvus", "get_milvus"]
