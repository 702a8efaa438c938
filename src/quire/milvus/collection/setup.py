"""Milvus collection definitions.

Each ``config/<name>.json`` file describes one collection: its fields, an
optional description, and the vector index to build. ``sync_collections``
creates whatever is missing and loads the collections; running it again is a
no-op. A ``FLOAT_VECTOR`` field without ``dim`` takes the embedder's
dimension, so one definition serves every embedding model.

From a shell, against the configured Milvus::

    python -m quire.milvus.collection.setup
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from pymilvus import Collection, CollectionSchema, DataType, FieldSchema, utility  # type: ignore

logger = logging.getLogger("quire.milvus.setup")

CONFIG_DIR = Path(__file__).parent / "config"

SUPPORTED_TYPES = {
    name: getattr(DataType, name) for name in ("INT64", "FLOAT", "DOUBLE", "VARCHAR", "JSON", "FLOAT_VECTOR")
}

DEFAULT_INDEX = {"index_type": "HNSW", "metric_type": "COSINE", "params": {}}


def field_schema(spec: Dict[str, Any], dim: int) -> FieldSchema:
    name = spec["name"]
    dtype = SUPPORTED_TYPES.get(spec["type"].upper())
    if dtype is None:
        raise ValueError(f"Unsupported field type '{spec['type']}' for field '{name}'")
    extra: Dict[str, Any] = {}
    if dtype == DataType.VARCHAR:
        if not spec.get("max_length"):
            raise ValueError(f"VARCHAR field '{name}' missing 'max_length'")
        extra["max_length"] = int(spec["max_length"])
    elif dtype == DataType.FLOAT_VECTOR:
        extra["dim"] = int(spec.get("dim") or dim)
    return FieldSchema(
        name=name,
        dtype=dtype,
        description=spec.get("description", ""),
        is_primary=bool(spec.get("is_primary")),
        auto_id=bool(spec.get("auto_id")),
        **extra,
    )


def collection_schema(definition: Dict[str, Any], dim: int) -> CollectionSchema:
    fields = definition.get("fields") or []
    if not fields:
        raise ValueError("collection definition has no fields")
    return CollectionSchema(
        fields=[field_schema(spec, dim) for spec in fields],
        description=definition.get("description", ""),
    )


def load_definitions(names: Optional[Iterable[str]] = None) -> Dict[str, Dict[str, Any]]:
    """Definitions keyed by collection name (the file stem)."""
    wanted = set(names) if names is not None else None
    definitions = {}
    for path in sorted(CONFIG_DIR.glob("*.json")):
        if wanted is None or path.stem in wanted:
            definitions[path.stem] = json.loads(path.read_text(encoding="utf-8"))
    return definitions


def _ensure_vector_index(coll: Collection, definition: Dict[str, Any]) -> None:
    if "index" not in definition:
        return
    vector_field = next((f.name for f in coll.schema.fields if f.dtype == DataType.FLOAT_VECTOR), None)
    if vector_field is None or any(idx.field_name == vector_field for idx in coll.indexes):
        return
    params = {**DEFAULT_INDEX, **definition["index"]}
    logger.info("milvus.setup.create_index", extra={"collection": coll.name, "field": vector_field, **params})
    coll.create_index(field_name=vector_field, index_params=params)


def sync_collections(names: Optional[Iterable[str]], dim: int) -> List[str]:
    """Create and load the named collections on the current connection.

    Returns the names that have a definition; errors propagate to the caller.
    """
    synced = []
    for name, definition in load_definitions(names).items():
        if not utility.has_collection(name):
            logger.info("milvus.setup.create_collection", extra={"collection": name, "dim": dim})
            Collection(name=name, schema=collection_schema(definition, dim))
        coll = Collection(name)
        _ensure_vector_index(coll, definition)
        coll.load()
        synced.append(name)
    return synced


if __name__ == "__main__":  # pragma: no cover
    from quire.core.config import get_settings
    from quire.core.milvus.milvus import connect_milvus

    settings = get_settings()
    connect_milvus(settings)
    print(sync_collections(None, settings.rag_embedding_model_output))
