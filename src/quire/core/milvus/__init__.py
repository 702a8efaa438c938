"""Milvus connection helper and the Milvus-backed vector index."""

from .milvus import Milvus, MilvusVectorIndex, connect_milvus, get_milvus  # noqa: F401

__all__ = ["Milvus", "MilvusVectorIndex", "connect_milvus", "get_milvus"]
