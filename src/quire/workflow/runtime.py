"""Process-wide dependency objects handed to every job and request.

One :class:`Runtime` is built at startup and passed explicitly; tests build
their own with fakes instead of patching module globals.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from quire.core.config import Settings
from quire.core.modelhub import (
    LanguageModel,
    OpenAIChatModel,
    OpenAIEmbedder,
    OpenAISpeechSynthesizer,
    SpeechSynthesizer,
    build_modelhub_client,
)
from quire.core.storage import ObjectStorage, build_object_storage
from quire.core.vectors import InMemoryVectorIndex, VectorIndex
from quire.ingest.extractor import ContentExtractor
from quire.services.retrieval import ContextAssembler

logger = logging.getLogger("quire.runtime")


@dataclass
class Runtime:
    settings: Settings
    session_factory: async_sessionmaker[AsyncSession]
    vector_index: VectorIndex
    llm: LanguageModel
    speech: SpeechSynthesizer
    storage: ObjectStorage
    extractor: ContentExtractor | None = None

    def __post_init__(self) -> None:
        if self.extractor is None:
            self.extractor = ContentExtractor(self.storage)

    @property
    def assembler(self) -> ContextAssembler:
        return ContextAssembler(self.vector_index)


def build_runtime(settings: Settings, session_factory: async_sessionmaker[AsyncSession]) -> Runtime:
    """Wire the configured backends; raises when the model hub is not configured."""
    client = build_modelhub_client(settings)
    embedder = OpenAIEmbedder(client, settings.rag_embedding_model, settings.rag_embedding_model_output)
    if settings.vector_backend == "memory":
        index: VectorIndex = InMemoryVectorIndex(embedder)
    else:
        from quire.core.milvus import MilvusVectorIndex

        index = MilvusVectorIndex(embedder, settings)
    runtime = Runtime(
        settings=settings,
        session_factory=session_factory,
        vector_index=index,
        llm=OpenAIChatModel(client, settings.chat_completion_model),
        speech=OpenAISpeechSynthesizer(client, settings.speech_model),
        storage=build_object_storage(settings),
    )
    logger.info(
        "runtime.built",
        extra={
            "vector_backend": settings.vector_backend,
            "storage_backend": settings.storage_backend,
            "chat_model": settings.chat_completion_model,
            "embedding_model": settings.rag_embedding_model,
        },
    )
    return runtime


__all__ = ["Runtime", "build_runtime"]
