"""Retrieval and context assembly.

Two shapes of context are produced from the vector index:

* chat: the ``CHAT_TOP_K`` chunks nearest to the question, each rendered as
  a ``Content:`` / ``Metadata:`` block, uncapped;
* bulk (podcast, mind map): up to ``BULK_TOP_K`` chunks of the selected
  sources cut to ``WORD_BUDGET`` whitespace-delimited words.

Every search is scoped by notebookId, userId and the selected source ids.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Iterable, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from quire.core.errors import NoSourcesSelected
from quire.core.vectors import MetadataFilter, ScoredChunk, VectorIndex
from quire.models.message import Sender
from quire.repositories import message as message_repo

logger = logging.getLogger("quire.retrieval")

CHAT_TOP_K = 3
BULK_TOP_K = 1000
WORD_BUDGET = 2000
HISTORY_LIMIT = 3

_SPEAKER = {Sender.USER: "User", Sender.ASSISTANT: "Assistant"}


def truncate_to_word_budget(texts: Sequence[str], budget: int) -> List[str]:
    """Keep whole texts while they fit, then a prefix of the first one that does not.

    The total word count of the result never exceeds ``budget``.
    """
    kept: List[str] = []
    used = 0
    for text in texts:
        words = text.split()
        if used + len(words) <= budget:
            kept.append(text)
            used += len(words)
            continue
        remaining = budget - used
        if remaining > 0:
            kept.append(" ".join(words[:remaining]))
        break
    return kept


def render_chunks(chunks: Iterable[ScoredChunk], *, include_metadata: bool = True) -> str:
    blocks = []
    for chunk in chunks:
        if include_metadata:
            blocks.append(f"Content: {chunk.text}\nMetadata: {json.dumps(chunk.metadata, sort_keys=True, default=str)}")
        else:
            blocks.append(chunk.text)
    return "\n\n".join(blocks)


class ContextAssembler:
    def __init__(self, index: VectorIndex):
        self.index = index

    async def retrieve(
        self,
        notebook_id: uuid.UUID | str,
        user_id: str,
        source_ids: Sequence[uuid.UUID | str],
        query: str,
        *,
        top_k: int = CHAT_TOP_K,
    ) -> List[ScoredChunk]:
        if not source_ids:
            raise NoSourcesSelected()
        flt = MetadataFilter.for_notebook(notebook_id, user_id, source_ids)
        chunks = await self.index.search(query, top_k, flt)
        logger.info(
            "retrieval.search",
            extra={"notebook_id": notebook_id, "sources": len(source_ids), "k": top_k, "hits": len(chunks)},
        )
        return chunks

    async def build_context(
        self,
        notebook_id: uuid.UUID | str,
        user_id: str,
        source_ids: Sequence[uuid.UUID | str],
        query: str,
        *,
        top_k: int = CHAT_TOP_K,
        word_budget: Optional[int] = None,
        include_metadata: bool = True,
    ) -> str:
        chunks = await self.retrieve(notebook_id, user_id, source_ids, query, top_k=top_k)
        if word_budget is None:
            return render_chunks(chunks, include_metadata=include_metadata)
        texts = truncate_to_word_budget([c.text for c in chunks], word_budget)
        return "\n\n".join(texts)

    async def build_bulk_context(
        self,
        notebook_id: uuid.UUID | str,
        user_id: str,
        source_ids: Sequence[uuid.UUID | str],
    ) -> str:
        return await self.build_context(
            notebook_id, user_id, source_ids, "", top_k=BULK_TOP_K, word_budget=WORD_BUDGET, include_metadata=False
        )


async def load_history(
    session: AsyncSession,
    notebook_id: uuid.UUID,
    *,
    limit: int = HISTORY_LIMIT,
    exclude_id: uuid.UUID | None = None,
) -> str:
    """Last ``limit`` turns as ``User:`` / ``Assistant:`` lines, oldest first."""
    messages = await message_repo.list_recent(session, notebook_id, limit=limit, exclude_id=exclude_id)
    return "\n".join(f"{_SPEAKER[m.sender]}: {m.message}" for m in messages)


__all__ = [
    "CHAT_TOP_K",
    "BULK_TOP_K",
    "WORD_BUDGET",
    "HISTORY_LIMIT",
    "ContextAssembler",
    "truncate_to_word_budget",
    "render_chunks",
    "load_history",
]
