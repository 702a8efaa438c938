"""Synchronous retrieval-augmented chat.

The user turn is committed before the model is called, so a notebook's
messages are persisted in request order even when generation fails.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from quire.core.errors import NoSourcesSelected
from quire.core.modelhub import LanguageModel
from quire.models.message import ChatMessage, Sender
from quire.models.source import SourceStatus
from quire.repositories import message as message_repo
from quire.repositories import source as source_repo
from quire.services.generation import answer_question
from quire.services.retrieval import CHAT_TOP_K, ContextAssembler, load_history

logger = logging.getLogger("quire.chat")

__all__ = ["ChatTurn", "ask", "list_messages"]


@dataclass
class ChatTurn:
    question: ChatMessage
    answer: ChatMessage


async def ask(
    session: AsyncSession,
    *,
    assembler: ContextAssembler,
    llm: LanguageModel,
    notebook_id: uuid.UUID,
    user_id: str,
    message: str,
    source_ids: Sequence[uuid.UUID],
) -> ChatTurn:
    if not source_ids:
        raise NoSourcesSelected()

    question = await message_repo.create(session, notebook_id=notebook_id, sender=Sender.USER, message=message)
    await session.commit()

    ready = await source_repo.list_ids_with_status(session, notebook_id, source_ids, SourceStatus.COMPLETED)
    if ready:
        context = await assembler.build_context(notebook_id, user_id, ready, message, top_k=CHAT_TOP_K)
    else:
        context = ""
    history = await load_history(session, notebook_id, exclude_id=question.id)
    logger.info(
        "chat.ask",
        extra={
            "notebook_id": notebook_id,
            "selected": len(source_ids),
            "ready": len(ready),
            "context_chars": len(context),
        },
    )

    text = await answer_question(llm, question=message, context=context, history=history)
    answer = await message_repo.create(session, notebook_id=notebook_id, sender=Sender.ASSISTANT, message=text)
    await session.commit()
    return ChatTurn(question=question, answer=answer)


async def list_messages(session: AsyncSession, notebook_id: uuid.UUID) -> list[ChatMessage]:
    return list(await message_repo.list_by_notebook(session, notebook_id))
