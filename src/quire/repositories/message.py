"""Repository helpers for the ChatMessage model."""

import uuid
from typing import Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from quire.models.message import ChatMessage, Sender

__all__ = [
    "list_by_notebook",
    "list_recent",
    "create",
]


async def list_by_notebook(session: AsyncSession, notebook_id: uuid.UUID) -> Sequence[ChatMessage]:
    res = await session.execute(
        select(ChatMessage)
        .where(ChatMessage.notebook_id == notebook_id)
        .order_by(ChatMessage.created_at, ChatMessage.id)
    )
    return list(res.scalars().all())


async def list_recent(
    session: AsyncSession,
    notebook_id: uuid.UUID,
    *,
    limit: int,
    exclude_id: uuid.UUID | None = None,
) -> list[ChatMessage]:
    """The ``limit`` most recent messages, returned oldest first."""
    stmt = select(ChatMessage).where(ChatMessage.notebook_id == notebook_id)
    if exclude_id is not None:
        stmt = stmt.where(ChatMessage.id != exclude_id)
    res = await session.execute(stmt.order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc()).limit(limit))
    return list(reversed(res.scalars().all()))


async def create(
    session: AsyncSession,
    *,
    notebook_id: uuid.UUID,
    sender: Sender,
    message: str,
) -> ChatMessage:
    """Append a message (flushed, not committed)."""
    row = ChatMessage(notebook_id=notebook_id, sender=sender, message=message)
    session.add(row)
    await session.flush()
    return row
