"""Repository helpers for the Notebook model."""

import uuid
from typing import Optional, Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete

from quire.models.notebook import Notebook, AudioStatus
from quire.models.source import Source
from quire.models.note import Note
from quire.models.message import ChatMessage

__all__ = [
    "get_by_id",
    "get_owned",
    "list_by_owner",
    "create",
    "update",
    "update_audio",
    "delete_cascade",
]


async def get_by_id(session: AsyncSession, notebook_id: uuid.UUID) -> Optional[Notebook]:
    res = await session.execute(select(Notebook).where(Notebook.id == notebook_id))
    return res.scalar_one_or_none()


async def get_owned(session: AsyncSession, notebook_id: uuid.UUID, owner_id: str) -> Optional[Notebook]:
    """Return the notebook only when ``owner_id`` owns it."""
    res = await session.execute(
        select(Notebook).where(Notebook.id == notebook_id, Notebook.owner_id == owner_id)
    )
    return res.scalar_one_or_none()


async def list_by_owner(session: AsyncSession, owner_id: str) -> Sequence[Notebook]:
    res = await session.execute(
        select(Notebook).where(Notebook.owner_id == owner_id).order_by(Notebook.created_at.desc())
    )
    return list(res.scalars().all())


async def create(session: AsyncSession, *, owner_id: str, title: str | None = None) -> Notebook:
    notebook = Notebook(owner_id=owner_id, **({"title": title} if title else {}))
    session.add(notebook)
    # Flush + refresh so server defaults are loaded before serialization;
    # a lazy load on an AsyncSession raises MissingGreenlet.
    await session.flush()
    await session.refresh(notebook)
    return notebook


async def update(session: AsyncSession, notebook: Notebook, *, title: str | None = None) -> Notebook:
    if title is not None:
        notebook.title = title
    await session.flush()
    await session.refresh(notebook)
    return notebook


async def update_audio(
    session: AsyncSession,
    notebook_id: uuid.UUID,
    *,
    status: AudioStatus,
    url: str | None = None,
    title: str | None = None,
) -> Optional[Notebook]:
    """Set the audio overview fields; returns None when the notebook is gone."""
    notebook = await get_by_id(session, notebook_id)
    if notebook is None:
        return None
    notebook.audio_status = status
    if status == AudioStatus.PROCESSING:
        notebook.audio_url = None
        notebook.audio_title = None
    if url is not None:
        notebook.audio_url = url
    if title is not None:
        notebook.audio_title = title
    await session.flush()
    await session.refresh(notebook)
    return notebook


async def delete_cascade(session: AsyncSession, notebook: Notebook) -> None:
    """Delete a notebook and every row it owns.

    Children are removed explicitly so the cascade holds on backends that do
    not enforce foreign keys (sqlite without the pragma).
    """
    await session.execute(delete(ChatMessage).where(ChatMessage.notebook_id == notebook.id))
    await session.execute(delete(Note).where(Note.notebook_id == notebook.id))
    await session.execute(delete(Source).where(Source.notebook_id == notebook.id))
    await session.delete(notebook)
    await session.flush()
