"""Repository helpers for the Note model."""

import uuid
from typing import Optional, Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update as sa_update, delete as sa_delete

from quire.models.note import Note, NoteStatus, NoteType

__all__ = [
    "get_by_id",
    "get_in_notebook",
    "list_by_notebook",
    "create",
    "finalize",
    "delete",
]


async def get_by_id(session: AsyncSession, note_id: uuid.UUID) -> Optional[Note]:
    res = await session.execute(
        select(Note).where(Note.id == note_id).execution_options(populate_existing=True)
    )
    return res.scalar_one_or_none()


async def get_in_notebook(session: AsyncSession, notebook_id: uuid.UUID, note_id: uuid.UUID) -> Optional[Note]:
    res = await session.execute(select(Note).where(Note.id == note_id, Note.notebook_id == notebook_id))
    return res.scalar_one_or_none()


async def list_by_notebook(session: AsyncSession, notebook_id: uuid.UUID) -> Sequence[Note]:
    res = await session.execute(
        select(Note).where(Note.notebook_id == notebook_id).order_by(Note.created_at.desc())
    )
    return list(res.scalars().all())


async def create(
    session: AsyncSession,
    *,
    notebook_id: uuid.UUID,
    type: NoteType = NoteType.TEXT,
) -> Note:
    note = Note(notebook_id=notebook_id, type=type, status=NoteStatus.PROCESSING)
    session.add(note)
    await session.flush()
    await session.refresh(note)
    return note


async def finalize(
    session: AsyncSession,
    note_id: uuid.UUID,
    *,
    status: NoteStatus,
    title: str | None = None,
    content: str | None = None,
    error: str | None = None,
) -> bool:
    """Move a PROCESSING note to a terminal status.

    Completed notes are immutable, so only PROCESSING rows match. Returns
    False when the note was deleted (or already finalized) meanwhile.
    """
    values: dict = {"status": status}
    if title is not None:
        values["title"] = title
    if content is not None:
        values["content"] = content
    if error is not None:
        values["error"] = error
    res = await session.execute(
        sa_update(Note)
        .where(Note.id == note_id, Note.status == NoteStatus.PROCESSING)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    await session.flush()
    return bool(res.rowcount)


async def delete(session: AsyncSession, note: Note) -> None:
    await session.execute(sa_delete(Note).where(Note.id == note.id).execution_options(synchronize_session=False))
    await session.flush()
