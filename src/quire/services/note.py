"""Note service layer.

Notes are created as PROCESSING placeholders and filled in by the
``note/generate`` workflow function; the HTTP surface can only list and
delete them.
"""
from __future__ import annotations

import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from quire.models.note import Note, NoteType
from quire.repositories import note as note_repo

__all__ = [
    "NoteNotFoundError",
    "create_note",
    "get_note_or_404",
    "list_notes",
    "delete_note",
]


class NoteNotFoundError(Exception):
    pass


async def create_note(session: AsyncSession, *, notebook_id: uuid.UUID, type: NoteType = NoteType.TEXT) -> Note:
    return await note_repo.create(session, notebook_id=notebook_id, type=type)


async def get_note_or_404(session: AsyncSession, notebook_id: uuid.UUID, note_id: uuid.UUID) -> Note:
    note = await note_repo.get_in_notebook(session, notebook_id, note_id)
    if not note:
        raise NoteNotFoundError()
    return note


async def list_notes(session: AsyncSession, notebook_id: uuid.UUID) -> list[Note]:
    return list(await note_repo.list_by_notebook(session, notebook_id))


async def delete_note(session: AsyncSession, notebook_id: uuid.UUID, note_id: uuid.UUID) -> None:
    note = await get_note_or_404(session, notebook_id, note_id)
    await note_repo.delete(session, note)
