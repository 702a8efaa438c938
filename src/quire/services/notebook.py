"""Notebook service layer.

Ownership is enforced here: a notebook that exists but belongs to someone
else is indistinguishable from a missing one.
"""
from __future__ import annotations

import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from quire.models.notebook import Notebook
from quire.repositories import notebook as notebook_repo

__all__ = [
    "NotebookNotFoundError",
    "create_notebook",
    "get_owned_notebook_or_404",
    "list_notebooks",
    "rename_notebook",
    "delete_notebook",
]


class NotebookNotFoundError(Exception):
    pass


async def create_notebook(session: AsyncSession, *, owner_id: str, title: str | None = None) -> Notebook:
    return await notebook_repo.create(session, owner_id=owner_id, title=title)


async def get_owned_notebook_or_404(session: AsyncSession, notebook_id: uuid.UUID, owner_id: str) -> Notebook:
    notebook = await notebook_repo.get_owned(session, notebook_id, owner_id)
    if not notebook:
        raise NotebookNotFoundError()
    return notebook


async def list_notebooks(session: AsyncSession, owner_id: str) -> list[Notebook]:
    return list(await notebook_repo.list_by_owner(session, owner_id))


async def rename_notebook(session: AsyncSession, notebook: Notebook, title: str) -> Notebook:
    return await notebook_repo.update(session, notebook, title=title)


async def delete_notebook(session: AsyncSession, notebook: Notebook) -> None:
    await notebook_repo.delete_cascade(session, notebook)
