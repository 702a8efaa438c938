import uuid
from typing import Iterable, Optional, Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update as sa_update, delete as sa_delete

from quire.models.source import Source, SourceStatus, SourceType

__all__ = [
    "get_by_id",
    "get_in_notebook",
    "list_by_notebook",
    "list_ids_with_status",
    "create",
    "rename",
    "compare_and_set_status",
    "delete",
]


async def get_by_id(session: AsyncSession, source_id: uuid.UUID) -> Optional[Source]:
    # populate_existing: status is written with bulk UPDATEs that bypass the identity map
    res = await session.execute(
        select(Source).where(Source.id == source_id).execution_options(populate_existing=True)
    )
    return res.scalar_one_or_none()


async def get_in_notebook(session: AsyncSession, notebook_id: uuid.UUID, source_id: uuid.UUID) -> Optional[Source]:
    res = await session.execute(
        select(Source).where(Source.id == source_id, Source.notebook_id == notebook_id)
    )
    return res.scalar_one_or_none()


async def list_by_notebook(session: AsyncSession, notebook_id: uuid.UUID) -> Sequence[Source]:
    res = await session.execute(
        select(Source).where(Source.notebook_id == notebook_id).order_by(Source.created_at, Source.title)
    )
    return list(res.scalars().all())


async def list_ids_with_status(
    session: AsyncSession,
    notebook_id: uuid.UUID,
    source_ids: Iterable[uuid.UUID],
    status: SourceStatus,
) -> list[uuid.UUID]:
    """Subset of ``source_ids`` that belong to the notebook and are in ``status``."""
    ids = list(source_ids)
    if not ids:
        return []
    res = await session.execute(
        select(Source.id).where(
            Source.notebook_id == notebook_id,
            Source.id.in_(ids),
            Source.status == status,
        )
    )
    return list(res.scalars().all())


async def create(
    session: AsyncSession,
    *,
    notebook_id: uuid.UUID,
    type: SourceType,
    title: str,
    url: str = "",
    mime_type: str | None = None,
    status: SourceStatus = SourceStatus.UPLOADING,
    id: uuid.UUID | None = None,
) -> Source:
    source = Source(
        notebook_id=notebook_id,
        type=type,
        title=title,
        url=url,
        mime_type=mime_type,
        status=status,
        **({"id": id} if id else {}),
    )
    session.add(source)
    await session.flush()
    await session.refresh(source)
    return source


async def rename(session: AsyncSession, source: Source, title: str) -> Source:
    source.title = title
    await session.flush()
    await session.refresh(source)
    return source


async def compare_and_set_status(
    session: AsyncSession,
    source_id: uuid.UUID,
    *,
    expected: Sequence[SourceStatus],
    target: SourceStatus,
    title: str | None = None,
    error: str | None = None,
) -> bool:
    """Single UPDATE guarded by the current status; True when a row changed.

    Status and title are written by the same statement so readers never see
    COMPLETED next to a stale title.
    """
    values: dict = {"status": target}
    if title is not None:
        values["title"] = title
    if error is not None:
        values["error"] = error
    stmt = (
        sa_update(Source)
        .where(Source.id == source_id, Source.status.in_(list(expected)))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    await session.flush()
    return bool(res.rowcount)


async def delete(session: AsyncSession, source_id: uuid.UUID) -> bool:
    res = await session.execute(
        sa_delete(Source).where(Source.id == source_id).execution_options(synchronize_session=False)
    )
    await session.flush()
    return bool(res.rowcount)
