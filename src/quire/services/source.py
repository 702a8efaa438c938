"""Source service layer and status tracker.

Every write of ``Source.status`` goes through :func:`transition_status`,
which applies the lifecycle below as a compare-and-set UPDATE keyed by id::

    UPLOADING -> PROCESSING | FAILED
    PROCESSING -> COMPLETED | FAILED

COMPLETED and FAILED are terminal. A row deleted while its ingestion was in
flight is not an error: the transition becomes a logged no-op.
"""
from __future__ import annotations

import logging
import uuid
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from quire.core.errors import InvalidStatusTransition
from quire.models.source import Source, SourceStatus, SourceType
from quire.repositories import source as source_repo

logger = logging.getLogger("quire.sources")

__all__ = [
    "ALLOWED_TRANSITIONS",
    "SourceNotFoundError",
    "can_transition",
    "transition_status",
    "fail_source",
    "create_source",
    "get_source_or_404",
    "list_sources",
    "rename_source",
    "delete_source",
]

ALLOWED_TRANSITIONS: dict[SourceStatus, frozenset[SourceStatus]] = {
    SourceStatus.UPLOADING: frozenset({SourceStatus.PROCESSING, SourceStatus.FAILED}),
    SourceStatus.PROCESSING: frozenset({SourceStatus.COMPLETED, SourceStatus.FAILED}),
    SourceStatus.COMPLETED: frozenset(),
    SourceStatus.FAILED: frozenset(),
}


class SourceNotFoundError(Exception):
    pass


def can_transition(current: SourceStatus, target: SourceStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


async def transition_status(
    session: AsyncSession,
    source_id: uuid.UUID,
    target: SourceStatus,
    *,
    title: str | None = None,
    error: str | None = None,
) -> Optional[Source]:
    """Move a source to ``target``; returns the refreshed row or None if it is gone.

    Re-applying the current status is a no-op (step replay). Any other move
    not in :data:`ALLOWED_TRANSITIONS` raises :class:`InvalidStatusTransition`.
    """
    allowed_from = [s for s, targets in ALLOWED_TRANSITIONS.items() if target in targets]
    changed = await source_repo.compare_and_set_status(
        session, source_id, expected=allowed_from, target=target, title=title, error=error
    )
    source = await source_repo.get_by_id(session, source_id)
    if source is None:
        logger.info("sources.status.missing", extra={"source_id": source_id, "target": target.value})
        return None
    if changed:
        logger.info("sources.status.changed", extra={"source_id": source_id, "status": target.value})
        return source
    if source.status == target:
        return source
    raise InvalidStatusTransition(source.status.value, target.value)


async def fail_source(session: AsyncSession, source_id: uuid.UUID, reason: str) -> Optional[Source]:
    """Best-effort move to FAILED used by failure hooks; never raises on a terminal row."""
    try:
        return await transition_status(session, source_id, SourceStatus.FAILED, error=reason[:2000])
    except InvalidStatusTransition as exc:
        logger.warning("sources.status.fail_ignored", extra={"source_id": source_id, "current": exc.current})
        return await source_repo.get_by_id(session, source_id)


async def create_source(
    session: AsyncSession,
    *,
    notebook_id: uuid.UUID,
    type: SourceType,
    title: str,
    url: str = "",
    mime_type: str | None = None,
    id: uuid.UUID | None = None,
) -> Source:
    return await source_repo.create(
        session,
        notebook_id=notebook_id,
        type=type,
        title=title,
        url=url,
        mime_type=mime_type,
        id=id,
    )


async def get_source_or_404(session: AsyncSession, notebook_id: uuid.UUID, source_id: uuid.UUID) -> Source:
    source = await source_repo.get_in_notebook(session, notebook_id, source_id)
    if not source:
        raise SourceNotFoundError()
    return source


async def list_sources(session: AsyncSession, notebook_id: uuid.UUID) -> list[Source]:
    return list(await source_repo.list_by_notebook(session, notebook_id))


async def rename_source(session: AsyncSession, notebook_id: uuid.UUID, source_id: uuid.UUID, title: str) -> Source:
    source = await get_source_or_404(session, notebook_id, source_id)
    return await source_repo.rename(session, source, title)


async def delete_source(session: AsyncSession, notebook_id: uuid.UUID, source_id: uuid.UUID) -> None:
    await get_source_or_404(session, notebook_id, source_id)
    await source_repo.delete(session, source_id)
