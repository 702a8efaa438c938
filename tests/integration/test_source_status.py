import uuid

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from quire.core.errors import InvalidStatusTransition
from quire.models.source import SourceStatus, SourceType
from quire.repositories import notebook as notebook_repo
from quire.repositories import source as source_repo
from quire.services.source import can_transition, fail_source, transition_status


async def _source(session: AsyncSession):
    notebook = await notebook_repo.create(session, owner_id="auth0|owner", title="Oceans")
    return await source_repo.create(
        session, notebook_id=notebook.id, type=SourceType.TEXT, title="notes", url="text://x"
    )


@pytest.mark.unit
def test_lifecycle_table():
    assert can_transition(SourceStatus.UPLOADING, SourceStatus.PROCESSING)
    assert can_transition(SourceStatus.UPLOADING, SourceStatus.FAILED)
    assert can_transition(SourceStatus.PROCESSING, SourceStatus.COMPLETED)
    assert not can_transition(SourceStatus.UPLOADING, SourceStatus.COMPLETED)
    assert not can_transition(SourceStatus.COMPLETED, SourceStatus.PROCESSING)
    assert not can_transition(SourceStatus.FAILED, SourceStatus.PROCESSING)


@pytest.mark.asyncio
@pytest.mark.integration
async def test_happy_path_sets_title_with_status(db_session: AsyncSession):
    source = await _source(db_session)
    moved = await transition_status(db_session, source.id, SourceStatus.PROCESSING)
    assert moved.status == SourceStatus.PROCESSING
    done = await transition_status(db_session, source.id, SourceStatus.COMPLETED, title="Tide tables")
    assert done.status == SourceStatus.COMPLETED
    assert done.title == "Tide tables"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_reapplying_current_status_is_a_noop(db_session: AsyncSession):
    source = await _source(db_session)
    await transition_status(db_session, source.id, SourceStatus.PROCESSING)
    again = await transition_status(db_session, source.id, SourceStatus.PROCESSING)
    assert again.status == SourceStatus.PROCESSING


@pytest.mark.asyncio
@pytest.mark.integration
async def test_illegal_moves_raise_and_leave_row_untouched(db_session: AsyncSession):
    source = await _source(db_session)
    with pytest.raises(InvalidStatusTransition):
        await transition_status(db_session, source.id, SourceStatus.COMPLETED)
    await transition_status(db_session, source.id, SourceStatus.PROCESSING)
    await transition_status(db_session, source.id, SourceStatus.COMPLETED)
    with pytest.raises(InvalidStatusTransition):
        await transition_status(db_session, source.id, SourceStatus.PROCESSING)
    fetched = await source_repo.get_by_id(db_session, source.id)
    assert fetched.status == SourceStatus.COMPLETED


@pytest.mark.asyncio
@pytest.mark.integration
async def test_missing_row_is_not_an_error(db_session: AsyncSession):
    assert await transition_status(db_session, uuid.uuid4(), SourceStatus.PROCESSING) is None


@pytest.mark.asyncio
@pytest.mark.integration
async def test_fail_source_keeps_terminal_rows(db_session: AsyncSession):
    source = await _source(db_session)
    failed = await fail_source(db_session, source.id, "fetch failed")
    assert failed.status == SourceStatus.FAILED and failed.error == "fetch failed"

    other = await _source(db_session)
    await transition_status(db_session, other.id, SourceStatus.PROCESSING)
    await transition_status(db_session, other.id, SourceStatus.COMPLETED)
    kept = await fail_source(db_session, other.id, "late failure")
    assert kept.status == SourceStatus.COMPLETED
    assert kept.error is None
