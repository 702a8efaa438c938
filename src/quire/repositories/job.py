"""Persistence for workflow jobs and their step ledger."""

import uuid
from typing import Any, Optional, Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete as sa_delete

from quire.models.job import Job, JobStep, JobStatus

__all__ = [
    "get_by_id",
    "list_unfinished",
    "create",
    "set_status",
    "get_step",
    "list_steps",
    "record_step",
    "delete",
    "purge_for",
]


async def get_by_id(session: AsyncSession, job_id: uuid.UUID) -> Optional[Job]:
    res = await session.execute(select(Job).where(Job.id == job_id).execution_options(populate_existing=True))
    return res.scalar_one_or_none()


async def list_unfinished(session: AsyncSession) -> Sequence[Job]:
    res = await session.execute(
        select(Job)
        .where(Job.status.in_([JobStatus.PENDING, JobStatus.RUNNING]))
        .order_by(Job.created_at)
    )
    return list(res.scalars().all())


async def create(session: AsyncSession, *, function: str, event: str, payload: dict[str, Any]) -> Job:
    job = Job(function=function, event=event, payload=payload, status=JobStatus.PENDING)
    session.add(job)
    await session.flush()
    return job


async def set_status(session: AsyncSession, job: Job, status: JobStatus, *, error: str | None = None) -> Job:
    job.status = status
    job.error = error
    await session.flush()
    return job


async def get_step(session: AsyncSession, job_id: uuid.UUID, name: str) -> Optional[JobStep]:
    res = await session.execute(select(JobStep).where(JobStep.job_id == job_id, JobStep.name == name))
    return res.scalar_one_or_none()


async def list_steps(session: AsyncSession, job_id: uuid.UUID) -> Sequence[JobStep]:
    res = await session.execute(select(JobStep).where(JobStep.job_id == job_id).order_by(JobStep.created_at))
    return list(res.scalars().all())


async def record_step(session: AsyncSession, *, job_id: uuid.UUID, name: str, output: Any) -> JobStep:
    step = JobStep(job_id=job_id, name=name, output=output)
    session.add(step)
    await session.flush()
    return step


async def _delete_ids(session: AsyncSession, job_ids: list[uuid.UUID]) -> None:
    # steps first: sqlite does not enforce the ON DELETE CASCADE
    await session.execute(sa_delete(JobStep).where(JobStep.job_id.in_(job_ids)))
    await session.execute(sa_delete(Job).where(Job.id.in_(job_ids)))


async def delete(session: AsyncSession, job_id: uuid.UUID) -> None:
    await _delete_ids(session, [job_id])


async def purge_for(session: AsyncSession, *, key: str, value: str, keep: Optional[uuid.UUID] = None) -> int:
    """Delete every job whose payload ``key`` equals ``value``, with its step ledger.

    RUNNING jobs are left alone since they are still writing steps; ``keep``
    spares the caller's own job.
    """
    stmt = select(Job.id).where(Job.payload[key].as_string() == value, Job.status != JobStatus.RUNNING)
    if keep is not None:
        stmt = stmt.where(Job.id != keep)
    job_ids = list((await session.execute(stmt)).scalars().all())
    if job_ids:
        await _delete_ids(session, job_ids)
    return len(job_ids)
