"""Step-durable background workflow engine.

Work is expressed as *functions* subscribed to *events*. Sending an event
persists one :class:`~quire.models.job.Job` per subscribed function and
queues it for a pool of asyncio workers. A function body is a sequence of
named steps run through :meth:`StepContext.run`:

* a step whose ``(job_id, name)`` row already exists in the step ledger is
  not executed again; its recorded output is returned instead;
* otherwise the step runs under a timeout, transient failures are retried
  with exponential backoff up to ``RetryPolicy.max_attempts``, and the JSON
  output is committed to the ledger before the next step starts.

After a crash, :meth:`WorkflowEngine.resume` re-queues unfinished jobs and
execution picks up at the first unrecorded step. A job that fails is marked
FAILED and its function's ``on_failure`` hook moves the owning row to a
terminal state, so nothing is left PROCESSING forever.

Steps must be idempotent up to their recording point: a crash between a
step's side effect and its ledger write replays the step.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

import httpx

from quire.core.config import Settings
from quire.core.errors import TransientError, UnknownWorkflowEvent
from quire.models.job import JobStatus
from quire.repositories import job as job_repo

if TYPE_CHECKING:  # pragma: no cover
    from quire.workflow.runtime import Runtime

logger = logging.getLogger("quire.workflow")

StepFn = Callable[[], Awaitable[Any]]
Handler = Callable[["StepContext", dict[str, Any]], Awaitable[Any]]
FailureHook = Callable[["Runtime", dict[str, Any], BaseException], Awaitable[None]]

TRANSIENT_ERRORS = (TransientError, httpx.TransportError, TimeoutError, asyncio.TimeoutError)


def is_transient(exc: BaseException) -> bool:
    return isinstance(exc, TRANSIENT_ERRORS) or bool(getattr(exc, "transient", False))


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt bound, backoff and per-attempt timeout for steps.

    A timeout cancels the awaiting coroutine only. Blocking client calls
    already handed to a thread (pymilvus, youtube-transcript-api) run to
    completion, so a retry can overlap the abandoned attempt. Keep
    ``step_timeout`` above the client-side timeouts (Milvus connect timeout,
    ``HTTP_TIMEOUT``) so it only fires on genuinely stuck steps; steps must
    tolerate that overlap, which upserts keyed by chunk id and
    compare-and-set status moves do.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    step_timeout: float = 300.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=max(1, settings.workflow_max_attempts),
            base_delay=settings.workflow_backoff_base,
            max_delay=settings.workflow_backoff_max,
            step_timeout=settings.workflow_step_timeout,
        )

    def delay_for(self, attempt: int) -> float:
        return min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))


@dataclass(frozen=True)
class WorkflowFunction:
    id: str
    event: str
    handler: Handler
    on_failure: Optional[FailureHook] = None


class FunctionRegistry:
    def __init__(self) -> None:
        self._functions: dict[str, WorkflowFunction] = {}

    def function(self, id: str, *, event: str, on_failure: Optional[FailureHook] = None):
        """Decorator registering ``handler`` as function ``id`` triggered by ``event``."""

        def decorator(handler: Handler) -> Handler:
            if id in self._functions:
                raise ValueError(f"workflow function '{id}' registered twice")
            self._functions[id] = WorkflowFunction(id=id, event=event, handler=handler, on_failure=on_failure)
            return handler

        return decorator

    def get(self, id: str) -> Optional[WorkflowFunction]:
        return self._functions.get(id)

    def for_event(self, event: str) -> list[WorkflowFunction]:
        return [f for f in self._functions.values() if f.event == event]


class StepContext:
    """Handle passed to a function body; owns the job's step ledger access."""

    def __init__(self, engine: "WorkflowEngine", job_id: uuid.UUID, function_id: str):
        self._engine = engine
        self.job_id = job_id
        self.function_id = function_id

    @property
    def runtime(self) -> "Runtime":
        return self._engine.runtime

    async def run(self, name: str, fn: StepFn) -> Any:
        session_factory = self.runtime.session_factory
        async with session_factory() as session:
            recorded = await job_repo.get_step(session, self.job_id, name)
        if recorded is not None:
            logger.info("workflow.step.replayed", extra={"job_id": self.job_id, "function": self.function_id, "step": name})
            return recorded.output

        output = await self._engine._run_with_retry(self, name, fn)
        async with session_factory() as session:
            await job_repo.record_step(session, job_id=self.job_id, name=name, output=output)
            await session.commit()
        return output

    async def discard(self) -> None:
        """Delete this job together with its step ledger.

        Only valid as the last action of a handler: nothing can be recorded
        afterwards, and the job will not be resumed.
        """
        async with self.runtime.session_factory() as session:
            await job_repo.delete(session, self.job_id)
            await session.commit()
        logger.info("workflow.job.discarded", extra={"job_id": self.job_id, "function": self.function_id})


class WorkflowEngine:
    def __init__(
        self,
        runtime: "Runtime",
        registry: FunctionRegistry,
        policy: RetryPolicy = RetryPolicy(),
        workers: int = 4,
    ):
        self.runtime = runtime
        self.registry = registry
        self.policy = policy
        self.workers = max(1, workers)
        self._queue: asyncio.Queue[uuid.UUID] = asyncio.Queue()
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    async def start(self, *, resume: bool = True) -> None:
        if self.running:
            return
        self._tasks = [asyncio.create_task(self._worker(n), name=f"quire-worker-{n}") for n in range(self.workers)]
        logger.info("workflow.engine.started", extra={"workers": self.workers})
        if resume:
            await self.resume()

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("workflow.engine.stopped")

    async def resume(self) -> int:
        """Queue every PENDING or RUNNING job left over from a previous process."""
        async with self.runtime.session_factory() as session:
            jobs = await job_repo.list_unfinished(session)
        for job in jobs:
            self._queue.put_nowait(job.id)
        if jobs:
            logger.info("workflow.engine.resumed", extra={"jobs": len(jobs)})
        return len(jobs)

    async def drain(self) -> None:
        """Wait until every queued job has been processed."""
        await self._queue.join()

    async def send(self, event: str, data: dict[str, Any]) -> list[uuid.UUID]:
        """Persist and enqueue one job per function subscribed to ``event``.

        ``data`` must be JSON-serializable; it is the job payload.
        """
        functions = self.registry.for_event(event)
        if not functions:
            raise UnknownWorkflowEvent(event)
        async with self.runtime.session_factory() as session:
            jobs = [await job_repo.create(session, function=f.id, event=event, payload=data) for f in functions]
            await session.commit()
        for job in jobs:
            self._queue.put_nowait(job.id)
        logger.info("workflow.event.sent", extra={"event": event, "job_ids": [j.id for j in jobs]})
        return [job.id for job in jobs]

    async def _worker(self, n: int) -> None:
        while True:
            job_id = await self._queue.get()
            try:
                await self.execute(job_id)
            except Exception:
                logger.exception("workflow.worker.error", extra={"worker": n, "job_id": job_id})
            finally:
                self._queue.task_done()

    async def execute(self, job_id: uuid.UUID) -> Optional[JobStatus]:
        """Run (or continue) one job to a terminal status."""
        async with self.runtime.session_factory() as session:
            job = await job_repo.get_by_id(session, job_id)
            if job is None or job.status in (JobStatus.COMPLETED, JobStatus.FAILED):
                return job.status if job else None
            function = self.registry.get(job.function)
            if function is None:
                await job_repo.set_status(session, job, JobStatus.FAILED, error=f"unknown function '{job.function}'")
                await session.commit()
                logger.error("workflow.job.unknown_function", extra={"job_id": job_id, "function": job.function})
                return JobStatus.FAILED
            await job_repo.set_status(session, job, JobStatus.RUNNING)
            await session.commit()
            payload = dict(job.payload or {})

        start = time.perf_counter()
        logger.info("workflow.job.start", extra={"job_id": job_id, "function": function.id})
        ctx = StepContext(self, job_id, function.id)
        try:
            await function.handler(ctx, payload)
        except Exception as exc:
            logger.warning(
                "workflow.job.failed",
                extra={"job_id": job_id, "function": function.id, "error": repr(exc)},
            )
            await self._finish(job_id, JobStatus.FAILED, error=str(exc) or repr(exc))
            if function.on_failure is not None:
                try:
                    await function.on_failure(self.runtime, payload, exc)
                except Exception:
                    logger.exception("workflow.job.on_failure_error", extra={"job_id": job_id, "function": function.id})
            return JobStatus.FAILED
        await self._finish(job_id, JobStatus.COMPLETED)
        logger.info(
            "workflow.job.completed",
            extra={"job_id": job_id, "function": function.id, "duration_ms": round((time.perf_counter() - start) * 1000, 2)},
        )
        return JobStatus.COMPLETED

    async def _finish(self, job_id: uuid.UUID, status: JobStatus, *, error: str | None = None) -> None:
        async with self.runtime.session_factory() as session:
            job = await job_repo.get_by_id(session, job_id)
            if job is not None:
                await job_repo.set_status(session, job, status, error=error)
                await session.commit()

    async def _run_with_retry(self, ctx: StepContext, name: str, fn: StepFn) -> Any:
        attempt = 0
        while True:
            attempt += 1
            start = time.perf_counter()
            try:
                output = await asyncio.wait_for(fn(), timeout=self.policy.step_timeout)
            except Exception as exc:
                if not is_transient(exc) or attempt >= self.policy.max_attempts:
                    logger.warning(
                        "workflow.step.failed",
                        extra={"job_id": ctx.job_id, "step": name, "attempt": attempt, "error": repr(exc)},
                    )
                    raise
                delay = self.policy.delay_for(attempt)
                logger.info(
                    "workflow.step.retry",
                    extra={"job_id": ctx.job_id, "step": name, "attempt": attempt, "delay_s": delay, "error": repr(exc)},
                )
                await asyncio.sleep(delay)
                continue
            logger.info(
                "workflow.step.completed",
                extra={
                    "job_id": ctx.job_id,
                    "function": ctx.function_id,
                    "step": name,
                    "attempt": attempt,
                    "duration_ms": round((time.perf_counter() - start) * 1000, 2),
                },
            )
            return output


__all__ = [
    "FunctionRegistry",
    "RetryPolicy",
    "StepContext",
    "WorkflowEngine",
    "WorkflowFunction",
    "is_transient",
]
