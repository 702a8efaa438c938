import asyncio

import pytest

from quire.core.config import get_settings
from quire.core.errors import GenerationFailed, ModelUnavailable, UnknownWorkflowEvent, VectorIndexUnavailable
from quire.core.storage import HTTP_TIMEOUT
from quire.db.session import AsyncSessionLocal
from quire.models.job import JobStatus
from quire.repositories import job as job_repo
from quire.workflow.engine import FunctionRegistry, RetryPolicy, WorkflowEngine, is_transient
from tests.fakes import TEST_POLICY


async def _job(job_id):
    async with AsyncSessionLocal() as session:
        job = await job_repo.get_by_id(session, job_id)
        steps = {s.name: s.output for s in await job_repo.list_steps(session, job_id)}
    return job, steps


@pytest.mark.unit
def test_backoff_is_exponential_and_capped():
    policy = RetryPolicy(max_attempts=5, base_delay=1.0, max_delay=5.0)
    assert [policy.delay_for(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]
    assert is_transient(ModelUnavailable("x"))
    assert is_transient(asyncio.TimeoutError())
    assert not is_transient(GenerationFailed("x"))


@pytest.mark.unit
def test_duplicate_function_ids_are_rejected():
    registry = FunctionRegistry()

    @registry.function("f", event="e")
    async def f(ctx, data):
        return None

    with pytest.raises(ValueError):
        registry.function("f", event="other")(f)


@pytest.mark.asyncio
@pytest.mark.integration
async def test_recorded_steps_are_not_run_again(runtime):
    calls = {"fetch": 0, "store": 0}
    registry = FunctionRegistry()

    @registry.function("two-steps", event="test/two-steps")
    async def two_steps(ctx, data):
        async def fetch():
            calls["fetch"] += 1
            return {"n": data["n"]}

        fetched = await ctx.run("fetch", fetch)

        async def store():
            calls["store"] += 1
            if calls["store"] == 1:
                raise RuntimeError("worker died")
            return fetched["n"] + 1

        return await ctx.run("store", store)

    engine = WorkflowEngine(runtime, registry, policy=TEST_POLICY)
    [job_id] = await engine.send("test/two-steps", {"n": 41})
    assert await engine.execute(job_id) == JobStatus.FAILED
    job, steps = await _job(job_id)
    assert steps == {"fetch": {"n": 41}}

    # a restarted process picks the job up again
    async with AsyncSessionLocal() as session:
        await job_repo.set_status(session, await job_repo.get_by_id(session, job_id), JobStatus.RUNNING)
        await session.commit()
    assert await engine.execute(job_id) == JobStatus.COMPLETED
    job, steps = await _job(job_id)
    assert calls == {"fetch": 1, "store": 2}
    assert steps == {"fetch": {"n": 41}, "store": 42}
    assert job.status == JobStatus.COMPLETED


@pytest.mark.asyncio
@pytest.mark.integration
async def test_transient_failures_are_retried(runtime):
    attempts = []
    registry = FunctionRegistry()

    @registry.function("flaky", event="test/flaky")
    async def flaky(ctx, data):
        async def call_model():
            attempts.append(1)
            if len(attempts) < 3:
                raise ModelUnavailable("rate limited")
            return "done"

        return await ctx.run("call-model", call_model)

    engine = WorkflowEngine(runtime, registry, policy=TEST_POLICY)
    [job_id] = await engine.send("test/flaky", {})
    assert await engine.execute(job_id) == JobStatus.COMPLETED
    assert len(attempts) == 3
    _job_row, steps = await _job(job_id)
    assert steps == {"call-model": "done"}


@pytest.mark.asyncio
@pytest.mark.integration
async def test_exhausted_retries_fail_the_job_and_run_the_hook(runtime):
    attempts = []
    failures = []
    registry = FunctionRegistry()

    async def on_failure(rt, data, exc):
        failures.append((data["ref"], exc))

    @registry.function("down", event="test/down", on_failure=on_failure)
    async def down(ctx, data):
        async def write():
            attempts.append(1)
            raise VectorIndexUnavailable("index unreachable")

        await ctx.run("write", write)

    engine = WorkflowEngine(runtime, registry, policy=TEST_POLICY)
    [job_id] = await engine.send("test/down", {"ref": "abc"})
    assert await engine.execute(job_id) == JobStatus.FAILED
    assert len(attempts) == TEST_POLICY.max_attempts
    assert failures[0][0] == "abc"
    assert isinstance(failures[0][1], VectorIndexUnavailable)
    job, steps = await _job(job_id)
    assert job.status == JobStatus.FAILED and "index unreachable" in job.error
    assert steps == {}


@pytest.mark.asyncio
@pytest.mark.integration
async def test_terminal_errors_are_not_retried(runtime):
    attempts = []
    registry = FunctionRegistry()

    @registry.function("bad-output", event="test/bad-output")
    async def bad_output(ctx, data):
        async def parse():
            attempts.append(1)
            raise GenerationFailed("unusable output")

        await ctx.run("parse", parse)

    engine = WorkflowEngine(runtime, registry, policy=TEST_POLICY)
    [job_id] = await engine.send("test/bad-output", {})
    assert await engine.execute(job_id) == JobStatus.FAILED
    assert len(attempts) == 1


@pytest.mark.asyncio
@pytest.mark.integration
async def test_step_timeout_counts_as_transient(runtime):
    attempts = []
    registry = FunctionRegistry()

    @registry.function("slow", event="test/slow")
    async def slow(ctx, data):
        async def step():
            attempts.append(1)
            if len(attempts) == 1:
                await asyncio.sleep(5)
            return "fast enough"

        return await ctx.run("step", step)

    policy = RetryPolicy(max_attempts=2, base_delay=0.0, max_delay=0.0, step_timeout=0.1)
    engine = WorkflowEngine(runtime, registry, policy=policy)
    [job_id] = await engine.send("test/slow", {})
    assert await engine.execute(job_id) == JobStatus.COMPLETED
    assert len(attempts) == 2


@pytest.mark.asyncio
@pytest.mark.integration
async def test_unknown_event_is_rejected(runtime):
    engine = WorkflowEngine(runtime, FunctionRegistry(), policy=TEST_POLICY)
    with pytest.raises(UnknownWorkflowEvent):
        await engine.send("nobody/listens", {})


@pytest.mark.asyncio
@pytest.mark.integration
async def test_pending_jobs_resume_in_a_new_engine(runtime):
    seen = []
    registry = FunctionRegistry()

    async def _append(value):
        seen.append(value)
        return value

    @registry.function("record", event="test/record")
    async def record(ctx, data):
        await ctx.run("append", lambda: _append(data["value"]))

    # the first engine never starts its workers: a crash right after send
    crashed = WorkflowEngine(runtime, registry, policy=TEST_POLICY)
    job_ids = [(await crashed.send("test/record", {"value": v}))[0] for v in ("a", "b")]

    fresh = WorkflowEngine(runtime, registry, policy=TEST_POLICY, workers=2)
    await fresh.start(resume=True)
    try:
        await fresh.drain()
    finally:
        await fresh.stop()
    assert sorted(seen) == ["a", "b"]
    for job_id in job_ids:
        job, _steps = await _job(job_id)
        assert job.status == JobStatus.COMPLETED


@pytest.mark.unit
def test_default_step_timeout_outlasts_client_timeouts():
    settings = get_settings()
    policy = RetryPolicy.from_settings(settings)
    assert policy.step_timeout > settings.milvus_connect_timeout
    assert policy.step_timeout > settings.modelhub_timeout
    assert policy.step_timeout > HTTP_TIMEOUT.read


@pytest.mark.asyncio
@pytest.mark.integration
async def test_discarded_job_leaves_no_ledger(runtime):
    registry = FunctionRegistry()

    @registry.function("forgetful", event="test/forgetful")
    async def forgetful(ctx, data):
        await ctx.run("remember", lambda: asyncio.sleep(0, result=data["secret"]))
        await ctx.discard()

    engine = WorkflowEngine(runtime, registry, policy=TEST_POLICY)
    [job_id] = await engine.send("test/forgetful", {"secret": "s3cr3t"})
    assert await engine.execute(job_id) == JobStatus.COMPLETED
    job, steps = await _job(job_id)
    assert job is None and steps == {}
    # a discarded job is not picked up again
    assert await engine.execute(job_id) is None


@pytest.mark.asyncio
@pytest.mark.integration
async def test_purge_skips_running_jobs_and_the_caller(runtime):
    async with AsyncSessionLocal() as session:
        done = await job_repo.create(session, function="f", event="e", payload={"sourceId": "s1"})
        await job_repo.set_status(session, done, JobStatus.COMPLETED)
        await job_repo.record_step(session, job_id=done.id, name="extract", output={"text": "secret"})
        running = await job_repo.create(session, function="f", event="e", payload={"sourceId": "s1"})
        await job_repo.set_status(session, running, JobStatus.RUNNING)
        caller = await job_repo.create(session, function="g", event="e", payload={"sourceId": "s1"})
        other = await job_repo.create(session, function="f", event="e", payload={"sourceId": "s2"})
        await session.commit()

        assert await job_repo.purge_for(session, key="sourceId", value="s1", keep=caller.id) == 1
        await session.commit()

    for job_id, present in ((done.id, False), (running.id, True), (caller.id, True), (other.id, True)):
        job, steps = await _job(job_id)
        assert (job is not None) is present
    assert (await _job(done.id))[1] == {}
