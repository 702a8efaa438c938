import json
import uuid

import httpx
import pytest
from sqlalchemy import select
from youtube_transcript_api import TranscriptsDisabled

from quire.api.main import app
from quire.core.chunking import split_text
from quire.db.session import AsyncSessionLocal
from quire.ingest.extractor import ContentExtractor, text_title
from quire.models.job import Job, JobStatus, JobStep
from quire.repositories import job as job_repo
from quire.workflow.engine import WorkflowEngine
from quire.workflow.functions import registry
from tests.fakes import TEST_POLICY, USER_ID, FlakyIndex, HashingEmbedder

PREFIX = "/api/v1"

ARTICLE = "\n\n".join(
    " ".join(f"Coral reef fact {p}.{s}: polyps build limestone skeletons over centuries." for s in range(12))
    for p in range(6)
)


async def _notebook(client) -> str:
    resp = await client.post(f"{PREFIX}/notebooks", json={"title": "Reefs"})
    assert resp.status_code == 201
    return resp.json()["id"]


async def _sources(client, notebook_id):
    resp = await client.get(f"{PREFIX}/notebooks/{notebook_id}/sources")
    assert resp.status_code == 200
    return {s["id"]: s for s in resp.json()}


def _chunks_of(runtime, source_id):
    return [c for c in runtime.vector_index.all_chunks() if c.metadata["sourceId"] == source_id]


async def _ledger_text() -> str:
    async with AsyncSessionLocal() as session:
        payloads = (await session.execute(select(Job.payload))).scalars().all()
        outputs = (await session.execute(select(JobStep.output))).scalars().all()
    return json.dumps([*payloads, *outputs], default=str)


@pytest.mark.asyncio
@pytest.mark.integration
async def test_text_source_end_to_end(client, workflow, runtime):
    notebook_id = await _notebook(client)
    resp = await client.post(f"{PREFIX}/notebooks/{notebook_id}/sources/text", json={"text": ARTICLE})
    assert resp.status_code == 201
    body = resp.json()
    assert body["status"] == "UPLOADING"
    assert body["title"] == text_title(ARTICLE)

    await workflow.drain()
    source = (await _sources(client, notebook_id))[body["id"]]
    assert source["status"] == "COMPLETED"
    chunks = _chunks_of(runtime, body["id"])
    assert len(chunks) == len(split_text(ARTICLE))
    for chunk in chunks:
        assert chunk.metadata["userId"] == USER_ID
        assert chunk.metadata["notebookId"] == notebook_id
        assert chunk.text in ARTICLE


@pytest.mark.asyncio
@pytest.mark.integration
async def test_blank_text_is_rejected(client):
    notebook_id = await _notebook(client)
    resp = await client.post(f"{PREFIX}/notebooks/{notebook_id}/sources/text", json={"text": "   "})
    assert resp.status_code == 422


@pytest.mark.asyncio
@pytest.mark.integration
async def test_csv_upload(client, workflow, runtime):
    notebook_id = await _notebook(client)
    files = [("files", ("fish.csv", b"species,depth\nclownfish,10\ngrouper,40\n", "text/csv"))]
    resp = await client.post(f"{PREFIX}/notebooks/{notebook_id}/sources/files", files=files)
    assert resp.status_code == 201
    [created] = resp.json()["sources"]
    assert created["type"] == "file" and created["mime_type"] == "text/csv"

    await workflow.drain()
    assert (await _sources(client, notebook_id))[created["id"]]["status"] == "COMPLETED"
    chunks = sorted(_chunks_of(runtime, created["id"]), key=lambda c: c.metadata["chunkIndex"])
    assert [c.text for c in chunks] == ["species: clownfish\ndepth: 10", "species: grouper\ndepth: 40"]
    assert chunks[0].metadata["mimeType"] == "text/csv"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_unsupported_upload_creates_nothing(client, workflow):
    notebook_id = await _notebook(client)
    files = [("files", ("photo.png", b"\x89PNG\r\n\x1a\n", "image/png"))]
    resp = await client.post(f"{PREFIX}/notebooks/{notebook_id}/sources/files", files=files)
    assert resp.status_code == 400
    assert resp.json()["detail"]["rejected"][0]["filename"] == "photo.png"
    assert await _sources(client, notebook_id) == {}


@pytest.mark.asyncio
@pytest.mark.integration
async def test_mixed_upload_keeps_supported_files(client, workflow):
    notebook_id = await _notebook(client)
    files = [
        ("files", ("photo.png", b"\x89PNG\r\n\x1a\n", "image/png")),
        ("files", ("notes.txt", b"kelp forests", "text/plain")),
    ]
    resp = await client.post(f"{PREFIX}/notebooks/{notebook_id}/sources/files", files=files)
    assert resp.status_code == 201
    body = resp.json()
    assert [s["title"] for s in body["sources"]] == ["notes.txt"]
    assert [r["filename"] for r in body["rejected"]] == ["photo.png"]
    await workflow.drain()


@pytest.mark.asyncio
@pytest.mark.integration
async def test_website_source_takes_page_title(client, workflow, runtime):
    page = "<html><head><title>Reef Atlas</title></head><body><main><p>Reefs cover 0.1% of the ocean.</p></main></body></html>"
    runtime.extractor = ContentExtractor(
        runtime.storage, transport=httpx.MockTransport(lambda request: httpx.Response(200, html=page))
    )
    notebook_id = await _notebook(client)
    resp = await client.post(f"{PREFIX}/notebooks/{notebook_id}/sources/website", json={"url": "https://atlas.example/reefs"})
    assert resp.status_code == 201
    assert resp.json()["title"] == "Website: atlas.example"

    await workflow.drain()
    source = (await _sources(client, notebook_id))[resp.json()["id"]]
    assert source["status"] == "COMPLETED"
    assert source["title"] == "Reef Atlas"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_youtube_without_captions_fails_cleanly(client, workflow, runtime):
    def no_captions(vid, languages):
        raise TranscriptsDisabled(vid)

    runtime.extractor = ContentExtractor(
        runtime.storage,
        transport=httpx.MockTransport(lambda request: httpx.Response(404)),
        transcript_fetcher=no_captions,
    )
    notebook_id = await _notebook(client)
    resp = await client.post(
        f"{PREFIX}/notebooks/{notebook_id}/sources/youtube", json={"url": "https://youtu.be/dQw4w9WgXcQ"}
    )
    assert resp.status_code == 201

    await workflow.drain()
    source = (await _sources(client, notebook_id))[resp.json()["id"]]
    assert source["status"] == "FAILED"
    assert "no transcript" in source["error"]
    assert _chunks_of(runtime, resp.json()["id"]) == []


@pytest.mark.asyncio
@pytest.mark.integration
async def test_invalid_youtube_url(client):
    notebook_id = await _notebook(client)
    resp = await client.post(f"{PREFIX}/notebooks/{notebook_id}/sources/youtube", json={"url": "https://vimeo.com/1"})
    assert resp.status_code == 400


@pytest.mark.asyncio
@pytest.mark.integration
async def test_index_outage_is_retried(client, workflow, runtime):
    runtime.vector_index = FlakyIndex(HashingEmbedder(), failures=2)
    notebook_id = await _notebook(client)
    resp = await client.post(f"{PREFIX}/notebooks/{notebook_id}/sources/text", json={"text": ARTICLE})
    await workflow.drain()
    assert (await _sources(client, notebook_id))[resp.json()["id"]]["status"] == "COMPLETED"
    assert runtime.vector_index.write_attempts == 3
    assert len(_chunks_of(runtime, resp.json()["id"])) == len(split_text(ARTICLE))


@pytest.mark.asyncio
@pytest.mark.integration
async def test_persistent_index_outage_fails_without_chunks(client, workflow, runtime):
    runtime.vector_index = FlakyIndex(HashingEmbedder(), failures=100)
    notebook_id = await _notebook(client)
    resp = await client.post(f"{PREFIX}/notebooks/{notebook_id}/sources/text", json={"text": ARTICLE})
    await workflow.drain()
    source = (await _sources(client, notebook_id))[resp.json()["id"]]
    assert source["status"] == "FAILED"
    assert runtime.vector_index.write_attempts == TEST_POLICY.max_attempts
    assert len(runtime.vector_index) == 0


@pytest.mark.asyncio
@pytest.mark.integration
async def test_rename_and_delete_source(client, workflow, runtime):
    notebook_id = await _notebook(client)
    keep = (await client.post(f"{PREFIX}/notebooks/{notebook_id}/sources/text", json={"text": ARTICLE})).json()
    drop = (await client.post(f"{PREFIX}/notebooks/{notebook_id}/sources/text", json={"text": "Mangroves shelter fish."})).json()
    await workflow.drain()

    resp = await client.patch(f"{PREFIX}/notebooks/{notebook_id}/sources/{keep['id']}", json={"title": "Reef facts"})
    assert resp.status_code == 200 and resp.json()["title"] == "Reef facts"

    resp = await client.delete(f"{PREFIX}/notebooks/{notebook_id}/sources/{drop['id']}")
    assert resp.status_code == 204
    await workflow.drain()
    assert list(await _sources(client, notebook_id)) == [keep["id"]]
    assert {c.metadata["sourceId"] for c in runtime.vector_index.all_chunks()} == {keep["id"]}

    missing = await client.delete(f"{PREFIX}/notebooks/{notebook_id}/sources/{uuid.uuid4()}")
    assert missing.status_code == 404


@pytest.mark.asyncio
@pytest.mark.integration
async def test_source_deleted_before_ingestion_leaves_no_chunks(client, workflow, runtime):
    # an engine without workers holds the jobs until the source is gone
    idle = WorkflowEngine(runtime, registry, policy=TEST_POLICY)
    app.state.workflow = idle
    try:
        notebook_id = await _notebook(client)
        created = (await client.post(f"{PREFIX}/notebooks/{notebook_id}/sources/text", json={"text": ARTICLE})).json()
        assert (await client.delete(f"{PREFIX}/notebooks/{notebook_id}/sources/{created['id']}")).status_code == 204
        async with AsyncSessionLocal() as session:
            jobs = await job_repo.list_unfinished(session)
        for job in jobs:
            # the delete job may purge the ingest job before it runs
            assert await idle.execute(job.id) in (JobStatus.COMPLETED, None)
    finally:
        app.state.workflow = workflow
    assert len(runtime.vector_index) == 0
    assert "Coral reef fact" not in await _ledger_text()


@pytest.mark.asyncio
@pytest.mark.integration
async def test_deleted_source_leaves_no_text_in_the_job_ledger(client, workflow, runtime):
    notebook_id = await _notebook(client)
    secret = "The survey vessel sails under codename BLUEHERON."
    keep = (await client.post(f"{PREFIX}/notebooks/{notebook_id}/sources/text", json={"text": "Kelp grows fast."})).json()
    drop = (await client.post(f"{PREFIX}/notebooks/{notebook_id}/sources/text", json={"text": secret})).json()
    await workflow.drain()
    assert "BLUEHERON" in await _ledger_text()

    assert (await client.delete(f"{PREFIX}/notebooks/{notebook_id}/sources/{drop['id']}")).status_code == 204
    await workflow.drain()

    ledger = await _ledger_text()
    assert "BLUEHERON" not in ledger
    assert _chunks_of(runtime, drop["id"]) == []
    # other sources keep their history
    assert "Kelp grows fast." in ledger
    assert {c.metadata["sourceId"] for c in runtime.vector_index.all_chunks()} == {keep["id"]}


@pytest.mark.asyncio
@pytest.mark.integration
async def test_deleted_notebook_leaves_no_jobs(client, workflow):
    notebook_id = await _notebook(client)
    await client.post(f"{PREFIX}/notebooks/{notebook_id}/sources/text", json={"text": "Seagrass meadows store carbon."})
    await workflow.drain()

    assert (await client.delete(f"{PREFIX}/notebooks/{notebook_id}")).status_code == 204
    await workflow.drain()
    async with AsyncSessionLocal() as session:
        assert (await session.execute(select(Job))).scalars().all() == []
        assert (await session.execute(select(JobStep))).scalars().all() == []
