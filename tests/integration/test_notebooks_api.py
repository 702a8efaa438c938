import httpx
import pytest

from quire.api import deps
from quire.api.main import app
from quire.core.storage import LocalObjectStorage
from quire.ingest.extractor import ContentExtractor
from tests.fakes import OTHER_USER_ID

PREFIX = "/api/v1"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_root(client):
    resp = await client.get("/")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_liveness(client):
    resp = await client.get(f"{PREFIX}/health/liveness")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_readiness(client):
    resp = await client.get(f"{PREFIX}/health/readiness")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ready", "workflow": "running"}


@pytest.mark.asyncio
@pytest.mark.integration
async def test_notebook_crud(client):
    created = await client.post(f"{PREFIX}/notebooks", json={"title": "Tides"})
    assert created.status_code == 201
    notebook = created.json()
    assert notebook["title"] == "Tides" and notebook["audio_status"] is None

    untitled = (await client.post(f"{PREFIX}/notebooks", json={})).json()
    assert untitled["title"] == "Untitled notebook"

    listed = (await client.get(f"{PREFIX}/notebooks")).json()
    assert {n["id"] for n in listed} == {notebook["id"], untitled["id"]}

    renamed = await client.patch(f"{PREFIX}/notebooks/{notebook['id']}", json={"title": "Tide tables"})
    assert renamed.status_code == 200 and renamed.json()["title"] == "Tide tables"

    assert (await client.delete(f"{PREFIX}/notebooks/{notebook['id']}")).status_code == 204
    assert (await client.get(f"{PREFIX}/notebooks/{notebook['id']}")).status_code == 404


@pytest.mark.asyncio
@pytest.mark.integration
async def test_foreign_notebooks_look_missing(client):
    notebook = (await client.post(f"{PREFIX}/notebooks", json={"title": "Private"})).json()
    other = {"X-User-Id": OTHER_USER_ID}
    assert (await client.get(f"{PREFIX}/notebooks/{notebook['id']}", headers=other)).status_code == 404
    assert (await client.get(f"{PREFIX}/notebooks/{notebook['id']}/sources", headers=other)).status_code == 404
    assert (await client.get(f"{PREFIX}/notebooks", headers=other)).json() == []


@pytest.mark.asyncio
@pytest.mark.integration
async def test_missing_identity_is_unauthorized(client):
    resp = await client.get(f"{PREFIX}/notebooks", headers={"X-User-Id": ""})
    assert resp.status_code == 401


@pytest.mark.asyncio
@pytest.mark.integration
async def test_deleting_a_notebook_removes_its_chunks(client, workflow, runtime):
    keep = (await client.post(f"{PREFIX}/notebooks", json={"title": "Keep"})).json()
    drop = (await client.post(f"{PREFIX}/notebooks", json={"title": "Drop"})).json()
    for notebook in (keep, drop):
        await client.post(f"{PREFIX}/notebooks/{notebook['id']}/sources/text", json={"text": f"notes for {notebook['title']}"})
    await workflow.drain()
    assert len(runtime.vector_index) == 2

    assert (await client.delete(f"{PREFIX}/notebooks/{drop['id']}")).status_code == 204
    await workflow.drain()
    assert {c.metadata["notebookId"] for c in runtime.vector_index.all_chunks()} == {keep["id"]}


@pytest.mark.asyncio
@pytest.mark.integration
async def test_discover_keeps_https_pdfs(client):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["q"] = request.url.params["q"]
        seen["token"] = request.headers["x-subscription-token"]
        return httpx.Response(
            200,
            json={
                "web": {
                    "results": [
                        {
                            "title": "Reef survey",
                            "url": "https://sea.example/survey.pdf",
                            "description": "Annual survey",
                            "content_type": "pdf",
                            "meta_url": {"scheme": "https"},
                        },
                        {"title": "Blog", "url": "https://sea.example/blog", "meta_url": {"scheme": "https"}},
                        {
                            "title": "Old copy",
                            "url": "http://sea.example/old.pdf",
                            "content_type": "pdf",
                            "meta_url": {"scheme": "http"},
                        },
                    ]
                }
            },
        )

    app.dependency_overrides[deps.get_http_transport] = lambda: httpx.MockTransport(handler)
    notebook = (await client.post(f"{PREFIX}/notebooks", json={"title": "Reefs"})).json()
    resp = await client.post(f"{PREFIX}/notebooks/{notebook['id']}/discover", json={"interest": "Coral Bleaching"})
    assert resp.status_code == 200
    [result] = resp.json()["sources"]
    assert result["url"] == "https://sea.example/survey.pdf"
    assert result["title"] == "Reef survey"
    assert seen == {"q": "coral bleaching filetype:pdf", "token": "test-brave-key"}


@pytest.mark.asyncio
@pytest.mark.integration
async def test_discover_upstream_failure(client):
    app.dependency_overrides[deps.get_http_transport] = lambda: httpx.MockTransport(lambda r: httpx.Response(500))
    notebook = (await client.post(f"{PREFIX}/notebooks", json={"title": "Reefs"})).json()
    resp = await client.post(f"{PREFIX}/notebooks/{notebook['id']}/discover", json={"interest": "kelp"})
    assert resp.status_code == 503


@pytest.mark.asyncio
@pytest.mark.integration
async def test_discovered_urls_become_file_sources(client, workflow, runtime, tmp_path):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"Survey of reef health in 2024.", headers={"content-type": "application/pdf"})

    runtime.extractor = ContentExtractor(LocalObjectStorage(tmp_path, transport=httpx.MockTransport(handler)))
    notebook = (await client.post(f"{PREFIX}/notebooks", json={"title": "Reefs"})).json()
    resp = await client.post(
        f"{PREFIX}/notebooks/{notebook['id']}/sources/urls",
        json={"sources": [{"url": "https://sea.example/survey.pdf"}]},
    )
    assert resp.status_code == 201
    [source] = resp.json()
    assert source["type"] == "file"
    assert source["title"] == "survey.pdf"
    assert source["mime_type"] == "application/pdf"
    insecure = await client.post(
        f"{PREFIX}/notebooks/{notebook['id']}/sources/urls", json={"sources": [{"url": "http://sea.example/a.pdf"}]}
    )
    assert insecure.status_code == 422

    await workflow.drain()
    sources = (await client.get(f"{PREFIX}/notebooks/{notebook['id']}/sources")).json()
    assert [s["status"] for s in sources] == ["COMPLETED"]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_debug_config_hides_secrets(client):
    resp = await client.get(f"{PREFIX}/debug/config")
    assert resp.status_code == 200
    body = resp.json()
    assert body["discover"] == {"has_api_key": True}
    assert "test-brave-key" not in resp.text
