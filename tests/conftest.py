import os
import tempfile
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession
from typing import AsyncGenerator

# Configure the process for tests via environment rather than hardcoding settings.
# Allow overriding with TEST_DATABASE_URL; fall back to a sqlite file in the temp dir.
_default_db = os.path.join(tempfile.gettempdir(), f"quire-test-{os.getpid()}.db")
os.environ.setdefault("DATABASE_URL", os.environ.get("TEST_DATABASE_URL", f"sqlite+aiosqlite:///{_default_db}"))
os.environ["VECTOR_BACKEND"] = "memory"
os.environ["STORAGE_BACKEND"] = "local"
os.environ["AUTH_ENABLED"] = "false"
os.environ.setdefault("BRAVE_API_KEY", "test-brave-key")

from quire.core import config as _config  # noqa: E402
_config.get_settings.cache_clear()  # ensure new env vars are picked up # type: ignore[attr-defined]
_settings = _config.get_settings()

from quire.api.main import app  # noqa: E402
from quire.core.storage import LocalObjectStorage  # noqa: E402
from quire.core.vectors import InMemoryVectorIndex  # noqa: E402
from quire.db.session import AsyncSessionLocal, engine, Base  # noqa: E402
import quire.models  # noqa: E402,F401
from quire.workflow.engine import WorkflowEngine  # noqa: E402
from quire.workflow.functions import registry  # noqa: E402
from quire.workflow.runtime import Runtime  # noqa: E402

from tests.fakes import TEST_POLICY, USER_ID, FakeSpeech, HashingEmbedder, ScriptedLanguageModel  # noqa: E402


@pytest.fixture(scope="session")
def settings():
    """Expose application settings to tests if needed."""
    return _settings


@pytest_asyncio.fixture()
async def database():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture()
async def db_session(database) -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:  # type: ignore
        yield session


@pytest_asyncio.fixture()
async def runtime(database, tmp_path, settings) -> Runtime:
    embedder = HashingEmbedder()
    return Runtime(
        settings=settings,
        session_factory=AsyncSessionLocal,
        vector_index=InMemoryVectorIndex(embedder),
        llm=ScriptedLanguageModel(),
        speech=FakeSpeech(),
        storage=LocalObjectStorage(tmp_path / "objects"),
    )


@pytest_asyncio.fixture()
async def workflow(runtime) -> AsyncGenerator[WorkflowEngine, None]:
    engine_ = WorkflowEngine(runtime, registry, policy=TEST_POLICY, workers=2)
    await engine_.start(resume=False)
    app.state.runtime = runtime
    app.state.workflow = engine_
    yield engine_
    await engine_.drain()
    await engine_.stop()


@pytest_asyncio.fixture()
async def client(workflow):
    # httpx >=0.28 removed the 'app=' shortcut; use ASGITransport explicitly
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test", headers={"X-User-Id": USER_ID}) as c:
        yield c
    app.dependency_overrides.clear()
