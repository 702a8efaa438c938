import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from quire.api.routers import audio, chat, debug, discover, health, notebooks, notes, sources
from quire.core.auth import bearer_token, verify_token
from quire.core.config import Settings, get_settings
from quire.core.logging import configure_logging
from quire.db.session import AsyncSessionLocal, dispose_engine
from quire.workflow.engine import RetryPolicy, WorkflowEngine
from quire.workflow.functions import registry
from quire.workflow.runtime import build_runtime

logger = logging.getLogger("quire.api")

ROUTERS = (health, debug, notebooks, sources, chat, notes, audio, discover)


def _lifespan(settings: Settings):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        runtime = build_runtime(settings, AsyncSessionLocal)
        workflow = WorkflowEngine(
            runtime,
            registry,
            policy=RetryPolicy.from_settings(settings),
            workers=settings.workflow_workers,
        )
        app.state.runtime = runtime
        app.state.workflow = workflow
        # jobs left unfinished by a previous process are resumed
        await workflow.start(resume=True)
        logger.info("api.started", extra={"workers": settings.workflow_workers})
        try:
            yield
        finally:
            await workflow.stop()
            await dispose_engine()
            logger.info("api.stopped")

    return lifespan


def _install_auth(app: FastAPI, settings: Settings) -> None:
    """Require a verified bearer token on every route except health and docs."""
    open_paths = {"/", f"{settings.api_prefix}/health/liveness", f"{settings.api_prefix}/health/readiness"}
    if app.openapi_url:
        open_paths.add(app.openapi_url)

    @app.middleware("http")
    async def require_bearer_token(request: Request, call_next):
        path = request.url.path
        if request.method == "OPTIONS" or path in open_paths or path.startswith(("/docs", "/redoc")):
            return await call_next(request)
        try:
            token = bearer_token(request.headers.get("Authorization"))
            request.state.verified_claims = await verify_token(token, settings)
        except HTTPException as exc:
            return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})
        return await call_next(request)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level, service=settings.app_name, environment=settings.environment)

    app = FastAPI(title=settings.app_name, lifespan=_lifespan(settings))
    if settings.enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    if settings.auth_enabled:
        _install_auth(app, settings)

    for module in ROUTERS:
        app.include_router(module.router, prefix=settings.api_prefix)

    @app.get("/")
    async def root():
        return {"service": settings.app_name, "status": "ok"}

    return app


app = create_app()
