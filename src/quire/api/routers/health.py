from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from quire.api import deps
from quire.services.health import check_db

router = APIRouter(prefix="/health", tags=["health"])

@router.get("/liveness")
async def liveness():
    """Verify whether the API is ready to receive traffic."""
    return {"status": "ok"}

@router.get("/readiness")
async def readiness(request: Request, session: AsyncSession = Depends(deps.get_db)):
    """Verify whether the API is ready to process traffic and background jobs."""
    workflow = getattr(request.app.state, "workflow", None)
    workers_up = bool(workflow and workflow.running)
    if await check_db(session) and workers_up:
        return {"status": "ready", "workflow": "running"}
    return {"status": "degraded", "workflow": "running" if workers_up else "stopped"}
