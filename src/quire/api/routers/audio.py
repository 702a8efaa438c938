from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from quire.api import deps
from quire.core.errors import NoSourcesSelected
from quire.models.notebook import AudioStatus, Notebook
from quire.repositories import notebook as notebook_repo
from quire.schemas.audio import AudioOverviewAccepted, AudioOverviewCreate
from quire.workflow.engine import WorkflowEngine
from quire.workflow.functions import NOTEBOOK_PODCAST

router = APIRouter(prefix="/notebooks/{notebook_id}/audio-overview", tags=["audio"])


@router.post(
    "",
    response_model=AudioOverviewAccepted,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Generate a two-host audio overview of the selected sources",
)
async def create_audio_overview_route(
    payload: AudioOverviewCreate,
    notebook: Notebook = Depends(deps.get_owned_notebook),
    session: AsyncSession = Depends(deps.get_db),
    user_id: str = Depends(deps.get_current_user),
    workflow: WorkflowEngine = Depends(deps.get_workflow),
):
    if not payload.source_ids:
        raise HTTPException(status_code=400, detail=str(NoSourcesSelected()))
    await notebook_repo.update_audio(session, notebook.id, status=AudioStatus.PROCESSING)
    await session.commit()
    job_ids = await workflow.send(
        NOTEBOOK_PODCAST,
        {
            "notebookId": str(notebook.id),
            "userId": user_id,
            "sourceIds": [str(s) for s in payload.source_ids],
        },
    )
    return AudioOverviewAccepted(notebook_id=notebook.id, audio_status=AudioStatus.PROCESSING, job_ids=job_ids)
