import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from quire.api import deps
from quire.core.errors import NoSourcesSelected
from quire.models.note import NoteType
from quire.models.notebook import Notebook
from quire.schemas.note import NoteCreate, NoteRead
from quire.services.note import NoteNotFoundError, create_note, delete_note, list_notes
from quire.workflow.engine import WorkflowEngine
from quire.workflow.functions import NOTE_GENERATE

router = APIRouter(prefix="/notebooks/{notebook_id}/notes", tags=["notes"])


@router.post(
    "",
    response_model=NoteRead,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Generate a note or a mind map",
)
async def create_note_route(
    payload: NoteCreate,
    notebook: Notebook = Depends(deps.get_owned_notebook),
    session: AsyncSession = Depends(deps.get_db),
    user_id: str = Depends(deps.get_current_user),
    workflow: WorkflowEngine = Depends(deps.get_workflow),
):
    if payload.type == NoteType.MIND_MAP and not payload.source_ids:
        raise HTTPException(status_code=400, detail=str(NoSourcesSelected()))
    if payload.type == NoteType.TEXT and not payload.note.strip():
        raise HTTPException(status_code=400, detail="Note text must not be empty")
    note = await create_note(session, notebook_id=notebook.id, type=payload.type)
    await session.commit()
    await workflow.send(
        NOTE_GENERATE,
        {
            "noteId": str(note.id),
            "notebookId": str(notebook.id),
            "userId": user_id,
            "note": payload.note,
            "type": payload.type.value,
            "sourceIds": [str(s) for s in payload.source_ids],
        },
    )
    return note


@router.get("", response_model=list[NoteRead], summary="List notes")
async def list_notes_route(
    notebook: Notebook = Depends(deps.get_owned_notebook),
    session: AsyncSession = Depends(deps.get_db),
):
    return await list_notes(session, notebook.id)


@router.delete("/{note_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete a note")
async def delete_note_route(
    note_id: uuid.UUID,
    notebook: Notebook = Depends(deps.get_owned_notebook),
    session: AsyncSession = Depends(deps.get_db),
):
    try:
        await delete_note(session, notebook.id, note_id)
        await session.commit()
    except NoteNotFoundError:
        raise HTTPException(status_code=404, detail="Note not found")
    return None
