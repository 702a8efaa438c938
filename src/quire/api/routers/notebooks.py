from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from quire.api import deps
from quire.models.notebook import Notebook
from quire.schemas.notebook import NotebookCreate, NotebookRead, NotebookUpdate
from quire.services.notebook import create_notebook, delete_notebook, list_notebooks, rename_notebook
from quire.workflow.engine import WorkflowEngine
from quire.workflow.functions import NOTEBOOK_DELETE_VECTORS

router = APIRouter(prefix="/notebooks", tags=["notebooks"])


@router.post("", response_model=NotebookRead, status_code=status.HTTP_201_CREATED, summary="Create a notebook")
async def create_notebook_route(
    payload: NotebookCreate,
    session: AsyncSession = Depends(deps.get_db),
    user_id: str = Depends(deps.get_current_user),
):
    notebook = await create_notebook(session, owner_id=user_id, title=payload.title)
    await session.commit()
    return notebook


@router.get("", response_model=list[NotebookRead], summary="List own notebooks")
async def list_notebooks_route(
    session: AsyncSession = Depends(deps.get_db),
    user_id: str = Depends(deps.get_current_user),
):
    return await list_notebooks(session, user_id)


@router.get("/{notebook_id}", response_model=NotebookRead, summary="Get a notebook")
async def get_notebook_route(notebook: Notebook = Depends(deps.get_owned_notebook)):
    return notebook


@router.patch("/{notebook_id}", response_model=NotebookRead, summary="Rename a notebook")
async def update_notebook_route(
    payload: NotebookUpdate,
    notebook: Notebook = Depends(deps.get_owned_notebook),
    session: AsyncSession = Depends(deps.get_db),
):
    notebook = await rename_notebook(session, notebook, payload.title)
    await session.commit()
    return notebook


@router.delete("/{notebook_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete a notebook and its chunks")
async def delete_notebook_route(
    notebook: Notebook = Depends(deps.get_owned_notebook),
    session: AsyncSession = Depends(deps.get_db),
    user_id: str = Depends(deps.get_current_user),
    workflow: WorkflowEngine = Depends(deps.get_workflow),
):
    notebook_id = notebook.id
    await delete_notebook(session, notebook)
    await session.commit()
    await workflow.send(NOTEBOOK_DELETE_VECTORS, {"notebookId": str(notebook_id), "userId": user_id})
    return None
