from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from quire.api import deps
from quire.core.errors import (
    GenerationFailed,
    ModelUnavailable,
    NoSourcesSelected,
    VectorIndexUnavailable,
)
from quire.models.notebook import Notebook
from quire.schemas.chat import ChatMessageRead, ChatRequest, ChatResponse
from quire.services.chat import ask, list_messages
from quire.workflow.runtime import Runtime

router = APIRouter(prefix="/notebooks/{notebook_id}/chat", tags=["chat"])


@router.post("", response_model=ChatResponse, summary="Ask a question about the selected sources")
async def chat_route(
    payload: ChatRequest,
    notebook: Notebook = Depends(deps.get_owned_notebook),
    session: AsyncSession = Depends(deps.get_db),
    user_id: str = Depends(deps.get_current_user),
    runtime: Runtime = Depends(deps.get_runtime),
):
    """Persist the question, answer it from the selected COMPLETED sources, persist the answer.

    Errors:
      * 400 when no source is selected
      * 503 when the model or the vector index is unreachable
      * 502 when the model returns an unusable answer
    """
    try:
        turn = await ask(
            session,
            assembler=runtime.assembler,
            llm=runtime.llm,
            notebook_id=notebook.id,
            user_id=user_id,
            message=payload.message,
            source_ids=payload.source_ids,
        )
    except NoSourcesSelected as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except (ModelUnavailable, VectorIndexUnavailable) as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    except GenerationFailed as exc:
        raise HTTPException(status_code=502, detail=str(exc))
    return ChatResponse(
        answer=turn.answer.message,
        question=ChatMessageRead.model_validate(turn.question),
        response=ChatMessageRead.model_validate(turn.answer),
    )


@router.get("", response_model=list[ChatMessageRead], summary="List chat messages")
async def list_chat_route(
    notebook: Notebook = Depends(deps.get_owned_notebook),
    session: AsyncSession = Depends(deps.get_db),
):
    return await list_messages(session, notebook.id)
