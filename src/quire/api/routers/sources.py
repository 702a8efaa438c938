"""Source triggers: every route validates input, creates UPLOADING rows,
commits, then enqueues one ingestion job per row."""
import logging
import re
import uuid
from typing import List
from urllib.parse import unquote, urlparse

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from quire.api import deps
from quire.ingest.extractor import text_title
from quire.ingest.loaders import PDF, SUPPORTED_MIME_TYPES, guess_mime_type, normalize_mime_type
from quire.ingest.web import website_title
from quire.ingest.youtube import video_id, youtube_title
from quire.models.notebook import Notebook
from quire.models.source import Source, SourceType
from quire.schemas.source import (
    DiscoveredSourcesCreate,
    SourceRead,
    SourceUpdate,
    TextSourceCreate,
    UrlSourceCreate,
)
from quire.services.source import (
    SourceNotFoundError,
    create_source,
    delete_source,
    list_sources,
    rename_source,
)
from quire.workflow.engine import WorkflowEngine
from quire.workflow.functions import SOURCE_DELETE_VECTORS, SOURCE_INGEST
from quire.workflow.runtime import Runtime

logger = logging.getLogger("quire.api.sources")

router = APIRouter(prefix="/notebooks/{notebook_id}/sources", tags=["sources"])

_UNSAFE_NAME = re.compile(r"[^A-Za-z0-9._-]+")


class RejectedFile(BaseModel):
    filename: str
    reason: str


class SourceUploadResult(BaseModel):
    sources: List[SourceRead]
    rejected: List[RejectedFile]


def _ingest_payload(source: Source, user_id: str, *, text: str | None = None) -> dict:
    return {
        "sourceId": str(source.id),
        "notebookId": str(source.notebook_id),
        "userId": user_id,
        "type": source.type.value,
        "url": source.url,
        "mimeType": source.mime_type,
        "text": text,
    }


def _upload_mime_type(upload: UploadFile) -> str | None:
    declared = normalize_mime_type(upload.content_type)
    if declared in SUPPORTED_MIME_TYPES:
        return declared
    guessed = guess_mime_type(upload.filename)
    return guessed if guessed in SUPPORTED_MIME_TYPES else None


@router.get("", response_model=list[SourceRead], summary="List sources")
async def list_sources_route(
    notebook: Notebook = Depends(deps.get_owned_notebook),
    session: AsyncSession = Depends(deps.get_db),
):
    return await list_sources(session, notebook.id)


@router.post(
    "/files",
    response_model=SourceUploadResult,
    status_code=status.HTTP_201_CREATED,
    summary="Upload files as sources",
)
async def upload_files_route(
    files: List[UploadFile] = File(...),
    notebook: Notebook = Depends(deps.get_owned_notebook),
    session: AsyncSession = Depends(deps.get_db),
    user_id: str = Depends(deps.get_current_user),
    runtime: Runtime = Depends(deps.get_runtime),
    workflow: WorkflowEngine = Depends(deps.get_workflow),
):
    """Unsupported or empty files are skipped; the rest of the batch proceeds."""
    accepted: list[tuple[UploadFile, str, bytes]] = []
    rejected: list[RejectedFile] = []
    for upload in files:
        name = upload.filename or "upload"
        mime_type = _upload_mime_type(upload)
        if mime_type is None:
            rejected.append(RejectedFile(filename=name, reason=f"Unsupported file type: {upload.content_type}"))
            continue
        data = await upload.read()
        if not data:
            rejected.append(RejectedFile(filename=name, reason="File is empty"))
            continue
        accepted.append((upload, mime_type, data))
    if not accepted:
        raise HTTPException(status_code=400, detail={"message": "No supported files in upload", "rejected": [r.model_dump() for r in rejected]})

    sources: list[Source] = []
    for upload, mime_type, data in accepted:
        name = upload.filename or "upload"
        path = f"uploads/{notebook.id}/{uuid.uuid4().hex}_{_UNSAFE_NAME.sub('_', name)[-120:]}"
        url = await runtime.storage.put(path, data, mime_type)
        sources.append(
            await create_source(
                session, notebook_id=notebook.id, type=SourceType.FILE, title=name[:255], url=url, mime_type=mime_type
            )
        )
    await session.commit()
    for source in sources:
        await workflow.send(SOURCE_INGEST, _ingest_payload(source, user_id))
    if rejected:
        logger.info("sources.upload.rejected", extra={"notebook_id": notebook.id, "rejected": [r.filename for r in rejected]})
    return SourceUploadResult(sources=[SourceRead.model_validate(s) for s in sources], rejected=rejected)


@router.post("/text", response_model=SourceRead, status_code=status.HTTP_201_CREATED, summary="Add pasted text")
async def add_text_route(
    payload: TextSourceCreate,
    notebook: Notebook = Depends(deps.get_owned_notebook),
    session: AsyncSession = Depends(deps.get_db),
    user_id: str = Depends(deps.get_current_user),
    workflow: WorkflowEngine = Depends(deps.get_workflow),
):
    source_id = uuid.uuid4()
    source = await create_source(
        session,
        notebook_id=notebook.id,
        type=SourceType.TEXT,
        title=text_title(payload.text),
        url=f"text://{source_id}",
        id=source_id,
    )
    await session.commit()
    await workflow.send(SOURCE_INGEST, _ingest_payload(source, user_id, text=payload.text))
    return source


@router.post("/website", response_model=SourceRead, status_code=status.HTTP_201_CREATED, summary="Add a website")
async def add_website_route(
    payload: UrlSourceCreate,
    notebook: Notebook = Depends(deps.get_owned_notebook),
    session: AsyncSession = Depends(deps.get_db),
    user_id: str = Depends(deps.get_current_user),
    workflow: WorkflowEngine = Depends(deps.get_workflow),
):
    source = await create_source(
        session, notebook_id=notebook.id, type=SourceType.WEBSITE, title=website_title(payload.url)[:255], url=payload.url
    )
    await session.commit()
    await workflow.send(SOURCE_INGEST, _ingest_payload(source, user_id))
    return source


@router.post("/youtube", response_model=SourceRead, status_code=status.HTTP_201_CREATED, summary="Add a YouTube video")
async def add_youtube_route(
    payload: UrlSourceCreate,
    notebook: Notebook = Depends(deps.get_owned_notebook),
    session: AsyncSession = Depends(deps.get_db),
    user_id: str = Depends(deps.get_current_user),
    workflow: WorkflowEngine = Depends(deps.get_workflow),
):
    if video_id(payload.url) is None:
        raise HTTPException(status_code=400, detail="Invalid YouTube URL")
    source = await create_source(
        session, notebook_id=notebook.id, type=SourceType.YOUTUBE, title=youtube_title(payload.url)[:255], url=payload.url
    )
    await session.commit()
    await workflow.send(SOURCE_INGEST, _ingest_payload(source, user_id))
    return source


@router.post(
    "/urls",
    response_model=list[SourceRead],
    status_code=status.HTTP_201_CREATED,
    summary="Add discovered documents by URL",
)
async def add_urls_route(
    payload: DiscoveredSourcesCreate,
    notebook: Notebook = Depends(deps.get_owned_notebook),
    session: AsyncSession = Depends(deps.get_db),
    user_id: str = Depends(deps.get_current_user),
    workflow: WorkflowEngine = Depends(deps.get_workflow),
):
    sources = []
    for item in payload.sources:
        name = unquote(urlparse(item.url).path.rsplit("/", 1)[-1]) or item.url
        sources.append(
            await create_source(
                session,
                notebook_id=notebook.id,
                type=SourceType.FILE,
                title=(item.title or name)[:255],
                url=item.url,
                mime_type=guess_mime_type(item.url) or PDF,
            )
        )
    await session.commit()
    for source in sources:
        await workflow.send(SOURCE_INGEST, _ingest_payload(source, user_id))
    return sources


@router.patch("/{source_id}", response_model=SourceRead, summary="Rename a source")
async def rename_source_route(
    source_id: uuid.UUID,
    payload: SourceUpdate,
    notebook: Notebook = Depends(deps.get_owned_notebook),
    session: AsyncSession = Depends(deps.get_db),
):
    try:
        source = await rename_source(session, notebook.id, source_id, payload.title)
    except SourceNotFoundError:
        raise HTTPException(status_code=404, detail="Source not found")
    await session.commit()
    return source


@router.delete("/{source_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete a source and its chunks")
async def delete_source_route(
    source_id: uuid.UUID,
    notebook: Notebook = Depends(deps.get_owned_notebook),
    session: AsyncSession = Depends(deps.get_db),
    user_id: str = Depends(deps.get_current_user),
    workflow: WorkflowEngine = Depends(deps.get_workflow),
):
    try:
        await delete_source(session, notebook.id, source_id)
    except SourceNotFoundError:
        raise HTTPException(status_code=404, detail="Source not found")
    await session.commit()
    await workflow.send(
        SOURCE_DELETE_VECTORS,
        {"sourceId": str(source_id), "notebookId": str(notebook.id), "userId": user_id},
    )
    return None
