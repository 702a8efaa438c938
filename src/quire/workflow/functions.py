"""Background workflow functions.

Every step output is JSON so it can live in the step ledger; ids travel as
strings. Steps that write state are safe to replay: status moves go through
the compare-and-set tracker, chunk writes replace the source's previous
chunks, and uploads use paths fixed by earlier recorded steps.
"""

from __future__ import annotations

import json
import logging
import re
import time
import uuid
from typing import Any

from quire.core.chunking import Chunk, split_documents
from quire.core.errors import GenerationFailed
from quire.core.vectors import MetadataFilter
from quire.ingest.base import Extraction, SourceDescriptor
from quire.models.note import NoteStatus, NoteType
from quire.models.notebook import AudioStatus
from quire.models.source import SourceStatus, SourceType
from quire.repositories import job as job_repo
from quire.repositories import note as note_repo
from quire.repositories import notebook as notebook_repo
from quire.repositories import source as source_repo
from quire.services import generation
from quire.services.source import fail_source, transition_status
from quire.workflow.engine import FunctionRegistry, StepContext
from quire.workflow.runtime import Runtime

logger = logging.getLogger("quire.workflow.functions")

SOURCE_INGEST = "source/ingest"
SOURCE_DELETE_VECTORS = "source/delete-vectors"
NOTEBOOK_DELETE_VECTORS = "notebook/delete-vectors"
NOTE_GENERATE = "note/generate"
NOTEBOOK_PODCAST = "notebook/podcast"

registry = FunctionRegistry()


def _slug(title: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")[:60] or "podcast"


async def _ready_source_ids(runtime: Runtime, notebook_id: uuid.UUID, source_ids: list[str]) -> list[str]:
    async with runtime.session_factory() as session:
        ready = await source_repo.list_ids_with_status(
            session, notebook_id, [uuid.UUID(s) for s in source_ids], SourceStatus.COMPLETED
        )
    return [str(s) for s in ready]


# ---------------------------------------------------------------------------
# Source ingestion
# ---------------------------------------------------------------------------


async def _on_ingest_failure(runtime: Runtime, data: dict[str, Any], exc: BaseException) -> None:
    source_id = uuid.UUID(data["sourceId"])
    async with runtime.session_factory() as session:
        await fail_source(session, source_id, str(exc) or exc.__class__.__name__)
        await session.commit()
    # a failed source never keeps chunks from a partial write
    await runtime.vector_index.delete(MetadataFilter.for_source(data["notebookId"], data["userId"], source_id))


@registry.function("ingest-source", event=SOURCE_INGEST, on_failure=_on_ingest_failure)
async def ingest_source(ctx: StepContext, data: dict[str, Any]) -> dict[str, Any]:
    rt = ctx.runtime
    source_id = uuid.UUID(data["sourceId"])
    scope = MetadataFilter.for_source(data["notebookId"], data["userId"], source_id)

    async def mark_processing() -> bool:
        async with rt.session_factory() as session:
            source = await transition_status(session, source_id, SourceStatus.PROCESSING)
            await session.commit()
        return source is not None

    if not await ctx.run("mark-processing", mark_processing):
        logger.info("ingest.source.gone", extra={"source_id": source_id})
        await ctx.discard()
        return {"status": None}

    async def extract() -> dict[str, Any]:
        descriptor = SourceDescriptor(
            source_id=source_id,
            type=SourceType(data["type"]),
            url=data.get("url") or "",
            text=data.get("text"),
            mime_type=data.get("mimeType"),
        )
        extraction = await rt.extractor.extract(descriptor)
        return extraction.to_dict()

    extraction = Extraction.from_dict(await ctx.run("extract", extract))

    async def split() -> list[dict[str, Any]]:
        chunks = split_documents(
            extraction.documents,
            source_id=source_id,
            user_id=data["userId"],
            notebook_id=data["notebookId"],
        )
        return [{"text": c.text, "metadata": c.metadata} for c in chunks]

    chunk_rows = await ctx.run("split", split)

    async def embed_and_upsert() -> int:
        await rt.vector_index.delete(scope)
        return await rt.vector_index.upsert([Chunk(text=r["text"], metadata=r["metadata"]) for r in chunk_rows])

    written = await ctx.run("embed-and-upsert", embed_and_upsert)

    async def mark_completed() -> dict[str, Any]:
        async with rt.session_factory() as session:
            source = await transition_status(session, source_id, SourceStatus.COMPLETED, title=extraction.title)
            await session.commit()
        if source is None:
            removed = await rt.vector_index.delete(scope)
            logger.info("ingest.source.deleted_during_ingest", extra={"source_id": source_id, "removed": removed})
            return {"status": None}
        return {"status": source.status.value, "title": source.title}

    result = await ctx.run("mark-completed", mark_completed)
    logger.info("ingest.source.done", extra={"source_id": source_id, "chunks": written, "status": result["status"]})
    if result["status"] is None:
        # the source was deleted mid-ingest; its content must not outlive it in the ledger
        await ctx.discard()
    return result


# ---------------------------------------------------------------------------
# Vector cleanup
# ---------------------------------------------------------------------------


async def _forget_jobs(ctx: StepContext, key: str, value: str) -> None:
    """Drop the ledger of every earlier job about a deleted row.

    Step outputs and payloads hold extracted text, so a deleted source's
    content would otherwise outlive its chunks.
    """

    async def purge_jobs() -> int:
        async with ctx.runtime.session_factory() as session:
            purged = await job_repo.purge_for(session, key=key, value=value, keep=ctx.job_id)
            await session.commit()
        return purged

    purged = await ctx.run("purge-jobs", purge_jobs)
    logger.info("workflow.jobs.purged", extra={key: value, "jobs": purged})
    await ctx.discard()


@registry.function("delete-source-vectors", event=SOURCE_DELETE_VECTORS)
async def delete_source_vectors(ctx: StepContext, data: dict[str, Any]) -> int:
    flt = MetadataFilter.for_source(data["notebookId"], data["userId"], data["sourceId"])
    removed = await ctx.run("delete-vectors", lambda: ctx.runtime.vector_index.delete(flt))
    await _forget_jobs(ctx, "sourceId", data["sourceId"])
    return removed


@registry.function("delete-notebook-vectors", event=NOTEBOOK_DELETE_VECTORS)
async def delete_notebook_vectors(ctx: StepContext, data: dict[str, Any]) -> int:
    flt = MetadataFilter.for_notebook(data["notebookId"], data["userId"])
    removed = await ctx.run("delete-vectors", lambda: ctx.runtime.vector_index.delete(flt))
    await _forget_jobs(ctx, "notebookId", data["notebookId"])
    return removed


# ---------------------------------------------------------------------------
# Notes and mind maps
# ---------------------------------------------------------------------------


async def _on_note_failure(runtime: Runtime, data: dict[str, Any], exc: BaseException) -> None:
    async with runtime.session_factory() as session:
        await note_repo.finalize(
            session,
            uuid.UUID(data["noteId"]),
            status=NoteStatus.FAILED,
            error=str(exc) or exc.__class__.__name__,
        )
        await session.commit()


@registry.function("generate-note", event=NOTE_GENERATE, on_failure=_on_note_failure)
async def generate_note(ctx: StepContext, data: dict[str, Any]) -> None:
    rt = ctx.runtime
    note_id = uuid.UUID(data["noteId"])
    instruction = data.get("note") or ""

    if NoteType(data.get("type", NoteType.TEXT.value)) == NoteType.MIND_MAP:

        async def assemble_context() -> str:
            ready = await _ready_source_ids(rt, uuid.UUID(data["notebookId"]), data.get("sourceIds") or [])
            if not ready:
                raise GenerationFailed("none of the selected sources has finished processing")
            return await rt.assembler.build_bulk_context(data["notebookId"], data["userId"], ready)

        context = await ctx.run("assemble-context", assemble_context)
        mind_map = await ctx.run("generate-mind-map", lambda: generation.generate_mind_map(rt.llm, instruction, context))
        title, content = mind_map["title"], json.dumps(mind_map["graph"])
    else:
        title = await ctx.run("generate-title", lambda: generation.generate_note_title(rt.llm, instruction))
        content = await ctx.run("generate-content", lambda: generation.generate_note_content(rt.llm, instruction))

    async def finalize_note() -> bool:
        async with rt.session_factory() as session:
            updated = await note_repo.finalize(
                session, note_id, status=NoteStatus.COMPLETED, title=title, content=content
            )
            await session.commit()
        return updated

    if not await ctx.run("finalize-note", finalize_note):
        logger.info("notes.generate.note_gone", extra={"note_id": note_id})


# ---------------------------------------------------------------------------
# Audio overview (podcast)
# ---------------------------------------------------------------------------


async def _on_podcast_failure(runtime: Runtime, data: dict[str, Any], exc: BaseException) -> None:
    async with runtime.session_factory() as session:
        await notebook_repo.update_audio(session, uuid.UUID(data["notebookId"]), status=AudioStatus.FAILED)
        await session.commit()


@registry.function("generate-podcast", event=NOTEBOOK_PODCAST, on_failure=_on_podcast_failure)
async def generate_podcast(ctx: StepContext, data: dict[str, Any]) -> dict[str, Any] | None:
    rt = ctx.runtime
    notebook_id = uuid.UUID(data["notebookId"])
    voices = list(rt.settings.podcast_voices)

    async def mark_processing() -> bool:
        async with rt.session_factory() as session:
            notebook = await notebook_repo.update_audio(session, notebook_id, status=AudioStatus.PROCESSING)
            await session.commit()
        return notebook is not None

    if not await ctx.run("mark-processing", mark_processing):
        return None

    async def assemble_context() -> str:
        ready = await _ready_source_ids(rt, notebook_id, data.get("sourceIds") or [])
        if not ready:
            raise GenerationFailed("none of the selected sources has finished processing")
        context = await rt.assembler.build_bulk_context(notebook_id, data["userId"], ready)
        if not context.strip():
            raise GenerationFailed("selected sources have no indexed content")
        return context

    context = await ctx.run("assemble-context", assemble_context)

    async def generate_script() -> dict[str, Any]:
        script = await generation.generate_podcast_script(rt.llm, context, voices)
        # fixes the upload paths for every later step
        script["stamp"] = int(time.time() * 1000)
        return script

    script = await ctx.run("generate-script", generate_script)
    base = f"uploads/{_slug(script['title'])}_{script['stamp']}"

    segment_urls = []
    for idx, segment in enumerate(script["segments"]):

        async def synthesize(segment=segment, idx=idx) -> str:
            audio = await rt.speech.synthesize(segment["content"], segment["voice"])
            return await rt.storage.put(f"{base}_segment{idx}.mp3", audio, "audio/mpeg")

        segment_urls.append(await ctx.run(f"synthesize-segment-{idx}", synthesize))

    async def merge_audio() -> str:
        # MP3 streams are frame sequences, so byte concatenation is a valid file
        parts = [await rt.storage.read(url) for url in segment_urls]
        return await rt.storage.put(f"{base}.mp3", b"".join(parts), "audio/mpeg")

    audio_url = await ctx.run("merge-audio", merge_audio)

    async def finalize_audio() -> bool:
        async with rt.session_factory() as session:
            notebook = await notebook_repo.update_audio(
                session, notebook_id, status=AudioStatus.COMPLETED, url=audio_url, title=script["title"]
            )
            await session.commit()
        return notebook is not None

    await ctx.run("finalize-audio", finalize_audio)
    logger.info("podcast.done", extra={"notebook_id": notebook_id, "segments": len(segment_urls), "url": audio_url})
    return {"url": audio_url, "title": script["title"]}


__all__ = [
    "registry",
    "SOURCE_INGEST",
    "SOURCE_DELETE_VECTORS",
    "NOTEBOOK_DELETE_VECTORS",
    "NOTE_GENERATE",
    "NOTEBOOK_PODCAST",
]
