"""Content extraction entry point.

``ContentExtractor.extract`` is read-only with respect to persisted state: it
only performs network/storage reads. Failures surface as
:class:`ExtractionFailed`, flagged transient for network errors and timeouts
so the workflow engine retries them.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

import httpx

from quire.core.errors import ExtractionFailed, QuireError, UnsupportedContentType
from quire.core.storage import ObjectStorage, HTTP_TIMEOUT
from quire.ingest.base import Document, Extraction, SourceDescriptor
from quire.ingest.loaders import load_file
from quire.ingest.web import extract_website
from quire.ingest.youtube import TranscriptFetcher, extract_youtube, fetch_transcript
from quire.models.source import SourceType

logger = logging.getLogger("quire.ingest")

TEXT_TITLE_LENGTH = 50


def text_title(text: str) -> str:
    """Title for a pasted-text source: the first 50 characters, with an ellipsis when cut."""
    flat = " ".join(text.split())
    return flat if len(flat) <= TEXT_TITLE_LENGTH else flat[:TEXT_TITLE_LENGTH] + "..."


class ContentExtractor:
    def __init__(
        self,
        storage: ObjectStorage,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        transcript_fetcher: TranscriptFetcher = fetch_transcript,
    ):
        self.storage = storage
        self.transport = transport
        self.transcript_fetcher = transcript_fetcher

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=HTTP_TIMEOUT,
            transport=self.transport,
            headers={"User-Agent": "quire/0.1 (+source ingestion)"},
        )

    async def _extract_file(self, descriptor: SourceDescriptor) -> Extraction:
        data = await self.storage.read(descriptor.url)
        mime_type, documents = load_file(data, descriptor.mime_type, descriptor.url)
        for document in documents:
            document.metadata.setdefault("mimeType", mime_type)
        return Extraction(documents=documents)

    async def _dispatch(self, descriptor: SourceDescriptor) -> Extraction:
        if descriptor.type == SourceType.TEXT:
            text = descriptor.text or ""
            return Extraction(documents=[Document(text=text)] if text.strip() else [], title=text_title(text))
        if descriptor.type == SourceType.FILE:
            return await self._extract_file(descriptor)
        async with self._client() as client:
            if descriptor.type == SourceType.WEBSITE:
                return await extract_website(descriptor.url, client)
            if descriptor.type == SourceType.YOUTUBE:
                return await extract_youtube(
                    descriptor.url,
                    source_id=descriptor.source_id,
                    client=client,
                    fetcher=self.transcript_fetcher,
                )
        raise UnsupportedContentType(str(descriptor.type))

    async def extract(self, descriptor: SourceDescriptor) -> Extraction:
        start = time.perf_counter()
        logger.info(
            "ingest.extract.start",
            extra={"source_id": descriptor.source_id, "type": descriptor.type.value, "url": descriptor.url},
        )
        try:
            extraction = await self._dispatch(descriptor)
        except QuireError:
            raise
        except (httpx.TransportError, TimeoutError, asyncio.TimeoutError) as exc:
            raise ExtractionFailed(descriptor.source_id, exc, transient=True) from exc
        except Exception as exc:
            # HTTP error statuses and parser errors of every loader library
            raise ExtractionFailed(descriptor.source_id, exc) from exc
        if not any(d.text.strip() for d in extraction.documents):
            raise ExtractionFailed(descriptor.source_id, "no extractable text")
        logger.info(
            "ingest.extract.finish",
            extra={
                "source_id": descriptor.source_id,
                "documents": len(extraction.documents),
                "chars": sum(len(d.text) for d in extraction.documents),
                "duration_ms": round((time.perf_counter() - start) * 1000, 2),
            },
        )
        return extraction
