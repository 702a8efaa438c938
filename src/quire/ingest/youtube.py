"""YouTube extraction: captions through youtube-transcript-api, title through oEmbed."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Callable, Optional, Sequence

import httpx
from youtube_transcript_api import YouTubeTranscriptApi, CouldNotRetrieveTranscript

from quire.core.errors import TranscriptUnavailable
from quire.ingest.base import Document, Extraction

logger = logging.getLogger("quire.ingest.youtube")

TRANSCRIPT_LANGUAGES = ("en",)
OEMBED_URL = "https://www.youtube.com/oembed"

YOUTUBE_URL = re.compile(
    r"^(?:https?://)?(?:www\.|m\.)?(?:youtube\.com/(?:watch\?(?:.*&)?v=|embed/|shorts/|live/)|youtu\.be/)"
    r"(?P<id>[A-Za-z0-9_-]{11})"
)

TranscriptFetcher = Callable[[str, Sequence[str]], list[dict[str, Any]]]


def video_id(url: str) -> Optional[str]:
    match = YOUTUBE_URL.match(url.strip())
    return match.group("id") if match else None


def youtube_title(url: str) -> str:
    """Placeholder title used until the video metadata has been read."""
    return f"YouTube: {url}"


def fetch_transcript(vid: str, languages: Sequence[str]) -> list[dict[str, Any]]:
    """Blocking fetch of caption snippets ``{text, start, duration}``."""
    return YouTubeTranscriptApi().fetch(vid, languages=list(languages)).to_raw_data()


async def fetch_title(url: str, client: httpx.AsyncClient) -> Optional[str]:
    try:
        resp = await client.get(OEMBED_URL, params={"url": url, "format": "json"})
        resp.raise_for_status()
        title = resp.json().get("title")
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("ingest.youtube.title_unavailable", extra={"url": url, "error": repr(exc)})
        return None
    return title.strip()[:255] if isinstance(title, str) and title.strip() else None


async def extract_youtube(
    url: str,
    *,
    source_id,
    client: httpx.AsyncClient,
    fetcher: TranscriptFetcher = fetch_transcript,
) -> Extraction:
    vid = video_id(url)
    if vid is None:
        raise ValueError(f"not a YouTube video URL: {url}")
    try:
        snippets = await asyncio.to_thread(fetcher, vid, TRANSCRIPT_LANGUAGES)
    except CouldNotRetrieveTranscript as exc:
        raise TranscriptUnavailable(source_id, vid) from exc
    text = " ".join(" ".join(str(s.get("text", "")).split()) for s in snippets).strip()
    if not text:
        raise TranscriptUnavailable(source_id, vid)
    title = await fetch_title(url, client)
    document = Document(text=text, metadata={"videoId": vid, "language": TRANSCRIPT_LANGUAGES[0]})
    return Extraction(documents=[document], title=title)
