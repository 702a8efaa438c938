"""Website extraction: fetch a page and keep its principal text."""

from __future__ import annotations

from typing import Optional
from urllib.parse import urlparse

import httpx
from bs4 import BeautifulSoup

from quire.ingest.base import Document, Extraction

_NOISE_TAGS = ["script", "style", "noscript", "template", "svg", "nav", "footer", "header", "aside", "form"]
_ALLOWED_CONTENT_TYPES = ("text/html", "application/xhtml+xml", "text/plain")


def website_title(url: str) -> str:
    """Placeholder title used until the page itself has been read."""
    return f"Website: {urlparse(url).hostname or url}"


def parse_html(html: str) -> tuple[Optional[str], str]:
    """Return ``(page title, principal text)`` for an HTML document."""
    soup = BeautifulSoup(html, "html.parser")
    title = None
    if soup.title and soup.title.string and soup.title.string.strip():
        title = " ".join(soup.title.string.split())
    for tag in soup(_NOISE_TAGS):
        tag.decompose()
    root = soup.find("main") or soup.find("article") or soup.body or soup
    lines = [line.strip() for line in root.get_text("\n").splitlines()]
    text = "\n".join(line for line in lines if line)
    return title, text


async def extract_website(url: str, client: httpx.AsyncClient) -> Extraction:
    """Raises ``httpx`` errors as-is; the caller classifies them."""
    resp = await client.get(url, follow_redirects=True)
    resp.raise_for_status()
    content_type = resp.headers.get("content-type", "text/html").split(";", 1)[0].strip().lower()
    if content_type not in _ALLOWED_CONTENT_TYPES:
        raise ValueError(f"unexpected content type {content_type!r} for a website source")
    if content_type == "text/plain":
        title, text = None, resp.text
    else:
        title, text = parse_html(resp.text)
    documents = [Document(text=text, metadata={"url": str(resp.url)})] if text.strip() else []
    return Extraction(documents=documents, title=title[:255] if title else None)
