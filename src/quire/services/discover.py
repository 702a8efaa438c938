"""Candidate PDF discovery through the Brave web search API.

Results are suggestions only; accepted URLs re-enter ingestion as ordinary
file sources.
"""
from __future__ import annotations

import logging
import uuid
from typing import Any, Optional

import httpx

from quire.core.config import Settings
from quire.core.errors import DiscoveryUnavailable

logger = logging.getLogger("quire.discover")

RESULT_COUNT = 10


def _candidate(result: dict[str, Any]) -> Optional[dict[str, str]]:
    url = result.get("url") or ""
    meta_url = result.get("meta_url") or {}
    if result.get("content_type") != "pdf" or meta_url.get("scheme") != "https":
        return None
    return {
        "id": str(result.get("id") or uuid.uuid5(uuid.NAMESPACE_URL, url)),
        "title": result.get("title") or url,
        "url": url,
        "description": result.get("description") or "",
    }


async def discover_sources(
    settings: Settings,
    interest: str,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> list[dict[str, str]]:
    if not settings.brave_api_key:
        raise DiscoveryUnavailable("web search is not configured (BRAVE_API_KEY missing)")
    params = {"q": f"{interest.strip().lower()} filetype:pdf", "count": str(RESULT_COUNT)}
    headers = {
        "Accept": "application/json",
        "x-subscription-token": settings.brave_api_key.get_secret_value(),
    }
    try:
        async with httpx.AsyncClient(timeout=httpx.Timeout(15.0), transport=transport) as client:
            resp = await client.get(settings.brave_search_url, params=params, headers=headers)
            resp.raise_for_status()
            payload = resp.json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("discover.search.failed", extra={"error": repr(exc)})
        raise DiscoveryUnavailable(f"web search failed: {exc}") from exc
    results = ((payload.get("web") or {}).get("results")) or []
    candidates = [c for c in (_candidate(r) for r in results if isinstance(r, dict)) if c]
    logger.info("discover.search", extra={"interest": interest, "results": len(results), "candidates": len(candidates)})
    return candidates


__all__ = ["discover_sources", "RESULT_COUNT"]
