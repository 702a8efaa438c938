from typing import Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException

from quire.api import deps
from quire.core.config import Settings, get_settings
from quire.core.errors import DiscoveryUnavailable
from quire.models.notebook import Notebook
from quire.schemas.discover import DiscoverRequest, DiscoverResponse
from quire.services.discover import discover_sources

router = APIRouter(prefix="/notebooks/{notebook_id}/discover", tags=["discover"])


@router.post("", response_model=DiscoverResponse, summary="Search the web for candidate PDF sources")
async def discover_route(
    payload: DiscoverRequest,
    notebook: Notebook = Depends(deps.get_owned_notebook),
    settings: Settings = Depends(get_settings),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(deps.get_http_transport),
):
    try:
        sources = await discover_sources(settings, payload.interest, transport=transport)
    except DiscoveryUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    return DiscoverResponse(sources=sources)
