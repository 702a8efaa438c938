"""Centralized FastAPI dependency definitions for the API layer.

Routers should import dependencies from here instead of directly from
their underlying implementation modules. This provides:

* A stable import surface (refactors in lower layers don't ripple up)
* Easier test overrides via ``app.dependency_overrides[deps.get_db]``
* One place where ownership of a notebook is checked for every route
  nested under ``/notebooks/{notebook_id}``.
"""
import uuid
from typing import Optional

import httpx
from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from quire.core.auth import get_current_user
from quire.db.session import get_db
from quire.models.notebook import Notebook
from quire.services.notebook import NotebookNotFoundError, get_owned_notebook_or_404
from quire.workflow.engine import WorkflowEngine
from quire.workflow.runtime import Runtime


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


def get_workflow(request: Request) -> WorkflowEngine:
    return request.app.state.workflow


def get_http_transport() -> Optional[httpx.AsyncBaseTransport]:
    """Transport for outbound HTTP from request handlers; None means the network."""
    return None


async def get_owned_notebook(
    notebook_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user),
) -> Notebook:
    # foreign notebooks look exactly like missing ones
    try:
        return await get_owned_notebook_or_404(session, notebook_id, user_id)
    except NotebookNotFoundError:
        raise HTTPException(status_code=404, detail="Notebook not found")


__all__ = [
    "get_db",
    "get_current_user",
    "get_runtime",
    "get_workflow",
    "get_http_transport",
    "get_owned_notebook",
]
