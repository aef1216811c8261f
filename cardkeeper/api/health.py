"""
Health check endpoints.

Provides liveness and readiness probes. Readiness reflects whether the
backend snapshot could be loaded.
"""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel

from cardkeeper.api.dependencies import get_store
from cardkeeper.sync.store import CollectionStore

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    backend: str | None = None
    last_refreshed_at: datetime | None = None


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """
    Liveness probe.

    Returns healthy if the service is running.
    Does not check dependencies.
    """
    return HealthResponse(status="healthy")


@router.get(
    "/ready",
    response_model=HealthResponse,
    responses={503: {"model": HealthResponse}},
)
async def ready(
    response: Response,
    store: Annotated[CollectionStore, Depends(get_store)],
) -> HealthResponse:
    """
    Readiness probe.

    Returns 503 until a reconciliation has succeeded, and again whenever the
    latest one failed.
    """
    reconciler = store.reconciler
    if reconciler.healthy:
        return HealthResponse(
            status="ready",
            backend="connected",
            last_refreshed_at=reconciler.last_refreshed_at,
        )
    response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return HealthResponse(
        status="not ready",
        backend="disconnected",
        last_refreshed_at=reconciler.last_refreshed_at,
    )
