"""Shared FastAPI dependencies for the operations API."""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader

from agent_queue.core.config import Settings, get_settings
from agent_queue.core.security import verify_api_key
from agent_queue.services.queue.models import QueueError, QueueNotFoundError, RunStoreError
from agent_queue.services.queue.service import QueueManager

_api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def require_api_key(
    api_key: str | None = Security(_api_key_header),
    settings: Settings = Depends(get_settings),
) -> None:
    """Reject requests without the configured operations API key."""
    if not settings.api_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Operations API is disabled",
        )
    if not verify_api_key(api_key, settings.api_key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )


def get_queue_manager(request: Request) -> QueueManager:
    """Return the manager created by the application lifespan."""
    manager = getattr(request.app.state, "queue_manager", None)
    if manager is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Queue manager is not available",
        )
    return manager


def queue_error_to_http(exc: QueueError) -> HTTPException:
    """Map a queue error to the HTTP error returned to callers."""
    if isinstance(exc, QueueNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message)
    if isinstance(exc, RunStoreError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.message)
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=exc.message)
