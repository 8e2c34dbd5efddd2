"""API endpoints for queue statistics and maintenance."""

from __future__ import annotations

import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends, status

from agent_queue.routers.dependencies import (
    get_queue_manager,
    queue_error_to_http,
    require_api_key,
)
from agent_queue.schemas.queue import (
    CleanQueueRequest,
    CleanQueueResponse,
    JobProgressResponse,
    QueueStatsResponse,
)
from agent_queue.services.queue.models import QueueError
from agent_queue.services.queue.service import QueueManager

router = APIRouter(prefix="/queues", tags=["Queues"], dependencies=[Depends(require_api_key)])
logger = logging.getLogger(__name__)


@router.get("", response_model=list[QueueStatsResponse])
async def list_queues(
    manager: QueueManager = Depends(get_queue_manager),
) -> list[QueueStatsResponse]:
    """Return job counts for every queue."""
    try:
        stats = await manager.get_all_queue_stats()
    except QueueError as e:
        raise queue_error_to_http(e) from e
    return [QueueStatsResponse(queue=name, **asdict(counts)) for name, counts in stats.items()]


@router.get("/{name}/stats", response_model=QueueStatsResponse)
async def get_queue_stats(
    name: str,
    manager: QueueManager = Depends(get_queue_manager),
) -> QueueStatsResponse:
    try:
        stats = await manager.get_queue_stats(name)
    except QueueError as e:
        raise queue_error_to_http(e) from e
    return QueueStatsResponse(queue=name, **asdict(stats))


@router.get("/{name}/jobs/{job_id}/progress", response_model=JobProgressResponse)
async def get_job_progress(
    name: str,
    job_id: str,
    manager: QueueManager = Depends(get_queue_manager),
) -> JobProgressResponse:
    try:
        progress = await manager.get_job_progress(name, job_id)
    except QueueError as e:
        raise queue_error_to_http(e) from e
    return JobProgressResponse(queue=name, job_id=job_id, progress=progress)


@router.post("/{name}/pause", status_code=status.HTTP_204_NO_CONTENT)
async def pause_queue(
    name: str,
    manager: QueueManager = Depends(get_queue_manager),
) -> None:
    """Stop dispatching new jobs; active jobs keep running."""
    try:
        await manager.pause_queue(name)
    except QueueError as e:
        raise queue_error_to_http(e) from e
    logger.info("Queue %s paused via API", name)


@router.post("/{name}/resume", status_code=status.HTTP_204_NO_CONTENT)
async def resume_queue(
    name: str,
    manager: QueueManager = Depends(get_queue_manager),
) -> None:
    try:
        await manager.resume_queue(name)
    except QueueError as e:
        raise queue_error_to_http(e) from e
    logger.info("Queue %s resumed via API", name)


@router.post("/{name}/clean", response_model=CleanQueueResponse)
async def clean_queue(
    name: str,
    payload: CleanQueueRequest | None = None,
    manager: QueueManager = Depends(get_queue_manager),
) -> CleanQueueResponse:
    """Prune completed and failed history older than the threshold."""
    payload = payload or CleanQueueRequest()
    try:
        removed = await manager.clean_queue(name, older_than_ms=payload.older_than_ms)
    except QueueError as e:
        raise queue_error_to_http(e) from e
    return CleanQueueResponse(queue=name, **removed)
