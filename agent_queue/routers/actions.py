"""API endpoint for submitting agent actions."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, status

from agent_queue.routers.dependencies import (
    get_queue_manager,
    queue_error_to_http,
    require_api_key,
)
from agent_queue.schemas.queue import QueueActionRequest, QueueActionResponse
from agent_queue.services.queue.models import QueueError
from agent_queue.services.queue.service import QueueManager

router = APIRouter(
    prefix="/actions", tags=["Actions"], dependencies=[Depends(require_api_key)]
)
logger = logging.getLogger(__name__)


@router.post(
    "/{action_id}/queue",
    response_model=QueueActionResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def queue_action(
    action_id: str,
    payload: QueueActionRequest,
    manager: QueueManager = Depends(get_queue_manager),
) -> QueueActionResponse:
    """Submit an action for background execution.

    Raises:
        404: Unknown category
        502: Run could not be recorded
        503: Broker unavailable
    """
    try:
        job_id = await manager.queue_action(
            action_id,
            payload.user_token,
            payload.action_type,
            payload.payload,
            payload.policy,
            payload.to_options(),
            category=payload.category,
        )
    except QueueError as e:
        logger.warning("Could not queue action %s: %s", action_id, e.message)
        raise queue_error_to_http(e) from e

    return QueueActionResponse(action_id=action_id, job_id=job_id)
