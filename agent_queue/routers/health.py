from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from agent_queue.core.config import get_settings
from agent_queue.routers.dependencies import get_queue_manager
from agent_queue.services.queue.service import QueueManager


router = APIRouter(tags=["Health"])


@router.get("/health")
async def read_health(manager: QueueManager = Depends(get_queue_manager)):
    """Readiness probe: reports whether the broker answers."""
    settings = get_settings()
    broker_ok = await manager.health_check()
    body = {
        "status": "ok" if broker_ok else "degraded",
        "service": settings.app_name,
        "version": settings.app_version,
        "broker": "ok" if broker_ok else "unreachable",
    }
    if not broker_ok:
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body)
    return body
