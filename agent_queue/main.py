import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from agent_queue.core.config import get_settings
from agent_queue.db.session import dispose_engine
from agent_queue.routers import actions, health, queues
from agent_queue.services.queue.service import create_queue_manager


logger = logging.getLogger(__name__)
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Enqueue-only: workers run in the agentq-worker process
    app.state.queue_manager = await create_queue_manager(settings)
    logger.info("Queue manager ready for %s", ", ".join(app.state.queue_manager.queue_names))
    try:
        yield
    finally:
        await app.state.queue_manager.shutdown()
        app.state.queue_manager = None
        await dispose_engine()


app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)

app.include_router(health.router)
app.include_router(actions.router)
app.include_router(queues.router)
