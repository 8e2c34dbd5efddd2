"""Worker process entry point for the agent job queues."""

import asyncio
import logging
import signal
import sys

from agent_queue.core.config import get_settings
from agent_queue.db.session import dispose_engine
from agent_queue.services.queue.executors import build_executor_registry
from agent_queue.services.queue.service import create_queue_manager

logger = logging.getLogger(__name__)


async def run_worker() -> None:
    """Run every category worker until SIGINT or SIGTERM.

    Signal handlers are owned here rather than by the manager or its workers.
    """
    settings = get_settings()
    manager = await create_queue_manager(settings, build_executor_registry(settings))

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stop.set)

    try:
        await manager.start_workers()
        logger.info("Consuming queues: %s", ", ".join(manager.queue_names))
        await stop.wait()
        logger.info("Shutdown signal received, stopping workers...")
    finally:
        await manager.shutdown()
        await dispose_engine()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(signum)
        logger.info("Worker stopped")


def main() -> None:
    """Entry point for running the worker from command line.

    Usage:
        agentq-worker
        python -m agent_queue.services.queue.worker
    """
    logging.basicConfig(
        level=get_settings().log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    logger.info("Initializing agent queue worker")

    try:
        asyncio.run(run_worker())
    except KeyboardInterrupt:
        logger.info("Worker interrupted")
        sys.exit(0)
    except Exception as e:
        logger.error("Worker failed: %s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
