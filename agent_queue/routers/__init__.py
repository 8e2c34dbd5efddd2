from agent_queue.routers import actions, health, queues

__all__ = ["actions", "health", "queues"]
