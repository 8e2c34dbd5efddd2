"""Database models package."""

from .action import ActionStatus, AgentAction
from .run import AgentRun, RunStatus

__all__ = ["ActionStatus", "AgentAction", "AgentRun", "RunStatus"]
