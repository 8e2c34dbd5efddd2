"""Persistence layer helpers for the run store."""

from .action import ActionRepository
from .base import BaseRepository
from .run import RunRepository

__all__ = ["ActionRepository", "BaseRepository", "RunRepository"]
