"""Database helpers and base objects."""

from .base import Base, metadata
from .session import dispose_engine, get_engine, get_session_factory

__all__ = [
    "Base",
    "dispose_engine",
    "get_engine",
    "get_session_factory",
    "metadata",
]
