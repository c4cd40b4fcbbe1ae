"""Database layer: declarative base, session factory and batched operations."""
from catalog_sync.db.base import (
    Base,
    TimestampMixin,
    UUIDMixin,
    async_session_maker,
    engine,
    enum_values,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDMixin",
    "async_session_maker",
    "engine",
    "enum_values",
]
