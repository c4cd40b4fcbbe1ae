"""Declarative base, column mixins and the shared async session factory."""
import uuid
from datetime import datetime
from enum import Enum
from typing import List, Type

from sqlalchemy import DateTime, func
from sqlalchemy.ext.asyncio import AsyncAttrs, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from catalog_sync.config import settings


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for catalog sync ORM models."""


class UUIDMixin:
    """UUID primary key generated client-side, with a server default for raw inserts."""
    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid(),
    )


class TimestampMixin:
    """Timezone-aware created_at / updated_at columns."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


def enum_values(enum_cls: Type[Enum]) -> List[str]:
    """Persist enum values (not member names) in SQL enum columns."""
    return [member.value for member in enum_cls]


engine = create_async_engine(
    settings.database_url,
    echo=settings.db_echo,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_recycle=1800,
    pool_pre_ping=True,
)

# Every service and executor opens its own short-lived session from here
async_session_maker = async_sessionmaker(engine, expire_on_commit=False)
