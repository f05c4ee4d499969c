"""Async engine, session factory, and the declarative base."""

import enum
from collections.abc import AsyncGenerator

from sqlalchemy import Enum
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from ehrsync.config import settings


class Base(DeclarativeBase):
    # Enum columns are plain VARCHARs holding the member name, so adding a
    # member never needs an ALTER TYPE migration.
    type_annotation_map = {
        enum.Enum: Enum(enum.Enum, native_enum=False, length=32),
    }


engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DB_ECHO,
    pool_pre_ping=True,
)

# Sessions outlive individual commits during a sync batch, so keep loaded
# attributes usable after commit instead of lazy-reloading them.
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request, committed on success."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
