"""
Async SQLAlchemy engine, session factory and declarative base.

The engine is created by ``create_engine_and_sessionmaker`` during app
startup rather than at import time, so tests and multiple app instances
can each bind their own database.
"""

from datetime import datetime
from typing import Tuple

from sqlalchemy import DateTime, func
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


class TimestampMixin:
    """Adds server-side created_at and updated_at timestamps."""

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


def create_engine_and_sessionmaker(
    database_url: str,
    echo: bool = False,
) -> Tuple[AsyncEngine, async_sessionmaker]:
    """
    Build the async engine and its session factory.

    Connection pool sizing only applies to server databases; SQLite (used
    in tests and local development) runs with SQLAlchemy's default pool.

    Args:
        database_url: SQLAlchemy async URL
        echo: Log SQL statements

    Returns:
        (engine, sessionmaker) tuple
    """
    engine_kwargs = {"echo": echo, "pool_pre_ping": True}
    if not database_url.startswith("sqlite"):
        engine_kwargs.update(pool_size=10, max_overflow=20, pool_recycle=3600)

    engine = create_async_engine(database_url, **engine_kwargs)
    session_factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    return engine, session_factory


async def create_tables(engine: AsyncEngine) -> None:
    """Create all tables that do not exist yet."""
    # models must be imported so their tables are registered on Base.metadata
    from . import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
