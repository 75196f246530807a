"""
Database Connection Module
Wraps the SQLAlchemy async engine and session factory in an explicitly
constructed object so the application and the tests own its lifecycle.
"""

import logging
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)


# Base class for all our models
class Base(DeclarativeBase):
    pass


class Database:
    """Async engine plus session factory."""

    def __init__(self, url: str, echo: bool = False, **engine_kwargs: Any):
        self.url = url
        self.engine = create_async_engine(url, echo=echo, **engine_kwargs)
        self.session_maker = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False  # Objects remain accessible after commit
        )

    @classmethod
    def from_settings(cls, settings) -> "Database":
        kwargs: dict[str, Any] = {}
        if not settings.is_sqlite:
            kwargs["pool_size"] = settings.database_pool_size
            kwargs["max_overflow"] = settings.database_max_overflow
            kwargs["pool_pre_ping"] = True
        return cls(settings.database_url, echo=settings.database_echo, **kwargs)

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    def session(self) -> AsyncSession:
        return self.session_maker()

    async def init(self) -> None:
        """
        Create all tables in database.
        Called once at application startup.
        """
        # Register the mapped classes on Base.metadata
        import orderbot.models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("✅ Database tables verified/created")

    async def ping(self) -> None:
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def dispose(self) -> None:
        await self.engine.dispose()
