"""Database session management for MCP Fleet."""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from mcp_fleet.config import Settings, get_settings
from mcp_fleet.models.base import Base
from mcp_fleet.utils import get_logger

logger = get_logger(__name__)


def database_url(state_db: str) -> str:
    """Convert a state_db setting (path or sqlite URL) to an aiosqlite URL."""
    if state_db.startswith("sqlite+aiosqlite"):
        return state_db
    if state_db.startswith("sqlite"):
        return state_db.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return f"sqlite+aiosqlite:///{state_db}"


class DatabaseManager:
    """Manages the state database holding the fleet snapshot and layout."""

    def __init__(self, settings: Settings | None = None) -> None:
        """Initialize database manager."""
        self._engine: AsyncEngine | None = None
        self._session_maker: async_sessionmaker[AsyncSession] | None = None
        self.settings = settings or get_settings()

    def get_engine(self) -> AsyncEngine:
        """
        Get or create async database engine.

        Returns:
            AsyncEngine instance
        """
        if self._engine is None:
            db_path = self.settings.state_db
            if not db_path.startswith("sqlite") and db_path != ":memory:":
                Path(db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)

            db_url = database_url(db_path)
            self._engine = create_async_engine(db_url, echo=False)
            logger.info("Database engine created", extra={"db_url": db_url})

        return self._engine

    def get_session_maker(self) -> async_sessionmaker[AsyncSession]:
        """
        Get or create session maker.

        Returns:
            async_sessionmaker instance
        """
        if self._session_maker is None:
            self._session_maker = async_sessionmaker(
                self.get_engine(),
                class_=AsyncSession,
                expire_on_commit=False,
            )

        return self._session_maker

    async def create_tables(self) -> None:
        """Create all database tables."""
        engine = self.get_engine()
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created")

    async def close(self) -> None:
        """Close database engine."""
        if self._engine:
            await self._engine.dispose()
            self._engine = None
            self._session_maker = None
            logger.info("Database engine closed")

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Get an async database session committing on success.

        Yields:
            AsyncSession instance
        """
        session_maker = self.get_session_maker()
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
