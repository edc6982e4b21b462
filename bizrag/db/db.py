"""Database connection management using SQLModel with asyncpg or aiosqlite."""

import ssl
from typing import AsyncGenerator, Optional
from urllib.parse import urlparse, urlunparse

from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from bizrag.config.settings import settings
from bizrag.config.logger import app_logger

_engine: Optional[AsyncEngine] = None
_session_maker: Optional[async_sessionmaker] = None


def get_db_url() -> str:
    """Get database URL for SQLAlchemy with an async driver."""
    db_url = settings.effective_database_url
    if not db_url:
        raise ValueError("DATABASE_URL not configured")
    if db_url.startswith("sqlite"):
        if db_url.startswith("sqlite://"):
            db_url = db_url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return db_url

    # asyncpg handles SSL via connect_args, so sslmode is stripped from the query
    parsed = urlparse(db_url)
    query_parts = [p for p in parsed.query.split("&") if not p.startswith("sslmode=") and p]
    clean_url = urlunparse(
        (
            parsed.scheme,
            parsed.netloc,
            parsed.path,
            parsed.params,
            "&".join(query_parts),
            parsed.fragment,
        )
    )

    if clean_url.startswith("postgresql://"):
        clean_url = clean_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    elif clean_url.startswith("postgres://"):
        clean_url = clean_url.replace("postgres://", "postgresql+asyncpg://", 1)

    return clean_url


async def init_db() -> None:
    """Initialize the database engine and create tables."""
    global _engine, _session_maker

    try:
        db_url = get_db_url()
        app_logger.info("Initializing database connection")

        engine_kwargs: dict = {"echo": False}
        if db_url.startswith("postgresql+asyncpg://"):
            ssl_context = ssl.create_default_context()
            ssl_context.check_hostname = False
            ssl_context.verify_mode = ssl.CERT_NONE
            engine_kwargs.update(pool_size=20, max_overflow=0, connect_args={"ssl": ssl_context})

        _engine = create_async_engine(db_url, **engine_kwargs)
        _session_maker = async_sessionmaker(
            _engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

        # Register tables with SQLModel metadata
        from bizrag.models import conversations, sync_status  # noqa: F401

        async with _engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

        app_logger.info("Database initialized successfully")

    except ValueError:
        app_logger.warning("DATABASE_URL not set; database will not be initialized")
    except Exception as e:
        app_logger.error(f"Failed to initialize database: {e}")
        app_logger.warning("Sync checkpoints will not be persisted until the database is reachable")


async def close_db() -> None:
    """Close the database engine."""
    global _engine, _session_maker

    if _engine:
        await _engine.dispose()
        _engine = None
        _session_maker = None
        app_logger.info("Database connection closed")


def is_initialized() -> bool:
    return _session_maker is not None


@asynccontextmanager
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Async context manager for internal background tasks."""
    if not _session_maker:
        raise RuntimeError("Database not initialized")

    async with _session_maker() as session:
        yield session


async def ping_database() -> tuple[bool, str]:
    """Run a lightweight health query against the database."""
    if not _engine or not _session_maker:
        return False, "Database not initialized"

    try:
        async with _session_maker() as session:
            result = await session.execute(text("SELECT 1"))
            row = result.scalar()
            if row == 1:
                return True, "Database connection healthy"
            return False, f"Unexpected response: {row}"
    except Exception as e:
        return False, f"Database query failed: {str(e)}"
