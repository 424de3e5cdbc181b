from typing import Optional

from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool
from sqlalchemy import text
import logging

from config import get_settings

logger = logging.getLogger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None


class Base(DeclarativeBase):
    pass


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine; SQLite URLs share one connection so in-memory databases persist."""
    if database_url.startswith("sqlite"):
        return create_async_engine(
            database_url,
            echo=echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )

    settings = get_settings()
    return create_async_engine(
        database_url,
        echo=echo,
        pool_pre_ping=True,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """
    Session factory used by every store.

    expire_on_commit=False keeps returned records readable after the
    per-call session has been closed.
    """
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def configure_database(database_url: Optional[str] = None, echo: Optional[bool] = None) -> AsyncEngine:
    """Create (or replace) the process-wide engine and session factory."""
    global _engine, _session_factory
    settings = get_settings()
    url = database_url or settings.get_database_url()
    _engine = build_engine(url, echo=settings.DB_ECHO if echo is None else echo)
    _session_factory = build_session_factory(_engine)
    logger.info(f"Database configured ({_engine.url.get_backend_name()})")
    return _engine


def get_engine() -> AsyncEngine:
    if _engine is None:
        configure_database()
    return _engine


def get_session_factory() -> async_sessionmaker:
    if _session_factory is None:
        configure_database()
    return _session_factory


async def create_all(engine: AsyncEngine) -> None:
    """Create every table registered on Base."""
    # Model modules register their tables on import
    import identity.models  # noqa: F401
    import relationships.models  # noqa: F401
    import backfill.models  # noqa: F401
    import services.integrity_log  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db():
    """Initialize database connection and ensure tables exist"""
    engine = get_engine()
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("Database connection successful")
        await create_all(engine)
        logger.info(f"Tables ensured: {sorted(Base.metadata.tables)}")
        return True
    except Exception as e:
        logger.error(f"Database initialization error: {e}")
        raise


async def dispose_db() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
