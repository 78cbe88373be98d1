"""
registrar/database.py
Async engine and session factory for the allocation engine
"""
import logging

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker, AsyncEngine

from registrar.config.settings import settings
from registrar.orm.base import Base
import registrar.orm  # noqa: F401  registers every model on Base.metadata

logger = logging.getLogger(__name__)

DATABASE_URL = settings.DATABASE_URL

if not DATABASE_URL:
    raise ValueError("DATABASE_URL environment variable is not set")


def build_engine(url: str = DATABASE_URL, **overrides) -> AsyncEngine:
    """
    Create an async engine with pool settings suited to the backend.

    SQLite serializes writers, so it gets a busy timeout instead of a large pool.
    """
    if "sqlite" in url.lower():
        options = dict(
            echo=False,
            future=True,
            connect_args={"timeout": 30.0},   # SQLite busy timeout in seconds
        )
    else:
        options = dict(
            echo=False,
            future=True,
            pool_pre_ping=True,
            pool_size=10,
            max_overflow=20,
            pool_timeout=30,
            pool_recycle=3600,
        )
    options.update(overrides)
    return create_async_engine(url, **options)


engine = build_engine()

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db():
    """Dependency for getting async database session"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def create_all(bind: AsyncEngine = engine) -> None:
    """
    Create every table known to the metadata.

    Development and tests only; deployed databases are shaped by the
    Alembic revisions under registrar/alembic/versions.
    """
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("✓ Allocation schema ensured on %s", bind.url.render_as_string(hide_password=True))
