"""Database connection and session management."""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from crm.config import settings


def normalize_database_url(url: str) -> str:
    """Convert postgresql:// to postgresql+asyncpg://"""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def build_engine(url: str, **kwargs) -> AsyncEngine:
    """Create an async engine; pool sizing only applies to server databases."""
    url = normalize_database_url(url)
    options = {
        "echo": settings.LOG_LEVEL == "DEBUG",
        "pool_pre_ping": True,
    }
    if not url.startswith("sqlite"):
        options.update(pool_size=20, max_overflow=10)
    options.update(kwargs)
    return create_async_engine(url, **options)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False
    )


# Create async engine
engine = build_engine(settings.DATABASE_URL)

# Create session factory
AsyncSessionLocal = build_session_factory(engine)

# Base class for models
Base = declarative_base()


async def init_models(bind: AsyncEngine = engine):
    """Create all tables that do not exist yet."""
    # Import models so they register with Base.metadata
    from crm import models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

