"""Database configuration and session management."""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.core.config import settings


def _connect_args(url: str) -> dict:
    if url.startswith("postgresql+asyncpg"):
        return {
            "server_settings": {
                "jit": "off",
                "statement_timeout": str(settings.DATABASE_STATEMENT_TIMEOUT_MS),
            },
            "command_timeout": settings.DATABASE_STATEMENT_TIMEOUT_MS / 1000,
        }
    return {}


engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    poolclass=NullPool,
    future=True,
    connect_args=_connect_args(settings.DATABASE_URL),
)

async_session_maker = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


async def init_db() -> None:
    """Initialize database tables."""
    from app.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    await engine.dispose()

