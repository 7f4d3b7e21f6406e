"""
Destination (PostgreSQL) engine and session factory

One async engine per process. Migration batches take a session each, so the
pool must cover the API's own sessions plus one writer.
"""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from core.config import settings
import logging

logger = logging.getLogger(__name__)

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DATABASE_ECHO,
    pool_size=settings.DATABASE_POOL_SIZE,
    max_overflow=settings.DATABASE_MAX_OVERFLOW,
    pool_pre_ping=True,
)

# expire_on_commit=False: history rows are read after their session closes
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False
)


async def dispose_engine() -> None:
    """Close every pooled destination connection (process shutdown)"""
    await engine.dispose()
    logger.info("Destination connection pool disposed")
