import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from export_worker.config import get_settings
from export_worker.models.base import Base

logger = logging.getLogger(__name__)

settings = get_settings()

# Each in-flight job holds at most one connection at a time, plus one for polling.
engine = create_async_engine(
    settings.database_url,
    echo=settings.database_echo,
    pool_size=settings.max_concurrent_jobs + 1,
    max_overflow=2,
    pool_pre_ping=True,  # Check connection health before use
    pool_recycle=300,
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def init_db() -> None:
    """Create the export_jobs table, retrying while the database comes up."""
    max_retries = 5
    retry_delay = 2  # seconds

    for attempt in range(max_retries):
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            return
        except Exception as e:
            if attempt < max_retries - 1:
                logger.warning(
                    f"DB connection attempt {attempt + 1}/{max_retries} failed: {e}. "
                    f"Retrying in {retry_delay} seconds..."
                )
                await asyncio.sleep(retry_delay)
                retry_delay *= 2  # Exponential backoff
            else:
                logger.error(f"Failed to connect to database after {max_retries} attempts")
                raise

