from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from db.models import Base
from rag_chat.logger import GLOBAL_LOGGER as log
from rag_chat.utils.config_loader import get_env

DATABASE_URL = get_env().DATABASE_URL

# connections are opened lazily, importing this module never touches Postgres
engine = create_async_engine(DATABASE_URL, echo=False, pool_pre_ping=True)

AsyncSessionLocal = async_sessionmaker(
    engine,
    expire_on_commit=False,
    class_=AsyncSession,
    autoflush=False,
)


async def init_db() -> None:
    """
    Enable the pgvector extension, then create any missing tables.
    Called once from the app lifespan.
    """
    async with engine.begin() as conn:
        await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.run_sync(Base.metadata.create_all)
    log.info("Database ready | tables=%s", sorted(Base.metadata.tables))


async def dispose_db() -> None:
    await engine.dispose()
    log.info("Database connections closed")


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session; closed once the response has been sent."""
    async with AsyncSessionLocal() as db:
        yield db
