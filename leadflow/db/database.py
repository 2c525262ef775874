"""
Database Connection
===================
Async connection using SQLAlchemy. Nothing connects until an engine is asked for.
"""

import logging
from functools import lru_cache

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, AsyncSession, async_sessionmaker

from leadflow.config import get_settings
from leadflow.db.models import Base

logger = logging.getLogger(__name__)


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    return create_async_engine(database_url, echo=echo, future=True)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@lru_cache(maxsize=1)
def get_engine() -> AsyncEngine:
    settings = get_settings()
    return build_engine(settings.database_url, echo=settings.sql_echo)


@lru_cache(maxsize=1)
def get_session_factory() -> async_sessionmaker:
    return build_session_factory(get_engine())


async def init_db(engine: AsyncEngine = None):
    """Create all tables (for development only - use Alembic in production)"""
    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")
