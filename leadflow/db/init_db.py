"""
Initialize database tables and seed the pipeline statuses
Run this once per environment:  python -m leadflow.db.init_db
"""

import asyncio
import logging

from leadflow.core.repository import seed_default_statuses
from leadflow.db.database import get_engine, get_session_factory, init_db
from leadflow.db.repository import SqlAlchemyLeadRepository

logger = logging.getLogger(__name__)


async def bootstrap() -> int:
    await init_db(get_engine())
    return await seed_default_statuses(SqlAlchemyLeadRepository(get_session_factory()))


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    logger.info("Creating database tables...")
    added = asyncio.run(bootstrap())
    logger.info("Bootstrap complete, %d status definition(s) added", added)
