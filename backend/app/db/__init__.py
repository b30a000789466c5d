import logging

from backend.app.db.session import engine
from backend.app.db.base import Base

logger = logging.getLogger(__name__)


async def init_models(drop: bool = False):
    # Importing the models registers their tables on Base.metadata
    from backend.app import models  # noqa: F401

    try:
        async with engine.begin() as conn:
            if drop:
                await conn.run_sync(Base.metadata.drop_all)

            logger.info("Creating passkey tables...")
            await conn.run_sync(Base.metadata.create_all)
            logger.info("Tables created.")
    except Exception as e:
        logger.error(f"Table creation failed: {e}")
        raise

