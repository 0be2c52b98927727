import asyncio
import logging

from backoffice.config import settings
from backoffice.database import Database
from backoffice.main import configure_logging

logger = logging.getLogger(__name__)

async def init_db():
    logger.info(f"Connecting to {settings.MONGODB_URL}...")
    db = Database.from_mongo()
    try:
        await db.create_indexes()
        logger.info("Database initialization complete.")
    finally:
        db.close()

if __name__ == "__main__":
    configure_logging()
    asyncio.run(init_db())
