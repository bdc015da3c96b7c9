import logging
from expenseflow.core.database import engine
import expenseflow.models  # noqa: F401  Registers every model on Base.metadata
from expenseflow.models.base import Base

logger = logging.getLogger(__name__)

async def create_tables():
    """Create all database tables"""
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        logger.info("✅ Database tables created successfully")

    except Exception as e:
        logger.error(f"❌ Error creating tables: {str(e)}")
        raise
