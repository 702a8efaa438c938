import logging

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger("quire.health")


async def check_db(session: AsyncSession) -> bool:
    """Simple DB connectivity check.
    Uses a lightweight SELECT 1 statement and returns True if the DB responds.
    """
    try:
        await session.execute(text("SELECT 1"))
        return True
    except (SQLAlchemyError, OSError) as exc:
        logger.warning("health.db.unreachable", extra={"error": repr(exc)})
        return False
