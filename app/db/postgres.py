"""
Database reachability check used by the readiness endpoint.
"""

from app.db.helpers import fetch_val
from app.db.pool import DatabasePoolManager
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


async def check_db(db: DatabasePoolManager):
    """
    Returns True if SELECT 1 succeeds, otherwise the error string.
    """
    try:
        async with db.connection() as conn:
            value = await fetch_val("SELECT 1", connection=conn)

        if value == 1:
            return True
        return "Unexpected result from database check"

    except Exception as e:
        logger.error("Database health check failed", error=str(e))
        return str(e)
