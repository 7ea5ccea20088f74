"""
Response token cleanup job.

Deletes response tokens that expired more than TOKEN_RETENTION_DAYS ago.
Consumed tokens are kept until the same cutoff so a late second click still
resolves to "already recorded" rather than "invalid link".
"""

import asyncio
from datetime import timedelta

from app.config import settings
from app.db.pool import DatabasePoolManager
from app.features.coordination.services.token_issuer import TokenIssuer, utc_now
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

ERROR_RETRY_SECONDS = 300


async def run_token_cleanup_job(
    db: DatabasePoolManager, issuer: TokenIssuer | None = None
) -> dict:
    """Run one purge pass and return a metrics dict."""
    issuer = issuer or TokenIssuer()
    started = utc_now()
    cutoff = started - timedelta(days=settings.TOKEN_RETENTION_DAYS)

    async with db.transaction() as conn:
        purged = await issuer.purge_expired(conn, cutoff)

    metrics = {
        "purged_tokens": purged,
        "cutoff": cutoff.isoformat(),
        "duration_seconds": round((utc_now() - started).total_seconds(), 3),
    }
    logger.info("Token cleanup completed", **metrics)
    return metrics


async def start_token_cleanup_scheduler() -> None:
    """Run the cleanup on TOKEN_CLEANUP_INTERVAL_SECONDS until cancelled."""
    interval = settings.TOKEN_CLEANUP_INTERVAL_SECONDS
    logger.info("Starting token cleanup scheduler", interval_seconds=interval)

    db = DatabasePoolManager()
    await db.initialize()
    try:
        while True:
            try:
                await run_token_cleanup_job(db)
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    "Error in token cleanup scheduler", error=str(e), error_type=type(e).__name__
                )
                await asyncio.sleep(ERROR_RETRY_SECONDS)
    finally:
        await db.close()


if __name__ == "__main__":
    asyncio.run(start_token_cleanup_scheduler())
