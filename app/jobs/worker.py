"""
Generic background worker runner.

Reads the desired job name from CLI args or the WORKER_JOB environment
variable and delegates to the appropriate scheduler.
"""

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable

from app.db.pool import DatabasePoolManager
from app.db.schema import apply_schema
from app.features.coordination.jobs.token_cleanup_job import start_token_cleanup_scheduler
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

JobCoroutine = Callable[[], Awaitable[None]]


async def run_apply_schema() -> None:
    """One-shot: create the coordination tables if they do not exist."""
    db = DatabasePoolManager()
    await db.initialize()
    try:
        count = await apply_schema(db)
        logger.info("Schema applied", statements=count)
    finally:
        await db.close()


JOB_REGISTRY: dict[str, JobCoroutine] = {
    "token_cleanup": start_token_cleanup_scheduler,
    "apply_schema": run_apply_schema,
}


def _resolve_job_name() -> str:
    """Pick the target job from CLI args or WORKER_JOB env variable."""
    if len(sys.argv) > 1:
        return sys.argv[1].strip().lower()
    return os.getenv("WORKER_JOB", "token_cleanup").strip().lower()


async def run_worker(job_name: str | None = None) -> None:
    """Run the requested background job."""
    name = (job_name or _resolve_job_name()).strip().lower()
    if name not in JOB_REGISTRY:
        raise ValueError(
            f"Unknown worker job '{name}'. "
            f"Available jobs: {', '.join(sorted(JOB_REGISTRY.keys()))}"
        )

    logger.info("Starting background worker", job=name)
    await JOB_REGISTRY[name]()


def main() -> None:
    """CLI entrypoint."""
    job_name = _resolve_job_name()
    asyncio.run(run_worker(job_name))


if __name__ == "__main__":
    main()
