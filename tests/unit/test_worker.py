from datetime import timedelta

import pytest

from app.features.coordination.jobs.token_cleanup_job import run_token_cleanup_job
from app.jobs import worker
from app.security.hashing import hash_token


@pytest.mark.asyncio
async def test_run_worker_runs_job(monkeypatch):
    called = {"ok": False}

    async def dummy_job():
        called["ok"] = True

    monkeypatch.setitem(worker.JOB_REGISTRY, "dummy", dummy_job)

    await worker.run_worker("dummy")

    assert called["ok"] is True


@pytest.mark.asyncio
async def test_run_worker_unknown_job():
    with pytest.raises(ValueError):
        await worker.run_worker("missing")


def test_registry_lists_coordination_jobs():
    assert {"token_cleanup", "apply_schema"} <= set(worker.JOB_REGISTRY)


@pytest.mark.asyncio
async def test_token_cleanup_purges_only_long_expired(harness):
    async with harness.db.transaction() as conn:
        await harness.tokens.issue(conn, "p-1", "bob@example.com")
        kept = await harness.tokens.issue(conn, "p-1", "carol@example.com", timedelta(days=36500))

    metrics = await run_token_cleanup_job(harness.db, harness.tokens)

    assert metrics["purged_tokens"] == 1
    assert list(harness.db.state.tokens) == [hash_token(kept.token)]
    assert harness.db.commits == 2
