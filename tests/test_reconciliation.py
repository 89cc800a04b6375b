from datetime import datetime, timedelta

import pytest

from app.models.job import Job
from app.models.transaction import Transaction
from app.services import credits as credits_service
from app.services import jobs as jobs_service
from app.services import reconciliation


async def _noop_dispatch(job_id: str) -> None:
    return None


async def _admitted_job(user):
    await credits_service.apply_ledger_entry(user.id, 10, "bonus", description="Welcome bonus credits")
    return await jobs_service.submit_job(user.id, "a cat", dispatch=_noop_dispatch)


async def _refunds(job_id):
    return await Transaction.find(Transaction.metadata.job_id == job_id, Transaction.type == "refund").to_list()


@pytest.mark.asyncio
async def test_stale_processing_job_is_failed_and_refunded(user):
    job = await _admitted_job(user)
    assert await jobs_service.transition(job.id, "pending", "processing")
    later = datetime.utcnow() + timedelta(hours=1)

    out = await reconciliation.reconcile(now=later)
    assert out == {"stale_failed": 1, "refunds_applied": 0}

    stored = await Job.get(job.id)
    assert stored.status == "failed"
    assert stored.error.message == reconciliation.STALE_MESSAGE
    assert len(await _refunds(job.id)) == 1
    assert await credits_service.get_balance(user.id) == 10

    # second sweep finds nothing to do
    assert await reconciliation.reconcile(now=later) == {"stale_failed": 0, "refunds_applied": 0}
    assert len(await _refunds(job.id)) == 1


@pytest.mark.asyncio
async def test_recent_jobs_are_left_alone(user):
    job = await _admitted_job(user)
    assert await reconciliation.fail_stale_jobs(now=datetime.utcnow(), stale_minutes=15) == 0
    assert (await Job.get(job.id)).status == "pending"


@pytest.mark.asyncio
async def test_failed_job_without_refund_gets_one(user):
    job = await _admitted_job(user)
    # failed without going through fail_job, as when the refund write was lost
    assert await jobs_service.transition(job.id, "pending", "processing")
    assert await jobs_service.transition(job.id, "processing", "failed")
    assert await credits_service.get_balance(user.id) == 9

    assert await reconciliation.refund_missing() == 1
    assert await credits_service.get_balance(user.id) == 10
    assert await reconciliation.refund_missing() == 0
    assert len(await _refunds(job.id)) == 1
    assert await credits_service.ledger_sum(user.id) == 10


@pytest.mark.asyncio
async def test_completed_jobs_are_never_refunded(user):
    job = await _admitted_job(user)
    assert await jobs_service.transition(job.id, "pending", "processing")
    assert await jobs_service.transition(job.id, "processing", "completed")
    later = datetime.utcnow() + timedelta(hours=1)
    assert await reconciliation.reconcile(now=later) == {"stale_failed": 0, "refunds_applied": 0}
    assert await _refunds(job.id) == []


async def _fail_without_refund(job):
    assert await jobs_service.transition(job.id, "pending", "processing")
    assert await jobs_service.transition(job.id, "processing", "failed")


@pytest.mark.asyncio
async def test_refund_missing_pages_past_refunded_jobs(user, monkeypatch):
    monkeypatch.setattr(reconciliation, "BATCH_SIZE", 2)
    refunded = []
    for _ in range(3):
        job = await _admitted_job(user)
        assert await jobs_service.fail_job(job, "provider down", from_status="pending")
        refunded.append(job.id)
    missing = []
    for _ in range(3):
        job = await _admitted_job(user)
        await _fail_without_refund(job)
        missing.append(job.id)

    assert await reconciliation.refund_missing() == 3
    for job_id in refunded + missing:
        assert len(await _refunds(job_id)) == 1
    assert await credits_service.get_balance(user.id) == await credits_service.ledger_sum(user.id)


@pytest.mark.asyncio
async def test_stale_sweep_drains_more_than_one_batch(user, monkeypatch):
    monkeypatch.setattr(reconciliation, "BATCH_SIZE", 2)
    jobs = [await _admitted_job(user) for _ in range(5)]
    later = datetime.utcnow() + timedelta(hours=1)

    assert await reconciliation.fail_stale_jobs(now=later, stale_minutes=15) == 5
    for job in jobs:
        assert (await Job.get(job.id)).status == "failed"
        assert len(await _refunds(job.id)) == 1
