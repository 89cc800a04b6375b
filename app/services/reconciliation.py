"""
Reconciliation sweep for jobs whose worker never finished them.

Two repairs: jobs left in pending/processing past the stale cutoff are failed
(and refunded), and failed jobs with no refund entry get their refund. Both
go through the idempotent refund key, so rerunning the sweep is harmless.
"""

from datetime import datetime, timedelta

from beanie.operators import In

from app.core.config import get_settings
from app.core.logging import get_logger
from app.models.job import Job
from app.models.transaction import Transaction
from app.services import jobs as jobs_service

log = get_logger(__name__)

STALE_MESSAGE = "Job timed out before completion"
REFUND_LOOKBACK_DAYS = 7
BATCH_SIZE = 200


async def fail_stale_jobs(now: datetime | None = None, stale_minutes: int | None = None) -> int:
    now = now or datetime.utcnow()
    stale_minutes = stale_minutes if stale_minutes is not None else get_settings().stale_job_minutes
    cutoff = now - timedelta(minutes=stale_minutes)
    failed = 0
    while True:
        # failed jobs drop out of the query, so each batch starts from the front
        stale = await (
            Job.find(In(Job.status, ["pending", "processing"]), Job.updated_at < cutoff)
            .sort(+Job.updated_at, +Job.id)
            .limit(BATCH_SIZE)
            .to_list()
        )
        batch_failed = 0
        for job in stale:
            if await jobs_service.fail_job(job, STALE_MESSAGE, from_status=job.status):
                batch_failed += 1
                log.warning("stale_job_failed", job_id=str(job.id), last_status=job.status, updated_at=job.updated_at.isoformat())
        failed += batch_failed
        if len(stale) < BATCH_SIZE or not batch_failed:
            return failed


async def refund_missing(now: datetime | None = None) -> int:
    now = now or datetime.utcnow()
    since = now - timedelta(days=REFUND_LOOKBACK_DAYS)
    refunded = 0
    skip = 0
    while True:
        # refunds leave the job untouched, so offset paging over a stable sort sees every job once
        failed_jobs = await (
            Job.find(Job.status == "failed", Job.updated_at >= since)
            .sort(+Job.updated_at, +Job.id)
            .skip(skip)
            .limit(BATCH_SIZE)
            .to_list()
        )
        for job in failed_jobs:
            existing = await Transaction.find_one(
                Transaction.metadata.job_id == job.id,
                Transaction.type == "refund",
            )
            if existing:
                continue
            if await jobs_service.refund_job(job):
                refunded += 1
                log.warning("missing_refund_applied", job_id=str(job.id))
        if len(failed_jobs) < BATCH_SIZE:
            return refunded
        skip += BATCH_SIZE


async def reconcile(now: datetime | None = None) -> dict[str, int]:
    stale_failed = await fail_stale_jobs(now)
    refunds_applied = await refund_missing(now)
    log.info("reconcile_done", stale_failed=stale_failed, refunds_applied=refunds_applied)
    return {"stale_failed": stale_failed, "refunds_applied": refunds_applied}
