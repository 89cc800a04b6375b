"""Image generation jobs: admission, status transitions and listing."""

from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from beanie import Link, PydanticObjectId
from beanie.operators import Set
from bson.errors import InvalidId
from pymongo.errors import PyMongoError

from app.core.config import get_settings
from app.core.exceptions import NotFoundError, PersistenceError, ValidationError
from app.core.logging import get_logger
from app.models.job import DEFAULT_MODEL, Job, JobError, JobParameters, JobResult, JobStatus
from app.models.transaction import Transaction, TransactionMetadata
from app.services import credits as credits_service

log = get_logger(__name__)

Dispatcher = Callable[[str], Awaitable[None]]

# Allowed forward moves; anything else is rejected by transition().
TRANSITIONS: dict[JobStatus, tuple[JobStatus, ...]] = {
    "pending": ("processing",),
    "processing": ("completed", "failed"),
    "completed": (),
    "failed": (),
}

DEFAULT_FAILURE_MESSAGE = "Image generation failed"


def refund_key(job_id: PydanticObjectId | str) -> str:
    return f"refund:{job_id}"


async def submit_job(
    user_id: PydanticObjectId,
    prompt: str,
    negative_prompt: str | None = None,
    model: str | None = None,
    parameters: JobParameters | None = None,
    dispatch: Dispatcher | None = None,
) -> Job:
    """
    Admit a generation request: debit one credit with a usage entry, create the
    job in pending, then hand it to the dispatcher. Does not wait for generation.
    """
    if not prompt or not prompt.strip():
        raise ValidationError("Prompt is required")
    cost = get_settings().credits_per_image
    job_id = PydanticObjectId()

    entry, balance_after = await credits_service.apply_ledger_entry(
        user_id,
        -cost,
        "usage",
        description=f"Image generation: {prompt[:50]}...",
        metadata=TransactionMetadata(job_id=job_id),
        require_funds=True,
    )

    job = Job(
        id=job_id,
        user=entry.user,
        prompt=prompt,
        negative_prompt=negative_prompt,
        model=model or DEFAULT_MODEL,
        parameters=parameters or JobParameters(),
        status="pending",
    )
    try:
        await job.insert()
    except PyMongoError as e:
        log.exception("job_insert_failed", job_id=str(job_id), user_id=str(user_id))
        await credits_service.apply_ledger_entry(
            user_id,
            cost,
            "refund",
            description="Refund for job that could not be created",
            metadata=TransactionMetadata(job_id=job_id),
            idempotency_key=refund_key(job_id),
        )
        raise PersistenceError("Failed to create job") from e

    log.info("job_admitted", job_id=str(job_id), user_id=str(user_id), model=job.model, balance_after=balance_after)

    if dispatch is None:
        from app.worker.tasks import dispatch_generation
        dispatch = dispatch_generation
    try:
        await dispatch(str(job_id))
    except Exception as e:
        # job never reached a worker
        log.exception("job_dispatch_failed", job_id=str(job_id))
        await fail_job(job, f"Could not queue job: {e}", from_status="pending")
        job = await Job.get(job_id)
    return job


async def transition(
    job_id: PydanticObjectId,
    from_status: JobStatus,
    to_status: JobStatus,
    result: JobResult | None = None,
    error: JobError | None = None,
) -> bool:
    """
    Conditionally move a job forward. The write only matches while the stored
    status is still from_status, so a status can never regress or be revisited.
    Returns True when this call performed the transition.
    """
    if to_status not in TRANSITIONS[from_status]:
        raise ValueError(f"Illegal job transition {from_status} -> {to_status}")
    fields: dict[Any, Any] = {Job.status: to_status, Job.updated_at: datetime.utcnow()}
    if result is not None:
        fields[Job.result] = result.model_dump()
    if error is not None:
        fields[Job.error] = error.model_dump()
    try:
        res = await Job.find_one(Job.id == job_id, Job.status == from_status).update(Set(fields))
    except PyMongoError as e:
        log.exception("job_transition_failed", job_id=str(job_id), from_status=from_status, to_status=to_status)
        raise PersistenceError("Failed to update job status") from e
    changed = bool(res and res.modified_count)
    if changed:
        log.info("job_status_changed", job_id=str(job_id), from_status=from_status, to_status=to_status)
    return changed


async def refund_job(job: Job) -> Transaction | None:
    """Credit back the admission debit for a failed job; at most once per job."""
    user_id = job.user.ref.id if isinstance(job.user, Link) else job.user.id
    try:
        entry, balance_after = await credits_service.apply_ledger_entry(
            user_id,
            get_settings().credits_per_image,
            "refund",
            description="Refund for failed generation",
            metadata=TransactionMetadata(job_id=job.id),
            idempotency_key=refund_key(job.id),
        )
    except NotFoundError:
        log.warning("refund_skipped_user_missing", job_id=str(job.id), user_id=str(user_id))
        return None
    log.info("job_refunded", job_id=str(job.id), user_id=str(user_id), balance_after=balance_after)
    return entry


async def fail_job(job: Job, message: str, from_status: JobStatus = "processing") -> bool:
    """
    Mark failed with error.message, then refund. Returns False if the job had already moved on.
    A pending job is claimed into processing first, so it never skips that state.
    """
    if from_status == "pending":
        if not await transition(job.id, "pending", "processing"):
            return False
        from_status = "processing"
    changed = await transition(
        job.id,
        from_status,
        "failed",
        error=JobError(message=message or DEFAULT_FAILURE_MESSAGE),
    )
    if changed:
        await refund_job(job)
    return changed


async def get_job(job_id: str, user_id: PydanticObjectId) -> Job:
    """Job owned by the user, else NotFoundError."""
    try:
        oid = PydanticObjectId(job_id)
    except (InvalidId, TypeError) as e:
        raise NotFoundError("Job not found") from e
    job = await Job.find_one(Job.id == oid, Job.user.id == user_id)
    if not job:
        raise NotFoundError("Job not found")
    return job


async def list_jobs(
    user_id: PydanticObjectId,
    limit: int,
    skip: int,
    status: JobStatus | None = None,
) -> tuple[list[Job], int]:
    """Return (jobs newest first, total count), optionally filtered by status."""
    criteria = [Job.user.id == user_id]
    if status:
        criteria.append(Job.status == status)
    total = await Job.find(*criteria).count()
    jobs = await Job.find(*criteria).sort(-Job.created_at, -Job.id).skip(skip).limit(limit).to_list()
    return jobs, total


async def list_gallery(user_id: PydanticObjectId, limit: int, skip: int) -> tuple[list[Job], int]:
    return await list_jobs(user_id, limit, skip, status="completed")
