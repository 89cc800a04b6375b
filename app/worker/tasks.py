"""ARQ job definitions and dispatch from the API."""

import asyncio
import uuid
from typing import Any
from urllib.parse import urlparse

from arq import create_pool
from arq.connections import RedisSettings
from arq.cron import cron

from app.core.config import get_settings
from app.core.logging import bind_job_id, clear_context, configure_logging, get_logger

log = get_logger(__name__)

GENERATE_IMAGE = "generate_image"
# covers 3 attempts x 60s timeout + 2 x 2s backoff, plus storage upload
GENERATE_JOB_TIMEOUT_SECONDS = 300

# inline generations started outside a request; held so they are not garbage collected
_inline_tasks: set[asyncio.Task] = set()


async def _run_with_dlq(
    job_name: str,
    job_id: str | None,
    args: list[Any],
    kwargs: dict[str, Any],
    coro,
) -> Any:
    """Run coroutine; on exception persist to FailedJob then re-raise."""
    try:
        return await coro
    except Exception as e:
        from app.models.failed_job import FailedJob
        fid = job_id or str(uuid.uuid4())
        log.exception("job_failed", job=job_name, job_id=fid, reason=str(e))
        await FailedJob(
            job_name=job_name,
            job_id=fid,
            args=args,
            kwargs=kwargs,
            reason=str(e)[:2000],
            retries=0,
        ).insert()
        raise


async def run_generation(job_id: str) -> None:
    """Process one image job with dead-letter capture. Used by the arq task and inline dispatch."""
    from app.services.generation import process_job

    bind_job_id(job_id)
    try:
        log.info("job_start", job=GENERATE_IMAGE)
        job = await _run_with_dlq(GENERATE_IMAGE, job_id, [job_id], {}, process_job(job_id))
        log.info("job_done", job=GENERATE_IMAGE, status=job.status if job else None)
    finally:
        clear_context()


async def generate_image(ctx: dict[str, Any], job_id: str) -> None:
    """Run image generation for an admitted job."""
    await run_generation(job_id)


async def reconcile_jobs(ctx: dict[str, Any]) -> None:
    """Cron job: fail stale jobs and apply missing refunds."""
    job_id = ctx.get("job_id") if isinstance(ctx.get("job_id"), str) else None
    from app.worker.cron import run_reconcile
    await _run_with_dlq("reconcile_jobs", job_id, [], {}, run_reconcile())


async def startup(ctx: dict) -> None:
    from app.db.init import init_db
    configure_logging(debug=get_settings().debug)
    await init_db()
    log.info("worker_startup", max_jobs=get_settings().generation_concurrency)


async def shutdown(ctx: dict) -> None:
    log.info("worker_shutdown")


def get_redis_settings() -> RedisSettings:
    s = get_settings()
    u = urlparse(s.redis_url)
    return RedisSettings(
        host=u.hostname or "localhost",
        port=u.port or 6379,
        password=u.password,
        database=int(u.path.lstrip("/")) if u.path.lstrip("/") else 0,
    )


async def enqueue_generate_image(job_id: str) -> None:
    """Enqueue generate_image (call from API). The arq job id is derived from the job id, so a job is queued once."""
    redis = await create_pool(get_redis_settings())
    try:
        await redis.enqueue_job(GENERATE_IMAGE, job_id, _job_id=f"{GENERATE_IMAGE}:{job_id}")
    finally:
        await redis.aclose()


def _forget_inline_task(task: asyncio.Task) -> None:
    _inline_tasks.discard(task)
    if not task.cancelled():
        # already logged and dead-lettered by _run_with_dlq
        task.exception()


async def dispatch_generation(job_id: str, background_tasks=None) -> None:
    """Send an admitted job to the configured queue: arq (default) or in-process background task."""
    if get_settings().job_queue == "inline":
        if background_tasks is not None:
            background_tasks.add_task(run_generation, job_id)
        else:
            task = asyncio.create_task(run_generation(job_id))
            _inline_tasks.add(task)
            task.add_done_callback(_forget_inline_task)
        return
    await enqueue_generate_image(job_id)
    log.info("job_enqueued", job=GENERATE_IMAGE, job_id=job_id)


class WorkerSettings:
    """arq worker: bounded pool of generation tasks plus the reconciliation cron."""
    functions = [generate_image]
    cron_jobs = [cron(reconcile_jobs, minute=set(range(0, 60, 5)))]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = get_redis_settings()
    max_jobs = get_settings().generation_concurrency
    job_timeout = GENERATE_JOB_TIMEOUT_SECONDS
    max_tries = 1
