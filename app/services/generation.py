"""
Generation worker: runs one admitted job through synthesis and finalizes it.

pending -> processing -> completed | failed. Synthesis tries up to
``max_attempts`` provider calls, each bounded by ``timeout_seconds`` (the
call is cancelled on timeout). A failed attempt advances to the next model in
the fallback chain and waits ``backoff_seconds`` before the next try. A job
that exhausts its attempts is marked failed and its credit refunded.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from beanie import PydanticObjectId

from app.core.config import get_settings
from app.core.logging import get_logger
from app.models.job import GeneratedImage, Job, JobResult
from app.services import jobs as jobs_service
from app.services.providers import ImageProvider, ProviderError, get_provider
from app.storage.base import StorageBackend, get_storage

log = get_logger(__name__)

FLUX_SCHNELL = "black-forest-labs/FLUX.1-schnell"
OPENJOURNEY = "prompthero/openjourney-v4"
SD_2_1 = "stabilityai/stable-diffusion-2-1"
SD_1_5 = "runwayml/stable-diffusion-v1-5"

PRIMARY_MODEL = FLUX_SCHNELL

# requested model choice -> first provider model to try
MODEL_CHOICES = {
    "dalle-3": FLUX_SCHNELL,
    "midjourney": OPENJOURNEY,
    "stability-sd-3": SD_2_1,
}

# provider model -> model tried after it fails; models without a successor are retried as is
FALLBACK_CHAIN = {
    FLUX_SCHNELL: SD_2_1,
    SD_2_1: SD_1_5,
}

PLACEHOLDER_NOTE = "Add HUGGINGFACE_API_KEY to .env for real generation"


def resolve_model(choice: str | None) -> str:
    return MODEL_CHOICES.get(choice or "", PRIMARY_MODEL)


def next_model(model_id: str) -> str:
    return FALLBACK_CHAIN.get(model_id, model_id)


@dataclass(frozen=True)
class GenerationPolicy:
    max_attempts: int = 3
    timeout_seconds: float = 60.0
    backoff_seconds: float = 2.0

    @classmethod
    def from_settings(cls) -> "GenerationPolicy":
        s = get_settings()
        return cls(
            max_attempts=max(1, s.generation_max_attempts),
            timeout_seconds=s.generation_timeout_seconds,
            backoff_seconds=s.generation_backoff_seconds,
        )


@dataclass(frozen=True)
class SynthesisOutcome:
    image: bytes
    model: str
    attempts: int


class GenerationFailedError(ProviderError):
    """All attempts exhausted; message is the last attempt's error."""

    def __init__(self, message: str, attempts: int, models: list[str]):
        super().__init__(message)
        self.attempts = attempts
        self.models = models


async def synthesize_with_fallback(
    provider: ImageProvider,
    model_choice: str | None,
    prompt: str,
    negative_prompt: str | None = None,
    policy: GenerationPolicy | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> SynthesisOutcome:
    policy = policy or GenerationPolicy()
    model_id = resolve_model(model_choice)
    tried: list[str] = []
    last_error = ""
    for attempt in range(1, policy.max_attempts + 1):
        tried.append(model_id)
        log.info("generation_attempt", attempt=attempt, max_attempts=policy.max_attempts, model=model_id)
        try:
            image = await asyncio.wait_for(
                provider.generate(model_id, prompt, negative_prompt),
                timeout=policy.timeout_seconds,
            )
            return SynthesisOutcome(image=image, model=model_id, attempts=attempt)
        except asyncio.TimeoutError:
            last_error = f"Request timeout after {policy.timeout_seconds:g}s"
        except ProviderError as e:
            last_error = str(e) or e.__class__.__name__
        log.warning(
            "generation_attempt_failed",
            attempt=attempt,
            model=model_id,
            error=last_error,
            retries_left=policy.max_attempts - attempt,
        )
        if attempt < policy.max_attempts:
            model_id = next_model(model_id)
            await sleep(policy.backoff_seconds)
    raise GenerationFailedError(
        last_error or jobs_service.DEFAULT_FAILURE_MESSAGE,
        attempts=len(tried),
        models=tried,
    )


def _image_filename(job_id: PydanticObjectId) -> str:
    return f"image-{job_id}-{int(time.time() * 1000)}.png"


async def _complete_placeholder(job: Job) -> None:
    log.warning("generation_placeholder", msg="No HuggingFace API key - using placeholder")
    result = JobResult(
        images=[
            GeneratedImage(
                url=f"https://picsum.photos/seed/{job.id}/{job.width}/{job.height}",
                width=job.width,
                height=job.height,
            )
        ],
        time_taken=1000,
        note=PLACEHOLDER_NOTE,
    )
    await jobs_service.transition(job.id, "processing", "completed", result=result)


async def process_job(
    job_id: str,
    provider: ImageProvider | None = None,
    storage: StorageBackend | None = None,
    policy: GenerationPolicy | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Job | None:
    """Run one job to a terminal state. Safe to call more than once: only a pending job is picked up."""
    job = await Job.get(PydanticObjectId(job_id))
    if not job:
        log.warning("job_not_found", job_id=job_id)
        return None
    if job.status != "pending":
        log.info("job_already_started", job_id=job_id, status=job.status)
        return job
    if not await jobs_service.transition(job.id, "pending", "processing"):
        log.info("job_claimed_elsewhere", job_id=job_id)
        return await Job.get(job.id)

    if provider is None:
        provider = get_provider()
    if provider is None:
        await _complete_placeholder(job)
        return await Job.get(job.id)

    log.info("generation_started", job_id=job_id, prompt=job.prompt[:80], model_choice=job.model)
    started = time.perf_counter()
    try:
        outcome = await synthesize_with_fallback(
            provider,
            job.model,
            job.prompt,
            job.negative_prompt,
            policy=policy or GenerationPolicy.from_settings(),
            sleep=sleep,
        )
    except GenerationFailedError as e:
        log.error("generation_failed", job_id=job_id, attempts=e.attempts, models=e.models, error=str(e))
        await jobs_service.fail_job(job, str(e))
        return await Job.get(job.id)
    except Exception as e:
        # not a provider rejection; no retry
        log.exception("generation_crashed", job_id=job_id)
        await jobs_service.fail_job(job, str(e) or e.__class__.__name__)
        return await Job.get(job.id)

    storage = storage or get_storage()
    filename = _image_filename(job.id)
    try:
        await storage.put(filename, outcome.image, content_type="image/png")
    except Exception as e:
        log.exception("image_store_failed", job_id=job_id, filename=filename)
        await jobs_service.fail_job(job, f"Failed to store image: {e}")
        return await Job.get(job.id)

    time_taken = int((time.perf_counter() - started) * 1000)
    result = JobResult(
        images=[
            GeneratedImage(
                url=storage.public_url(filename),
                width=job.width,
                height=job.height,
                filename=filename,
            )
        ],
        time_taken=time_taken,
        model=outcome.model,
    )
    await jobs_service.transition(job.id, "processing", "completed", result=result)
    log.info("generation_completed", job_id=job_id, model=outcome.model, attempts=outcome.attempts, time_taken_ms=time_taken)
    return await Job.get(job.id)
