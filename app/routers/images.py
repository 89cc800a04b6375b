from functools import partial

from fastapi import APIRouter, BackgroundTasks, Depends, status
from pydantic import BaseModel, Field

from app.core.pagination import page_envelope
from app.deps import get_current_user, page_params
from app.models.job import Job, JobParameters, JobResult
from app.models.user import User
from app.services import jobs as jobs_service
from app.worker.tasks import dispatch_generation

router = APIRouter()


class GenerateRequest(BaseModel):
    prompt: str | None = None
    negative_prompt: str | None = Field(None, alias="negativePrompt")
    model: str | None = None
    parameters: JobParameters | None = None


def result_out(result: JobResult | None) -> dict | None:
    if result is None:
        return None
    out = {
        "images": [img.model_dump(exclude_none=True) for img in result.images],
        "timeTaken": result.time_taken,
        "model": result.model,
    }
    if result.note:
        out["note"] = result.note
    return out


def job_out(job: Job, detail: bool = False) -> dict:
    out = {
        "id": str(job.id),
        "prompt": job.prompt,
        "model": job.model,
        "status": job.status,
        "result": result_out(job.result),
        "createdAt": job.created_at.isoformat(),
    }
    if detail:
        out["parameters"] = job.parameters.model_dump()
        out["error"] = job.error.model_dump() if job.error else None
    return out


@router.post("/generate", status_code=status.HTTP_202_ACCEPTED)
async def images_generate(
    body: GenerateRequest,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
):
    """Spend one credit and queue an image generation job. Poll /jobs/{id} for the result."""
    job = await jobs_service.submit_job(
        user.id,
        body.prompt or "",
        negative_prompt=body.negative_prompt,
        model=body.model,
        parameters=body.parameters,
        dispatch=partial(dispatch_generation, background_tasks=background_tasks),
    )
    return {"jobId": str(job.id), "status": job.status}


@router.get("/jobs/{job_id}")
async def images_job(job_id: str, user: User = Depends(get_current_user)):
    job = await jobs_service.get_job(job_id, user.id)
    return job_out(job, detail=True)


@router.get("/jobs")
async def images_jobs(
    user: User = Depends(get_current_user),
    paging: tuple[int, int, int] = Depends(page_params),
):
    """List the user's jobs, newest first."""
    page, limit, skip = paging
    jobs, total = await jobs_service.list_jobs(user.id, limit, skip)
    return page_envelope("jobs", [job_out(j) for j in jobs], page, limit, total)


@router.get("/gallery")
async def images_gallery(
    user: User = Depends(get_current_user),
    paging: tuple[int, int, int] = Depends(page_params),
):
    """Completed images only, newest first."""
    page, limit, skip = paging
    jobs, total = await jobs_service.list_gallery(user.id, limit, skip)
    items = [
        {
            "id": str(j.id),
            "prompt": j.prompt,
            "result": result_out(j.result),
            "createdAt": j.created_at.isoformat(),
        }
        for j in jobs
    ]
    return page_envelope("images", items, page, limit, total)
