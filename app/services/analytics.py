from datetime import datetime, timedelta

from app.models.job import Job
from app.models.user import User
from app.services import credits as credits_service

RECENT_DAYS = 7
RECENT_LIMIT = 10


def _start_of_month(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


async def stats(user: User, now: datetime | None = None) -> dict:
    """Dashboard numbers for the user. Credits used come from the ledger, not a stored counter."""
    now = now or datetime.utcnow()
    total_images = await Job.find(Job.user.id == user.id, Job.status == "completed").count()
    images_this_month = await Job.find(
        Job.user.id == user.id,
        Job.status == "completed",
        Job.created_at >= _start_of_month(now),
    ).count()
    recent = await (
        Job.find(Job.user.id == user.id, Job.created_at >= now - timedelta(days=RECENT_DAYS))
        .sort(-Job.created_at, -Job.id)
        .limit(RECENT_LIMIT)
        .to_list()
    )
    return {
        "totalImages": total_images,
        "imagesThisMonth": images_this_month,
        "totalCreditsUsed": await credits_service.total_credits_used(user.id),
        "currentCredits": user.credits,
        "recentActivity": [
            {
                "id": str(j.id),
                "prompt": j.prompt,
                "status": j.status,
                "createdAt": j.created_at.isoformat(),
            }
            for j in recent
        ],
    }
