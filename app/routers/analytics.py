from fastapi import APIRouter, Depends

from app.deps import get_current_user
from app.models.user import User
from app.services import analytics as analytics_service

router = APIRouter()


@router.get("/stats")
async def analytics_stats(user: User = Depends(get_current_user)):
    return await analytics_service.stats(user)
