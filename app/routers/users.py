from fastapi import APIRouter, Depends

from app.deps import get_current_user
from app.models.user import User
from app.services import users as user_service

router = APIRouter()


@router.get("/me")
async def users_me(user: User = Depends(get_current_user)):
    """Return current user with credit balance."""
    return user_service.user_out(user)
