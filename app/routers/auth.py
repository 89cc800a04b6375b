from fastapi import APIRouter, status
from pydantic import BaseModel, Field

from app.services import users as user_service

router = APIRouter()


class RegisterRequest(BaseModel):
    email: str
    password: str
    first_name: str = Field("", alias="firstName")
    last_name: str = Field("", alias="lastName")


class LoginRequest(BaseModel):
    email: str
    password: str


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def auth_register(body: RegisterRequest):
    """Create account with welcome bonus credits; return user and bearer token."""
    user, token = await user_service.register(body.email, body.password, body.first_name, body.last_name)
    return {"user": user_service.user_out(user), "accessToken": token}


@router.post("/login")
async def auth_login(body: LoginRequest):
    """Exchange email/password for a bearer token."""
    user, token = await user_service.login(body.email, body.password)
    return {"user": user_service.user_out(user), "accessToken": token}
