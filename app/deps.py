"""Shared FastAPI dependencies."""

from fastapi import Query, Request

from app.core.exceptions import UnauthorizedError
from app.core.pagination import paginate
from app.core.security import load_access_token
from app.models.user import User
from app.services import users as user_service

API_KEY_HEADER = "X-API-Key"


async def get_current_user(request: Request) -> User:
    """Dependency: resolve Bearer token (or X-API-Key) to the User."""
    api_key = request.headers.get(API_KEY_HEADER)
    if api_key:
        return await user_service.authenticate_api_key(api_key.strip())
    auth = request.headers.get("Authorization")
    if not auth:
        raise UnauthorizedError("No token provided")
    scheme, _, token = auth.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise UnauthorizedError("Invalid token")
    payload = load_access_token(token.strip())
    if not payload:
        raise UnauthorizedError("Invalid token")
    user_id = payload.get("user_id")
    if not user_id:
        raise UnauthorizedError("Invalid token")
    user = await user_service.get_user(user_id)
    if not user:
        raise UnauthorizedError("User not found")
    return user


def page_params(
    page: int | None = Query(None),
    limit: int | None = Query(None),
) -> tuple[int, int, int]:
    """Dependency: (page, limit, skip) with the defaults applied."""
    return paginate(page, limit)
