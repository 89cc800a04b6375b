"""API key management."""

from beanie import PydanticObjectId
from bson.errors import InvalidId

from app.core.exceptions import NotFoundError, ValidationError
from app.core.security import generate_api_key
from app.models.api_key import ApiKey
from app.models.user import User


async def list_keys(user_id: PydanticObjectId) -> list[ApiKey]:
    return await ApiKey.find(ApiKey.user.id == user_id).sort(-ApiKey.created_at, -ApiKey.id).to_list()


async def create_key(user: User, name: str | None) -> ApiKey:
    if not name or not name.strip():
        raise ValidationError("Name is required")
    api_key = ApiKey(user=user, name=name.strip(), key=generate_api_key())
    await api_key.insert()
    return api_key


async def _get_owned(key_id: str, user_id: PydanticObjectId) -> ApiKey:
    try:
        oid = PydanticObjectId(key_id)
    except (InvalidId, TypeError) as e:
        raise NotFoundError("API key not found") from e
    api_key = await ApiKey.find_one(ApiKey.id == oid, ApiKey.user.id == user_id)
    if not api_key:
        raise NotFoundError("API key not found")
    return api_key


async def delete_key(key_id: str, user_id: PydanticObjectId) -> None:
    api_key = await _get_owned(key_id, user_id)
    await api_key.delete()


async def toggle_key(key_id: str, user_id: PydanticObjectId) -> bool:
    """Flip is_active; return the new value."""
    api_key = await _get_owned(key_id, user_id)
    api_key.is_active = not api_key.is_active
    await api_key.save()
    return api_key.is_active
