from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from app.core.security import mask_api_key
from app.deps import get_current_user
from app.models.user import User
from app.services import api_keys as api_keys_service

router = APIRouter()


class CreateKeyRequest(BaseModel):
    name: str | None = None


@router.get("")
async def keys_list(user: User = Depends(get_current_user)):
    keys = await api_keys_service.list_keys(user.id)
    return {
        "keys": [
            {
                "id": str(k.id),
                "name": k.name,
                "key": mask_api_key(k.key),
                "fullKey": k.key,
                "lastUsed": k.last_used.isoformat() if k.last_used else None,
                "usageCount": k.usage_count,
                "isActive": k.is_active,
                "createdAt": k.created_at.isoformat(),
            }
            for k in keys
        ]
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def keys_create(body: CreateKeyRequest, user: User = Depends(get_current_user)):
    k = await api_keys_service.create_key(user, body.name)
    return {"id": str(k.id), "name": k.name, "key": k.key, "createdAt": k.created_at.isoformat()}


@router.delete("/{key_id}")
async def keys_delete(key_id: str, user: User = Depends(get_current_user)):
    await api_keys_service.delete_key(key_id, user.id)
    return {"success": True}


@router.patch("/{key_id}/toggle")
async def keys_toggle(key_id: str, user: User = Depends(get_current_user)):
    is_active = await api_keys_service.toggle_key(key_id, user.id)
    return {"success": True, "isActive": is_active}
