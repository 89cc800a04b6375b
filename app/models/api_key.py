from datetime import datetime

from beanie import Document, Indexed, Link
from pydantic import Field

from app.models.user import User


class ApiKey(Document):
    user: Link[User]
    name: str
    key: Indexed(str, unique=True)
    last_used: datetime | None = None
    usage_count: int = 0
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "api_keys"
        indexes = [[("user", 1), ("created_at", -1)]]
