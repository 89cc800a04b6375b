from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field


class User(Document):
    email: Indexed(str, unique=True)
    password_hash: str
    first_name: str = ""
    last_name: str = ""
    credits: int = 0  # cached balance; only changed via atomic $inc alongside a ledger entry
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "users"
