from datetime import datetime
from typing import Literal

from beanie import Document, Link, PydanticObjectId
from pydantic import BaseModel, Field
from pymongo import ASCENDING, DESCENDING, IndexModel

from app.models.user import User

TransactionType = Literal["purchase", "usage", "refund", "bonus"]


class TransactionMetadata(BaseModel):
    job_id: PydanticObjectId | None = None
    package_id: str | None = None
    payment_method: str | None = None


class Transaction(Document):
    """Immutable ledger entry: one per balance change, credits == the delta applied."""
    user: Link[User]
    type: TransactionType
    amount: float = 0  # currency; 0 for usage/refund/bonus
    credits: int  # positive = credit, negative = debit
    description: str
    status: Literal["pending", "completed", "failed"] = "completed"
    metadata: TransactionMetadata = Field(default_factory=TransactionMetadata)
    idempotency_key: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "transactions"
        indexes = [
            [("user", 1), ("created_at", -1)],
            [("user", 1), ("type", 1)],
            [("metadata.job_id", 1), ("type", 1)],
            IndexModel(
                [("idempotency_key", ASCENDING)],
                unique=True,
                partialFilterExpression={"idempotency_key": {"$type": "string"}},
                name="idempotency_key_unique",
            ),
            IndexModel([("created_at", DESCENDING)]),
        ]
