from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from app.core.pagination import page_envelope
from app.deps import get_current_user, page_params
from app.models.user import User
from app.services import billing as billing_service
from app.services import credits as credits_service

router = APIRouter()


class PurchaseRequest(BaseModel):
    package_id: str | None = Field(None, alias="packageId")
    payment_method: str | None = Field(None, alias="paymentMethod")


@router.get("/packages")
async def billing_packages():
    """Credit package catalog."""
    return {"packages": billing_service.list_packages()}


@router.post("/purchase")
async def billing_purchase(body: PurchaseRequest, user: User = Depends(get_current_user)):
    """Add a package's credits to the balance. Payment details are recorded, not verified."""
    return await billing_service.purchase(user.id, body.package_id, body.payment_method)


@router.get("/transactions")
async def billing_transactions(
    user: User = Depends(get_current_user),
    paging: tuple[int, int, int] = Depends(page_params),
):
    """Return ledger entries for current user (newest first)."""
    page, limit, skip = paging
    entries, total = await credits_service.list_transactions(user.id, limit, skip)
    out = [
        {
            "id": str(e.id),
            "type": e.type,
            "amount": e.amount,
            "credits": e.credits,
            "description": e.description,
            "status": e.status,
            "createdAt": e.created_at.isoformat(),
        }
        for e in entries
    ]
    return page_envelope("transactions", out, page, limit, total)
