"""Credit package catalog and purchases. Payment is recorded, not verified."""

from dataclasses import asdict, dataclass

from beanie import PydanticObjectId

from app.core.exceptions import ValidationError
from app.models.transaction import TransactionMetadata
from app.services import credits as credits_service


@dataclass(frozen=True)
class CreditPackage:
    id: str
    name: str
    base_credits: int
    price: float
    popular: bool = False
    bonus: int = 0

    @property
    def credits(self) -> int:
        """Credits granted on purchase, bonus included."""
        return self.base_credits + self.bonus


PACKAGES: dict[str, CreditPackage] = {
    p.id: p
    for p in (
        CreditPackage("starter", "Starter Pack", 50, 9.99),
        CreditPackage("pro", "Pro Pack", 200, 29.99, popular=True, bonus=20),
        CreditPackage("ultimate", "Ultimate Pack", 500, 59.99, bonus=100),
    )
}


def list_packages() -> list[dict]:
    out = []
    for p in PACKAGES.values():
        item = asdict(p)
        item["credits"] = item.pop("base_credits")
        if not p.bonus:
            item.pop("bonus")
        out.append(item)
    return out


def get_package(package_id: str | None) -> CreditPackage:
    pkg = PACKAGES.get(package_id or "")
    if not pkg:
        raise ValidationError("Invalid package", details={"package_id": package_id})
    return pkg


async def purchase(
    user_id: PydanticObjectId,
    package_id: str | None,
    payment_method: str | None = None,
) -> dict:
    """Credit the package's credits and append a purchase entry. Returns new balance and credits added."""
    pkg = get_package(package_id)
    _, balance_after = await credits_service.apply_ledger_entry(
        user_id,
        pkg.credits,
        "purchase",
        description=f"Purchased {pkg.id} package",
        amount=pkg.price,
        metadata=TransactionMetadata(package_id=pkg.id, payment_method=payment_method),
    )
    return {"success": True, "newBalance": balance_after, "creditsAdded": pkg.credits}
