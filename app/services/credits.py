"""Credits ledger and atomic balance updates."""

from beanie import PydanticObjectId, UpdateResponse
from beanie.operators import Inc
from pymongo.errors import DuplicateKeyError, PyMongoError

from app.core.exceptions import InsufficientCreditsError, NotFoundError, PersistenceError
from app.core.logging import get_logger
from app.models.transaction import Transaction, TransactionMetadata, TransactionType
from app.models.user import User

log = get_logger(__name__)


async def get_balance(user_id: PydanticObjectId) -> int:
    """Return current balance for user."""
    user = await User.get(user_id)
    if not user:
        raise NotFoundError("User not found")
    return user.credits


async def _find_by_idempotency_key(key: str) -> Transaction | None:
    return await Transaction.find_one(Transaction.idempotency_key == key)


async def _adjust_balance(user_id: PydanticObjectId, delta: int, require_funds: bool) -> User | None:
    """Single atomic $inc; with require_funds the update only matches when the debit keeps balance >= 0."""
    criteria = [User.id == user_id]
    if require_funds and delta < 0:
        criteria.append(User.credits >= -delta)
    return await User.find_one(*criteria).update(
        Inc({User.credits: delta}),
        response_type=UpdateResponse.NEW_DOCUMENT,
    )


async def apply_ledger_entry(
    user_id: PydanticObjectId,
    credits: int,
    type: TransactionType,
    description: str,
    amount: float = 0,
    metadata: TransactionMetadata | None = None,
    idempotency_key: str | None = None,
    require_funds: bool = False,
) -> tuple[Transaction, int]:
    """
    Apply a balance delta and append the matching ledger entry.
    Returns (entry, balance_after).

    The balance change is one atomic $inc. If the ledger insert then fails the
    $inc is reversed and PersistenceError raised, so balance and ledger move together.
    Idempotency: an existing entry with the same key is returned without re-applying.
    """
    if idempotency_key:
        existing = await _find_by_idempotency_key(idempotency_key)
        if existing:
            return existing, await get_balance(user_id)

    try:
        user = await _adjust_balance(user_id, credits, require_funds)
    except PyMongoError as e:
        log.exception("balance_update_failed", user_id=str(user_id), credits=credits, type=type)
        raise PersistenceError("Failed to update balance") from e
    if user is None:
        if not await User.get(user_id):
            raise NotFoundError("User not found")
        raise InsufficientCreditsError()

    entry = Transaction(
        user=user,
        type=type,
        amount=amount,
        credits=credits,
        description=description,
        metadata=metadata or TransactionMetadata(),
        idempotency_key=idempotency_key,
    )
    try:
        await entry.insert()
    except DuplicateKeyError as e:
        user = await _compensate(user_id, credits)
        if not idempotency_key:
            log.exception("ledger_insert_conflict", user_id=str(user_id), credits=credits, type=type)
            raise PersistenceError("Failed to record ledger entry") from e
        # Lost a race on the same idempotency key; the winner already moved the balance.
        existing = await _find_by_idempotency_key(idempotency_key)
        return existing, user.credits if user else 0
    except PyMongoError as e:
        await _compensate(user_id, credits)
        log.exception("ledger_insert_failed", user_id=str(user_id), credits=credits, type=type)
        raise PersistenceError("Failed to record ledger entry") from e

    log.info(
        "ledger_entry_applied",
        user_id=str(user_id),
        type=type,
        credits=credits,
        balance_after=user.credits,
    )
    return entry, user.credits


async def _compensate(user_id: PydanticObjectId, credits: int) -> User | None:
    try:
        return await _adjust_balance(user_id, -credits, require_funds=False)
    except PyMongoError as e:
        log.exception("balance_compensation_failed", user_id=str(user_id), credits=-credits)
        raise PersistenceError("Failed to reverse balance update") from e


async def total_credits_used(user_id: PydanticObjectId) -> int:
    """Sum of usage debits (absolute), derived from the ledger."""
    entries = await Transaction.find(
        Transaction.user.id == user_id,
        Transaction.type == "usage",
    ).to_list()
    return sum(abs(e.credits) for e in entries)


async def ledger_sum(user_id: PydanticObjectId) -> int:
    """Sum of all credit deltas for the user; equals the balance when nothing raced."""
    entries = await Transaction.find(Transaction.user.id == user_id).to_list()
    return sum(e.credits for e in entries)


async def list_transactions(
    user_id: PydanticObjectId,
    limit: int,
    skip: int,
) -> tuple[list[Transaction], int]:
    """Return (entries newest first, total count)."""
    query = Transaction.find(Transaction.user.id == user_id)
    total = await query.count()
    entries = await (
        Transaction.find(Transaction.user.id == user_id)
        .sort(-Transaction.created_at, -Transaction.id)
        .skip(skip)
        .limit(limit)
        .to_list()
    )
    return entries, total
