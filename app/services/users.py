from datetime import datetime

from beanie import PydanticObjectId
from pymongo.errors import DuplicateKeyError

from app.core.config import get_settings
from app.core.exceptions import BadRequestError, UnauthorizedError, ValidationError
from app.core.logging import get_logger
from app.core.security import create_access_token, hash_password, verify_password
from app.models.api_key import ApiKey
from app.models.user import User
from app.services import credits as credits_service

log = get_logger(__name__)


def _normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


async def register(
    email: str,
    password: str,
    first_name: str = "",
    last_name: str = "",
) -> tuple[User, str]:
    """Create account with the welcome bonus; return (user, access_token)."""
    email = _normalize_email(email)
    if not email or not password:
        raise ValidationError("Email and password are required")
    if await User.find_one(User.email == email):
        raise BadRequestError("Email already registered")
    user = User(
        email=email,
        password_hash=hash_password(password),
        first_name=first_name or "",
        last_name=last_name or "",
    )
    try:
        await user.insert()
    except DuplicateKeyError as e:
        raise BadRequestError("Email already registered") from e
    log.info("user_created", user_id=str(user.id), email=user.email)

    bonus = get_settings().signup_bonus_credits
    if bonus:
        await credits_service.apply_ledger_entry(
            user.id,
            bonus,
            "bonus",
            description="Welcome bonus credits",
            idempotency_key=f"signup_bonus:{user.id}",
        )
        user = await User.get(user.id)
    return user, create_access_token(str(user.id))


async def login(email: str, password: str) -> tuple[User, str]:
    user = await User.find_one(User.email == _normalize_email(email))
    if not user or not verify_password(password or "", user.password_hash):
        raise UnauthorizedError("Invalid credentials")
    log.info("user_login", user_id=str(user.id))
    return user, create_access_token(str(user.id))


async def get_user(user_id: str | PydanticObjectId) -> User | None:
    return await User.get(user_id)


async def authenticate_api_key(key: str) -> User:
    """Resolve an active API key to its owner and record the use."""
    api_key = await ApiKey.find_one(ApiKey.key == key)
    if not api_key or not api_key.is_active:
        raise UnauthorizedError("Invalid API key")
    user = await User.get(api_key.user.ref.id)
    if not user:
        raise UnauthorizedError("User not found")
    api_key.usage_count += 1
    api_key.last_used = datetime.utcnow()
    await api_key.save()
    return user


def user_out(user: User) -> dict:
    return {
        "id": str(user.id),
        "email": user.email,
        "firstName": user.first_name,
        "lastName": user.last_name,
        "credits": user.credits,
        "createdAt": user.created_at.isoformat(),
    }
