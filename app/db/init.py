import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from app.core.config import get_settings
from app.models.api_key import ApiKey
from app.models.failed_job import FailedJob
from app.models.job import Job
from app.models.transaction import Transaction
from app.models.user import User

DOCUMENT_MODELS = [
    User,
    Job,
    Transaction,
    ApiKey,
    FailedJob,
]

_client: AsyncIOMotorClient | None = None


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


async def init_db(server_selection_timeout_ms: int = 5000) -> None:
    global _client
    settings = get_settings()
    kwargs = {
        "serverSelectionTimeoutMS": server_selection_timeout_ms,
        "socketTimeoutMS": 45000,
    }
    if _use_tls(settings.mongodb_uri):
        kwargs["tlsCAFile"] = certifi.where()
        kwargs["tlsDisableOCSPEndpointCheck"] = True
    client = AsyncIOMotorClient(settings.mongodb_uri, **kwargs)
    database = client[settings.mongodb_db_name]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
    _client = client


async def ping_db() -> bool:
    """True when the client initialised by init_db can reach the server."""
    if _client is None:
        return False
    try:
        await _client.admin.command("ping")
        return True
    except Exception:
        return False
