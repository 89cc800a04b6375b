import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Use test DB, in-process dispatch and placeholder generation
os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017")
os.environ.setdefault("MONGODB_DB_NAME", "imagegen_test")
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")
os.environ["JOB_QUEUE"] = "inline"
os.environ["HUGGINGFACE_API_KEY"] = ""
os.environ["GENERATION_BACKOFF_SECONDS"] = "0"


@pytest_asyncio.fixture
async def db() -> AsyncGenerator[None, None]:
    """Beanie on the test database with empty collections; skipped when MongoDB is unreachable."""
    from pymongo.errors import PyMongoError

    from app.db.init import DOCUMENT_MODELS, init_db
    try:
        await init_db(server_selection_timeout_ms=1500)
    except PyMongoError as e:
        pytest.skip(f"MongoDB not available: {e}")
    for model in DOCUMENT_MODELS:
        await model.delete_all()
    yield


@pytest_asyncio.fixture
async def user(db):
    from app.core.security import hash_password
    from app.models.user import User
    u = User(email="test@example.com", password_hash=hash_password("secret"), first_name="Test")
    await u.insert()
    return u


@pytest_asyncio.fixture
async def client(db) -> AsyncGenerator[AsyncClient, None]:
    from app.main import app
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
