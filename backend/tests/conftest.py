"""
Shared fixtures for the integrity-layer tests.

Every test gets its own in-memory SQLite database. Credentials use
pbkdf2_sha256 so hashing stays fast.
"""

import os

os.environ["CREDENTIAL_SCHEMES"] = "pbkdf2_sha256"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENVIRONMENT"] = "test"
os.environ["INTERNAL_API_KEY"] = "test-internal-key"

import pytest
import pytest_asyncio

from config import get_settings
from database import build_engine, build_session_factory, create_all
from identity.models import Role
from services.container import build_services
from services.credentials import get_crypt_context, hash_credential


@pytest.fixture(autouse=True)
def fresh_settings():
    """Drop cached settings so monkeypatched env vars take effect."""
    get_settings.cache_clear()
    get_crypt_context.cache_clear()
    yield
    get_settings.cache_clear()
    get_crypt_context.cache_clear()


@pytest_asyncio.fixture
async def session_factory():
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    await create_all(engine)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest_asyncio.fixture
async def services(session_factory):
    return build_services(session_factory)


@pytest.fixture
def registry(services):
    return services.identities.registry


@pytest.fixture
def stores(services):
    return services.graph.stores


@pytest.fixture
def plant_identity(registry):
    """Insert an identity straight into a partition, bypassing uniqueness checks."""
    async def _plant(role: Role, email: str, password: str = "secret123", **fields):
        payload = {
            "email": email,
            "hashed_credential": hash_credential(password),
            "display_name": fields.pop("display_name", email.split("@")[0]),
        }
        payload.update(fields)
        return await registry[role].create(payload)
    return _plant
