import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

os.environ.setdefault("ENVIRONMENT", "local")
os.environ.setdefault("RATE_LIMIT_STORAGE_URI", "memory://")

from libs.common.config import get_settings

# Clear cached settings to reload with the test env vars
get_settings.cache_clear()
settings = get_settings()

from libs.common.rate_limit import limiter
from services.gateway_service.app import clients
from services.gateway_service.app.main import app


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """
    Yield an AsyncClient bound to the gateway app.

    Upstream clients swapped by a test and dependency overrides are restored
    afterwards; rate limit counters start from zero.
    """
    original_clients = {
        "boxtal": clients.boxtal_client,
        "insee": clients.insee_client,
        "bce": clients.bce_client,
    }
    limiter.reset()

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
    clients.boxtal_client = original_clients["boxtal"]
    clients.insee_client = original_clients["insee"]
    clients.bce_client = original_clients["bce"]


@pytest.fixture
def auth_headers() -> dict:
    """Return headers carrying a session token signed with the test secret."""
    from jose import jwt

    token = jwt.encode(
        {"sub": "user_test", "email": "admin@paylive.cc"},
        settings.AUTH_JWT_SECRET,
        algorithm=settings.AUTH_JWT_ALGORITHM,
    )
    return {"Authorization": f"Bearer {token}"}
