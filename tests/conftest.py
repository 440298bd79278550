import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient

# Settings are read once at import of zazzles.main
os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017")
os.environ.setdefault("MONGODB_DB_NAME", "zazzles_test")
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")
os.environ.setdefault("DB_INIT_ON_STARTUP", "false")
os.environ.setdefault("STRIPE_PACK_9_PRICE_ID", "price_pack_9")
os.environ.setdefault("STRIPE_PRO_PRICE_ID", "price_pro")

from tests.fakes import FakeGateway, InMemoryCreditStore  # noqa: E402
from zazzles.db.init import DOCUMENT_MODELS  # noqa: E402


@pytest_asyncio.fixture
async def beanie_db():
    """Beanie documents can only be instantiated after init_beanie; back them with mongomock."""
    from beanie import init_beanie

    client = AsyncMongoMockClient()
    await init_beanie(database=client["zazzles_test"], document_models=DOCUMENT_MODELS)
    yield client


@pytest.fixture
def store(beanie_db) -> InMemoryCreditStore:
    return InMemoryCreditStore()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest_asyncio.fixture
async def make_business(store):
    """Factory: business with a credit balance and optional auto top-up settings."""
    from zazzles.models.business import Business

    async def _make(
        credits: int = 10,
        auto_topup: bool = False,
        threshold: int = 5,
        pack_id: str = "pack_9",
        customer_id: str | None = "cus_test",
        payment_method: str | None = "pm_test",
        email: str | None = None,
    ) -> Business:
        business = Business(
            name="Glow Salon",
            email=email or f"owner{len(store.businesses) + 1}@glow.test",
            auto_topup_enabled=auto_topup,
            auto_topup_threshold=threshold,
            auto_topup_pack=pack_id,
            stripe_customer_id=customer_id,
            stripe_default_payment_method=payment_method,
        )
        await store.insert_business(business)
        await store.create_balance(business.id, credits)
        return business

    return _make


@pytest_asyncio.fixture
async def client(store, gateway) -> AsyncGenerator[AsyncClient, None]:
    from zazzles.deps import get_gateway, get_store
    from zazzles.main import app

    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_gateway] = lambda: gateway
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()
