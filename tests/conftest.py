# tests/conftest.py
from __future__ import annotations

import asyncio
import json
from decimal import Decimal
from typing import Any, AsyncGenerator, Dict, List, Mapping, Optional

import httpx
import pytest
import pytest_asyncio

from api.server import create_app, make_admin_check
from schemas.order_definitions import PaymentSession, Product, ProviderEvent, RedirectTargets
from shop import (
    InMemoryOrderJournal,
    InMemoryOrderRepository,
    InMemoryProductStore,
    PaymentNotFound,
    PaymentProvider,
    ProviderRegistry,
    Shop,
)

ADMIN_TOKEN = "test-admin-token"


class FakeProvider(PaymentProvider):
    """
    Scriptable provider: statuses are set per payment id, failures injected
    through ``create_error``; ``yield_points`` forces task switches inside
    status lookups so concurrent paths interleave.
    """

    name = "fake"

    def __init__(self):
        self.statuses: Dict[str, str] = {}
        self.created: List[Dict[str, Any]] = []
        self.create_error: Optional[Exception] = None
        self.yield_points = 0

    async def create_payment(
        self,
        amount_minor_units: int,
        currency: str,
        metadata: Dict[str, Any],
        redirect_targets: RedirectTargets,
    ) -> PaymentSession:
        if self.create_error:
            raise self.create_error
        external_id = f"tr_{len(self.created) + 1}"
        self.created.append({
            "external_id": external_id,
            "amount": amount_minor_units,
            "currency": currency,
            "metadata": metadata,
            "return_url": redirect_targets.return_url,
        })
        self.statuses[external_id] = "open"
        return PaymentSession(external_id=external_id, redirect_url=f"https://pay.example/{external_id}")

    async def get_payment_status(self, external_id: str) -> str:
        for _ in range(self.yield_points):
            await asyncio.sleep(0)
        if external_id not in self.statuses:
            raise PaymentNotFound("Payment not found")
        return self.statuses[external_id]

    async def parse_callback(self, body: bytes, headers: Mapping[str, str]) -> Optional[ProviderEvent]:
        payload = json.loads(body)
        if "id" not in payload:
            return None
        status = await self.get_payment_status(payload["id"])
        return ProviderEvent(payment_reference=payload["id"], status=status)


def catalog() -> List[Product]:
    return [
        Product(id=1, title="Linen Tote", price=Decimal("9.99"), inventory=10),
        Product(id=2, title="Enamel Mug", price=Decimal("4.50"), inventory=1),
        Product(id=3, title="Poster", price=Decimal("0.005"), inventory=3),
    ]


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def products() -> InMemoryProductStore:
    return InMemoryProductStore(catalog())


@pytest.fixture
def orders() -> InMemoryOrderRepository:
    return InMemoryOrderRepository()


@pytest.fixture
def journal() -> InMemoryOrderJournal:
    return InMemoryOrderJournal()


@pytest.fixture
def shop(provider, products, orders, journal) -> Shop:
    return Shop.assemble(
        providers=ProviderRegistry({"fake": provider}, default="fake"),
        is_admin=lambda ctx: ctx == "admin",
        orders=orders,
        products=products,
        journal=journal,
    )


@pytest.fixture
def http_shop(provider, products, orders, journal) -> Shop:
    return Shop.assemble(
        providers=ProviderRegistry({"fake": provider}, default="fake"),
        is_admin=make_admin_check(ADMIN_TOKEN),
        orders=orders,
        products=products,
        journal=journal,
    )


@pytest_asyncio.fixture
async def client(http_shop) -> AsyncGenerator[httpx.AsyncClient, None]:
    app = create_app(shop=http_shop)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://shop.test") as c:
        yield c


@pytest.fixture
def admin_headers() -> Dict[str, str]:
    return {"Authorization": f"Bearer {ADMIN_TOKEN}"}


async def paid_checkout(shop: Shop, provider: FakeProvider, items: List[Dict[str, Any]]) -> str:
    """Check out and mark the provider payment paid; returns the order id."""
    result = await shop.checkout.checkout(items, customer_email="buyer@example.com")
    order = await shop.orders.get(result.order_id)
    provider.statuses[order.provider_payment_reference] = "paid"
    return result.order_id
