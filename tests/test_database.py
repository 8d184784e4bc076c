# tests/test_database.py
# PostgreSQL-backed stores; runs only when TEST_DATABASE_URL points at a live server.
from __future__ import annotations

import asyncio
import os
from decimal import Decimal
from typing import AsyncGenerator, List

import pytest
import pytest_asyncio

from database import (
    Database,
    PostgresOrderJournal,
    PostgresOrderRepository,
    PostgresProductStore,
    affected_rows,
)
from schemas.order_definitions import Order, OrderEventType, OrderItem, OrderStatus
from shop import InventoryAdjuster, StorageError, record_event

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")


@pytest_asyncio.fixture
async def database() -> AsyncGenerator[Database, None]:
    if not TEST_DATABASE_URL:
        pytest.skip("TEST_DATABASE_URL not set")
    db = Database(dsn=TEST_DATABASE_URL)
    try:
        await asyncio.wait_for(db.initialize(), timeout=5)
    except (StorageError, asyncio.TimeoutError) as e:
        pytest.skip(f"database unreachable: {e}")
    yield db
    await db.close()


@pytest_asyncio.fixture
async def product_id(database) -> AsyncGenerator[int, None]:
    row = await database.fetch_one(
        "INSERT INTO products (title, price, inventory) VALUES ($1, $2, $3) RETURNING id",
        "Linen Tote",
        Decimal("9.99"),
        3,
    )
    yield row["id"]
    await database.execute("DELETE FROM products WHERE id = $1", row["id"])


@pytest_asyncio.fixture
async def created_orders(database) -> AsyncGenerator[List[str], None]:
    ids: List[str] = []
    yield ids
    for order_id in ids:
        await database.execute("DELETE FROM order_events WHERE order_id = $1", order_id)
        await database.execute("DELETE FROM orders WHERE id = $1", order_id)


async def new_order(repo: PostgresOrderRepository, created: List[str], product_id: int) -> Order:
    order = await repo.create(Order(
        customer_email="buyer@example.com",
        items=[OrderItem(
            product_id=product_id,
            title="Linen Tote",
            unit_price_minor_units=999,
            quantity="2",
            billed_quantity=2,
        )],
        total_amount_minor_units=1998,
        provider_name="mollie",
    ))
    created.append(order.id)
    return order


def test_affected_rows():
    assert affected_rows("UPDATE 1") == 1
    assert affected_rows("DELETE 0") == 0
    assert affected_rows("") == 0
    assert affected_rows(None) == 0


@pytest.mark.asyncio
async def test_mark_paid_has_exactly_one_winner(database, created_orders, product_id):
    repo = PostgresOrderRepository(database)
    order = await new_order(repo, created_orders, product_id)

    results = await asyncio.gather(*(repo.mark_paid(order.id) for _ in range(5)))

    winners = [r for r in results if r is not None]
    assert len(winners) == 1
    assert winners[0].status == OrderStatus.PAID
    assert winners[0].paid_at is not None
    assert winners[0].items[0].quantity == "2"


@pytest.mark.asyncio
async def test_mark_paid_refuses_admin_paid_status(database, created_orders, product_id):
    repo = PostgresOrderRepository(database)
    order = await new_order(repo, created_orders, product_id)

    assert await repo.update_fulfillment(order.id, OrderStatus.PAID, None) == 1

    assert await repo.mark_paid(order.id) is None
    assert (await repo.get(order.id)).paid_at is None


@pytest.mark.asyncio
async def test_mark_paid_refuses_after_fulfillment(database, created_orders, product_id):
    repo = PostgresOrderRepository(database)
    order = await new_order(repo, created_orders, product_id)

    assert await repo.mark_paid(order.id) is not None
    await repo.update_fulfillment(order.id, OrderStatus.SHIPPED, "TRK-1")

    assert await repo.mark_paid(order.id) is None
    assert (await repo.get(order.id)).status == OrderStatus.SHIPPED


@pytest.mark.asyncio
async def test_payment_reference_is_set_once(database, created_orders, product_id):
    repo = PostgresOrderRepository(database)
    order = await new_order(repo, created_orders, product_id)

    assert await repo.set_payment_reference(order.id, f"tr_{order.id}") is True
    assert await repo.set_payment_reference(order.id, "tr_other") is False

    found = await repo.get_by_payment_reference(f"tr_{order.id}")
    assert found.id == order.id
    assert found.created_at.utcoffset() is not None


@pytest.mark.asyncio
async def test_inventory_decrement_clamps_at_zero(database, product_id):
    store = PostgresProductStore(database)
    inventory = InventoryAdjuster(store)

    assert await inventory.decrement(product_id, 2) is True
    assert await inventory.decrement(product_id, 5) is True
    assert await inventory.decrement(-1, 1) is False

    [product] = await store.get_products_by_ids([product_id, product_id])
    assert product.inventory == 0
    assert product.price_minor_units == 999


@pytest.mark.asyncio
async def test_journal_keeps_order_trail(database, created_orders, product_id):
    repo = PostgresOrderRepository(database)
    journal = PostgresOrderJournal(database)
    order = await new_order(repo, created_orders, product_id)

    await record_event(journal, order.id, OrderEventType.ORDER_CREATED, {"total_minor_units": 1998})
    await record_event(journal, order.id, OrderEventType.PAYMENT_CONFIRMED, {"source": "verify"})

    events = await journal.get_by_order(order.id)
    assert [e.event_type for e in events] == [
        OrderEventType.ORDER_CREATED,
        OrderEventType.PAYMENT_CONFIRMED,
    ]
    assert events[0].payload == {"total_minor_units": 1998}
