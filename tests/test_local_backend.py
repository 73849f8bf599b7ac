import asyncio

import pytest

from app.schemas import CartLine, OrderStatus, TableStatus
from app.storage import rules
from app.storage.base import InsufficientStockError, OrderNotFoundError
from app.storage.local import LocalBackend, STARTER_CATALOG
from app.storage.service import PersistenceService
from tests.conftest import make_product


@pytest.fixture
def service(local_backend) -> PersistenceService:
    return PersistenceService(local_backend)


async def _stock_of(service: PersistenceService, product_id: str) -> int:
    products = await service.get_products_once()
    return next(p.stock for p in products if p.id == product_id)


# =============================================================================
# PRODUCTS
# =============================================================================

async def test_first_read_seeds_starter_catalog(service):
    products = await service.get_products_once()

    assert [p.id for p in products] == [p.id for p in STARTER_CATALOG]
    assert products[0].name == "Cerveja Gelada 600ml"


async def test_new_product_gets_an_id(service):
    saved = await service.save_product(make_product())

    assert saved.id
    assert [p.name for p in await service.get_products_once()] == ["Suco"]


async def test_same_name_merges_stock_and_overwrites_price(service):
    first = await service.save_product(make_product(stock=10, image_url="suco.png"))

    merged = await service.save_product(make_product(price=6.5, stock=5, description="Laranja"))

    products = await service.get_products_once()
    assert len(products) == 1
    assert merged.id == first.id
    assert merged.stock == 15
    assert merged.price == 6.5
    assert merged.description == "Laranja"
    assert merged.image_url == "suco.png"


async def test_update_by_id_replaces_fields(service):
    saved = await service.save_product(make_product(stock=10))

    await service.save_product(saved.model_copy(update={"stock": 3, "price": 7.0}))

    products = await service.get_products_once()
    assert products[0].stock == 3
    assert products[0].price == 7.0


async def test_delete_product(service):
    saved = await service.save_product(make_product())

    await service.delete_product(saved.id)
    await service.delete_product("missing")

    assert await service.get_products_once() == []


# =============================================================================
# ORDERS
# =============================================================================

async def test_order_decrements_stock_and_snapshots_price(service):
    suco = await service.save_product(make_product(price=5.0, stock=10))

    order = await service.create_order(4, [CartLine(product=suco, quantity=3)])

    assert order.status == OrderStatus.PENDING
    assert order.total == 15.0
    assert await _stock_of(service, suco.id) == 7

    await service.save_product(suco.model_copy(update={"price": 9.0, "stock": 7}))
    stored = (await service.get_orders_once())[0]
    assert stored.items[0].price == 5.0
    assert stored.total == 15.0


async def test_insufficient_stock_rejects_whole_order(service):
    suco = await service.save_product(make_product(stock=10))
    agua = await service.save_product(make_product(name="Água", stock=1))

    with pytest.raises(InsufficientStockError) as exc_info:
        await service.create_order(2, [
            CartLine(product=suco, quantity=2),
            CartLine(product=agua, quantity=2),
        ])

    assert exc_info.value.available == 1
    assert await _stock_of(service, suco.id) == 10
    assert await service.get_orders_once() == []


async def test_unknown_product_is_accepted_without_stock(service):
    ghost = make_product(name="Fantasma", id="ghost")

    order = await service.create_order(1, [CartLine(product=ghost, quantity=2)])

    assert order.total == 10.0
    assert len(await service.get_orders_once()) == 1


async def test_empty_order_is_rejected(service):
    with pytest.raises(ValueError):
        await service.create_order(1, [])


async def test_cancel_restores_stock_once(service):
    suco = await service.save_product(make_product(stock=10))
    order = await service.create_order(4, [CartLine(product=suco, quantity=3)])

    await service.update_order_status(order.id, OrderStatus.CANCELED)
    await service.update_order_status(order.id, OrderStatus.CANCELED)

    assert await _stock_of(service, suco.id) == 10


async def test_status_change_without_cancel_keeps_stock(service):
    suco = await service.save_product(make_product(stock=10))
    order = await service.create_order(4, [CartLine(product=suco, quantity=3)])

    updated = await service.update_order_status(order.id, OrderStatus.PREPARING)

    assert updated.status == OrderStatus.PREPARING
    assert await _stock_of(service, suco.id) == 7


async def test_unknown_order_raises(service):
    with pytest.raises(OrderNotFoundError):
        await service.update_order_status("nope", OrderStatus.PAID)


# =============================================================================
# TABLES
# =============================================================================

async def test_close_request_and_finalize(service):
    suco = await service.save_product(make_product(stock=10))
    first = await service.create_order(4, [CartLine(product=suco, quantity=1)])
    canceled = await service.create_order(4, [CartLine(product=suco, quantity=1)])
    other_table = await service.create_order(5, [CartLine(product=suco, quantity=1)])
    await service.update_order_status(canceled.id, OrderStatus.CANCELED)

    session = await service.request_table_close(4, "PIX")
    assert session.status == TableStatus.CLOSING_REQUESTED
    assert (await service.get_tables_once())[4].payment_method == "PIX"

    paid = await service.finalize_table(4)

    assert paid == 1
    assert 4 not in await service.get_tables_once()
    statuses = {o.id: o.status for o in await service.get_orders_once()}
    assert statuses[first.id] == OrderStatus.PAID
    assert statuses[canceled.id] == OrderStatus.CANCELED
    assert statuses[other_table.id] == OrderStatus.PENDING


async def test_finalize_without_session_is_harmless(service):
    assert await service.finalize_table(9) == 0


# =============================================================================
# ROBUSTNESS
# =============================================================================

async def test_malformed_json_resets_to_empty(store, service):
    store.set_item("orders", "{not json")

    assert await service.get_orders_once() == []
    assert store.get_item("orders") == "[]"


async def test_order_survives_a_blocked_disk_write(store, service):
    suco = await service.save_product(make_product(stock=10))
    (store.directory / "test_products.json.tmp").mkdir()

    order = await service.create_order(4, [CartLine(product=suco, quantity=3)])

    assert await _stock_of(service, suco.id) == 7
    assert [o.id for o in await service.get_orders_once()] == [order.id]


async def test_diagnostics_on_writable_store(service):
    result = await service.run_diagnostics()

    assert result.ok is True
    assert result.mode == "local"


# =============================================================================
# SUBSCRIPTIONS
# =============================================================================

async def test_subscription_delivers_immediately_and_on_poll(service):
    received = []

    subscription = await service.subscribe_orders(received.append)
    assert received == [[]]

    suco = await service.save_product(make_product())
    await service.create_order(4, [CartLine(product=suco, quantity=1)])
    await asyncio.sleep(0.2)
    subscription.cancel()

    assert len(received[-1]) == 1


async def test_cancelled_subscription_stops_callbacks(service):
    received = []

    subscription = await service.subscribe_tables(received.append)
    subscription.cancel()
    count = len(received)
    await asyncio.sleep(0.2)

    assert len(received) == count
    assert not subscription.active


async def test_async_callbacks_are_awaited(service):
    received = []

    async def on_products(products):
        received.append([p.name for p in products])

    subscription = await service.subscribe_products(on_products)
    subscription()

    assert received[0][0] == STARTER_CATALOG[0].name


async def test_failing_callback_does_not_stop_polling(service):
    calls = []

    def flaky(snapshot):
        calls.append(snapshot)
        raise RuntimeError("boom")

    subscription = await service.subscribe_orders(flaky)
    await asyncio.sleep(0.2)
    subscription.cancel()

    assert len(calls) >= 2


async def test_close_cancels_every_subscription(store):
    backend = LocalBackend(store, poll_interval=0.05)
    subscription = await backend.subscribe_orders(lambda snapshot: None)

    await backend.close()

    assert not subscription.active


def test_merge_rule_keeps_image_when_incoming_is_empty():
    existing = make_product(stock=2, image_url="old.png", id="1")
    merged = rules.merge_product(existing, make_product(stock=3))

    assert merged.id == "1"
    assert merged.stock == 5
    assert merged.image_url == "old.png"
