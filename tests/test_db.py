import time
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from postgrest.exceptions import APIError

from conftest import CUSTOMER_ID, RESTAURANT_ID, combo_selection, request_for, run
from assembler import LineRequest, OrderAssembler
from memory import InMemoryCatalog
from menu import CatalogExtra, CatalogGroup, CatalogItem, CatalogMenu
from db import CircuitState, DatabaseClient, OrderRepository
from errors import OrderNumberCollision, StorageError


def supabase_with(data):
    """Mock Supabase client whose select chains return `data`."""
    client = MagicMock()
    table = client.table.return_value
    table.select.return_value.eq.return_value.limit.return_value.execute.return_value = \
        MagicMock(data=data)
    table.select.return_value.eq.return_value.order.return_value.execute.return_value = \
        MagicMock(data=data)
    return client


def api_error(code, message="error"):
    return APIError({"message": message, "code": code, "hint": None, "details": None})


class FakeDatabase:
    """Stands in for DatabaseClient behind the repositories."""

    def __init__(self, orders=None):
        self.orders = orders or []
        self.inserted = []

    async def fetch_orders_for_customer(self, customer_id):
        return self.orders

    async def insert_order(self, document):
        self.inserted.append(document)
        return document


# ---- DatabaseClient ----


def test_fetch_menu_returns_first_row():
    client = supabase_with([{"restaurant_id": "rest_001"}])
    db = DatabaseClient(client=client)

    doc = run(db.fetch_menu("rest_001"))

    assert doc == {"restaurant_id": "rest_001"}
    client.table.assert_called_with("menus")
    assert db.get_stats()["reads"] == 1


def test_fetch_menu_missing_returns_none():
    db = DatabaseClient(client=supabase_with([]))
    assert run(db.fetch_menu("rest_404")) is None


def test_fetch_orders_newest_first_query():
    client = supabase_with([{"order_number": "ORD-1"}])
    db = DatabaseClient(client=client)

    docs = run(db.fetch_orders_for_customer(CUSTOMER_ID))

    assert docs == [{"order_number": "ORD-1"}]
    client.table.return_value.select.return_value.eq.assert_called_with(
        "customer->>customer_id", CUSTOMER_ID
    )
    client.table.return_value.select.return_value.eq.return_value.order.assert_called_with(
        "created_at", desc=True
    )


def test_insert_collision_maps_to_order_number_collision():
    client = MagicMock()
    client.table.return_value.insert.return_value.execute.side_effect = api_error("23505")
    db = DatabaseClient(client=client)

    with pytest.raises(OrderNumberCollision) as exc:
        run(db.insert_order({"order_number": "ORD-1"}))

    assert exc.value.identifier == "ORD-1"
    assert db.circuit_breaker.failure_count == 0


def test_other_api_errors_are_storage_errors():
    client = MagicMock()
    client.table.return_value.insert.return_value.execute.side_effect = api_error(
        "42501", "permission denied"
    )
    db = DatabaseClient(client=client)

    with pytest.raises(StorageError) as exc:
        run(db.insert_order({"order_number": "ORD-1"}))

    assert not isinstance(exc.value, OrderNumberCollision)
    assert db.get_stats()["errors"] == 1


def test_slow_query_times_out():
    client = MagicMock()
    execute = client.table.return_value.select.return_value.eq.return_value.limit.return_value.execute
    execute.side_effect = lambda: time.sleep(0.2)
    db = DatabaseClient(client=client, timeout=0.01)

    with pytest.raises(StorageError):
        run(db.fetch_customer(CUSTOMER_ID))


def test_circuit_opens_after_repeated_failures():
    client = MagicMock()
    execute = client.table.return_value.select.return_value.eq.return_value.limit.return_value.execute
    execute.side_effect = RuntimeError("connection reset")
    db = DatabaseClient(client=client)

    for _ in range(5):
        with pytest.raises(StorageError):
            run(db.fetch_menu("rest_001"))

    assert db.circuit_breaker.state is CircuitState.OPEN
    assert not db.is_healthy()

    with pytest.raises(StorageError):
        run(db.fetch_menu("rest_001"))
    assert execute.call_count == 5


def test_uninitialized_client():
    with pytest.raises(StorageError):
        run(DatabaseClient().fetch_menu("rest_001"))


# ---- OrderRepository ----


def test_repository_round_trips_orders(assembler):
    record = run(assembler.assemble_order(
        CUSTOMER_ID,
        request_for(LineRequest("combo", 2, tuple(combo_selection())))
    ))
    db = FakeDatabase()
    repository = OrderRepository(db)

    assert run(repository.save(record)) is record
    assert db.inserted[0]["order_number"] == record.order_number

    db.orders = db.inserted
    orders = run(repository.list_for_customer(CUSTOMER_ID))

    assert [o.order_number for o in orders] == [record.order_number]
    assert orders[0].total == record.total
    assert orders[0].verify() == (True, [])


def test_sub_cent_prices_survive_save_and_reload(customers):
    # Built directly: catalog parsing would reject the sub-cent price
    bread = CatalogItem(
        item_id="bread",
        name="Bread Roll",
        base_price=Decimal("1.125"),
        extras=(CatalogExtra(extra_id="butter", name="Butter", price_delta=Decimal("0.50")),)
    )
    menu = CatalogMenu(
        restaurant_id=RESTAURANT_ID,
        restaurant_name="Pioneer Grill",
        restaurant_location="Student Center",
        groups=(CatalogGroup(group_id="grp_bakery", name="Bakery", items=(bread,)),)
    )
    assembler = OrderAssembler(catalog=InMemoryCatalog([menu]), customers=customers)
    record = run(assembler.assemble_order(
        CUSTOMER_ID,
        request_for(LineRequest("bread", 1), LineRequest("bread", 1))
    ))
    db = FakeDatabase()
    repository = OrderRepository(db)

    run(repository.save(record))
    stored = db.inserted[0]
    assert [line["line_subtotal"] for line in stored["items"]] == ["1.125", "1.125"]
    assert stored["subtotal_amount"] == "2.25"

    db.orders = db.inserted
    reloaded = run(repository.list_for_customer(CUSTOMER_ID))[0]

    assert reloaded.verify() == (True, [])
    assert reloaded.subtotal == sum(line.line_subtotal for line in reloaded.lines)
    assert reloaded.total == record.total


def test_repository_malformed_order():
    repository = OrderRepository(FakeDatabase(orders=[{"order_number": "ORD-1"}]))
    with pytest.raises(StorageError):
        run(repository.list_for_customer(CUSTOMER_ID))

