import threading

import pytest

from replenishment_sentry.database import Database
from replenishment_sentry.inventory import Allocation, InsufficientStock, InventoryReservationService


@pytest.fixture(name="inventory")
def inventory_fixture() -> InventoryReservationService:
    return InventoryReservationService("WH1")


def test_reserve_takes_exactly_the_requested_units(database: Database, inventory, stock) -> None:
    stock.seed("P1", 12)

    with database.session_scope() as session:
        result = inventory.reserve(session, "P1", 5)

    assert result == Allocation(warehouse_id="WH1", product_id="P1", quantity=5)
    assert stock.warehouse("P1") == 7


def test_reserve_can_drain_the_counter(database: Database, inventory, stock) -> None:
    stock.seed("P1", 5)

    with database.session_scope() as session:
        assert isinstance(inventory.reserve(session, "P1", 5), Allocation)

    assert stock.warehouse("P1") == 0


def test_reserve_leaves_stock_untouched_when_short(database: Database, inventory, stock) -> None:
    stock.seed("P1", 2)

    with database.session_scope() as session:
        result = inventory.reserve(session, "P1", 3)

    assert result == InsufficientStock(warehouse_id="WH1", product_id="P1", requested=3)
    assert stock.warehouse("P1") == 2


def test_reserve_unknown_product_is_insufficient(database: Database, inventory) -> None:
    with database.session_scope() as session:
        assert isinstance(inventory.reserve(session, "NOPE", 1), InsufficientStock)


def test_reserve_only_draws_from_the_named_warehouse(database: Database, inventory, stock) -> None:
    stock.seed("P1", 10, warehouse_id="WH2")

    with database.session_scope() as session:
        assert isinstance(inventory.reserve(session, "P1", 4), InsufficientStock)
        assert isinstance(inventory.reserve(session, "P1", 4, "WH2"), Allocation)

    assert stock.warehouse("P1", "WH2") == 6


def test_reserve_rejects_non_positive_quantities(database: Database, inventory) -> None:
    with database.session_scope() as session:
        with pytest.raises(ValueError):
            inventory.reserve(session, "P1", 0)


def test_reservation_rolls_back_with_the_transaction(database: Database, inventory, stock) -> None:
    stock.seed("P1", 10)

    with pytest.raises(RuntimeError):
        with database.session_scope() as session:
            inventory.reserve(session, "P1", 10)
            raise RuntimeError("ledger write failed")

    assert stock.warehouse("P1") == 10


def test_concurrent_reservations_never_oversell(database: Database, inventory, stock) -> None:
    units, contenders = 10, 6
    stock.seed("P1", units)
    barrier = threading.Barrier(contenders)
    results: list = []
    lock = threading.Lock()

    def contend() -> None:
        barrier.wait()
        with database.session_scope() as session:
            result = inventory.reserve(session, "P1", units)
        with lock:
            results.append(result)

    threads = [threading.Thread(target=contend) for _ in range(contenders)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    assert len(results) == contenders
    assert sum(isinstance(r, Allocation) for r in results) == 1
    assert sum(isinstance(r, InsufficientStock) for r in results) == contenders - 1
    assert stock.warehouse("P1") == 0


def test_receive_creates_then_increments_store_stock(database: Database, inventory, stock) -> None:
    with database.session_scope() as session:
        inventory.receive(session, "S1", "P1", 4)
    assert stock.store("S1", "P1") == 4

    with database.session_scope() as session:
        inventory.receive(session, "S1", "P1", 6)
    assert stock.store("S1", "P1") == 10
    assert stock.store("S2", "P1") == 0


def test_restock_creates_and_tops_up_warehouse(database: Database, inventory, stock) -> None:
    with database.session_scope() as session:
        created = inventory.restock(session, "P9", 3)
        assert created.quantity == 3
    with database.session_scope() as session:
        topped = inventory.restock(session, "P9", 4)
        assert topped.quantity == 7
    assert stock.warehouse("P9") == 7
