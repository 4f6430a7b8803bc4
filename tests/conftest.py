from collections.abc import Generator
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from replenishment_sentry.app import create_app
from replenishment_sentry.config import Settings
from replenishment_sentry.database import Database
from replenishment_sentry.events import SqlEventLog
from replenishment_sentry.inventory import InventoryReservationService
from replenishment_sentry.models import WarehouseStock
from replenishment_sentry.orchestrator import LifecycleOrchestrator
from replenishment_sentry.schemas import OrderRead
from replenishment_sentry.stages import Stage


class StockBook:
    """Reads and seeds stock counters directly, bypassing the orchestrator."""

    def __init__(self, database: Database) -> None:
        self._db = database
        self._inventory = InventoryReservationService("WH1")

    def seed(self, product_id: str, quantity: int, warehouse_id: str = "WH1") -> None:
        with self._db.session_scope() as session:
            stock = session.scalars(
                select(WarehouseStock).where(
                    WarehouseStock.warehouse_id == warehouse_id, WarehouseStock.product_id == product_id
                )
            ).first()
            if stock is None:
                session.add(WarehouseStock(warehouse_id=warehouse_id, product_id=product_id, quantity=quantity))
            else:
                stock.quantity = quantity

    def warehouse(self, product_id: str, warehouse_id: str = "WH1") -> int:
        with self._db.read_scope() as session:
            stock = self._inventory.warehouse_level(session, product_id, warehouse_id)
            return stock.quantity if stock is not None else 0

    def store(self, store_id: str, product_id: str) -> int:
        with self._db.read_scope() as session:
            return self._inventory.store_level(session, store_id, product_id)


def assert_ledger_consistent(order: OrderRead) -> None:
    assert order.history, "every order has at least its creation entry"
    assert order.status == order.history[-1].stage
    passed_picking = any(entry.stage is Stage.PENDING_PICKING for entry in order.history)
    assert (order.transfer_order is not None) == passed_picking
    timestamps = [entry.timestamp for entry in order.history]
    assert timestamps == sorted(timestamps)


@pytest.fixture(name="settings")
def settings_fixture(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'test.db'}",
        run_consumers=False,
        poll_interval=0.05,
        log_level="warning",
    )


@pytest.fixture(name="database")
def database_fixture(settings: Settings) -> Generator[Database, None, None]:
    database = Database(settings.database_url)
    database.init_schema()
    yield database
    database.dispose()


@pytest.fixture(name="events")
def events_fixture(database: Database) -> Generator[SqlEventLog, None, None]:
    events = SqlEventLog(database, poll_interval=0.05)
    yield events
    events.close()


@pytest.fixture(name="orchestrator")
def orchestrator_fixture(database: Database, events: SqlEventLog) -> LifecycleOrchestrator:
    return LifecycleOrchestrator(database, events, default_warehouse_id="WH1")


@pytest.fixture(name="stock")
def stock_fixture(database: Database) -> StockBook:
    return StockBook(database)


@pytest.fixture(name="client")
def client_fixture(settings: Settings) -> Generator[TestClient, Any, None]:
    app = create_app(settings)

    with TestClient(app) as client:
        yield client
