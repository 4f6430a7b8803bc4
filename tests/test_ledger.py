import pytest

from replenishment_sentry import ledger
from replenishment_sentry.database import Database
from replenishment_sentry.exceptions import ConcurrentModificationError
from replenishment_sentry.schemas import InsufficientStockMetadata, OrderRead, ReceiptMetadata
from replenishment_sentry.stages import Stage


def _awaiting(quantity: int = 1) -> InsufficientStockMetadata:
    return InsufficientStockMetadata(requested_quantity=quantity, warehouse_id="WH1")


def test_create_order_seeds_history(database: Database) -> None:
    with database.session_scope() as session:
        order = ledger.create_order(session, store_id="S1", product_id="P1", requested_qty=3)
        snapshot = OrderRead.from_order(order)

    assert snapshot.replenishment_id.startswith("REP-")
    assert snapshot.status is Stage.ALERT_RAISED
    assert snapshot.version == 1
    assert [entry.stage for entry in snapshot.history] == [Stage.ALERT_RAISED]
    assert snapshot.history[0].metadata.kind == "alert_raised"
    assert snapshot.transfer_order is None and snapshot.shipment is None


def test_record_stage_appends_history_and_bumps_version(database: Database) -> None:
    with database.session_scope() as session:
        order = ledger.create_order(session, store_id="S1", product_id="P1")
        replenishment_id = order.replenishment_id

    with database.session_scope() as session:
        order = ledger.get_order(session, replenishment_id)
        ledger.record_stage(session, order, Stage.AWAITING_STOCK, _awaiting(2))

    with database.session_scope() as session:
        snapshot = OrderRead.from_order(ledger.get_order(session, replenishment_id))

    assert snapshot.status is Stage.AWAITING_STOCK
    assert snapshot.version == 2
    assert [entry.stage for entry in snapshot.history] == [Stage.ALERT_RAISED, Stage.AWAITING_STOCK]
    assert snapshot.history[-1].metadata.requested_quantity == 2
    assert snapshot.updated_at >= snapshot.created_at


def test_stale_writer_loses_the_compare_and_swap(database: Database) -> None:
    with database.session_scope() as session:
        replenishment_id = ledger.create_order(session, store_id="S1", product_id="P1").replenishment_id

    # Keep a loaded copy around while another writer commits a newer version.
    stale_session = database.session_factory()
    try:
        stale = ledger.get_order(stale_session, replenishment_id)
        stale_session.commit()

        with database.session_scope() as session:
            fresh = ledger.get_order(session, replenishment_id)
            ledger.record_stage(session, fresh, Stage.AWAITING_STOCK, _awaiting())

        with pytest.raises(ConcurrentModificationError) as excinfo:
            ledger.record_stage(stale_session, stale, Stage.AWAITING_STOCK, _awaiting())
        stale_session.rollback()
        assert excinfo.value.details == {"replenishment_id": replenishment_id}
        assert replenishment_id in excinfo.value.message
    finally:
        stale_session.close()

    with database.session_scope() as session:
        snapshot = OrderRead.from_order(ledger.get_order(session, replenishment_id))
    assert len(snapshot.history) == 2


def test_sub_records_are_written_once(database: Database) -> None:
    with database.session_scope() as session:
        order = ledger.create_order(session, store_id="S1", product_id="P1")
        ledger.record_stage(
            session, order, Stage.COMPLETED, ReceiptMetadata(received_qty=1), tracking_number="TRK-1"
        )
        with pytest.raises(ValueError):
            ledger.record_stage(
                session, order, Stage.COMPLETED, ReceiptMetadata(received_qty=1), tracking_number="TRK-2"
            )
        with pytest.raises(TypeError):
            ledger.record_stage(session, order, Stage.COMPLETED, ReceiptMetadata(received_qty=1), status="X")
        session.rollback()


def test_list_recent_orders_is_newest_first_and_bounded(database: Database) -> None:
    ids = []
    for index in range(5):
        with database.session_scope() as session:
            ids.append(ledger.create_order(session, store_id="S1", product_id=f"P{index}").replenishment_id)

    with database.session_scope() as session:
        recent = [o.replenishment_id for o in ledger.list_recent_orders(session, limit=3)]
        awaiting = ledger.list_recent_orders(session, status=Stage.AWAITING_STOCK)

    assert recent == list(reversed(ids))[:3]
    assert awaiting == []
