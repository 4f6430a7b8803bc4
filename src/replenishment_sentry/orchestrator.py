"""
Lifecycle orchestrator for replenishment orders.

Every stage change goes through ``_transition``: load the order, ask the
transition table, move stock if the stage needs it, record the new stage
and publish the stage event. The HTTP routes and the inbound event handlers
call the same methods, so a trigger that arrives after the order already
moved on is rejected by the same table check instead of being applied a
second time.

Stock movement and the ledger write share one database transaction. The
ledger write is a compare-and-swap on the order version; when it loses to
a concurrent writer the whole transaction (reservation included) rolls back
and the attempt starts over from a fresh read.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional
from uuid import uuid4

from pydantic import BaseModel
from sqlalchemy.orm import Session

from . import ledger
from .database import Database
from .events import (
    AlertRaisedEvent,
    EventGateway,
    ReceiptRecordedEvent,
    ShipmentRecordedEvent,
    StageEvent,
    TransferOrderCreatedEvent,
    publish_event,
)
from .exceptions import ConcurrentModificationError, EventPublishError, InvalidRequestError
from .inventory import InsufficientStock, InventoryReservationService
from .models import ReplenishmentOrder, utcnow
from .outcomes import Redirected, Rejected, RejectionReason, Transitioned, TransitionOutcome
from .schemas import (
    InsufficientStockMetadata,
    OrderRead,
    ReceiptMetadata,
    ShipmentMetadata,
    ShipmentRead,
    TransferOrderMetadata,
    TransferOrderRead,
)
from .stages import Stage, can_transition, coerce_stage

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _StageChange:
    """What a stage step decided to write, and what to announce afterwards."""

    stage: Stage
    metadata: BaseModel
    fields: dict
    event: Optional[StageEvent] = None
    redirect_reason: Optional[str] = None


StageStep = Callable[[Session, ReplenishmentOrder], _StageChange]


class LifecycleOrchestrator:
    """Coordinates stage transitions, stock movement and stage events."""

    def __init__(
        self,
        database: Database,
        events: EventGateway,
        inventory: Optional[InventoryReservationService] = None,
        *,
        default_warehouse_id: str = "WH1",
        default_carrier: str = "DefaultCarrier",
        max_attempts: int = 3,
    ) -> None:
        self._db = database
        self._events = events
        self.inventory = inventory or InventoryReservationService(default_warehouse_id)
        self.default_warehouse_id = default_warehouse_id
        self.default_carrier = default_carrier
        self.max_attempts = max(1, max_attempts)

    # ------------------------------------------------------------------
    # Creation and reads
    # ------------------------------------------------------------------

    def create_alert(
        self, store_id: Optional[str], product_id: Optional[str], requested_qty: Optional[int] = None
    ) -> OrderRead:
        """Open a replenishment order in ALERT_RAISED and announce the alert."""

        if not store_id or not product_id:
            raise InvalidRequestError("store_id and product_id required")
        if requested_qty is not None and requested_qty < 0:
            raise InvalidRequestError("requested_qty must not be negative")

        with self._db.session_scope() as session:
            order = ledger.create_order(
                session, store_id=store_id, product_id=product_id, requested_qty=requested_qty or 0
            )
            snapshot = OrderRead.from_order(order)

        logger.info("Raised alert %s for store %s product %s", snapshot.replenishment_id, store_id, product_id)
        self._publish(
            AlertRaisedEvent(
                replenishment_id=snapshot.replenishment_id,
                store_id=store_id,
                product_id=product_id,
                requested_qty=snapshot.requested_qty,
            )
        )
        return snapshot

    def get_order(self, replenishment_id: str) -> Optional[OrderRead]:
        with self._db.read_scope() as session:
            order = ledger.get_order(session, replenishment_id)
            return OrderRead.from_order(order) if order is not None else None

    def list_recent_orders(self, *, limit: int = 100, status: Optional[Stage] = None) -> list[OrderRead]:
        with self._db.read_scope() as session:
            return [OrderRead.from_order(o) for o in ledger.list_recent_orders(session, limit=limit, status=status)]

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def allocate(
        self,
        replenishment_id: Optional[str],
        quantity: Optional[int],
        warehouse_id: Optional[str] = None,
        *,
        automated: bool = False,
    ) -> TransitionOutcome:
        """Reserve warehouse stock and open a transfer order.

        Falls back to AWAITING_STOCK when the warehouse cannot cover
        ``quantity``; the result is then a ``Redirected`` outcome.
        """

        if not replenishment_id or not quantity:
            raise InvalidRequestError("replenishment_id and quantity required")
        if quantity < 0:
            raise InvalidRequestError("quantity must be positive")
        warehouse = warehouse_id or self.default_warehouse_id

        def step(session: Session, order: ReplenishmentOrder) -> _StageChange:
            reservation = self.inventory.reserve(session, order.product_id, quantity, warehouse)
            if isinstance(reservation, InsufficientStock):
                return _StageChange(
                    stage=Stage.AWAITING_STOCK,
                    metadata=InsufficientStockMetadata(
                        message="insufficient stock (auto)" if automated else "insufficient warehouse stock",
                        requested_quantity=quantity,
                        warehouse_id=warehouse,
                        automated=automated,
                    ),
                    fields={},
                    redirect_reason="insufficient warehouse stock",
                )

            now = utcnow()
            transfer = TransferOrderRead(
                order_id=f"TO-{uuid4()}", quantity=quantity, warehouse_id=warehouse, created_at=now
            )
            return _StageChange(
                stage=Stage.PENDING_PICKING,
                metadata=TransferOrderMetadata(transfer_order=transfer, automated=automated),
                fields={
                    "transfer_order_id": transfer.order_id,
                    "transfer_quantity": transfer.quantity,
                    "transfer_warehouse_id": transfer.warehouse_id,
                    "transfer_created_at": now,
                },
                event=TransferOrderCreatedEvent(
                    replenishment_id=order.replenishment_id,
                    transfer_id=transfer.order_id,
                    product_id=order.product_id,
                    quantity=quantity,
                    warehouse_id=warehouse,
                ),
            )

        return self._transition(replenishment_id, Stage.PENDING_PICKING, step)

    def allocate_from_event(self, replenishment_id: str, requested_qty: Optional[int] = None) -> TransitionOutcome:
        """Automatic allocation triggered by a low-stock alert.

        The quantity comes from the event, then from the order, then 1.
        """

        quantity = requested_qty
        if not quantity:
            order = self.get_order(replenishment_id)
            quantity = order.requested_qty if order is not None and order.requested_qty else 1
        return self.allocate(replenishment_id, quantity, automated=True)

    def ship(self, replenishment_id: str, carrier: Optional[str] = None) -> TransitionOutcome:
        """Record that the transfer left the warehouse."""

        carrier = carrier or self.default_carrier

        def step(session: Session, order: ReplenishmentOrder) -> _StageChange:
            shipment = ShipmentRead(
                tracking_number=f"TRK-{str(uuid4()).split('-')[0]}", carrier=carrier, shipped_at=utcnow()
            )
            return _StageChange(
                stage=Stage.IN_TRANSIT,
                metadata=ShipmentMetadata(shipment=shipment),
                fields={
                    "tracking_number": shipment.tracking_number,
                    "carrier": shipment.carrier,
                    "shipped_at": shipment.shipped_at,
                },
                event=ShipmentRecordedEvent(
                    replenishment_id=order.replenishment_id,
                    tracking=shipment.tracking_number,
                    carrier=shipment.carrier,
                ),
            )

        return self._transition(replenishment_id, Stage.IN_TRANSIT, step)

    def receive(self, replenishment_id: str) -> TransitionOutcome:
        """Book the delivery into store stock and complete the order."""

        def step(session: Session, order: ReplenishmentOrder) -> _StageChange:
            transfer = order.transfer_order
            quantity = transfer.quantity if transfer is not None and transfer.quantity else order.requested_qty
            self.inventory.receive(session, order.store_id, order.product_id, quantity)
            return _StageChange(
                stage=Stage.COMPLETED,
                metadata=ReceiptMetadata(received_qty=quantity),
                fields={},
                event=ReceiptRecordedEvent(
                    replenishment_id=order.replenishment_id,
                    store_id=order.store_id,
                    product_id=order.product_id,
                    qty=quantity,
                ),
            )

        return self._transition(replenishment_id, Stage.COMPLETED, step)

    # ------------------------------------------------------------------

    def _transition(self, replenishment_id: str, target: Stage, step: StageStep) -> TransitionOutcome:
        for attempt in range(1, self.max_attempts + 1):
            try:
                with self._db.session_scope() as session:
                    order = ledger.get_order(session, replenishment_id)
                    if order is None:
                        logger.info("Rejected %s for %s: order not found", target, replenishment_id)
                        return Rejected(replenishment_id, RejectionReason.ORDER_NOT_FOUND, target)

                    if not can_transition(order.status, target):
                        current = coerce_stage(order.status)
                        logger.info("Rejected %s for %s: order is %s", target, replenishment_id, current)
                        return Rejected(replenishment_id, RejectionReason.ILLEGAL_TRANSITION, target, current)

                    change = step(session, order)
                    ledger.record_stage(session, order, change.stage, change.metadata, **change.fields)
                    snapshot = OrderRead.from_order(order)
            except ConcurrentModificationError:
                logger.info(
                    "Order %s changed during %s (attempt %d/%d), re-checking",
                    replenishment_id,
                    target,
                    attempt,
                    self.max_attempts,
                )
                continue

            if change.redirect_reason is not None:
                logger.warning(
                    "Order %s redirected to %s instead of %s: %s",
                    replenishment_id,
                    change.stage,
                    target,
                    change.redirect_reason,
                )
                return Redirected(snapshot, requested=target, reason=change.redirect_reason)

            logger.info("Order %s moved to %s", replenishment_id, change.stage)
            if change.event is not None:
                self._publish(change.event)
            return Transitioned(snapshot)

        raise ConcurrentModificationError(
            f"replenishment {replenishment_id} kept changing during {target}",
            details={"replenishment_id": replenishment_id},
        )

    def _publish(self, event: StageEvent) -> None:
        # The ledger is already committed; a lost notification is not undone.
        try:
            publish_event(self._events, event)
        except EventPublishError as exc:
            logger.error("Could not publish %s for %s: %s", event.topic, event.replenishment_id, exc)
