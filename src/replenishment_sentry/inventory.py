"""Atomic warehouse reservation and store receipt."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Union

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .models import StoreStock, WarehouseStock, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Allocation:
    """Units taken out of a warehouse for one order."""

    warehouse_id: str
    product_id: str
    quantity: int


@dataclass(frozen=True, slots=True)
class InsufficientStock:
    warehouse_id: str
    product_id: str
    requested: int


ReservationResult = Union[Allocation, InsufficientStock]


class InventoryReservationService:
    """Stock counters, mutated only through single conditional statements.

    The service works inside the caller's session so a reservation commits
    or rolls back together with the ledger change it backs.
    """

    def __init__(self, default_warehouse_id: str = "WH1") -> None:
        self.default_warehouse_id = default_warehouse_id

    def reserve(
        self,
        session: Session,
        product_id: str,
        quantity: int,
        warehouse_id: Optional[str] = None,
    ) -> ReservationResult:
        """Take ``quantity`` units if, and only if, that many are on hand."""

        warehouse_id = warehouse_id or self.default_warehouse_id
        if quantity <= 0:
            raise ValueError("reservation quantity must be positive")

        statement = (
            update(WarehouseStock)
            .where(
                WarehouseStock.warehouse_id == warehouse_id,
                WarehouseStock.product_id == product_id,
                WarehouseStock.quantity >= quantity,
            )
            .values(quantity=WarehouseStock.quantity - quantity, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = session.execute(statement)
        if result.rowcount != 1:
            logger.info(
                "Insufficient stock for %s in %s (requested %d)", product_id, warehouse_id, quantity
            )
            return InsufficientStock(warehouse_id=warehouse_id, product_id=product_id, requested=quantity)
        return Allocation(warehouse_id=warehouse_id, product_id=product_id, quantity=quantity)

    def receive(self, session: Session, store_id: str, product_id: str, quantity: int) -> None:
        """Add ``quantity`` units to the store's counter, creating it if needed."""

        if self._increment_store(session, store_id, product_id, quantity):
            return
        try:
            with session.begin_nested():
                session.add(StoreStock(store_id=store_id, product_id=product_id, quantity=quantity))
        except IntegrityError:
            # Another transaction created the row first.
            if not self._increment_store(session, store_id, product_id, quantity):
                raise

    def restock(
        self,
        session: Session,
        product_id: str,
        quantity: int,
        warehouse_id: Optional[str] = None,
    ) -> Optional[WarehouseStock]:
        """Add units to a warehouse counter, creating it if needed."""

        warehouse_id = warehouse_id or self.default_warehouse_id
        if quantity <= 0:
            raise ValueError("restock quantity must be positive")

        statement = (
            update(WarehouseStock)
            .where(WarehouseStock.warehouse_id == warehouse_id, WarehouseStock.product_id == product_id)
            .values(quantity=WarehouseStock.quantity + quantity, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if session.execute(statement).rowcount == 0:
            try:
                with session.begin_nested():
                    session.add(WarehouseStock(warehouse_id=warehouse_id, product_id=product_id, quantity=quantity))
            except IntegrityError:
                session.execute(statement)
        return self.warehouse_level(session, product_id, warehouse_id)

    def warehouse_level(self, session: Session, product_id: str, warehouse_id: str) -> Optional[WarehouseStock]:
        statement = (
            select(WarehouseStock)
            .where(WarehouseStock.warehouse_id == warehouse_id, WarehouseStock.product_id == product_id)
            .execution_options(populate_existing=True)
        )
        return session.scalars(statement).first()

    def warehouse_levels(self, session: Session, product_id: str) -> list[WarehouseStock]:
        statement = (
            select(WarehouseStock)
            .where(WarehouseStock.product_id == product_id)
            .order_by(WarehouseStock.warehouse_id)
        )
        return list(session.scalars(statement))

    def store_level(self, session: Session, store_id: str, product_id: str) -> int:
        statement = select(StoreStock.quantity).where(
            StoreStock.store_id == store_id, StoreStock.product_id == product_id
        )
        return session.scalars(statement).first() or 0

    @staticmethod
    def _increment_store(session: Session, store_id: str, product_id: str, quantity: int) -> bool:
        statement = (
            update(StoreStock)
            .where(StoreStock.store_id == store_id, StoreStock.product_id == product_id)
            .values(quantity=StoreStock.quantity + quantity, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return session.execute(statement).rowcount == 1
