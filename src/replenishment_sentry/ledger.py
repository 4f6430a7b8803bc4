"""Order ledger access helpers."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from .exceptions import ConcurrentModificationError
from .models import OrderHistoryEntry, ReplenishmentOrder, utcnow
from .schemas import AlertRaisedMetadata
from .stages import Stage

# Sub-record columns the ledger lets a transition set, and only while unset.
_WRITE_ONCE_FIELDS = frozenset(
    {
        "transfer_order_id",
        "transfer_quantity",
        "transfer_warehouse_id",
        "transfer_created_at",
        "tracking_number",
        "carrier",
        "shipped_at",
    }
)


def new_replenishment_id() -> str:
    return f"REP-{uuid4()}"


def get_order(db: Session, replenishment_id: str) -> Optional[ReplenishmentOrder]:
    statement = select(ReplenishmentOrder).where(ReplenishmentOrder.replenishment_id == replenishment_id)
    return db.scalars(statement).first()


def list_recent_orders(
    db: Session, *, limit: int = 100, status: Optional[Stage] = None
) -> list[ReplenishmentOrder]:
    statement = select(ReplenishmentOrder)
    if status is not None:
        statement = statement.where(ReplenishmentOrder.status == status.value)
    statement = statement.order_by(ReplenishmentOrder.created_at.desc(), ReplenishmentOrder.id.desc()).limit(limit)
    return list(db.scalars(statement))


def create_order(
    db: Session,
    *,
    store_id: str,
    product_id: str,
    requested_qty: int = 0,
    replenishment_id: Optional[str] = None,
) -> ReplenishmentOrder:
    """Insert a new order in ALERT_RAISED with its creation history entry."""

    now = utcnow()
    order = ReplenishmentOrder(
        replenishment_id=replenishment_id or new_replenishment_id(),
        store_id=store_id,
        product_id=product_id,
        requested_qty=requested_qty,
        status=Stage.ALERT_RAISED.value,
        created_at=now,
        updated_at=now,
    )
    order.history.append(
        OrderHistoryEntry(
            sequence=1,
            stage=Stage.ALERT_RAISED.value,
            timestamp=now,
            details=AlertRaisedMetadata().model_dump(mode="json"),
        )
    )
    db.add(order)
    db.flush()
    return order


def record_stage(
    db: Session,
    order: ReplenishmentOrder,
    stage: Stage,
    metadata: BaseModel,
    **fields: Any,
) -> ReplenishmentOrder:
    """Move ``order`` to ``stage`` and append the matching history entry.

    The flush is a compare-and-swap on the order's version; if another
    transaction committed a change since ``order`` was loaded, this raises
    ConcurrentModificationError and the caller's transaction must roll back.
    """

    unknown = set(fields) - _WRITE_ONCE_FIELDS
    if unknown:
        raise TypeError(f"unexpected order fields: {sorted(unknown)}")
    for name, value in fields.items():
        if getattr(order, name) is not None:
            raise ValueError(f"{name} is already set on {order.replenishment_id}")
        setattr(order, name, value)

    now = _next_timestamp(order.updated_at)
    order.status = stage.value
    order.updated_at = now
    order.history.append(
        OrderHistoryEntry(
            sequence=len(order.history) + 1,
            stage=stage.value,
            timestamp=now,
            details=metadata.model_dump(mode="json"),
        )
    )
    # A failed flush expires ``order``, so read the id while it is still loaded.
    replenishment_id = order.replenishment_id
    try:
        db.flush()
    except StaleDataError as exc:
        raise ConcurrentModificationError(
            f"replenishment {replenishment_id} was modified concurrently",
            details={"replenishment_id": replenishment_id},
        ) from exc
    return order


def _next_timestamp(previous: Optional[datetime]) -> datetime:
    now = utcnow()
    if previous is not None and previous > now:
        return previous
    return now
