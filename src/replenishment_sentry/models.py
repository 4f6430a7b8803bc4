"""Database models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base
from .stages import Stage


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what SQLite hands back."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True, slots=True)
class TransferOrder:
    order_id: str
    quantity: int
    warehouse_id: str
    created_at: datetime


@dataclass(frozen=True, slots=True)
class Shipment:
    tracking_number: str
    carrier: str
    shipped_at: datetime


class ReplenishmentOrder(Base):
    """One store's restock request for one product."""

    __tablename__ = "replenishment_orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    replenishment_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    store_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    product_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    requested_qty: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=Stage.ALERT_RAISED.value, index=True)

    transfer_order_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    transfer_quantity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    transfer_warehouse_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    transfer_created_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    tracking_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    carrier: Mapped[str | None] = mapped_column(String(128), nullable=True)
    shipped_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    history: Mapped[list["OrderHistoryEntry"]] = relationship(
        back_populates="order",
        order_by="OrderHistoryEntry.sequence",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    # Every UPDATE is issued as "... WHERE id = ? AND version = ?"; a concurrent
    # writer that got there first makes the flush raise StaleDataError.
    __mapper_args__ = {"version_id_col": version}

    @property
    def stage(self) -> Stage:
        return Stage(self.status)

    @property
    def transfer_order(self) -> Optional[TransferOrder]:
        if self.transfer_order_id is None:
            return None
        return TransferOrder(
            order_id=self.transfer_order_id,
            quantity=self.transfer_quantity or 0,
            warehouse_id=self.transfer_warehouse_id or "",
            created_at=self.transfer_created_at or self.updated_at,
        )

    @property
    def shipment(self) -> Optional[Shipment]:
        if self.tracking_number is None:
            return None
        return Shipment(
            tracking_number=self.tracking_number,
            carrier=self.carrier or "",
            shipped_at=self.shipped_at or self.updated_at,
        )

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"<ReplenishmentOrder {self.replenishment_id!r} status={self.status}>"


class OrderHistoryEntry(Base):
    """Append-only record of one status mutation."""

    __tablename__ = "order_history"
    __table_args__ = (UniqueConstraint("order_pk", "sequence", name="uq_order_history_sequence"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_pk: Mapped[int] = mapped_column(ForeignKey("replenishment_orders.id"), nullable=False, index=True)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    stage: Mapped[str] = mapped_column(String(32), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    details: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)

    order: Mapped[ReplenishmentOrder] = relationship(back_populates="history")


class WarehouseStock(Base):
    __tablename__ = "warehouse_stock"
    __table_args__ = (UniqueConstraint("warehouse_id", "product_id", name="uq_warehouse_product"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    warehouse_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    product_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class StoreStock(Base):
    __tablename__ = "store_stock"
    __table_args__ = (UniqueConstraint("store_id", "product_id", name="uq_store_product"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    store_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    product_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class EventRecord(Base):
    """One published event; ``offset`` gives the total order of the log."""

    __tablename__ = "event_log"

    offset: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    topic: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    published_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class ConsumerOffset(Base):
    """Last offset a consumer group has acknowledged on a topic."""

    __tablename__ = "consumer_offsets"

    group_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    topic: Mapped[str] = mapped_column(String(128), primary_key=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class ProcessedMessage(Base):
    __tablename__ = "processed_messages"

    group_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    event_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    processed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class EventTopic(Base):
    """Per-topic publish counter; its row lock orders concurrent publishers."""

    __tablename__ = "event_topics"

    topic: Mapped[str] = mapped_column(String(128), primary_key=True)
    head: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
