"""Pydantic schemas for API payloads and stage metadata."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .stages import Stage


class TransferOrderRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    order_id: str
    quantity: int
    warehouse_id: str
    created_at: datetime


class ShipmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    tracking_number: str
    carrier: str
    shipped_at: datetime


# Stage metadata stored with each history entry. ``kind`` is the tag; each
# variant lists the fields its stage records.

class AlertRaisedMetadata(BaseModel):
    kind: Literal["alert_raised"] = "alert_raised"
    from_pos: bool = True


class InsufficientStockMetadata(BaseModel):
    kind: Literal["insufficient_stock"] = "insufficient_stock"
    message: str = "insufficient warehouse stock"
    requested_quantity: int
    warehouse_id: str
    automated: bool = False


class TransferOrderMetadata(BaseModel):
    kind: Literal["transfer_order_created"] = "transfer_order_created"
    transfer_order: TransferOrderRead
    automated: bool = False


class ShipmentMetadata(BaseModel):
    kind: Literal["shipment_recorded"] = "shipment_recorded"
    shipment: ShipmentRead


class ReceiptMetadata(BaseModel):
    kind: Literal["receipt_recorded"] = "receipt_recorded"
    received_qty: int


StageMetadata = Annotated[
    Union[
        AlertRaisedMetadata,
        InsufficientStockMetadata,
        TransferOrderMetadata,
        ShipmentMetadata,
        ReceiptMetadata,
    ],
    Field(discriminator="kind"),
]


class HistoryEntryRead(BaseModel):
    stage: Stage
    timestamp: datetime
    metadata: StageMetadata


class OrderRead(BaseModel):
    """Full replenishment order document."""

    replenishment_id: str
    store_id: str
    product_id: str
    requested_qty: int
    status: Stage
    history: list[HistoryEntryRead] = Field(default_factory=list)
    transfer_order: Optional[TransferOrderRead] = None
    shipment: Optional[ShipmentRead] = None
    version: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_order(cls, order) -> "OrderRead":  # type: ignore[no-untyped-def]
        return cls(
            replenishment_id=order.replenishment_id,
            store_id=order.store_id,
            product_id=order.product_id,
            requested_qty=order.requested_qty,
            status=order.status,
            history=[
                HistoryEntryRead(stage=entry.stage, timestamp=entry.timestamp, metadata=entry.details)
                for entry in order.history
            ],
            transfer_order=(
                TransferOrderRead.model_validate(order.transfer_order) if order.transfer_order else None
            ),
            shipment=ShipmentRead.model_validate(order.shipment) if order.shipment else None,
            version=order.version,
            created_at=order.created_at,
            updated_at=order.updated_at,
        )


# Request bodies. Required fields are optional here so that missing values
# reach the orchestrator's validation and come back as 400s.

class AlertCreate(BaseModel):
    store_id: Optional[str] = None
    product_id: Optional[str] = None
    requested_qty: Optional[int] = Field(None, ge=0)


class AllocationRequest(BaseModel):
    replenishment_id: Optional[str] = None
    quantity: Optional[int] = None
    warehouse_id: Optional[str] = None


class ShipmentRequest(BaseModel):
    carrier: Optional[str] = Field(None, max_length=128)


class RestockRequest(BaseModel):
    warehouse_id: Optional[str] = None
    product_id: str = Field(..., min_length=1, max_length=64)
    quantity: int = Field(..., gt=0)


# Responses.

class AlertResponse(BaseModel):
    replenishment_id: str
    status: Stage


class AllocationResponse(BaseModel):
    replenishment_id: str
    transfer_order: TransferOrderRead
    status: Stage


class ShipmentResponse(BaseModel):
    replenishment_id: str
    tracking: str
    status: Stage


class ReceiptResponse(BaseModel):
    replenishment_id: str
    status: Stage


class WarehouseStockRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    warehouse_id: str
    product_id: str
    quantity: int
    updated_at: datetime


class StoreStockRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    store_id: str
    product_id: str
    quantity: int
