"""FastAPI application factory."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from . import __version__, schemas
from .config import Settings, get_settings
from .consumers import register_consumers
from .database import Database
from .dependencies import get_db, get_orchestrator, get_read_db, get_settings_dependency
from .events import SqlEventLog
from .exceptions import (
    ConcurrentModificationError,
    DependencyUnavailableError,
    IllegalTransitionError,
    InvalidRequestError,
    OrderNotFoundError,
    ReplenishmentError,
)
from .logging_setup import configure_logging
from .orchestrator import LifecycleOrchestrator
from .outcomes import Redirected, Rejected, RejectionReason, TransitionOutcome
from .stages import Stage

logger = logging.getLogger(__name__)

_ERROR_STATUS: dict[type[ReplenishmentError], int] = {
    InvalidRequestError: status.HTTP_400_BAD_REQUEST,
    IllegalTransitionError: status.HTTP_400_BAD_REQUEST,
    OrderNotFoundError: status.HTTP_404_NOT_FOUND,
    ConcurrentModificationError: status.HTTP_409_CONFLICT,
    DependencyUnavailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _status_for(exc: ReplenishmentError) -> int:
    for error_type in type(exc).__mro__:
        if error_type in _ERROR_STATUS:
            return _ERROR_STATUS[error_type]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def _raise_for_outcome(outcome: TransitionOutcome) -> None:
    """Turn redirects and rejections into the matching HTTP error."""

    if isinstance(outcome, Rejected):
        code = (
            status.HTTP_404_NOT_FOUND
            if outcome.reason is RejectionReason.ORDER_NOT_FOUND
            else status.HTTP_400_BAD_REQUEST
        )
        raise HTTPException(status_code=code, detail=outcome.to_error().to_dict())
    if isinstance(outcome, Redirected):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "error": "insufficient_stock",
                "message": outcome.reason,
                "replenishment_id": outcome.order.replenishment_id,
                "status": outcome.stage.value,
            },
        )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Create and configure the FastAPI application."""

    settings = settings or get_settings()
    configure_logging(settings.log_level)

    database = Database(settings.database_url, echo=settings.echo_sql)
    database.init_schema()
    events = SqlEventLog(database, poll_interval=settings.poll_interval)
    orchestrator = LifecycleOrchestrator(
        database,
        events,
        default_warehouse_id=settings.default_warehouse_id,
        default_carrier=settings.default_carrier,
        max_attempts=settings.max_transition_attempts,
    )
    if settings.run_consumers:
        register_consumers(events, orchestrator, group_id=settings.consumer_group)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        events.start()
        logger.info("%s %s ready", settings.app_name, __version__)
        try:
            yield
        finally:
            events.close()
            database.dispose()

    app = FastAPI(title=settings.app_name, version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.database = database
    app.state.events = events
    app.state.orchestrator = orchestrator

    @app.exception_handler(ReplenishmentError)
    async def replenishment_error_handler(request: Request, exc: ReplenishmentError) -> JSONResponse:
        code = _status_for(exc)
        if code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=code, content={"detail": exc.to_dict()})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "detail": {
                    "error": InvalidRequestError.code,
                    "message": "invalid request body",
                    "errors": jsonable_encoder(exc.errors()),
                }
            },
        )

    @app.get("/health", tags=["system"])
    def health_check() -> dict[str, str]:
        return {"status": "ok"}

    @app.post(
        "/api/alerts",
        response_model=schemas.AlertResponse,
        status_code=status.HTTP_201_CREATED,
        tags=["replenishment"],
    )
    def raise_alert(
        payload: schemas.AlertCreate, orchestrator: LifecycleOrchestrator = Depends(get_orchestrator)
    ):
        order = orchestrator.create_alert(payload.store_id, payload.product_id, payload.requested_qty)
        return schemas.AlertResponse(replenishment_id=order.replenishment_id, status=order.status)

    @app.post("/api/transfer-orders", response_model=schemas.AllocationResponse, tags=["replenishment"])
    def request_allocation(
        payload: schemas.AllocationRequest, orchestrator: LifecycleOrchestrator = Depends(get_orchestrator)
    ):
        outcome = orchestrator.allocate(payload.replenishment_id, payload.quantity, payload.warehouse_id)
        _raise_for_outcome(outcome)
        order = outcome.order
        return schemas.AllocationResponse(
            replenishment_id=order.replenishment_id, transfer_order=order.transfer_order, status=order.status
        )

    @app.patch(
        "/api/shipments/{replenishment_id}/ship", response_model=schemas.ShipmentResponse, tags=["replenishment"]
    )
    def record_shipment(
        replenishment_id: str,
        payload: Optional[schemas.ShipmentRequest] = None,
        orchestrator: LifecycleOrchestrator = Depends(get_orchestrator),
    ):
        outcome = orchestrator.ship(replenishment_id, payload.carrier if payload else None)
        _raise_for_outcome(outcome)
        order = outcome.order
        return schemas.ShipmentResponse(
            replenishment_id=order.replenishment_id, tracking=order.shipment.tracking_number, status=order.status
        )

    @app.patch(
        "/api/receipts/{replenishment_id}/receive", response_model=schemas.ReceiptResponse, tags=["replenishment"]
    )
    def record_receipt(replenishment_id: str, orchestrator: LifecycleOrchestrator = Depends(get_orchestrator)):
        outcome = orchestrator.receive(replenishment_id)
        _raise_for_outcome(outcome)
        return schemas.ReceiptResponse(replenishment_id=outcome.order.replenishment_id, status=outcome.order.status)

    @app.get("/api/replenishments", response_model=list[schemas.OrderRead], tags=["replenishment"])
    def list_replenishments(
        limit: Optional[int] = None,
        status_filter: Optional[Stage] = None,
        orchestrator: LifecycleOrchestrator = Depends(get_orchestrator),
        current: Settings = Depends(get_settings_dependency),
    ):
        bound = current.recent_orders_limit
        if limit is not None and 0 < limit < bound:
            bound = limit
        return orchestrator.list_recent_orders(limit=bound, status=status_filter)

    @app.get("/api/replenishments/{replenishment_id}", response_model=schemas.OrderRead, tags=["replenishment"])
    def get_replenishment(replenishment_id: str, orchestrator: LifecycleOrchestrator = Depends(get_orchestrator)):
        order = orchestrator.get_order(replenishment_id)
        if not order:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail=OrderNotFoundError(replenishment_id).to_dict()
            )
        return order

    @app.post(
        "/api/inventory/warehouse",
        response_model=schemas.WarehouseStockRead,
        status_code=status.HTTP_201_CREATED,
        tags=["inventory"],
    )
    def restock_warehouse(
        payload: schemas.RestockRequest,
        db: Session = Depends(get_db),
        orchestrator: LifecycleOrchestrator = Depends(get_orchestrator),
    ):
        stock = orchestrator.inventory.restock(db, payload.product_id, payload.quantity, payload.warehouse_id)
        return schemas.WarehouseStockRead.model_validate(stock)

    @app.get(
        "/api/inventory/warehouse/{product_id}",
        response_model=list[schemas.WarehouseStockRead],
        tags=["inventory"],
    )
    def warehouse_levels(
        product_id: str,
        db: Session = Depends(get_read_db),
        orchestrator: LifecycleOrchestrator = Depends(get_orchestrator),
    ):
        levels = orchestrator.inventory.warehouse_levels(db, product_id)
        return [schemas.WarehouseStockRead.model_validate(stock) for stock in levels]

    @app.get(
        "/api/inventory/stores/{store_id}/{product_id}",
        response_model=schemas.StoreStockRead,
        tags=["inventory"],
    )
    def store_level(
        store_id: str,
        product_id: str,
        db: Session = Depends(get_read_db),
        orchestrator: LifecycleOrchestrator = Depends(get_orchestrator),
    ):
        quantity = orchestrator.inventory.store_level(db, store_id, product_id)
        return schemas.StoreStockRead(store_id=store_id, product_id=product_id, quantity=quantity)

    return app
