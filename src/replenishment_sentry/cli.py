"""Command line interface for the replenishment service."""

from __future__ import annotations

import time
from typing import Optional

import typer
import uvicorn

from .config import Settings, get_settings
from .consumers import register_consumers
from .database import Database
from .events import SqlEventLog
from .exceptions import DependencyUnavailableError
from .inventory import InventoryReservationService
from .logging_setup import configure_logging
from .orchestrator import LifecycleOrchestrator
from .stages import Stage

app = typer.Typer(help="Manage and run the replenishment order service.")


def _print_header(title: str) -> None:
    typer.secho(title, bold=True, fg=typer.colors.CYAN)


def _resolve_database(settings: Settings) -> Database:
    configure_logging(settings.log_level)
    database = Database(settings.database_url, echo=settings.echo_sql)
    database.init_schema()
    return database


def _build_orchestrator(settings: Settings, database: Database, events: SqlEventLog) -> LifecycleOrchestrator:
    return LifecycleOrchestrator(
        database,
        events,
        default_warehouse_id=settings.default_warehouse_id,
        default_carrier=settings.default_carrier,
        max_attempts=settings.max_transition_attempts,
    )


@app.command()
def run(
    host: Optional[str] = typer.Option(None, help="Hostname to bind"),
    port: Optional[int] = typer.Option(None, help="Port to expose"),
    reload: Optional[bool] = typer.Option(None, help="Enable auto-reload"),
    log_level: Optional[str] = typer.Option(None, help="Uvicorn log level"),
) -> None:
    """Start the FastAPI service, with its event consumers, using Uvicorn."""

    settings = get_settings()
    _resolve_database(settings).dispose()

    uvicorn.run(
        "replenishment_sentry.app:create_app",
        host=host or settings.host,
        port=port or settings.port,
        reload=settings.reload if reload is None else reload,
        log_level=log_level or settings.log_level,
        factory=True,
    )


@app.command()
def init_db() -> None:
    """Create the database tables."""

    settings = get_settings()
    _resolve_database(settings).dispose()
    typer.echo(f"Database initialised at {settings.database_url}")


@app.command()
def restock(
    product_id: str = typer.Argument(..., help="Product to restock"),
    quantity: int = typer.Argument(..., min=1, help="Units to add"),
    warehouse_id: Optional[str] = typer.Option(None, "--warehouse", "-w", help="Defaults to the configured warehouse"),
) -> None:
    """Add units to a warehouse stock counter."""

    settings = get_settings()
    database = _resolve_database(settings)
    inventory = InventoryReservationService(settings.default_warehouse_id)
    try:
        with database.session_scope() as session:
            stock = inventory.restock(session, product_id, quantity, warehouse_id)
            typer.secho(
                f"{stock.warehouse_id}/{stock.product_id} now holds {stock.quantity}", fg=typer.colors.GREEN
            )
    except DependencyUnavailableError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1) from exc
    finally:
        database.dispose()


@app.command("list-orders")
def list_orders_cmd(
    limit: int = typer.Option(20, help="Maximum number of orders to show"),
    status: Optional[Stage] = typer.Option(None, help="Only show orders in this stage"),
) -> None:
    """Display the most recent replenishment orders."""

    settings = get_settings()
    database = _resolve_database(settings)
    try:
        orchestrator = _build_orchestrator(settings, database, SqlEventLog(database))
        orders = orchestrator.list_recent_orders(limit=min(limit, settings.recent_orders_limit), status=status)
    finally:
        database.dispose()
    if not orders:
        typer.echo("No orders found.")
        return
    _print_header("Recent replenishment orders")
    for order in orders:
        typer.echo(
            f"- {order.replenishment_id} | store={order.store_id} product={order.product_id} "
            f"qty={order.requested_qty} | {order.status.value}"
        )


@app.command("show-order")
def show_order(replenishment_id: str = typer.Argument(..., help="Replenishment identifier")) -> None:
    """Print one order and its history."""

    settings = get_settings()
    database = _resolve_database(settings)
    try:
        order = _build_orchestrator(settings, database, SqlEventLog(database)).get_order(replenishment_id)
    finally:
        database.dispose()
    if order is None:
        typer.secho(f"Replenishment {replenishment_id} not found", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    _print_header(f"{order.replenishment_id} ({order.status.value})")
    for entry in order.history:
        typer.echo(f"- {entry.timestamp.isoformat()} {entry.stage.value} {entry.metadata.kind}")
    if order.transfer_order:
        typer.echo(f"Transfer order: {order.transfer_order.order_id} x{order.transfer_order.quantity}")
    if order.shipment:
        typer.echo(f"Shipment: {order.shipment.tracking_number} via {order.shipment.carrier}")


@app.command()
def consume(
    once: bool = typer.Option(False, help="Drain pending events once and exit"),
) -> None:
    """Run the inbound event consumers without the HTTP API."""

    settings = get_settings()
    database = _resolve_database(settings)
    events = SqlEventLog(database, poll_interval=settings.poll_interval)
    orchestrator = _build_orchestrator(settings, database, events)
    consumers = register_consumers(events, orchestrator, group_id=settings.consumer_group)
    try:
        if once:
            handled = sum(consumer.poll_once() for consumer in consumers)
            typer.echo(f"Acknowledged {handled} event(s).")
            return
        events.start()
        typer.echo(f"Consuming as {settings.consumer_group}; press Ctrl+C to stop.")
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        typer.echo("Stopping consumers.")
    finally:
        events.close()
        database.dispose()


def main() -> None:
    """Entry-point for console scripts."""

    app()


if __name__ == "__main__":  # pragma: no cover
    main()
