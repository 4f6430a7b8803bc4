from collections.abc import Generator

import pytest
from typer.testing import CliRunner

from replenishment_sentry.cli import app
from replenishment_sentry.config import get_settings
from replenishment_sentry.database import Database
from replenishment_sentry.events import SqlEventLog
from replenishment_sentry.orchestrator import LifecycleOrchestrator

runner = CliRunner()


@pytest.fixture(name="db_url")
def db_url_fixture(tmp_path, monkeypatch) -> Generator[str, None, None]:
    url = f"sqlite:///{tmp_path / 'cli.db'}"
    monkeypatch.setenv("REPLENISHMENT_DB_URL", url)
    monkeypatch.setenv("REPLENISHMENT_LOG_LEVEL", "warning")
    get_settings.cache_clear()
    yield url
    get_settings.cache_clear()


@pytest.fixture(name="cli_orchestrator")
def cli_orchestrator_fixture(db_url: str) -> Generator[LifecycleOrchestrator, None, None]:
    database = Database(db_url)
    database.init_schema()
    yield LifecycleOrchestrator(database, SqlEventLog(database))
    database.dispose()


def test_init_db(db_url: str) -> None:
    result = runner.invoke(app, ["init-db"])

    assert result.exit_code == 0, result.output
    assert db_url in result.output


def test_restock_adds_units(db_url: str) -> None:
    first = runner.invoke(app, ["restock", "P1", "5"])
    second = runner.invoke(app, ["restock", "P1", "3", "--warehouse", "WH9"])
    third = runner.invoke(app, ["restock", "P1", "2"])

    assert first.exit_code == 0, first.output
    assert "WH1/P1 now holds 5" in first.output
    assert "WH9/P1 now holds 3" in second.output
    assert "WH1/P1 now holds 7" in third.output


def test_restock_rejects_zero(db_url: str) -> None:
    assert runner.invoke(app, ["restock", "P1", "0"]).exit_code != 0


def test_list_and_show_orders(cli_orchestrator: LifecycleOrchestrator) -> None:
    assert "No orders found." in runner.invoke(app, ["list-orders"]).output

    created = cli_orchestrator.create_alert("S1", "P1", 4)

    listed = runner.invoke(app, ["list-orders", "--limit", "5"])
    assert listed.exit_code == 0, listed.output
    assert created.replenishment_id in listed.output
    assert "ALERT_RAISED" in listed.output

    filtered = runner.invoke(app, ["list-orders", "--status", "AWAITING_STOCK"])
    assert "No orders found." in filtered.output

    shown = runner.invoke(app, ["show-order", created.replenishment_id])
    assert shown.exit_code == 0, shown.output
    assert "alert_raised" in shown.output


def test_show_unknown_order_fails(db_url: str) -> None:
    result = runner.invoke(app, ["show-order", "REP-missing"])

    assert result.exit_code == 1
    assert "not found" in result.output


def test_consume_once_allocates_pending_alerts(cli_orchestrator: LifecycleOrchestrator) -> None:
    # The first run registers the consumer group at the head of the log.
    assert "Acknowledged 0 event(s)." in runner.invoke(app, ["consume", "--once"]).output

    runner.invoke(app, ["restock", "P1", "10"])
    created = cli_orchestrator.create_alert("S1", "P1", 4)

    result = runner.invoke(app, ["consume", "--once"])

    assert result.exit_code == 0, result.output
    assert "Acknowledged 1 event(s)." in result.output
    assert cli_orchestrator.get_order(created.replenishment_id).status.value == "PENDING_PICKING"
