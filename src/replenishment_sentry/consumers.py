"""Inbound event handlers."""

from __future__ import annotations

import logging

from pydantic import ValidationError

from .events import LOW_STOCK_ALERTS, AlertRaisedEvent, EventConsumer, EventGateway, EventMessage
from .exceptions import InvalidRequestError
from .orchestrator import LifecycleOrchestrator
from .outcomes import Redirected, Rejected

logger = logging.getLogger(__name__)


class LowStockAlertHandler:
    """Runs the automatic allocation for every low-stock alert.

    Rejections and malformed payloads are logged and dropped: a redelivery
    would be rejected the same way. Store and event log failures propagate,
    so the consumer leaves the alert unacknowledged and delivers it again.
    """

    def __init__(self, orchestrator: LifecycleOrchestrator) -> None:
        self._orchestrator = orchestrator

    def __call__(self, message: EventMessage) -> None:
        try:
            alert = message.decode(AlertRaisedEvent)
        except ValidationError as exc:
            logger.warning("Dropping malformed alert at offset %d: %s", message.offset, exc)
            return

        try:
            outcome = self._orchestrator.allocate_from_event(alert.replenishment_id, alert.requested_qty)
        except InvalidRequestError as exc:
            logger.warning("Dropping alert for %s: %s", alert.replenishment_id, exc.message)
            return

        if isinstance(outcome, Rejected):
            logger.info("Automatic allocation skipped for %s: %s", alert.replenishment_id, outcome.message)
        elif isinstance(outcome, Redirected):
            logger.info("Automatic allocation for %s is awaiting stock", alert.replenishment_id)
        else:
            logger.info("Automatic allocation created a transfer order for %s", alert.replenishment_id)


def register_consumers(
    gateway: EventGateway, orchestrator: LifecycleOrchestrator, *, group_id: str = "sentry-lowstock-group"
) -> list[EventConsumer]:
    """Subscribe the service's inbound handlers and return their consumers."""

    return [gateway.subscribe(group_id, [LOW_STOCK_ALERTS], LowStockAlertHandler(orchestrator))]
