"""
Event gateway backed by a durable, ordered log table.

Publishing appends a row to ``event_log``; the auto-increment offset gives
the total order. Each publish first bumps its topic's ``event_topics`` row and
holds that row lock until commit, so on a topic a lower offset is always
committed before a higher one and a consumer never moves past an event
that is still in flight.

Consumer groups keep their acknowledged position per topic in
``consumer_offsets`` and the ids of handled events in ``processed_messages``,
so a redelivered event is skipped rather than handled twice.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, ClassVar, Iterable, Optional, Protocol, TypeVar
from uuid import uuid4

from pydantic import BaseModel
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .database import Database
from .exceptions import DependencyUnavailableError, EventPublishError
from .models import ConsumerOffset, EventRecord, EventTopic, ProcessedMessage, utcnow

logger = logging.getLogger(__name__)

LOW_STOCK_ALERTS = "low_stock_alerts"
TRANSFER_ORDERS = "transfer_orders"
SHIPMENTS = "shipments"
RECEIPTS = "receipts"


class StageEvent(BaseModel):
    """Base class for outbound payloads; each subclass names its topic."""

    topic: ClassVar[str]

    replenishment_id: str


class AlertRaisedEvent(StageEvent):
    topic: ClassVar[str] = LOW_STOCK_ALERTS

    store_id: str
    product_id: str
    requested_qty: int = 0


class TransferOrderCreatedEvent(StageEvent):
    topic: ClassVar[str] = TRANSFER_ORDERS

    transfer_id: str
    product_id: str
    quantity: int
    warehouse_id: str


class ShipmentRecordedEvent(StageEvent):
    topic: ClassVar[str] = SHIPMENTS

    tracking: str
    carrier: str


class ReceiptRecordedEvent(StageEvent):
    topic: ClassVar[str] = RECEIPTS

    store_id: str
    product_id: str
    qty: int


EventT = TypeVar("EventT", bound=BaseModel)


@dataclass(frozen=True, slots=True)
class EventMessage:
    """One delivered event."""

    offset: int
    event_id: str
    topic: str
    payload: dict[str, Any]
    published_at: datetime

    @classmethod
    def from_record(cls, record: EventRecord) -> "EventMessage":
        return cls(
            offset=record.offset,
            event_id=record.event_id,
            topic=record.topic,
            payload=dict(record.payload),
            published_at=record.published_at,
        )

    def decode(self, model: type[EventT]) -> EventT:
        return model.model_validate(self.payload)


EventHandler = Callable[[EventMessage], None]


class EventGateway(Protocol):
    def publish(self, topic: str, payload: dict[str, Any]) -> str:
        ...

    def subscribe(
        self,
        group_id: str,
        topics: Iterable[str],
        handler: EventHandler,
        *,
        from_beginning: bool = False,
    ) -> "EventConsumer":
        ...


def publish_event(gateway: EventGateway, event: StageEvent) -> str:
    return gateway.publish(event.topic, event.model_dump(mode="json"))


class SqlEventLog:
    """Event gateway storing events in the service database."""

    def __init__(self, database: Database, *, poll_interval: float = 0.5, batch_size: int = 100) -> None:
        self._db = database
        self.poll_interval = poll_interval
        self.batch_size = batch_size
        self._consumers: list[EventConsumer] = []

    @property
    def consumers(self) -> list["EventConsumer"]:
        return list(self._consumers)

    def publish(self, topic: str, payload: dict[str, Any]) -> str:
        """Append an event to the log and return its id."""

        event_id = str(uuid4())
        try:
            with self._db.session_scope() as session:
                _claim_topic(session, topic)
                record = EventRecord(event_id=event_id, topic=topic, payload=payload, published_at=utcnow())
                session.add(record)
                session.flush()
                offset = record.offset
        except (DependencyUnavailableError, SQLAlchemyError) as exc:
            raise EventPublishError(
                f"could not publish to {topic}", details={"topic": topic}
            ) from exc
        logger.debug("Published %s to %s at offset %d", event_id, topic, offset)
        return event_id

    def read(self, topic: str, *, after: int = 0, limit: Optional[int] = None) -> list[EventMessage]:
        """Return events on ``topic`` with an offset greater than ``after``."""

        with self._db.read_scope() as session:
            return [EventMessage.from_record(r) for r in _fetch(session, topic, after, limit or self.batch_size)]

    def subscribe(
        self,
        group_id: str,
        topics: Iterable[str],
        handler: EventHandler,
        *,
        from_beginning: bool = False,
    ) -> "EventConsumer":
        """Register ``handler`` for ``topics`` under consumer group ``group_id``.

        A group seen for the first time starts after the newest event on each
        topic, unless ``from_beginning`` is set.
        """

        topics = list(topics)
        with self._db.session_scope() as session:
            for topic in topics:
                if session.get(ConsumerOffset, (group_id, topic)) is not None:
                    continue
                start = 0
                if not from_beginning:
                    start = session.scalar(
                        select(func.coalesce(func.max(EventRecord.offset), 0)).where(EventRecord.topic == topic)
                    )
                session.add(ConsumerOffset(group_id=group_id, topic=topic, position=start))

        consumer = EventConsumer(
            self._db,
            group_id,
            topics,
            handler,
            poll_interval=self.poll_interval,
            batch_size=self.batch_size,
        )
        self._consumers.append(consumer)
        return consumer

    def start(self) -> None:
        for consumer in self._consumers:
            consumer.start()

    def close(self) -> None:
        for consumer in self._consumers:
            consumer.stop()
        self._consumers.clear()


class EventConsumer:
    """Delivers a group's unacknowledged events to a handler, in offset order."""

    def __init__(
        self,
        database: Database,
        group_id: str,
        topics: list[str],
        handler: EventHandler,
        *,
        poll_interval: float = 0.5,
        batch_size: int = 100,
    ) -> None:
        self._db = database
        self.group_id = group_id
        self.topics = topics
        self._handler = handler
        self.poll_interval = poll_interval
        self.batch_size = batch_size
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def position(self, topic: str) -> int:
        with self._db.read_scope() as session:
            offset = session.get(ConsumerOffset, (self.group_id, topic))
            return offset.position if offset is not None else 0

    def poll_once(self) -> int:
        """Deliver pending events once; return how many were acknowledged."""

        acknowledged = 0
        for topic in self.topics:
            acknowledged += self._poll_topic(topic)
        return acknowledged

    def _poll_topic(self, topic: str) -> int:
        with self._db.read_scope() as session:
            offset = session.get(ConsumerOffset, (self.group_id, topic))
            after = offset.position if offset is not None else 0
            messages = [EventMessage.from_record(r) for r in _fetch(session, topic, after, self.batch_size)]

        acknowledged = 0
        for message in messages:
            if self._already_processed(message):
                logger.info(
                    "Skipping duplicate delivery of %s on %s for %s", message.event_id, topic, self.group_id
                )
            else:
                try:
                    self._handler(message)
                except Exception:
                    # Offset stays put, so the event is delivered again next poll.
                    logger.exception(
                        "Handler for %s failed on %s at offset %d", self.group_id, topic, message.offset
                    )
                    break
            self._acknowledge(message)
            acknowledged += 1
        return acknowledged

    def _already_processed(self, message: EventMessage) -> bool:
        with self._db.read_scope() as session:
            return session.get(ProcessedMessage, (self.group_id, message.event_id)) is not None

    def _acknowledge(self, message: EventMessage) -> None:
        with self._db.session_scope() as session:
            if session.get(ProcessedMessage, (self.group_id, message.event_id)) is None:
                session.add(ProcessedMessage(group_id=self.group_id, event_id=message.event_id))
            offset = session.get(ConsumerOffset, (self.group_id, message.topic))
            if offset is None:
                session.add(ConsumerOffset(group_id=self.group_id, topic=message.topic, position=message.offset))
            elif message.offset > offset.position:
                offset.position = message.offset

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name=f"consumer-{self.group_id}", daemon=True
        )
        self._thread.start()
        logger.info("Consumer %s started on %s", self.group_id, ", ".join(self.topics))

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
            logger.info("Consumer %s stopped", self.group_id)

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.poll_once()
            except DependencyUnavailableError as exc:
                logger.warning("Consumer %s could not reach the event log: %s", self.group_id, exc)
            self._stop.wait(self.poll_interval)


def _claim_topic(session: Session, topic: str) -> None:
    statement = (
        update(EventTopic)
        .where(EventTopic.topic == topic)
        .values(head=EventTopic.head + 1)
        .execution_options(synchronize_session=False)
    )
    if session.execute(statement).rowcount == 1:
        return
    try:
        with session.begin_nested():
            session.add(EventTopic(topic=topic, head=1))
    except IntegrityError:
        # Another publisher created the row first.
        session.execute(statement)


def _fetch(session: Session, topic: str, after: int, limit: int) -> list[EventRecord]:
    statement = (
        select(EventRecord)
        .where(EventRecord.topic == topic, EventRecord.offset > after)
        .order_by(EventRecord.offset)
        .limit(limit)
    )
    return list(session.scalars(statement))
