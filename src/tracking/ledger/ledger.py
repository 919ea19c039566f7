"""Event ledger: the append-only audit trail of every shipment.

The ledger is a leaf: it knows how to store and read ShipmentEvents and how
to check that a shipment exists, and nothing about status rules. The status
state machine writes through it, never the other way round.

Reads are ordered newest first by ``(event_time, recorded_at, sequence)``.
The sort is done here rather than in the store so that every provider
yields the same order, which pagination and re-processing rely on.
"""

import math
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime

import structlog
from protean import UnitOfWork
from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain, current_uow

from tracking.errors import ShipmentNotFound
from tracking.ledger.event import (
    STATUS_EVENT_TYPES,
    EventSource,
    EventType,
    ShipmentEvent,
)
from tracking.shipment.shipment import Shipment, ShipmentStatus
from tracking.utils.clock import as_utc, utcnow

logger = structlog.get_logger(__name__)

DEFAULT_PER_PAGE = 50
MAX_PER_PAGE = 200

PUBLIC_SCAN_TYPES = (EventType.LOCATION_UPDATE, EventType.DELIVERY_ATTEMPT)

@contextmanager
def atomic() -> Iterator[UnitOfWork]:
    """Join the unit of work in progress, or open a new one.

    Command handlers already run inside a unit of work; service code called
    from scripts or the sync engine does not.
    """
    if current_uow and current_uow.in_progress:
        yield current_uow
    else:
        with UnitOfWork() as uow:
            yield uow


@dataclass(frozen=True)
class EventFilters:
    event_types: tuple[EventType, ...] = ()
    sources: tuple[EventSource, ...] = ()
    start: datetime | None = None
    end: datetime | None = None

    def matches(self, event: ShipmentEvent) -> bool:
        if self.event_types and EventType(event.event_type) not in self.event_types:
            return False
        if self.sources and EventSource(event.source) not in self.sources:
            return False
        event_time = as_utc(event.event_time)
        if self.start is not None and event_time < as_utc(self.start):
            return False
        if self.end is not None and event_time > as_utc(self.end):
            return False
        return True


@dataclass(frozen=True)
class EventPage:
    events: list[ShipmentEvent] = field(default_factory=list)
    total: int = 0
    page: int = 1
    per_page: int = DEFAULT_PER_PAGE

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.per_page) if self.total else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev(self) -> bool:
        return self.page > 1


def ordering_key(event: ShipmentEvent) -> tuple:
    return (as_utc(event.event_time), as_utc(event.recorded_at), event.sequence or 0)


def acceptance_key(event: ShipmentEvent) -> tuple:
    return (as_utc(event.recorded_at), event.sequence or 0)


class EventLedger:
    """Append and read shipment events."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock
        self._issued: dict[str, int] = {}

    @property
    def _events(self):
        return current_domain.repository_for(ShipmentEvent)

    def _assert_shipment_exists(self, shipment_id: str) -> None:
        try:
            current_domain.repository_for(Shipment).get(shipment_id)
        except ObjectNotFoundError as exc:
            raise ShipmentNotFound(shipment_id) from exc

    def _next_sequence(self, shipment_id: str) -> int:
        """Per-shipment insertion order, continuing from what storage holds.

        Numbers issued by this ledger are remembered so that appends inside a
        unit of work that has not committed yet still get distinct values.
        Two processes appending to the same shipment at the same instant can
        still draw the same number.
        """
        sequence = max(self._events.last_sequence(shipment_id), self._issued.get(shipment_id, 0)) + 1
        self._issued[shipment_id] = sequence
        return sequence

    # -------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------
    def append(
        self,
        shipment_id: str,
        event_type: EventType,
        *,
        source: EventSource,
        status: ShipmentStatus | None = None,
        description: str | None = None,
        location: str | None = None,
        source_id: str | None = None,
        event_time: datetime | None = None,
        details: dict | None = None,
    ) -> ShipmentEvent:
        """Record one event. Raises ShipmentNotFound for unknown shipments."""
        shipment_id = str(shipment_id)
        self._assert_shipment_exists(shipment_id)

        recorded_at = self.clock()
        event = ShipmentEvent(
            shipment_id=shipment_id,
            event_type=event_type.value,
            status=status.value if status else None,
            description=description,
            location=location,
            source=source.value,
            source_id=source_id,
            event_time=as_utc(event_time) or recorded_at,
            recorded_at=recorded_at,
            sequence=self._next_sequence(shipment_id),
            details=dict(details or {}),
        )
        with atomic():
            self._events.add(event)

        logger.debug(
            "Ledger event appended",
            shipment_id=shipment_id,
            event_type=event.event_type,
            source=event.source,
            status=event.status,
        )
        return event

    def purge(self, shipment_id: str) -> int:
        """Administrative delete of every event for a shipment."""
        events = self._events.for_shipment(str(shipment_id))
        with atomic():
            for event in events:
                self._events.delete_event(event)

        logger.warning("Ledger purged", shipment_id=str(shipment_id), events=len(events))
        return len(events)

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    def events_for(self, shipment_id: str) -> list[ShipmentEvent]:
        """All events for a shipment, newest first."""
        events = self._events.for_shipment(str(shipment_id))
        return sorted(events, key=ordering_key, reverse=True)

    def query(
        self,
        shipment_id: str,
        filters: EventFilters | None = None,
        page: int = 1,
        per_page: int = DEFAULT_PER_PAGE,
    ) -> EventPage:
        if page < 1:
            raise ValueError("page must be at least 1")
        if not 1 <= per_page <= MAX_PER_PAGE:
            raise ValueError(f"per_page must be between 1 and {MAX_PER_PAGE}")

        filters = filters or EventFilters()
        matching = [event for event in self.events_for(shipment_id) if filters.matches(event)]

        start = (page - 1) * per_page
        return EventPage(
            events=matching[start : start + per_page],
            total=len(matching),
            page=page,
            per_page=per_page,
        )

    def latest(self, shipment_id: str) -> ShipmentEvent | None:
        events = self.events_for(shipment_id)
        return events[0] if events else None

    def latest_status_event(self, shipment_id: str) -> ShipmentEvent | None:
        """The most recently accepted event that set the shipment's status."""
        status_events = [
            event
            for event in self._events.for_shipment(str(shipment_id))
            if EventType(event.event_type) in STATUS_EVENT_TYPES and event.has_status
        ]
        if not status_events:
            return None
        return max(status_events, key=acceptance_key)

    def status_history(self, shipment_id: str) -> list[ShipmentEvent]:
        """Status-bearing status_change events, newest first."""
        return [
            event
            for event in self.events_for(shipment_id)
            if event.event_type == EventType.STATUS_CHANGE.value and event.has_status
        ]

    def public_timeline(self, shipment_id: str) -> list[ShipmentEvent]:
        """Events a customer may see, newest first.

        Status-bearing events plus carrier scans; sync failures, conflict
        annotations and admin audit entries stay internal.
        """
        return [
            event
            for event in self.events_for(shipment_id)
            if event.has_status or EventType(event.event_type) in PUBLIC_SCAN_TYPES
        ]

    def carrier_event_times(self, shipment_id: str, source: EventSource) -> set[datetime]:
        """Event times already recorded from a carrier source: the dedup keys."""
        return {
            as_utc(event.event_time)
            for event in self._events.for_shipment(str(shipment_id))
            if event.source == source.value
        }

    def events_since(
        self,
        shipment_id: str,
        since: datetime,
        *,
        event_types: tuple[EventType, ...] = (),
        sources: tuple[EventSource, ...] = (),
    ) -> list[ShipmentEvent]:
        """Events at or after ``since``, newest first."""
        filters = EventFilters(event_types=event_types, sources=sources, start=since)
        return [event for event in self.events_for(shipment_id) if filters.matches(event)]
