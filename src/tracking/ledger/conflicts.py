"""Conflict detection for manual status changes.

Carrier data cannot be trusted blindly and neither can an administrator
acting on stale information, so divergence is recorded rather than
resolved. Nothing here ever blocks a status change.

Two conditions are annotated, both looking back over a recency window
(five minutes by default):

* ``api_manual_conflict``: the most recent carrier-API event in the window
  reported a status other than the one the administrator is setting.
* ``rapid_status_changes``: two or more status changes already happened in
  the window.
"""

from collections.abc import Callable
from datetime import datetime, timedelta

import structlog

from tracking.ledger.event import EventSource, EventType, ShipmentEvent
from tracking.ledger.ledger import EventLedger, ordering_key
from tracking.shipment.shipment import ShipmentStatus
from tracking.utils.clock import utcnow

logger = structlog.get_logger(__name__)

API_MANUAL_CONFLICT = "api_manual_conflict"
RAPID_STATUS_CHANGES = "rapid_status_changes"

RAPID_CHANGE_THRESHOLD = 2


class ConflictDetector:
    def __init__(
        self,
        ledger: EventLedger,
        window: timedelta = timedelta(minutes=5),
        clock: Callable[[], datetime] = utcnow,
    ):
        self.ledger = ledger
        self.window = window
        self.clock = clock

    def inspect(
        self,
        shipment_id: str,
        requested_status: ShipmentStatus,
        admin_user_id: str | None = None,
    ) -> list[ShipmentEvent]:
        """Annotate the ledger ahead of a manual change; returns the annotations."""
        now = self.clock()
        recent = self.ledger.events_since(shipment_id, now - self.window)

        annotations = []
        divergence = self._api_divergence(shipment_id, recent, requested_status, admin_user_id)
        if divergence is not None:
            annotations.append(divergence)

        thrashing = self._rapid_changes(shipment_id, recent, admin_user_id)
        if thrashing is not None:
            annotations.append(thrashing)

        return annotations

    def _api_divergence(self, shipment_id, recent, requested_status, admin_user_id):
        api_updates = [event for event in recent if event.source == EventSource.API.value and event.has_status]
        if not api_updates:
            return None

        latest = max(api_updates, key=ordering_key)
        if latest.status == requested_status.value:
            return None

        logger.warning(
            "Manual status update conflicts with recent API update",
            shipment_id=shipment_id,
            api_status=latest.status,
            manual_status=requested_status.value,
        )
        return self.ledger.append(
            shipment_id,
            EventType.STATUS_CHANGE,
            source=EventSource.MANUAL,
            source_id=admin_user_id,
            description=(
                f"Manual status update to {requested_status.value} conflicts with "
                f"API status {latest.status} reported at {latest.event_time.isoformat()}"
            ),
            details={
                "conflict_type": API_MANUAL_CONFLICT,
                "api_status": latest.status,
                "manual_status": requested_status.value,
                "api_event_id": str(latest.id),
                "api_event_time": latest.event_time.isoformat(),
                "admin_override": True,
            },
        )

    def _rapid_changes(self, shipment_id, recent, admin_user_id):
        changes = [
            event for event in recent if event.event_type == EventType.STATUS_CHANGE.value and event.has_status
        ]
        if len(changes) < RAPID_CHANGE_THRESHOLD:
            return None

        window_minutes = int(self.window.total_seconds() // 60)
        logger.warning("Rapid status changes detected", shipment_id=shipment_id, recent_changes=len(changes))
        return self.ledger.append(
            shipment_id,
            EventType.STATUS_CHANGE,
            source=EventSource.MANUAL,
            source_id=admin_user_id,
            description=f"{len(changes)} status changes within {window_minutes} minutes",
            details={
                "conflict_type": RAPID_STATUS_CHANGES,
                "recent_changes_count": len(changes),
                "recent_changes": [
                    {
                        "status": event.status,
                        "source": event.source,
                        "event_time": event.event_time.isoformat(),
                    }
                    for event in sorted(changes, key=ordering_key)
                ],
                "admin_override": True,
            },
        )
