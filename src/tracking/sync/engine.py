"""Tracking sync engine: keeps shipments in step with the carrier.

One sync of one shipment goes idle → requesting → success | retrying |
failed:

* requesting: rate-limit, then ask the carrier for every event of the
  shipment's tracking session, opening a session first when the shipment
  only has a carrier tracking number. Each call is time-bounded.
* retrying: any adapter failure (timeouts included) is retried with
  exponential backoff.
* success: new carrier events are deduplicated against the ledger by
  ``(source, event_time)``, sorted oldest first, recorded, and the latest
  reported status is applied through the status state machine.
* failed: the shipment is flagged for review, the error is stored and an
  ``exception`` ledger entry is written. In a batch the failure stays local
  to that shipment.

Webhook notifications go through the same ingestion path, tagged with the
``webhook`` source instead of ``api``.

Database work never spans an ``await``: carrier calls happen first, then
everything they produced is written in one unit of work.
"""

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import structlog
from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from tracking.carrier.port import CarrierEvent, CarrierPort, TrackingRequest
from tracking.config import TrackingSettings
from tracking.errors import (
    AdapterUnavailable,
    InvalidTransition,
    InvalidWebhookSignature,
    MissingTrackingReference,
    TrackingError,
)
from tracking.ledger.event import EventSource, EventType
from tracking.ledger.ledger import EventLedger, atomic
from tracking.shipment.shipment import Shipment, ShipmentStatus, SyncStatus, can_transition
from tracking.shipment.state_machine import StatusStateMachine, load_shipment
from tracking.sync.health import SyncStats
from tracking.sync.mapping import ledger_event_type, map_event_status
from tracking.sync.rate_limit import RateLimiter
from tracking.sync.retry import call_with_retry
from tracking.sync.webhook import parse_webhook_payload
from tracking.utils.clock import as_utc, utcnow
from tracking.utils.logging import bind_context, unbind_context

logger = structlog.get_logger(__name__)

_NEVER = datetime.min.replace(tzinfo=UTC)
_SKIPPED = object()


@dataclass
class SyncOutcome:
    """What one ingestion pass did to a shipment."""

    shipment_id: str
    new_events: int = 0
    transitions: list[str] = field(default_factory=list)
    skipped_status: str | None = None


@dataclass
class BatchSyncResult:
    successful: list[str] = field(default_factory=list)
    failed: list[dict] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.successful) + len(self.failed) + len(self.skipped)


@dataclass
class WebhookResult:
    matched: bool
    shipment_id: str | None = None
    new_events: int = 0
    transitions: list[str] = field(default_factory=list)


def _unique(ids: Iterable[str]) -> list[str]:
    seen = set()
    unique = []
    for shipment_id in ids:
        shipment_id = str(shipment_id).strip()
        if shipment_id and shipment_id not in seen:
            seen.add(shipment_id)
            unique.append(shipment_id)
    return unique


class TrackingSyncEngine:
    def __init__(
        self,
        ledger: EventLedger,
        state_machine: StatusStateMachine,
        carrier: CarrierPort | None,
        settings: TrackingSettings,
        rate_limiter: RateLimiter,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.ledger = ledger
        self.state_machine = state_machine
        self.carrier = carrier
        self.settings = settings
        self.rate_limiter = rate_limiter
        self.sleep = sleep
        self.clock = clock

    @property
    def provider_name(self) -> str | None:
        return self.carrier.provider_name if self.carrier else None

    def _require_carrier(self) -> CarrierPort:
        if self.carrier is None:
            raise AdapterUnavailable()
        return self.carrier

    # -------------------------------------------------------------------
    # Carrier calls
    # -------------------------------------------------------------------
    async def _call(self, name: str, operation):
        return await call_with_retry(
            operation,
            name=name,
            max_retries=self.settings.sync_max_retries,
            base_delay=self.settings.sync_base_retry_delay,
            timeout=self.settings.sync_request_timeout,
            sleep=self.sleep,
            throttle=self.rate_limiter.acquire,
        )

    async def _fetch_events(self, shipment: Shipment) -> list[CarrierEvent]:
        carrier = self._require_carrier()
        session_id = shipment.tracking_session_id
        events: list[CarrierEvent] = []

        if not session_id:
            if not shipment.carrier_tracking_number:
                raise MissingTrackingReference(
                    "Shipment has neither a tracking session nor a carrier tracking number",
                    shipment_id=str(shipment.id),
                )
            request = TrackingRequest(
                shipment_id=str(shipment.id),
                carrier_tracking_number=shipment.carrier_tracking_number,
                carrier=shipment.carrier,
                origin=shipment.origin.to_dict() if shipment.origin else None,
                destination=shipment.destination.to_dict() if shipment.destination else None,
                package=shipment.package.to_dict() if shipment.package else None,
            )
            registration = await self._call("create_tracking", lambda: carrier.create_tracking(request))
            session_id = registration.tracking_session_id
            events.extend(registration.events)
            self._store_session(str(shipment.id), session_id)

        events.extend(await self._call("get_tracking_updates", lambda: carrier.get_tracking_updates(session_id)))
        return events

    def _store_session(self, shipment_id: str, session_id: str) -> None:
        with atomic():
            shipment = load_shipment(shipment_id)
            shipment.record_tracking_session(session_id, self.provider_name)
            current_domain.repository_for(Shipment).add(shipment)
        logger.info("Carrier tracking session opened", shipment_id=shipment_id, tracking_session_id=session_id)

    # -------------------------------------------------------------------
    # Ingestion (shared by polling and webhooks)
    # -------------------------------------------------------------------
    def ingest(self, shipment_id: str, events: list[CarrierEvent], source: EventSource) -> SyncOutcome:
        """Record unseen carrier events and apply the latest reported status."""
        outcome = SyncOutcome(shipment_id=shipment_id)

        with atomic():
            known = self.ledger.carrier_event_times(shipment_id, source)
            fresh = []
            for event in events:
                key = as_utc(event.event_time)
                if key in known:
                    continue
                known.add(key)
                fresh.append(event)
            fresh.sort(key=lambda event: as_utc(event.event_time))

            reported: list[tuple[ShipmentStatus, CarrierEvent]] = []
            for event in fresh:
                status = map_event_status(event)
                self.ledger.append(
                    shipment_id,
                    ledger_event_type(event, status),
                    source=source,
                    status=status,
                    description=event.description,
                    location=event.location,
                    source_id=self.provider_name,
                    event_time=event.event_time,
                    details={
                        "carrier_event_type": event.event_type,
                        "carrier_event_id": event.carrier_event_id,
                    },
                )
                if status is not None:
                    reported.append((status, event))
            outcome.new_events = len(fresh)

            if reported:
                self._apply_reported_status(outcome, reported, source)

        return outcome

    def _transition(self, shipment_id: str, status: ShipmentStatus, event: CarrierEvent, source: EventSource) -> None:
        self.state_machine.transition(
            shipment_id,
            status,
            source=source,
            source_id=self.provider_name,
            description=f"Status updated from carrier: {status.value}",
            location=event.location,
            event_time=event.event_time,
            details={"carrier_event_type": event.event_type},
        )

    def _apply_reported_status(self, outcome: SyncOutcome, reported, source: EventSource) -> None:
        """Move to the latest reported status.

        When the direct move is illegal, walk the statuses reported earlier in
        the same pass, oldest first, applying each legal step. If the latest
        status is still out of reach the skip is recorded in the ledger and
        the sync still counts as successful.
        """
        shipment_id = outcome.shipment_id
        latest_status, latest_event = reported[-1]
        current = load_shipment(shipment_id).current_status
        if current == latest_status:
            return

        steps = [(latest_status, latest_event)] if can_transition(current, latest_status) else reported

        for status, event in steps:
            if status == current or not can_transition(current, status):
                continue
            try:
                self._transition(shipment_id, status, event, source)
            except InvalidTransition as exc:
                logger.warning("Carrier transition rejected", shipment_id=shipment_id, error=str(exc.messages))
                continue
            outcome.transitions.append(status.value)
            current = status

        final = current
        if final != latest_status:
            outcome.skipped_status = latest_status.value
            logger.warning(
                "Skipped illegal carrier status",
                shipment_id=shipment_id,
                current_status=final.value,
                reported_status=latest_status.value,
            )
            self.ledger.append(
                shipment_id,
                EventType.API_SYNC,
                source=source,
                source_id=self.provider_name,
                description=f"Carrier reported {latest_status.value}; cannot transition from {final.value}",
                event_time=self.clock(),
                details={
                    "skipped_transition": {"from": final.value, "to": latest_status.value},
                    "carrier_event_time": as_utc(latest_event.event_time).isoformat(),
                },
            )

    # -------------------------------------------------------------------
    # Outcome bookkeeping
    # -------------------------------------------------------------------
    def _record_success(self, shipment_id: str) -> None:
        with atomic():
            shipment = load_shipment(shipment_id)
            shipment.record_sync_success(self.provider_name, self.clock())
            current_domain.repository_for(Shipment).add(shipment)

    def _record_failure(self, shipment_id: str, error: TrackingError) -> None:
        now = self.clock()
        with atomic():
            shipment = load_shipment(shipment_id)
            shipment.record_sync_failure(str(error), now)
            current_domain.repository_for(Shipment).add(shipment)
            self.ledger.append(
                shipment_id,
                EventType.EXCEPTION,
                source=EventSource.API,
                source_id=self.provider_name,
                description=f"Tracking sync failed: {error}",
                event_time=now,
                details={
                    "sync_failure": True,
                    "error_code": error.code,
                    **error.details,
                },
            )

    # -------------------------------------------------------------------
    # Public operations
    # -------------------------------------------------------------------
    async def sync_one(self, shipment_id: str) -> SyncOutcome:
        """Sync one shipment with its carrier.

        Raises ``AdapterUnavailable`` without touching the shipment when no
        carrier is configured, ``ShipmentNotFound`` for unknown ids, and the
        recorded ``TrackingError`` when the carrier could not be reached.
        """
        self._require_carrier()
        shipment_id = str(shipment_id)
        bind_context(shipment_id=shipment_id, operation="sync")
        try:
            shipment = load_shipment(shipment_id)
            try:
                events = await self._fetch_events(shipment)
            except TrackingError as exc:
                self._record_failure(shipment_id, exc)
                logger.error("Shipment sync failed", error=str(exc))
                raise

            outcome = self.ingest(shipment_id, events, EventSource.API)
            self._record_success(shipment_id)
            logger.info(
                "Shipment synced",
                new_events=outcome.new_events,
                transitions=outcome.transitions,
                skipped_status=outcome.skipped_status,
            )
            return outcome
        finally:
            unbind_context("shipment_id", "operation")

    def select_candidates(self, force: bool = False) -> list[Shipment]:
        """Active shipments with a tracking session that are due for a sync.

        Never-synced shipments come first, then the longest-unsynced. The
        list is capped at the batch ceiling.
        """
        now = self.clock()
        freshness = timedelta(seconds=self.settings.sync_freshness_seconds)
        candidates = [
            shipment
            for shipment in current_domain.repository_for(Shipment).find_active()
            if shipment.tracking_session_id and (force or shipment.is_stale(freshness, now))
        ]
        candidates.sort(
            key=lambda shipment: (
                shipment.last_synced_at is not None,
                as_utc(shipment.last_synced_at) or _NEVER,
            )
        )
        return candidates[: self.settings.sync_batch_ceiling]

    async def _sync_guarded(self, shipment_id: str, cancel: asyncio.Event | None):
        if cancel is not None and cancel.is_set():
            return _SKIPPED
        return await self.sync_one(shipment_id)

    async def sync_batch(
        self,
        shipment_ids: Iterable[str] | None = None,
        max_concurrency: int | None = None,
        force: bool = False,
        cancel: asyncio.Event | None = None,
    ) -> BatchSyncResult:
        """Sync many shipments, at most ``max_concurrency`` at a time.

        Without explicit ids the candidates are selected automatically.
        Per-shipment failures land in ``failed``; anything else (such as the
        ledger being unwritable) is raised once the current group settles.
        Once ``cancel`` is set, shipments not yet started are ``skipped``.
        """
        self._require_carrier()
        concurrency = max_concurrency or self.settings.sync_max_concurrency
        if concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")

        if shipment_ids is None:
            ids = [str(shipment.id) for shipment in self.select_candidates(force=force)]
        else:
            ids = _unique(shipment_ids)

        result = BatchSyncResult()
        groups = [ids[start : start + concurrency] for start in range(0, len(ids), concurrency)]
        logger.info("Batch sync started", shipments=len(ids), groups=len(groups), concurrency=concurrency)

        for index, group in enumerate(groups):
            if index > 0 and self.settings.sync_batch_delay:
                await self.sleep(self.settings.sync_batch_delay)
            if cancel is not None and cancel.is_set():
                for remaining in groups[index:]:
                    result.skipped.extend(remaining)
                break

            outcomes = await asyncio.gather(
                *(self._sync_guarded(shipment_id, cancel) for shipment_id in group),
                return_exceptions=True,
            )

            fatal = None
            for shipment_id, outcome in zip(group, outcomes):
                if outcome is _SKIPPED:
                    result.skipped.append(shipment_id)
                elif isinstance(outcome, (TrackingError, ObjectNotFoundError)):
                    result.failed.append({"id": shipment_id, "error": str(outcome)})
                elif isinstance(outcome, BaseException):
                    fatal = fatal or outcome
                else:
                    result.successful.append(shipment_id)
            if fatal is not None:
                logger.error("Batch sync aborted", error=str(fatal))
                raise fatal

        logger.info(
            "Batch sync finished",
            successful=len(result.successful),
            failed=len(result.failed),
            skipped=len(result.skipped),
        )
        return result

    def handle_webhook(
        self,
        payload: dict,
        raw_body: bytes | None = None,
        signature: str | None = None,
    ) -> WebhookResult:
        """Ingest a pushed carrier notification.

        The signature is checked against ``raw_body`` when one is given.
        Notifications for unknown tracking references are acknowledged and
        ignored.
        """
        carrier = self._require_carrier()
        if raw_body is not None and not carrier.verify_webhook_signature(raw_body, signature or ""):
            raise InvalidWebhookSignature()

        notification = parse_webhook_payload(payload)
        shipment = current_domain.repository_for(Shipment).find_by_carrier_reference(notification.tracking_reference)
        if shipment is None:
            logger.warning("Webhook for unknown tracking reference", tracking_reference=notification.tracking_reference)
            return WebhookResult(matched=False)

        outcome = self.ingest(str(shipment.id), notification.events, EventSource.WEBHOOK)
        logger.info(
            "Webhook processed",
            shipment_id=str(shipment.id),
            new_events=outcome.new_events,
            transitions=outcome.transitions,
        )
        return WebhookResult(
            matched=True,
            shipment_id=str(shipment.id),
            new_events=outcome.new_events,
            transitions=outcome.transitions,
        )

    def sync_stats(self) -> SyncStats:
        now = self.clock()
        freshness = timedelta(seconds=self.settings.sync_freshness_seconds)
        shipments = current_domain.repository_for(Shipment).find_all()

        tracked = [shipment for shipment in shipments if shipment.tracking_session_id]
        return SyncStats(
            total_shipments=len(shipments),
            with_tracking_session=len(tracked),
            recently_synced=sum(1 for shipment in tracked if not shipment.is_stale(freshness, now)),
            needing_sync=sum(1 for shipment in tracked if shipment.is_active and shipment.is_stale(freshness, now)),
            needing_review=sum(1 for shipment in shipments if shipment.needs_review),
            failed_syncs=sum(1 for shipment in shipments if shipment.sync_status == SyncStatus.FAILED.value),
            provider=self.provider_name,
        )
