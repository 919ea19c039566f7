"""Explicit construction of the tracking services.

Nothing in the tracking context is a module-level singleton: the host
(FastAPI app, CLI, tests) builds a ``TrackingServices`` bundle from settings
and owns its lifetime. Command handlers build the stateless core on demand.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from protean.utils.globals import current_domain

from tracking.carrier import build_carrier
from tracking.carrier.port import CarrierPort
from tracking.codes.generator import TrackingCodeGenerator
from tracking.config import TrackingSettings
from tracking.ledger.conflicts import ConflictDetector
from tracking.ledger.ledger import EventLedger
from tracking.shipment.shipment import Shipment
from tracking.shipment.state_machine import StatusStateMachine
from tracking.sync.engine import TrackingSyncEngine
from tracking.sync.rate_limit import RateLimiter
from tracking.utils.clock import utcnow

_DEFAULT = object()


def _tracking_code_taken(code: str) -> bool:
    return current_domain.repository_for(Shipment).tracking_code_exists(code)


@dataclass
class CoreServices:
    settings: TrackingSettings
    codes: TrackingCodeGenerator
    ledger: EventLedger
    state_machine: StatusStateMachine
    conflicts: ConflictDetector


@dataclass
class TrackingServices(CoreServices):
    rate_limiter: RateLimiter
    carrier: CarrierPort | None
    sync: TrackingSyncEngine


def core_services(
    settings: TrackingSettings | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> CoreServices:
    settings = settings or TrackingSettings.from_env()
    ledger = EventLedger(clock=clock)
    return CoreServices(
        settings=settings,
        codes=TrackingCodeGenerator(_tracking_code_taken, max_attempts=settings.tracking_code_max_attempts),
        ledger=ledger,
        state_machine=StatusStateMachine(ledger),
        conflicts=ConflictDetector(
            ledger,
            window=timedelta(seconds=settings.conflict_window_seconds),
            clock=clock,
        ),
    )


def build_services(
    settings: TrackingSettings | None = None,
    *,
    carrier=_DEFAULT,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    clock: Callable[[], datetime] = utcnow,
) -> TrackingServices:
    """Wire every tracking service from ``settings``.

    ``carrier`` overrides the adapter named in settings; pass ``None`` to
    run without one.
    """
    core = core_services(settings, clock=clock)
    settings = core.settings
    if carrier is _DEFAULT:
        carrier = build_carrier(settings.carrier_adapter, webhook_secret=settings.carrier_webhook_secret)

    rate_limiter = RateLimiter(
        max_requests=settings.rate_limit_max_requests,
        window_seconds=settings.rate_limit_window_seconds,
        sleep=sleep,
    )
    engine = TrackingSyncEngine(
        ledger=core.ledger,
        state_machine=core.state_machine,
        carrier=carrier,
        settings=settings,
        rate_limiter=rate_limiter,
        sleep=sleep,
        clock=clock,
    )
    return TrackingServices(
        settings=settings,
        codes=core.codes,
        ledger=core.ledger,
        state_machine=core.state_machine,
        conflicts=core.conflicts,
        rate_limiter=rate_limiter,
        carrier=carrier,
        sync=engine,
    )
