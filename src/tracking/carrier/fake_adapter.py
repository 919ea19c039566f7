"""Fake carrier adapter: deterministic carrier for testing and development.

Events are scripted per tracking session with ``add_events``. Failures can
be switched on globally with ``configure`` or for a single session with
``fail_session``. Every call is recorded in ``calls``.
"""

import asyncio
import hashlib
import hmac
from datetime import datetime
from uuid import uuid4

from tracking.carrier.port import (
    CarrierError,
    CarrierEvent,
    CarrierPort,
    TrackingRegistration,
    TrackingRequest,
)


class FakeCarrier(CarrierPort):
    """Fake carrier that always succeeds by default."""

    provider_name = "fake"

    def __init__(self, webhook_secret: str | None = None):
        self.webhook_secret = webhook_secret
        self.should_succeed = True
        self.failure_reason = "Carrier unavailable"
        self.delay: float = 0.0
        self.calls: list[tuple[str, str]] = []
        self._events: dict[str, list[CarrierEvent]] = {}
        self._failing_sessions: dict[str, str] = {}
        self._sessions_by_number: dict[str, str] = {}

    def configure(
        self,
        should_succeed: bool = True,
        failure_reason: str = "Carrier unavailable",
        delay: float = 0.0,
    ) -> None:
        """Configure the fake carrier behavior for testing."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.delay = delay

    def add_events(self, session_id: str, *events: CarrierEvent) -> None:
        self._events.setdefault(session_id, []).extend(events)

    def fail_session(self, session_id: str, reason: str = "Carrier unavailable") -> None:
        self._failing_sessions[session_id] = reason

    def register_number(self, carrier_tracking_number: str, session_id: str) -> None:
        """Pin the session id that ``create_tracking`` returns for a number."""
        self._sessions_by_number[carrier_tracking_number] = session_id

    def calls_for(self, operation: str) -> list[str]:
        return [ref for op, ref in self.calls if op == operation]

    async def _respond(self, reference: str) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self.should_succeed:
            raise CarrierError(self.failure_reason, status_code=503)
        if reference in self._failing_sessions:
            raise CarrierError(self._failing_sessions[reference], status_code=502)

    async def create_tracking(self, request: TrackingRequest) -> TrackingRegistration:
        self.calls.append(("create_tracking", request.carrier_tracking_number))
        await self._respond(request.carrier_tracking_number)

        session_id = self._sessions_by_number.get(request.carrier_tracking_number) or f"fake-{uuid4().hex[:12]}"
        return TrackingRegistration(
            tracking_session_id=session_id,
            events=list(self._events.get(session_id, [])),
        )

    async def get_tracking_updates(self, tracking_session_id: str) -> list[CarrierEvent]:
        self.calls.append(("get_tracking_updates", tracking_session_id))
        await self._respond(tracking_session_id)
        return list(self._events.get(tracking_session_id, []))

    def sign(self, payload: bytes) -> str:
        digest = hmac.new((self.webhook_secret or "").encode(), payload, hashlib.sha256).hexdigest()
        return f"sha256={digest}"

    def verify_webhook_signature(self, payload: bytes, signature: str) -> bool:
        # Without a secret the fake accepts any signature (or none)
        if not self.webhook_secret:
            return True
        return hmac.compare_digest(self.sign(payload), signature or "")


def fake_event(event_type: str | None, event_time: datetime, description: str | None = None, location: str | None = None) -> CarrierEvent:
    """Shorthand for scripting carrier events."""
    return CarrierEvent(
        event_time=event_time,
        event_type=event_type,
        description=description or (event_type or "").replace("_", " ").capitalize(),
        location=location,
    )
