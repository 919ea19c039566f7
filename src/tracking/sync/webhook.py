"""Parsing of pushed carrier notifications.

Accepted payload shape::

    {
        "tracking_id": "<session id or carrier tracking number>",
        "events": [
            {"event_type": "in_transit", "description": "...",
             "location": "...", "event_time": "2024-05-01T10:00:00Z"}
        ]
    }

``tracking_session_id`` or ``tracking_number`` may stand in for
``tracking_id``; ``occurred_at`` or ``timestamp`` for ``event_time``.
"""

from datetime import datetime

from protean.exceptions import ValidationError

from tracking.carrier.port import CarrierEvent, WebhookNotification
from tracking.utils.clock import as_utc

_REFERENCE_KEYS = ("tracking_id", "tracking_session_id", "tracking_number")
_TIME_KEYS = ("event_time", "occurred_at", "timestamp")


def _parse_time(value) -> datetime:
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, str) and value:
        try:
            return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError as exc:
            raise ValidationError({"event_time": [f"Invalid event time: {value}"]}) from exc
    raise ValidationError({"event_time": ["Event time is required"]})


def parse_event(raw: dict) -> CarrierEvent:
    if not isinstance(raw, dict):
        raise ValidationError({"events": ["Each event must be an object"]})
    time_value = next((raw[key] for key in _TIME_KEYS if raw.get(key)), None)
    return CarrierEvent(
        event_time=_parse_time(time_value),
        event_type=raw.get("event_type") or raw.get("status"),
        description=raw.get("description"),
        location=raw.get("location"),
        carrier_event_id=raw.get("event_id"),
    )


def parse_webhook_payload(payload: dict) -> WebhookNotification:
    if not isinstance(payload, dict):
        raise ValidationError({"payload": ["Webhook payload must be an object"]})

    reference = next((payload[key] for key in _REFERENCE_KEYS if payload.get(key)), None)
    if not reference:
        raise ValidationError({"tracking_id": ["Webhook payload has no tracking reference"]})

    events = payload.get("events") or []
    if not isinstance(events, list):
        raise ValidationError({"events": ["Events must be a list"]})

    return WebhookNotification(
        tracking_reference=str(reference),
        events=[parse_event(raw) for raw in events],
    )
