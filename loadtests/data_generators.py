"""Faker-based data generators for the tracking load test scenarios.

Payloads match the field names of the API's pydantic request schemas.
"""

import random
import uuid
from datetime import UTC, datetime, timedelta

from faker import Faker

fake = Faker()

CARRIERS = ["ups", "fedex", "usps", "dhl"]

# Carrier scans in the order a healthy shipment sees them
SCAN_SEQUENCE = ["pickup", "arrival_scan", "in_transit", "out_for_delivery", "delivered"]


def session_id() -> str:
    """Carrier tracking session like 'lt-sess-a1b2c3d4e5f6'."""
    return f"lt-sess-{uuid.uuid4().hex[:12]}"


def ups_tracking_number() -> str:
    return f"1Z{uuid.uuid4().hex[:16].upper()}"


def address_data() -> dict:
    return {
        "line1": fake.street_address()[:255],
        "city": fake.city()[:100],
        "state": fake.state_abbr(),
        "postal_code": fake.zipcode()[:20],
        "country": "US",
    }


def shipment_data(tracking_session_id: str | None = None) -> dict:
    """CreateShipmentRequest payload; half of them carry a carrier number."""
    payload = {
        "carrier": random.choice(CARRIERS),
        "customer": {
            "name": fake.name()[:200],
            "email": fake.email(),
            "phone": fake.phone_number()[:50],
        },
        "package": {
            "weight": round(random.uniform(0.2, 25.0), 2),
            "description": fake.catch_phrase()[:500],
        },
        "origin": address_data(),
        "destination": address_data(),
        "estimated_delivery": (datetime.now(UTC) + timedelta(days=random.randint(1, 7))).isoformat(),
        "created_by": f"lt-admin-{random.randint(1, 20)}",
    }
    if tracking_session_id:
        payload["tracking_session_id"] = tracking_session_id
    elif random.random() < 0.5:
        payload["carrier"] = "ups"
        payload["carrier_tracking_number"] = ups_tracking_number()
    return payload


def webhook_payload(tracking_id: str, scans: int | None = None) -> dict:
    """Carrier notification with the first ``scans`` steps of a healthy journey."""
    scans = scans or random.randint(1, len(SCAN_SEQUENCE))
    start = datetime.now(UTC) - timedelta(hours=scans * 3)
    return {
        "tracking_id": tracking_id,
        "events": [
            {
                "event_id": uuid.uuid4().hex,
                "event_type": event_type,
                "description": event_type.replace("_", " ").capitalize(),
                "location": f"{fake.city()}, {fake.state_abbr()}",
                "event_time": (start + timedelta(hours=index * 3)).isoformat(),
            }
            for index, event_type in enumerate(SCAN_SEQUENCE[:scans])
        ],
    }
