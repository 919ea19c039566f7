"""Checks applied before a carrier tracking number is bound to a shipment.

Numbers must match one of the named carrier's formats. Carriers without a
known format only need a plausible reference. Webhooks are routed by the
number alone, so a number may be bound to a single shipment at a time,
whatever the carrier.
"""

import re
from dataclasses import dataclass

from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from tracking.errors import CarrierTrackingConflict
from tracking.shipment.shipment import Shipment


@dataclass(frozen=True)
class CarrierNumberFormat:
    pattern: re.Pattern
    description: str


CARRIER_NUMBER_FORMATS = {
    "fedex": CarrierNumberFormat(
        re.compile(r"^(\d{12}|\d{14}|\d{20})$"),
        "FedEx tracking numbers are 12, 14 or 20 digits",
    ),
    "ups": CarrierNumberFormat(
        re.compile(r"^(1Z[0-9A-Z]{16}|\d{9}|\d{12})$"),
        "UPS tracking numbers are 1Z followed by 16 letters or digits, or 9 or 12 digits",
    ),
    "usps": CarrierNumberFormat(
        re.compile(r"^(\d{20}|\d{22}|[A-Z]{2}\d{9}[A-Z]{2})$"),
        "USPS tracking numbers are 20 or 22 digits, or 2 letters, 9 digits and 2 letters",
    ),
    "dhl": CarrierNumberFormat(
        re.compile(r"^(\d{10,11}|\d{21})$"),
        "DHL tracking numbers are 10, 11 or 21 digits",
    ),
    "canada_post": CarrierNumberFormat(
        re.compile(r"^(\d{16}|[A-Z]{2}\d{9}[A-Z]{2})$"),
        "Canada Post tracking numbers are 16 digits, or 2 letters, 9 digits and 2 letters",
    ),
    "purolator": CarrierNumberFormat(
        re.compile(r"^[A-Z0-9]{10,12}$"),
        "Purolator tracking numbers are 10 to 12 letters or digits",
    ),
    "tnt": CarrierNumberFormat(
        re.compile(r"^(\d{9}|[A-Z]{2}\d{7}[A-Z]{2})$"),
        "TNT tracking numbers are 9 digits, or 2 letters, 7 digits and 2 letters",
    ),
    "aramex": CarrierNumberFormat(
        re.compile(r"^\d{10,11}$"),
        "Aramex tracking numbers are 10 or 11 digits",
    ),
}

GENERIC_NUMBER_PATTERN = re.compile(r"^[A-Z0-9\-\s]{4,30}$")
GENERIC_NUMBER_DESCRIPTION = "Tracking numbers are 4 to 30 letters, digits, hyphens or spaces"


def clean_number(value: str) -> str:
    return value.strip().upper()


def carrier_key(carrier: str | None) -> str:
    return re.sub(r"\s+", "_", (carrier or "").strip().lower())


def format_problem(carrier: str | None, number: str) -> str | None:
    """Why ``number`` is not a valid reference for ``carrier``, or ``None``."""
    known = CARRIER_NUMBER_FORMATS.get(carrier_key(carrier))
    if known is None:
        return None if GENERIC_NUMBER_PATTERN.match(number) else GENERIC_NUMBER_DESCRIPTION
    return None if known.pattern.match(number) else known.description


def conflicting_shipment(number: str, shipment_id: str | None = None) -> Shipment | None:
    """Another shipment already bound to ``number``."""
    for existing in current_domain.repository_for(Shipment).find_all_by_carrier_tracking_number(number):
        if str(existing.id) != shipment_id:
            return existing
    return None


def check_assignable(carrier: str | None, number: str, shipment_id: str | None = None) -> str:
    """Return the cleaned number, or raise if it cannot be bound to ``shipment_id``.

    Raises ``ValidationError`` for a malformed number and
    ``CarrierTrackingConflict`` when another shipment already holds it.
    """
    cleaned = clean_number(number)
    problem = format_problem(carrier, cleaned)
    if problem:
        raise ValidationError({"carrier_tracking_number": [problem]})

    existing = conflicting_shipment(cleaned, shipment_id)
    if existing is not None:
        raise CarrierTrackingConflict(cleaned, str(existing.id), existing.tracking_code)
    return cleaned
