"""Public tracking codes.

Codes are ``SC`` followed by nine digits, e.g. ``SC482915037``. They are
handed to customers instead of the carrier's own tracking number, so they
must not be guessable and must never be confused with a carrier number.
"""

import re
import secrets
from collections.abc import Callable, Iterable

import structlog

from tracking.errors import TrackingCodeGenerationExhausted

logger = structlog.get_logger(__name__)

TRACKING_CODE_PREFIX = "SC"
TRACKING_CODE_DIGITS = 9
TRACKING_CODE_LENGTH = len(TRACKING_CODE_PREFIX) + TRACKING_CODE_DIGITS
TRACKING_CODE_PATTERN = re.compile(rf"^{TRACKING_CODE_PREFIX}\d{{{TRACKING_CODE_DIGITS}}}$")

MAX_BATCH_SIZE = 100

CARRIER_TRACKING_PATTERNS = {
    "ups": re.compile(r"^1Z[A-Z0-9]{16}$"),
    "fedex": re.compile(r"^\d{12,14}$"),
    "dhl": re.compile(r"^\d{10,11}$"),
    "usps": re.compile(r"^9\d{3}\s?\d{4}\s?\d{4}\s?\d{4}\s?\d{4}$"),
    "usps_legacy": re.compile(r"^7\d{19}$"),
}

_SEPARATORS = re.compile(r"[-\s]")


def _random_digits() -> str:
    return "".join(str(secrets.randbelow(10)) for _ in range(TRACKING_CODE_DIGITS))


def validate_format(code) -> bool:
    """True when ``code`` is exactly ``SC`` + 9 digits."""
    if not code or not isinstance(code, str):
        return False
    return len(code) == TRACKING_CODE_LENGTH and TRACKING_CODE_PATTERN.match(code) is not None


def is_sequential(digits: str) -> bool:
    """Digits that step by +1 or -1 throughout (``123456789``, ``876543210``)."""
    numbers = [int(d) for d in digits]
    steps = {b - a for a, b in zip(numbers, numbers[1:])}
    return steps == {1} or steps == {-1}


def is_repetitive(digits: str) -> bool:
    """Constant digits, or a 1-3 digit pattern repeated across the whole string."""
    for pattern_length in range(1, 4):
        pattern = digits[:pattern_length]
        repeated = (pattern * (len(digits) // pattern_length + 1))[: len(digits)]
        if digits == repeated:
            return True
    return False


def is_guessable(code: str) -> bool:
    digits = code[len(TRACKING_CODE_PREFIX) :]
    return is_sequential(digits) or is_repetitive(digits)


def is_carrier_tracking_number(value) -> bool:
    """Whether ``value`` looks like a UPS, FedEx, DHL or USPS tracking number."""
    if not value or not isinstance(value, str):
        return False
    candidate = value.strip().upper()
    return any(pattern.match(candidate) for pattern in CARRIER_TRACKING_PATTERNS.values())


def normalize(value) -> str | None:
    """Normalize user input to a canonical code, or ``None`` if it is not one.

    Whitespace and hyphens are stripped and letters uppercased, so
    ``sc-123-456-789`` becomes ``SC123456789``. Input shaped like a carrier
    tracking number is rejected outright.
    """
    if not value or not isinstance(value, str):
        return None
    if is_carrier_tracking_number(value):
        return None

    candidate = _SEPARATORS.sub("", value.strip().upper())
    if not validate_format(candidate):
        return None
    return candidate


def format_for_display(code: str) -> str:
    """``SC123456789`` -> ``SC-123-456-789``. Returns ``""`` for invalid codes."""
    if not validate_format(code):
        return ""
    digits = code[len(TRACKING_CODE_PREFIX) :]
    return f"{TRACKING_CODE_PREFIX}-{digits[0:3]}-{digits[3:6]}-{digits[6:9]}"


class TrackingCodeGenerator:
    """Generates unique, non-guessable public tracking codes.

    ``is_taken`` answers whether a code is already persisted; it is checked
    before a code is returned. ``digits`` supplies candidate digit strings and
    defaults to the ``secrets`` module.
    """

    def __init__(
        self,
        is_taken: Callable[[str], bool],
        max_attempts: int = 5,
        digits: Callable[[], str] = _random_digits,
    ):
        self.is_taken = is_taken
        self.max_attempts = max_attempts
        self.digits = digits

    def _candidate(self) -> str:
        return f"{TRACKING_CODE_PREFIX}{self.digits()}"

    def _acceptable(self, code: str, exclude: Iterable[str] = ()) -> bool:
        if not validate_format(code) or is_guessable(code):
            return False
        if code in exclude:
            return False
        return self.is_unique(code)

    def generate(self) -> str:
        for attempt in range(1, self.max_attempts + 1):
            code = self._candidate()
            if self._acceptable(code):
                return code
            logger.debug("Tracking code rejected", attempt=attempt)

        logger.error("Tracking code generation exhausted", attempts=self.max_attempts)
        raise TrackingCodeGenerationExhausted(
            f"Failed to generate a unique tracking code after {self.max_attempts} attempts",
            attempts=self.max_attempts,
        )

    def generate_many(self, count: int) -> list[str]:
        """Generate ``count`` distinct codes (1 to 100) in one go."""
        if count <= 0:
            raise ValueError("Count must be greater than 0")
        if count > MAX_BATCH_SIZE:
            raise ValueError(f"Cannot generate more than {MAX_BATCH_SIZE} tracking codes at once")

        codes: list[str] = []
        for index in range(count):
            for _ in range(self.max_attempts):
                code = self._candidate()
                if self._acceptable(code, exclude=codes):
                    codes.append(code)
                    break
            else:
                raise TrackingCodeGenerationExhausted(
                    f"Failed to generate tracking code {index + 1} of {count} "
                    f"after {self.max_attempts} attempts",
                    generated=len(codes),
                    requested=count,
                )
        return codes

    def validate_format(self, code) -> bool:
        return validate_format(code)

    def is_unique(self, code: str) -> bool:
        return not self.is_taken(code)

    def exists(self, value) -> bool:
        """Public lookup: does this (possibly formatted) input name a known code?"""
        code = normalize(value)
        if code is None:
            return False
        return self.is_taken(code)
