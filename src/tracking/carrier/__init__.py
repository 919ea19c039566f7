"""Carrier adapter abstraction: pluggable carrier tracking integration."""

from tracking.carrier.port import CarrierPort


def build_carrier(adapter: str | None, webhook_secret: str | None = None) -> CarrierPort | None:
    """Construct the adapter named by ``CARRIER_ADAPTER``.

    Returns ``None`` when no adapter is configured; sync then fails fast with
    ``AdapterUnavailable``.
    """
    if not adapter:
        return None
    if adapter == "fake":
        from tracking.carrier.fake_adapter import FakeCarrier

        return FakeCarrier(webhook_secret=webhook_secret)
    raise ValueError(f"Unknown carrier adapter: {adapter}")
