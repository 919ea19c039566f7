import pytest
from protean import current_domain
from protean.integrations.pytest import DomainFixture


@pytest.fixture(scope="session")
def tracking_bed():
    from tracking.domain import tracking
    from tracking.utils.db import drop_db, setup_db

    bed = DomainFixture(tracking)
    bed.setup()
    setup_db(tracking)
    yield bed
    drop_db(tracking)
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(tracking_bed):
    with tracking_bed.domain_context():
        yield

        # Clear all databases
        for _, provider in current_domain.providers.items():
            provider._data_reset()


@pytest.fixture()
def sleeps():
    """Delays passed to the fake sleep, in call order."""
    return []


@pytest.fixture()
def fake_sleep(sleeps):
    async def _sleep(delay):
        sleeps.append(delay)

    return _sleep


@pytest.fixture()
def settings():
    from tracking.config import TrackingSettings

    return TrackingSettings(carrier_adapter="fake")


@pytest.fixture()
def carrier():
    from tracking.carrier.fake_adapter import FakeCarrier

    return FakeCarrier()


@pytest.fixture()
def services(settings, carrier, fake_sleep):
    from tracking.services import build_services

    return build_services(settings, carrier=carrier, sleep=fake_sleep)


@pytest.fixture()
def engine(services):
    return services.sync


@pytest.fixture()
def make_shipment():
    """Create a shipment through the command path and return its id."""
    from tracking.shipment.creation import CreateShipment

    def _make(**overrides):
        defaults = {
            "carrier": "ups",
            "customer": {"name": "Ada Lovelace", "email": "ada@example.com"},
            "destination": {"city": "London", "country": "GB"},
            "created_by": "admin-1",
        }
        defaults.update(overrides)
        return current_domain.process(CreateShipment(**defaults), asynchronous=False)

    return _make
