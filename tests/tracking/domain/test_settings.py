"""Tests for environment-driven settings."""

import pydantic
import pytest

from tracking.carrier import build_carrier
from tracking.carrier.fake_adapter import FakeCarrier
from tracking.config import TrackingSettings


class TestFromEnv:
    def test_defaults(self):
        settings = TrackingSettings.from_env({})
        assert settings.carrier_adapter == "fake"
        assert settings.sync_max_retries == 3
        assert settings.sync_base_retry_delay == 1.0
        assert settings.sync_request_timeout == 30.0
        assert settings.sync_max_concurrency == 5
        assert settings.sync_freshness_seconds == 3600
        assert settings.sync_batch_ceiling == 500
        assert settings.rate_limit_max_requests == 100
        assert settings.rate_limit_window_seconds == 60.0
        assert settings.conflict_window_seconds == 300

    def test_values_are_coerced(self):
        settings = TrackingSettings.from_env({"SYNC_MAX_RETRIES": "5", "SYNC_BATCH_DELAY": "0.5"})
        assert settings.sync_max_retries == 5
        assert settings.sync_batch_delay == 0.5

    def test_empty_adapter_disables_carrier(self):
        settings = TrackingSettings.from_env({"CARRIER_ADAPTER": "", "CARRIER_WEBHOOK_SECRET": ""})
        assert settings.carrier_adapter is None
        assert settings.carrier_webhook_secret is None

    @pytest.mark.parametrize(
        "environ",
        [
            {"SYNC_MAX_CONCURRENCY": "0"},
            {"SYNC_MAX_RETRIES": "-1"},
            {"SYNC_REQUEST_TIMEOUT": "0"},
            {"RATE_LIMIT_MAX_REQUESTS": "many"},
        ],
    )
    def test_invalid_values_fail_fast(self, environ):
        with pytest.raises(pydantic.ValidationError):
            TrackingSettings.from_env(environ)


class TestBuildCarrier:
    def test_no_adapter(self):
        assert build_carrier(None) is None
        assert build_carrier("") is None

    def test_fake_adapter(self):
        carrier = build_carrier("fake", webhook_secret="s3cret")
        assert isinstance(carrier, FakeCarrier)
        assert carrier.webhook_secret == "s3cret"

    def test_unknown_adapter(self):
        with pytest.raises(ValueError):
            build_carrier("pigeon")
