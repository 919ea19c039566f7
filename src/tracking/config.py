"""Runtime settings for the tracking services.

Values come from environment variables; anything not set falls back to the
defaults below. Invalid values fail fast with a pydantic ``ValidationError``.
"""

import os

from pydantic import BaseModel, Field

_ENV_VARS = {
    "carrier_adapter": "CARRIER_ADAPTER",
    "carrier_webhook_secret": "CARRIER_WEBHOOK_SECRET",
    "sync_max_retries": "SYNC_MAX_RETRIES",
    "sync_base_retry_delay": "SYNC_BASE_RETRY_DELAY",
    "sync_request_timeout": "SYNC_REQUEST_TIMEOUT",
    "sync_max_concurrency": "SYNC_MAX_CONCURRENCY",
    "sync_batch_delay": "SYNC_BATCH_DELAY",
    "sync_freshness_seconds": "SYNC_FRESHNESS_SECONDS",
    "sync_batch_ceiling": "SYNC_BATCH_CEILING",
    "rate_limit_max_requests": "RATE_LIMIT_MAX_REQUESTS",
    "rate_limit_window_seconds": "RATE_LIMIT_WINDOW_SECONDS",
    "conflict_window_seconds": "CONFLICT_WINDOW_SECONDS",
    "tracking_code_max_attempts": "TRACKING_CODE_MAX_ATTEMPTS",
}


class TrackingSettings(BaseModel):
    carrier_adapter: str | None = "fake"
    carrier_webhook_secret: str | None = None

    # Carrier calls
    sync_max_retries: int = Field(default=3, ge=0)
    sync_base_retry_delay: float = Field(default=1.0, ge=0)
    sync_request_timeout: float = Field(default=30.0, gt=0)

    # Batch sync
    sync_max_concurrency: int = Field(default=5, gt=0)
    sync_batch_delay: float = Field(default=1.0, ge=0)
    sync_freshness_seconds: int = Field(default=3600, ge=0)
    sync_batch_ceiling: int = Field(default=500, gt=0)

    # Rate limiting, process-local
    rate_limit_max_requests: int = Field(default=100, gt=0)
    rate_limit_window_seconds: float = Field(default=60.0, gt=0)

    conflict_window_seconds: int = Field(default=300, gt=0)
    tracking_code_max_attempts: int = Field(default=5, gt=0)

    @classmethod
    def from_env(cls, environ=None) -> "TrackingSettings":
        """Build settings from environment variables.

        ``CARRIER_ADAPTER`` set to an empty string disables the carrier.
        """
        environ = os.environ if environ is None else environ
        values = {}
        for field_name, env_var in _ENV_VARS.items():
            if env_var in environ:
                values[field_name] = environ[env_var]

        if values.get("carrier_adapter", None) == "":
            values["carrier_adapter"] = None
        if values.get("carrier_webhook_secret", None) == "":
            values["carrier_webhook_secret"] = None

        return cls(**values)
