"""
Edge daemon configuration loaded from environment variables.

Uses Pydantic BaseSettings for automatic env var loading and validation.
These values seed the persisted device settings on first start (see
settings.py) and configure the local spool, health file and hub upload.

CHANGELOG:
- 2026-10-18: Add request timeout and settings/health paths
- 2026-10-18: Initial creation (STORY-001)

TODO:
- None
"""

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings


class EdgeSettings(BaseSettings):
    """Edge daemon configuration for the YouLess-to-hub pipeline.

    All values are loaded from environment variables. Required variables
    must be set; optional variables have sensible defaults.

    Attributes:
        youless_host: LS120 IP address / hostname on the local LAN.
        youless_password: LS120 web password (empty when none is set).
        poll_interval_s: Seconds between poll cycles.
        filter_readings: Reject implausible readings before committing them.
        device_id: Device identifier sent with hub events. Defaults to
            youless_host if not set.
        hub_base_url: Hub base URL for event upload (must be HTTPS).
        hub_device_token: Per-device bearer token for hub auth.
        batch_size: Max events per upload batch.
        upload_interval_s: Seconds between upload attempts.
        spool_path: SQLite spool file path for local buffering.
        settings_path: JSON file holding the persisted device settings.
        health_path: JSON health file path.
        request_timeout_s: Timeout per HTTP request to the LS120.
    """

    youless_host: str
    youless_password: str = ""
    poll_interval_s: int = 10
    filter_readings: bool = False
    device_id: str = ""
    hub_base_url: str
    hub_device_token: str
    batch_size: int = 30
    upload_interval_s: int = 10
    spool_path: str = "/data/spool.db"
    settings_path: str = "/data/settings.json"
    health_path: str = "/data/health.json"
    request_timeout_s: float = 10.0

    @model_validator(mode="after")
    def _default_device_id(self) -> "EdgeSettings":
        """Default device_id to youless_host when not explicitly set."""
        if not self.device_id:
            self.device_id = self.youless_host
        return self

    @field_validator("hub_base_url")
    @classmethod
    def hub_base_url_must_be_https(cls, v: str) -> str:
        """Validate that the hub base URL uses HTTPS.

        HTTP URLs are rejected at startup to prevent the device token from
        travelling in clear text.
        """
        if not v.startswith("https://"):
            raise ValueError(f"HUB_BASE_URL must use HTTPS (got: '{v[:20]}...').")
        return v

    @field_validator("poll_interval_s")
    @classmethod
    def poll_interval_must_be_positive(cls, v: int) -> int:
        """The LS120 cannot be polled more than once per second."""
        if v < 1:
            raise ValueError("POLL_INTERVAL_S must be >= 1")
        return v

    @field_validator("batch_size")
    @classmethod
    def batch_size_must_be_valid(cls, v: int) -> int:
        """Validate batch size is between 1 and 1000."""
        if v < 1 or v > 1000:
            raise ValueError("BATCH_SIZE must be >= 1 and <= 1000")
        return v

    @field_validator("request_timeout_s")
    @classmethod
    def request_timeout_must_be_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("REQUEST_TIMEOUT_S must be > 0")
        return v

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}
