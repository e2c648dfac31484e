"""
Persisted, versioned device settings.

The device settings (host, password, polling interval, reading filter and
the mirrored device metadata) live in a small JSON file so changes made at
runtime survive restarts. The file is loaded once at startup: older layouts
are migrated and missing fields backfilled, producing a fully-populated
DeviceSettings before the poll engine ever runs. When no file exists yet it
is seeded from the environment (EdgeSettings).

Operations:
- read_device_settings(path): Read and migrate a settings file.
- migrate_settings(data): Bring a raw settings dict to the current version.
- SettingsStore.load(path, seed): Load or seed, then persist.
- SettingsStore.update(**changes): Validate, apply and persist changes.

CHANGELOG:
- 2026-10-18: Initial creation (STORY-008)

TODO:
- None
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, field_validator

if TYPE_CHECKING:
    from youless_edge.src.config import EdgeSettings

logger = logging.getLogger(__name__)

CURRENT_SETTINGS_VERSION: int = 2

METADATA_FIELDS: tuple[str, ...] = (
    "model",
    "firmware",
    "mac",
    "has_p1_meter",
    "has_gas_meter",
    "has_s0_meter",
)
"""Settings fields that mirror device-reported metadata."""

# Version 1 key names -> current key names.
_V1_RENAMES: dict[str, str] = {
    "youless_ip": "host",
    "polling_interval": "polling_interval_s",
}


class DeviceSettings(BaseModel):
    """Fully-populated runtime settings for one device.

    Attributes:
        settings_version: Layout version of the persisted file.
        host: LS120 IP address / hostname.
        password: LS120 web password, empty when none is set.
        polling_interval_s: Seconds between poll cycles.
        filter_readings: Reject implausible readings before committing.
        model: Device model, mirrored from the device.
        firmware: Firmware version, mirrored from the device.
        mac: MAC address, mirrored from the device.
        has_p1_meter: ``"true"``/``"false"`` once known, mirrored.
        has_gas_meter: ``"true"``/``"false"`` once known, mirrored.
        has_s0_meter: ``"true"``/``"false"`` once known, mirrored.
    """

    settings_version: int = CURRENT_SETTINGS_VERSION
    host: str
    password: str = ""
    polling_interval_s: float = 10.0
    filter_readings: bool = False
    model: str = ""
    firmware: str = ""
    mac: str = ""
    has_p1_meter: str = ""
    has_gas_meter: str = ""
    has_s0_meter: str = ""

    @field_validator("polling_interval_s")
    @classmethod
    def polling_interval_must_be_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("polling_interval_s must be > 0")
        return v


def migrate_settings(data: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of *data* migrated to :data:`CURRENT_SETTINGS_VERSION`.

    Version 1 files (no ``settings_version`` key) used ``youless_ip`` and
    ``polling_interval`` and had no password, filter or metadata fields.

    Raises:
        ValueError: If the file was written by a newer release.
    """
    version = data.get("settings_version", 1)
    if version > CURRENT_SETTINGS_VERSION:
        raise ValueError(
            f"Settings version {version} is newer than supported "
            f"version {CURRENT_SETTINGS_VERSION}"
        )

    migrated = dict(data)
    if version < 2:
        logger.info("Migrating device settings from version %d", version)
        for old, new in _V1_RENAMES.items():
            if old in migrated:
                value = migrated.pop(old)
                migrated.setdefault(new, value)
        migrated.setdefault("password", "")
        migrated.setdefault("filter_readings", False)
        for name in METADATA_FIELDS:
            migrated.setdefault(name, "")
    migrated["settings_version"] = CURRENT_SETTINGS_VERSION
    return migrated


def read_device_settings(path: str | Path) -> DeviceSettings:
    """Read a settings file, migrating it in memory."""
    data = json.loads(Path(path).read_text())
    return DeviceSettings.model_validate(migrate_settings(data))


class SettingsStore:
    """Owns the current DeviceSettings and keeps the JSON file in sync.

    Args:
        path: Filesystem path of the settings file.
        settings: The initial, fully-populated settings.
    """

    def __init__(self, path: str | Path, settings: DeviceSettings) -> None:
        self.path = Path(path)
        self._settings = settings

    @classmethod
    def load(cls, path: str | Path, seed: EdgeSettings) -> SettingsStore:
        """Load the settings file, or seed it from the environment.

        The (possibly migrated) result is written back immediately so the
        migration only ever runs once.
        """
        path = Path(path)
        if path.exists():
            settings = read_device_settings(path)
        else:
            logger.info("No settings file at %s, seeding from environment", path)
            settings = DeviceSettings(
                host=seed.youless_host,
                password=seed.youless_password,
                polling_interval_s=seed.poll_interval_s,
                filter_readings=seed.filter_readings,
            )
        store = cls(path, settings)
        store.save()
        return store

    @property
    def settings(self) -> DeviceSettings:
        return self._settings

    def update(self, **changes: Any) -> DeviceSettings:
        """Apply *changes*, validate the result and persist it.

        Raises:
            KeyError: If a change names an unknown settings field.
            pydantic.ValidationError: If the result is invalid.
        """
        unknown = set(changes) - set(DeviceSettings.model_fields)
        if unknown:
            raise KeyError(f"Unknown settings fields: {sorted(unknown)}")
        self._settings = DeviceSettings.model_validate(
            {**self._settings.model_dump(), **changes}
        )
        self.save()
        return self._settings

    def save(self) -> None:
        """Write the current settings to the JSON file."""
        self.path.write_text(self._settings.model_dump_json(indent=2))
