"""
Device error hierarchy raised by DeviceClient implementations.

The poll engine catches these at the cycle boundary and turns them into a
watchdog decrement plus an unavailable signal; nothing here is fatal.

CHANGELOG:
- 2026-10-18: Initial creation (STORY-003)

TODO:
- None
"""

from __future__ import annotations


class DeviceError(Exception):
    """Base class for all errors talking to the energy monitor."""


class LoginError(DeviceError):
    """Session establishment with the device failed."""


class FetchError(DeviceError):
    """Fetching or parsing a readings snapshot failed."""
