"""
Health file writer for the edge daemon.

Writes a JSON health file at a configurable path with these fields:
- last_poll_ts: ISO timestamp of the most recent poll tick.
- last_success_ts: ISO timestamp of the most recent committed reading.
- last_upload_ts: ISO timestamp of the most recent successful upload.
- watchdog: Remaining watchdog budget after the last tick.
- available: Whether the device was reachable on the last tick.
- state: Current supervisor state.
- spool_count: Number of pending events in the local spool.

The file is rewritten on every state change, providing a simple liveness
signal that Docker HEALTHCHECK or monitoring can inspect.

CHANGELOG:
- 2026-10-18: Track watchdog, availability and supervisor state
- 2026-10-18: Initial creation (STORY-011)

TODO:
- None
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path


class HealthWriter:
    """Writes edge health status to a JSON file.

    Each mutating method updates the in-memory state and immediately
    rewrites the health file so it always reflects the latest status.

    Args:
        path: Filesystem path for the health JSON file. Accepts str or Path.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._last_poll_ts: str | None = None
        self._last_success_ts: str | None = None
        self._last_upload_ts: str | None = None
        self._watchdog: int | None = None
        self._available: bool | None = None
        self._state: str | None = None
        self._spool_count: int = 0

    def record_poll(
        self,
        *,
        success: bool,
        watchdog: int,
        available: bool | None,
    ) -> None:
        """Record a poll tick and write health file.

        Args:
            success: Whether the tick committed a reading.
            watchdog: Remaining watchdog budget.
            available: Device availability after the tick.
        """
        now = datetime.now(tz=UTC).isoformat()
        self._last_poll_ts = now
        if success:
            self._last_success_ts = now
        self._watchdog = watchdog
        self._available = available
        self._write()

    def record_upload(self) -> None:
        """Record an upload event and write health file."""
        self._last_upload_ts = datetime.now(tz=UTC).isoformat()
        self._write()

    def set_state(self, state: str) -> None:
        """Record the supervisor state and write health file."""
        self._state = state
        self._write()

    def set_spool_count(self, count: int) -> None:
        """Update the spool count and write health file.

        Args:
            count: Current number of pending events in the spool.
        """
        self._spool_count = count
        self._write()

    def _write(self) -> None:
        """Write the health JSON file with current state."""
        data = {
            "last_poll_ts": self._last_poll_ts,
            "last_success_ts": self._last_success_ts,
            "last_upload_ts": self._last_upload_ts,
            "watchdog": self._watchdog,
            "available": self._available,
            "state": self._state,
            "spool_count": self._spool_count,
        }
        self.path.write_text(json.dumps(data))
