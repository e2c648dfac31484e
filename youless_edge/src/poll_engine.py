"""
Poll engine: one login/fetch/validate/derive/push cycle per tick.

Owns the single MeterState instance and the watchdog counter for one
device. Designed so a cycle never raises for device-level failures:

- Login failure: watchdog -1, device unavailable, cycle aborted.
- Fetch failure: watchdog -1, device unavailable, cycle aborted.
- Rejected reading (filtering enabled): watchdog -1, state untouched.
- Accepted reading: state committed, capabilities pushed, tariff/power
  triggers fired, device metadata mirrored into settings, then the
  watchdog is reset. A sink error before the reset propagates and the
  supervisor counts the cycle as failed.

Within a session the last known good MeterState is retained whatever goes
wrong. A fresh session (supervisor restart) starts from an empty state.
Escalation on an exhausted watchdog is the supervisor's job.

CHANGELOG:
- 2026-10-18: Reset watchdog only after a fully successful cycle; clear
  meter state when a fresh session is bound
- 2026-10-18: Add reboot action and off-peak condition
- 2026-10-18: Initial creation (STORY-006)

TODO:
- None
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING

from youless_edge.src.errors import DeviceError, FetchError, LoginError
from youless_edge.src.models import MeterState
from youless_edge.src.settings import METADATA_FIELDS
from youless_edge.src.sync import POWER_CHANGED, TARIFF_CHANGED

if TYPE_CHECKING:
    from youless_edge.src.client import DeviceClient
    from youless_edge.src.metering import MeterLogic
    from youless_edge.src.settings import SettingsStore
    from youless_edge.src.sync import StateSync

logger = logging.getLogger(__name__)

WATCHDOG_BUDGET: int = 10
"""Consecutive failed cycles tolerated before a forced restart."""


class PollOutcome(enum.Enum):
    """Result of one poll cycle."""

    OK = "ok"
    LOGIN_ERROR = "login_error"
    FETCH_ERROR = "fetch_error"
    VALIDATION_REJECTED = "validation_rejected"


# ---------------------------------------------------------------------------
# Watchdog
# ---------------------------------------------------------------------------


class Watchdog:
    """Countdown of failed cycles.

    Args:
        budget: Value the counter starts at and is reset to.
    """

    def __init__(self, budget: int = WATCHDOG_BUDGET) -> None:
        self.budget = budget
        self.remaining = budget

    @property
    def exhausted(self) -> bool:
        return self.remaining <= 0

    def decrement(self) -> None:
        self.remaining -= 1
        logger.debug("Watchdog decremented to %d", self.remaining)

    def reset(self) -> None:
        self.remaining = self.budget


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class PollEngine:
    """Runs poll cycles for one device.

    Args:
        client: The device session, if already known. The supervisor binds a
            fresh one on every start via :meth:`replace_session`.
        sync: Sink for capability values, availability and triggers.
        settings_store: Current device settings; metadata is mirrored here.
        logic: Validation/derivation pair.
        watchdog: Failure counter, a fresh ``Watchdog()`` by default.
    """

    def __init__(
        self,
        *,
        client: DeviceClient | None = None,
        sync: StateSync,
        settings_store: SettingsStore,
        logic: MeterLogic,
        watchdog: Watchdog | None = None,
    ) -> None:
        self._client = client
        self._sync = sync
        self._settings_store = settings_store
        self._logic = logic
        self.watchdog = watchdog if watchdog is not None else Watchdog()
        self.state = MeterState()
        self.available: bool | None = None

    @property
    def client(self) -> DeviceClient | None:
        return self._client

    def replace_session(self, client: DeviceClient) -> None:
        """Bind a fresh device session and start it from a clean slate.

        The watchdog gets its full budget and the meter state is cleared in
        place, so the first reading of the new session is accepted as is.
        A meter that was replaced or reset can therefore recover on restart.
        """
        self._client = client
        self.watchdog.reset()
        for name in MeterState.model_fields:
            setattr(self.state, name, None)

    # ------------------------------------------------------------------
    # Poll cycle
    # ------------------------------------------------------------------

    async def poll_once(self) -> PollOutcome:
        """Execute one poll cycle.

        Device errors are handled here and reported through the returned
        outcome; only unexpected errors (bugs, sink failures) propagate.
        """
        client = self._client
        assert client is not None, "No device session. Call replace_session() first."

        if not client.logged_in:
            try:
                await client.login()
            except LoginError as exc:
                logger.warning("Login during poll failed: %s", exc)
                self.watchdog.decrement()
                await self.mark_unavailable(f"login error: {exc}")
                return PollOutcome.LOGIN_ERROR

        try:
            raw = await client.fetch_advanced_status()
        except FetchError as exc:
            logger.warning("Fetching readings failed: %s", exc)
            self.watchdog.decrement()
            await self.mark_unavailable(str(exc))
            return PollOutcome.FETCH_ERROR

        await self._mark_available()

        previous = self.state.model_copy()
        if self._settings_store.settings.filter_readings and not self._logic.validate(
            raw, previous
        ):
            self.watchdog.decrement()
            logger.info(
                "Reading at %d rejected (watchdog=%d)",
                raw.timestamp,
                self.watchdog.remaining,
            )
            return PollOutcome.VALIDATION_REJECTED

        self._commit(self._logic.derive(raw, previous))
        await self._sync.set_capabilities(self.state.capabilities())
        await self._fire_triggers(previous)
        self._mirror_device_info(client.info)
        # Only a fully successful cycle refills the budget.
        self.watchdog.reset()
        return PollOutcome.OK

    def _commit(self, derived: MeterState) -> None:
        """Copy *derived* into the owned state instance."""
        for name, value in derived:
            setattr(self.state, name, value)

    async def _fire_triggers(self, previous: MeterState) -> None:
        if not previous.has_reading:
            return
        current = self.state
        # A tariff that becomes known counts as a change; one that becomes
        # unknown does not, since the token must be a bool.
        if (
            current.is_offpeak_now is not None
            and current.is_offpeak_now != previous.is_offpeak_now
        ):
            await self._sync.trigger(
                TARIFF_CHANGED, {"off_peak": current.is_offpeak_now}
            )
        if current.instantaneous_power_w != previous.instantaneous_power_w:
            await self._sync.trigger(
                POWER_CHANGED, {"power": current.instantaneous_power_w}
            )

    def _mirror_device_info(self, info: Mapping[str, str]) -> None:
        """Write device-reported metadata that differs from the stored settings."""
        settings = self._settings_store.settings
        changes: dict[str, str] = {}
        for key, value in info.items():
            if key not in METADATA_FIELDS:
                continue
            if getattr(settings, key) != str(value):
                logger.info("Device information has changed. %s: %s", key, value)
                changes[key] = str(value)
        if changes:
            self._settings_store.update(**changes)

    # ------------------------------------------------------------------
    # Availability, condition and action
    # ------------------------------------------------------------------

    async def _mark_available(self) -> None:
        self.available = True
        await self._sync.set_available()

    async def mark_unavailable(self, reason: str) -> None:
        self.available = False
        await self._sync.set_unavailable(reason)

    def is_offpeak_now(self) -> bool:
        """Condition: is the off-peak tariff active (False while unknown)."""
        return bool(self.state.is_offpeak_now)

    async def reboot_device(self) -> bool:
        """Action: reboot the device.

        Returns:
            ``True`` once the reboot command was accepted.

        Raises:
            DeviceError: If the device did not accept the command.
        """
        client = self._client
        assert client is not None, "No device session. Call replace_session() first."
        logger.info("Reboot of device requested")
        try:
            await client.reboot()
        except DeviceError as exc:
            logger.warning("Rebooting failed: %s", exc)
            raise
        logger.info("Rebooting now")
        await self.mark_unavailable("rebooting now")
        return True
