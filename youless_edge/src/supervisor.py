"""
Lifecycle supervisor owning the poll timer and the restart sequence.

States::

    STOPPED -> INITIALIZING -> POLLING -> RESTART_PENDING -> INITIALIZING
    POLLING -> STOPPED

- start(): fresh device session, one-time clock sync, poll task.
- stop(): cancel poll and pending-restart tasks, close the session.
  Idempotent.
- restart(): cancel the poll task and start again after RESTART_DELAY_S,
  so a flapping device cannot cause a tight restart loop.
- update_settings(): settings-change path; new credentials are probed with
  a separate session before being stored, then a restart is requested.

The poll task awaits each tick before sleeping, so ticks never overlap.
Any exception escaping a tick is logged, decrements the watchdog and marks
the device unavailable; it never ends the poll loop. An exhausted watchdog
after a tick requests exactly one restart.

CHANGELOG:
- 2026-10-18: Close the new session when stop() lands during start()
- 2026-10-18: Probe new credentials before storing a settings change
- 2026-10-18: Initial creation (STORY-007)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
from typing import TYPE_CHECKING, Any

from youless_edge.src.errors import DeviceError, LoginError
from youless_edge.src.poll_engine import PollOutcome

if TYPE_CHECKING:
    from youless_edge.src.client import ClientFactory, DeviceClient
    from youless_edge.src.health import HealthWriter
    from youless_edge.src.poll_engine import PollEngine
    from youless_edge.src.settings import SettingsStore

logger = logging.getLogger(__name__)

RESTART_DELAY_S: float = 10.0
"""Back-off between tearing down a session and starting a fresh one."""


class SupervisorState(enum.Enum):
    STOPPED = "stopped"
    INITIALIZING = "initializing"
    POLLING = "polling"
    RESTART_PENDING = "restart_pending"


class LifecycleSupervisor:
    """Drives a :class:`PollEngine` on a fixed interval and recovers it.

    Args:
        engine: The poll engine for the device.
        settings_store: Current device settings (host, credentials, interval).
        client_factory: Builds a fresh device session from settings.
        health: HealthWriter instance, or None to skip health writes.
        restart_delay_s: Delay before a restart re-initializes.
    """

    def __init__(
        self,
        *,
        engine: PollEngine,
        settings_store: SettingsStore,
        client_factory: ClientFactory,
        health: HealthWriter | None = None,
        restart_delay_s: float = RESTART_DELAY_S,
    ) -> None:
        self._engine = engine
        self._settings_store = settings_store
        self._client_factory = client_factory
        self._health = health
        self._restart_delay_s = restart_delay_s
        self._state = SupervisorState.STOPPED
        self._poll_task: asyncio.Task[None] | None = None
        self._restart_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> SupervisorState:
        return self._state

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Open a fresh session, sync the device clock and start polling."""
        if self._state in (SupervisorState.INITIALIZING, SupervisorState.POLLING):
            logger.debug("start() ignored in state %s", self._state.value)
            return
        self._set_state(SupervisorState.INITIALIZING)

        await self._close_session()
        settings = self._settings_store.settings
        client = self._client_factory(settings)
        self._engine.replace_session(client)

        try:
            await client.login()
        except LoginError as exc:
            logger.warning(
                "Initial login to %s failed, retrying on next poll: %s",
                settings.host,
                exc,
            )
        else:
            try:
                await client.sync_time()
            except DeviceError as exc:
                logger.warning("Clock sync with %s failed: %s", settings.host, exc)

        if self._state is not SupervisorState.INITIALIZING:
            # stop() or restart() ran while we were waiting on the device;
            # it may have closed the previous session instead of this one.
            await _close_client(client)
            return

        self._set_state(SupervisorState.POLLING)
        self._poll_task = asyncio.create_task(
            self._poll_loop(settings.polling_interval_s),
            name="youless-poll",
        )

    async def stop(self) -> None:
        """Stop polling and close the session. Safe to call repeatedly."""
        self._set_state(SupervisorState.STOPPED)
        poll_task, self._poll_task = self._poll_task, None
        restart_task, self._restart_task = self._restart_task, None
        await _cancel(poll_task)
        await _cancel(restart_task)
        await self._close_session()

    async def restart(self) -> None:
        """Tear down polling and start again after the restart delay.

        Ignored while stopped or when a restart is already pending.
        """
        if self._state in (SupervisorState.STOPPED, SupervisorState.RESTART_PENDING):
            logger.debug("restart() ignored in state %s", self._state.value)
            return
        logger.warning("Restarting device session in %.0fs", self._restart_delay_s)
        await self._schedule_restart()

    async def update_settings(self, **changes: Any) -> None:
        """Apply a settings change and restart onto the new settings.

        When the host or password changes, the new credentials must log in
        on a separate probe session first; otherwise nothing is stored.

        Raises:
            LoginError: If the new credentials are rejected.
            KeyError: If a change names an unknown settings field.
        """
        current = self._settings_store.settings
        candidate = current.model_copy(update=changes)
        if candidate.host != current.host or candidate.password != current.password:
            probe = self._client_factory(candidate)
            try:
                await probe.login()
            finally:
                await probe.close()

        self._settings_store.update(**changes)
        logger.info("Device settings changed: %s", ", ".join(sorted(changes)))
        await self.restart()

    # ------------------------------------------------------------------
    # Poll loop
    # ------------------------------------------------------------------

    async def _poll_loop(self, interval_s: float) -> None:
        logger.info("Poll loop started (interval=%ss)", interval_s)
        while self._state is SupervisorState.POLLING:
            await self._tick()
            if self._state is not SupervisorState.POLLING:
                break
            await asyncio.sleep(interval_s)
        logger.info("Poll loop stopped")

    async def _tick(self) -> None:
        """Run one poll cycle and escalate an exhausted watchdog."""
        engine = self._engine
        outcome: PollOutcome | None = None
        try:
            outcome = await engine.poll_once()
        except Exception as exc:
            logger.error("Poll tick error", exc_info=True)
            engine.watchdog.decrement()
            try:
                await engine.mark_unavailable(f"poll error: {exc}")
            except Exception:
                logger.warning("Failed to signal unavailability", exc_info=True)

        if self._health is not None:
            try:
                self._health.record_poll(
                    success=outcome is PollOutcome.OK,
                    watchdog=engine.watchdog.remaining,
                    available=engine.available,
                )
            except Exception:
                logger.warning("Failed to write health file", exc_info=True)

        if engine.watchdog.exhausted:
            logger.warning(
                "Watchdog triggered (remaining=%d), restarting device session",
                engine.watchdog.remaining,
            )
            await self.restart()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _schedule_restart(self) -> None:
        self._set_state(SupervisorState.RESTART_PENDING)
        poll_task, self._poll_task = self._poll_task, None
        await _cancel(poll_task)
        self._restart_task = asyncio.create_task(
            self._restart_after_delay(),
            name="youless-restart",
        )

    async def _restart_after_delay(self) -> None:
        await asyncio.sleep(self._restart_delay_s)
        self._restart_task = None
        try:
            await self.start()
        except Exception:
            logger.error(
                "Restart failed, retrying in %.0fs",
                self._restart_delay_s,
                exc_info=True,
            )
            await self._schedule_restart()

    async def _close_session(self) -> None:
        client = self._engine.client
        if client is not None:
            await _close_client(client)

    def _set_state(self, state: SupervisorState) -> None:
        if state is not self._state:
            logger.info("Supervisor %s -> %s", self._state.value, state.value)
        self._state = state
        if self._health is not None:
            try:
                self._health.set_state(state.value)
            except Exception:
                logger.warning("Failed to write health file", exc_info=True)


async def _close_client(client: DeviceClient) -> None:
    try:
        await client.close()
    except Exception:
        logger.warning("Failed to close device session", exc_info=True)


async def _cancel(task: asyncio.Task[None] | None) -> None:
    """Cancel *task* and wait for it, unless it is the calling task."""
    if task is None or task is asyncio.current_task():
        return
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task
