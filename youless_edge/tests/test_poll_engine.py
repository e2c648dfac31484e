"""
Unit tests for the poll engine.

Tests verify:
- An accepted reading is committed, resets the watchdog and pushes
  capabilities.
- A rejected reading leaves MeterState untouched and decrements the
  watchdog exactly once.
- Login and fetch failures decrement the watchdog and mark the device
  unavailable while keeping the last good state.
- Tariff and power triggers fire only on committed changes, never on the
  first reading; a tariff that becomes known counts as a change.
- Device metadata is mirrored into the settings when it changes.
- A sink or settings failure propagates without resetting the watchdog.
- replace_session() resets the watchdog and clears the meter state.
- Reboot action and off-peak condition.

CHANGELOG:
- 2026-10-18: Initial creation (STORY-006)

TODO:
- None
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from youless_edge.src.errors import DeviceError, FetchError, LoginError
from youless_edge.src.metering import DefaultMeterLogic
from youless_edge.src.models import MeterState
from youless_edge.src.poll_engine import WATCHDOG_BUDGET, PollEngine, PollOutcome, Watchdog
from youless_edge.src.settings import SettingsStore
from youless_edge.src.sync import POWER_CHANGED, TARIFF_CHANGED
from youless_edge.tests.fakes import FakeClient, RecordingSync, make_snapshot

_T = 1_760_000_040


def _make_engine(
    client: FakeClient,
    sync: RecordingSync,
    store: SettingsStore,
) -> PollEngine:
    return PollEngine(
        client=client,
        sync=sync,
        settings_store=store,
        logic=DefaultMeterLogic(),
    )


class TestWatchdog:
    def test_counts_down_and_resets(self) -> None:
        watchdog = Watchdog(budget=2)

        watchdog.decrement()
        assert watchdog.remaining == 1
        assert not watchdog.exhausted
        watchdog.decrement()
        assert watchdog.exhausted

        watchdog.reset()
        assert watchdog.remaining == 2


class TestEndToEnd:
    """Two consecutive cycles with reading filtering enabled."""

    @pytest.mark.asyncio
    async def test_plausible_second_reading_accepted(
        self, settings_store: SettingsStore, recording_sync: RecordingSync
    ) -> None:
        client = FakeClient(
            [
                make_snapshot(timestamp=_T, power_w=500.0, energy_kwh=120.5),
                make_snapshot(timestamp=_T + 60, power_w=520.0, energy_kwh=120.6),
            ]
        )
        engine = _make_engine(client, recording_sync, settings_store)

        assert await engine.poll_once() is PollOutcome.OK
        assert await engine.poll_once() is PollOutcome.OK

        assert engine.state.instantaneous_power_w == 520.0
        assert engine.state.cumulative_energy_kwh == 120.6
        assert engine.watchdog.remaining == WATCHDOG_BUDGET
        assert recording_sync.capabilities[-1]["measure_power"] == 520.0

    @pytest.mark.asyncio
    async def test_regression_rejected(
        self, settings_store: SettingsStore, recording_sync: RecordingSync
    ) -> None:
        client = FakeClient(
            [
                make_snapshot(timestamp=_T, power_w=500.0, energy_kwh=120.5),
                make_snapshot(timestamp=_T + 60, power_w=520.0, energy_kwh=119.0),
            ]
        )
        engine = _make_engine(client, recording_sync, settings_store)
        await engine.poll_once()
        after_first = engine.state.model_copy()

        outcome = await engine.poll_once()

        assert outcome is PollOutcome.VALIDATION_REJECTED
        assert engine.state == after_first
        assert engine.watchdog.remaining == WATCHDOG_BUDGET - 1
        assert len(recording_sync.capabilities) == 1

    @pytest.mark.asyncio
    async def test_regression_committed_when_filtering_disabled(
        self, settings_store: SettingsStore, recording_sync: RecordingSync
    ) -> None:
        settings_store.update(filter_readings=False)
        client = FakeClient(
            [
                make_snapshot(timestamp=_T, energy_kwh=120.5),
                make_snapshot(timestamp=_T + 60, energy_kwh=119.0),
            ]
        )
        engine = _make_engine(client, recording_sync, settings_store)

        await engine.poll_once()
        outcome = await engine.poll_once()

        assert outcome is PollOutcome.OK
        assert engine.state.cumulative_energy_kwh == 119.0

    @pytest.mark.asyncio
    async def test_state_object_identity_kept(
        self, settings_store: SettingsStore, recording_sync: RecordingSync
    ) -> None:
        client = FakeClient([make_snapshot(timestamp=_T)])
        engine = _make_engine(client, recording_sync, settings_store)
        state = engine.state

        await engine.poll_once()

        assert engine.state is state
        assert state.has_reading


class TestDeviceFailures:
    @pytest.mark.asyncio
    async def test_login_failure(
        self, settings_store: SettingsStore, recording_sync: RecordingSync
    ) -> None:
        client = FakeClient(login_error=LoginError("password rejected"))
        engine = _make_engine(client, recording_sync, settings_store)

        outcome = await engine.poll_once()

        assert outcome is PollOutcome.LOGIN_ERROR
        assert engine.watchdog.remaining == WATCHDOG_BUDGET - 1
        assert client.fetch_calls == 0
        assert engine.available is False
        assert recording_sync.availability == [(False, "login error: password rejected")]

    @pytest.mark.asyncio
    async def test_fetch_failure_keeps_last_good_state(
        self, settings_store: SettingsStore, recording_sync: RecordingSync
    ) -> None:
        client = FakeClient(
            [make_snapshot(timestamp=_T), FetchError("HTTP 500 from host/e")]
        )
        engine = _make_engine(client, recording_sync, settings_store)
        await engine.poll_once()
        after_first = engine.state.model_copy()

        outcome = await engine.poll_once()

        assert outcome is PollOutcome.FETCH_ERROR
        assert engine.state == after_first
        assert engine.watchdog.remaining == WATCHDOG_BUDGET - 1
        assert recording_sync.availability == [
            (True, None),
            (False, "HTTP 500 from host/e"),
        ]

    @pytest.mark.asyncio
    async def test_login_skipped_when_session_active(
        self, settings_store: SettingsStore, recording_sync: RecordingSync
    ) -> None:
        client = FakeClient([make_snapshot(timestamp=_T), make_snapshot(timestamp=_T + 10)])
        engine = _make_engine(client, recording_sync, settings_store)

        await engine.poll_once()
        await engine.poll_once()

        assert client.login_calls == 1

    @pytest.mark.asyncio
    async def test_success_after_failures_resets_watchdog(
        self, settings_store: SettingsStore, recording_sync: RecordingSync
    ) -> None:
        client = FakeClient(
            [FetchError("timeout"), FetchError("timeout"), make_snapshot(timestamp=_T)]
        )
        engine = _make_engine(client, recording_sync, settings_store)

        await engine.poll_once()
        await engine.poll_once()
        assert engine.watchdog.remaining == WATCHDOG_BUDGET - 2
        await engine.poll_once()

        assert engine.watchdog.remaining == WATCHDOG_BUDGET
        assert engine.available is True

    @pytest.mark.asyncio
    async def test_sink_failure_propagates_without_watchdog_reset(
        self, settings_store: SettingsStore
    ) -> None:
        sync = RecordingSync()
        sync.set_capabilities = AsyncMock(side_effect=RuntimeError("disk full"))
        engine = _make_engine(FakeClient([make_snapshot(timestamp=_T)]), sync, settings_store)
        engine.watchdog.remaining = 3

        with pytest.raises(RuntimeError, match="disk full"):
            await engine.poll_once()

        assert engine.watchdog.remaining == 3

    @pytest.mark.asyncio
    async def test_settings_write_failure_propagates_without_watchdog_reset(
        self, settings_store: SettingsStore, recording_sync: RecordingSync
    ) -> None:
        client = FakeClient([make_snapshot(timestamp=_T)], info={"model": "LS120"})
        engine = _make_engine(client, recording_sync, settings_store)
        settings_store.update = MagicMock(side_effect=OSError("read-only file system"))
        engine.watchdog.remaining = 3

        with pytest.raises(OSError):
            await engine.poll_once()

        assert engine.watchdog.remaining == 3

    @pytest.mark.asyncio
    async def test_replace_session_resets_watchdog_and_state(
        self, settings_store: SettingsStore, recording_sync: RecordingSync
    ) -> None:
        engine = _make_engine(
            FakeClient([make_snapshot(timestamp=_T)]), recording_sync, settings_store
        )
        await engine.poll_once()
        state = engine.state
        engine.watchdog.remaining = 0
        fresh = FakeClient()

        engine.replace_session(fresh)

        assert engine.client is fresh
        assert engine.watchdog.remaining == WATCHDOG_BUDGET
        assert engine.state is state
        assert engine.state.model_dump() == MeterState().model_dump()

    @pytest.mark.asyncio
    async def test_lower_reading_accepted_after_replace_session(
        self, settings_store: SettingsStore, recording_sync: RecordingSync
    ) -> None:
        engine = _make_engine(
            FakeClient([make_snapshot(timestamp=_T, energy_kwh=120.5)]),
            recording_sync,
            settings_store,
        )
        await engine.poll_once()
        engine.replace_session(
            FakeClient([make_snapshot(timestamp=_T + 60, energy_kwh=50.0)])
        )

        assert await engine.poll_once() is PollOutcome.OK
        assert engine.state.cumulative_energy_kwh == 50.0


class TestTriggers:
    @pytest.mark.asyncio
    async def test_no_triggers_on_first_commit(
        self, settings_store: SettingsStore, recording_sync: RecordingSync
    ) -> None:
        client = FakeClient([make_snapshot(timestamp=_T, offpeak=True)])
        engine = _make_engine(client, recording_sync, settings_store)

        await engine.poll_once()

        assert recording_sync.triggers == []

    @pytest.mark.asyncio
    async def test_tariff_trigger_on_committed_change(
        self, settings_store: SettingsStore, recording_sync: RecordingSync
    ) -> None:
        client = FakeClient(
            [
                make_snapshot(timestamp=_T, power_w=500.0, offpeak=True),
                make_snapshot(timestamp=_T + 10, power_w=500.0, offpeak=False),
                make_snapshot(timestamp=_T + 20, power_w=500.0, offpeak=False),
            ]
        )
        engine = _make_engine(client, recording_sync, settings_store)

        for _ in range(3):
            await engine.poll_once()

        assert recording_sync.triggers == [(TARIFF_CHANGED, {"off_peak": False})]
        assert engine.is_offpeak_now() is False

    @pytest.mark.asyncio
    async def test_tariff_trigger_when_tariff_becomes_known(
        self, settings_store: SettingsStore, recording_sync: RecordingSync
    ) -> None:
        client = FakeClient(
            [
                make_snapshot(timestamp=_T, power_w=500.0),
                make_snapshot(timestamp=_T + 10, power_w=500.0, offpeak=True),
            ]
        )
        engine = _make_engine(client, recording_sync, settings_store)

        await engine.poll_once()
        assert engine.state.is_offpeak_now is None
        await engine.poll_once()

        assert recording_sync.triggers == [(TARIFF_CHANGED, {"off_peak": True})]

    @pytest.mark.asyncio
    async def test_no_tariff_trigger_for_rejected_reading(
        self, settings_store: SettingsStore, recording_sync: RecordingSync
    ) -> None:
        client = FakeClient(
            [
                make_snapshot(timestamp=_T, energy_kwh=120.5, offpeak=True),
                make_snapshot(timestamp=_T + 10, energy_kwh=100.0, offpeak=False),
            ]
        )
        engine = _make_engine(client, recording_sync, settings_store)

        await engine.poll_once()
        await engine.poll_once()

        assert recording_sync.triggers == []
        assert engine.is_offpeak_now() is True

    @pytest.mark.asyncio
    async def test_power_trigger(
        self, settings_store: SettingsStore, recording_sync: RecordingSync
    ) -> None:
        client = FakeClient(
            [
                make_snapshot(timestamp=_T, power_w=500.0),
                make_snapshot(timestamp=_T + 10, power_w=520.0),
            ]
        )
        engine = _make_engine(client, recording_sync, settings_store)

        await engine.poll_once()
        await engine.poll_once()

        assert recording_sync.triggers == [(POWER_CHANGED, {"power": 520.0})]


class TestDeviceInfoMirroring:
    @pytest.mark.asyncio
    async def test_changed_metadata_written_to_settings(
        self, settings_store: SettingsStore, recording_sync: RecordingSync
    ) -> None:
        client = FakeClient(
            [make_snapshot(timestamp=_T)],
            info={"model": "LS120", "firmware": "1.6.1-EL", "has_gas_meter": "true"},
        )
        engine = _make_engine(client, recording_sync, settings_store)

        await engine.poll_once()

        settings = settings_store.settings
        assert settings.model == "LS120"
        assert settings.firmware == "1.6.1-EL"
        assert settings.has_gas_meter == "true"


class TestConditionAndAction:
    def test_offpeak_false_while_unknown(
        self, settings_store: SettingsStore, recording_sync: RecordingSync
    ) -> None:
        engine = _make_engine(FakeClient(), recording_sync, settings_store)

        assert engine.is_offpeak_now() is False

    @pytest.mark.asyncio
    async def test_reboot_marks_unavailable(
        self, settings_store: SettingsStore, recording_sync: RecordingSync
    ) -> None:
        client = FakeClient()
        engine = _make_engine(client, recording_sync, settings_store)

        assert await engine.reboot_device() is True

        assert client.reboot_calls == 1
        assert recording_sync.availability == [(False, "rebooting now")]

    @pytest.mark.asyncio
    async def test_reboot_failure_raises(
        self, settings_store: SettingsStore, recording_sync: RecordingSync
    ) -> None:
        client = FakeClient()
        client.reboot = AsyncMock(side_effect=DeviceError("reboot failed"))
        engine = _make_engine(client, recording_sync, settings_store)

        with pytest.raises(DeviceError):
            await engine.reboot_device()

        assert recording_sync.availability == []
