"""
Derivation of meter state from a raw snapshot and the previous state.

Takes the freshly fetched RawSnapshot and the last committed MeterState and
returns a new MeterState with:

- Instantaneous power and all cumulative totals copied from the snapshot.
- A two-minute average power, either device-reported or computed from the
  net energy delta over the last averaging interval.
- A gas usage rate (m3/h) from the gas total delta between gas readings.
- The current tariff, either device-reported or inferred from which tariff
  counter advanced.

``derive_meter_state`` is a pure function. The validate/derive pair is
bundled behind the :class:`MeterLogic` protocol so the poll engine receives
it by injection and tests can substitute their own.

CHANGELOG:
- 2026-10-18: Infer tariff from counter movement when the device omits it
- 2026-10-18: Initial creation (STORY-005)

TODO:
- None
"""

from __future__ import annotations

from typing import Protocol

from youless_edge.src.models import MeterState, RawSnapshot
from youless_edge.src.validator import is_valid_reading

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

AVERAGE_WINDOW_S: int = 120
"""Length of the power averaging interval in seconds."""

_KWH_PER_S_TO_W: float = 3_600_000.0
_SECONDS_PER_HOUR: float = 3600.0


# ---------------------------------------------------------------------------
# Injected logic
# ---------------------------------------------------------------------------


class MeterLogic(Protocol):
    """Validation and derivation used by the poll engine."""

    def validate(self, raw: RawSnapshot, prev: MeterState) -> bool: ...

    def derive(self, raw: RawSnapshot, prev: MeterState) -> MeterState: ...


class DefaultMeterLogic:
    """LS120 meter logic: monotonic validation plus standard derivation."""

    def validate(self, raw: RawSnapshot, prev: MeterState) -> bool:
        return is_valid_reading(raw, prev)

    def derive(self, raw: RawSnapshot, prev: MeterState) -> MeterState:
        return derive_meter_state(raw, prev)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def derive_meter_state(raw: RawSnapshot, prev: MeterState) -> MeterState:
    """Compute the meter state that follows *prev* after reading *raw*.

    Args:
        raw: The accepted snapshot.
        prev: The last committed state. Not modified.

    Returns:
        A new :class:`MeterState`.
    """
    interval_energy, interval_ts, average_power = _derive_interval(raw, prev)
    gas_rate, gas_total, gas_ts = _derive_gas(raw, prev)

    return MeterState(
        instantaneous_power_w=raw.power_w,
        average_power_w=average_power,
        cumulative_energy_kwh=raw.energy_kwh,
        cumulative_energy_peak_kwh=raw.energy_peak_kwh,
        cumulative_energy_offpeak_kwh=raw.energy_offpeak_kwh,
        cumulative_energy_peak_produced_kwh=raw.energy_peak_produced_kwh,
        cumulative_energy_offpeak_produced_kwh=raw.energy_offpeak_produced_kwh,
        cumulative_energy_timestamp=raw.timestamp,
        interval_energy_kwh=interval_energy,
        interval_timestamp=interval_ts,
        instantaneous_gas_m3=gas_rate,
        cumulative_gas_m3=gas_total,
        cumulative_gas_timestamp=gas_ts,
        is_offpeak_now=_derive_offpeak(raw, prev),
    )


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _interval_boundary(raw: RawSnapshot) -> int:
    """Device-reported interval boundary, or the reading time floored to the window."""
    if raw.interval_timestamp is not None:
        return raw.interval_timestamp
    return raw.timestamp - raw.timestamp % AVERAGE_WINDOW_S


def _derive_interval(
    raw: RawSnapshot,
    prev: MeterState,
) -> tuple[float | None, int | None, float | None]:
    """Return (interval_energy_kwh, interval_timestamp, average_power_w)."""
    advanced = (
        prev.interval_timestamp is None
        or _interval_boundary(raw) > prev.interval_timestamp
    )
    if not advanced:
        average = (
            raw.average_power_w
            if raw.average_power_w is not None
            else prev.average_power_w
        )
        return prev.interval_energy_kwh, prev.interval_timestamp, average

    average = raw.average_power_w
    if (
        average is None
        and prev.interval_timestamp is not None
        and prev.interval_energy_kwh is not None
    ):
        elapsed = raw.timestamp - prev.interval_timestamp
        if elapsed > 0:
            delta_kwh = raw.energy_kwh - prev.interval_energy_kwh
            average = round(delta_kwh * _KWH_PER_S_TO_W / elapsed, 1)
    if average is None:
        average = prev.average_power_w
    return raw.energy_kwh, raw.timestamp, average


def _derive_gas(
    raw: RawSnapshot,
    prev: MeterState,
) -> tuple[float | None, float | None, int | None]:
    """Return (instantaneous_gas_m3, cumulative_gas_m3, cumulative_gas_timestamp)."""
    if not raw.has_gas_meter:
        return None, None, None

    rate = prev.instantaneous_gas_m3
    if (
        prev.cumulative_gas_m3 is not None
        and prev.cumulative_gas_timestamp is not None
        and raw.gas_timestamp is not None
        and raw.gas_timestamp > prev.cumulative_gas_timestamp
    ):
        elapsed = raw.gas_timestamp - prev.cumulative_gas_timestamp
        delta = raw.gas_m3 - prev.cumulative_gas_m3  # type: ignore[operator]
        rate = round(delta / elapsed * _SECONDS_PER_HOUR, 3)
    return rate, raw.gas_m3, raw.gas_timestamp


def _advanced(new: float | None, old: float | None) -> bool:
    return new is not None and old is not None and new > old


def _derive_offpeak(raw: RawSnapshot, prev: MeterState) -> bool | None:
    if raw.offpeak is not None:
        return raw.offpeak
    if _advanced(
        raw.energy_offpeak_kwh, prev.cumulative_energy_offpeak_kwh
    ) or _advanced(
        raw.energy_offpeak_produced_kwh, prev.cumulative_energy_offpeak_produced_kwh
    ):
        return True
    if _advanced(raw.energy_peak_kwh, prev.cumulative_energy_peak_kwh) or _advanced(
        raw.energy_peak_produced_kwh, prev.cumulative_energy_peak_produced_kwh
    ):
        return False
    return prev.is_offpeak_now
