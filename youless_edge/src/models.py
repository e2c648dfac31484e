"""
Pydantic models for raw device snapshots, derived meter state and hub events.

RawSnapshot is one fetched set of readings. :meth:`RawSnapshot.from_device`
maps the LS120 ``/e`` JSON keys onto Python field names and converts the
device's encodings (gas timestamp, tariff number) so the rest of the daemon
never sees wire-level values.

MeterState is the latest derived state of the meter. A single instance is
owned by the poll engine and mutated in place on every committed cycle.

HubEvent subclasses are the payloads the state sink writes to the spool,
one model per event kind, serialised with ``model_dump_json()``.

CHANGELOG:
- 2026-10-18: Add hub event models for spooled payloads
- 2026-10-18: Parse gas timestamp from the device's yyMMddhhmm format
- 2026-10-18: Initial creation (STORY-002)

TODO:
- None
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, model_validator

# ---------------------------------------------------------------------------
# Mapping from RawSnapshot field names to LS120 JSON keys.
# ---------------------------------------------------------------------------

_DEVICE_KEYS: dict[str, str] = {
    "timestamp": "tm",
    "power_w": "pwr",
    "energy_kwh": "net",
    "energy_offpeak_kwh": "p1",
    "energy_peak_kwh": "p2",
    "energy_offpeak_produced_kwh": "n1",
    "energy_peak_produced_kwh": "n2",
    "gas_m3": "gas",
}
"""Maps RawSnapshot field name -> key in the device's readings payload."""

_GAS_TS_FORMAT = "%y%m%d%H%M"
"""The LS120 reports the gas meter timestamp as e.g. 2007071730."""

_OFFPEAK_TARIFF = 1
_PEAK_TARIFF = 2


# ---------------------------------------------------------------------------
# Raw snapshot
# ---------------------------------------------------------------------------


class RawSnapshot(BaseModel):
    """A single readings snapshot as reported by the device.

    Attributes:
        timestamp: Epoch seconds of the reading.
        power_w: Instantaneous power in watts.
        energy_kwh: Net cumulative meter reading in kWh.
        average_power_w: Device-reported average power, when available.
        energy_offpeak_kwh: Off-peak (tariff 1) consumption total.
        energy_peak_kwh: Peak (tariff 2) consumption total.
        energy_offpeak_produced_kwh: Off-peak production total.
        energy_peak_produced_kwh: Peak production total.
        gas_m3: Cumulative gas reading in m3.
        gas_timestamp: Epoch seconds of the gas reading.
        offpeak: Current tariff flag, when the firmware reports it.
        interval_timestamp: Device-reported measurement interval boundary.
    """

    timestamp: int
    power_w: float
    energy_kwh: float
    average_power_w: float | None = None
    energy_offpeak_kwh: float | None = None
    energy_peak_kwh: float | None = None
    energy_offpeak_produced_kwh: float | None = None
    energy_peak_produced_kwh: float | None = None
    gas_m3: float | None = None
    gas_timestamp: int | None = None
    offpeak: bool | None = None
    interval_timestamp: int | None = None

    @model_validator(mode="after")
    def _drop_gas_without_meter(self) -> RawSnapshot:
        """Gas totals are meaningless without a gas meter timestamp."""
        if self.gas_timestamp is None:
            self.gas_m3 = None
        return self

    @classmethod
    def from_device(cls, payload: Mapping[str, Any]) -> RawSnapshot:
        """Build a snapshot from one entry of the device's ``/e`` response.

        Raises:
            pydantic.ValidationError: If a required key is missing or a value
                has the wrong type.
            ValueError: If the gas timestamp cannot be parsed.
        """
        fields: dict[str, Any] = {
            name: payload[key] for name, key in _DEVICE_KEYS.items() if key in payload
        }
        fields["gas_timestamp"] = _parse_gas_timestamp(payload.get("gts"))
        fields["offpeak"] = _parse_tariff(payload.get("tr"))
        return cls.model_validate(fields)

    @property
    def has_gas_meter(self) -> bool:
        return self.gas_m3 is not None

    @property
    def produced_kwh(self) -> float:
        """Sum of both production totals, treating missing values as zero."""
        return (self.energy_offpeak_produced_kwh or 0.0) + (
            self.energy_peak_produced_kwh or 0.0
        )


def _parse_gas_timestamp(raw: Any) -> int | None:
    """Convert a yyMMddhhmm gas timestamp to epoch seconds (local time).

    Zero or a missing key means no gas meter is attached.
    """
    if not raw:
        return None
    try:
        return int(datetime.strptime(str(raw), _GAS_TS_FORMAT).timestamp())
    except ValueError as exc:
        raise ValueError(f"unparseable gas timestamp {raw!r}") from exc


def _parse_tariff(raw: Any) -> bool | None:
    """Map the device tariff number to an off-peak flag."""
    if raw == _OFFPEAK_TARIFF:
        return True
    if raw == _PEAK_TARIFF:
        return False
    return None


# ---------------------------------------------------------------------------
# Derived meter state
# ---------------------------------------------------------------------------


class MeterState(BaseModel):
    """Latest derived readings for one device.

    Every field is ``None`` until the first committed reading.

    Attributes:
        instantaneous_power_w: Latest instantaneous power draw in watts.
        average_power_w: Two-minute average power in watts.
        cumulative_energy_kwh: Net meter total in kWh.
        cumulative_energy_peak_kwh: Peak consumption total in kWh.
        cumulative_energy_offpeak_kwh: Off-peak consumption total in kWh.
        cumulative_energy_peak_produced_kwh: Peak production total in kWh.
        cumulative_energy_offpeak_produced_kwh: Off-peak production total.
        cumulative_energy_timestamp: Epoch seconds of the last reading.
        interval_energy_kwh: Net total at the last interval boundary.
        interval_timestamp: Epoch seconds of the last interval boundary.
        instantaneous_gas_m3: Gas usage rate in m3 per hour.
        cumulative_gas_m3: Gas meter total in m3.
        cumulative_gas_timestamp: Epoch seconds of the last gas reading.
        is_offpeak_now: Whether the off-peak tariff is active.
    """

    instantaneous_power_w: float | None = None
    average_power_w: float | None = None
    cumulative_energy_kwh: float | None = None
    cumulative_energy_peak_kwh: float | None = None
    cumulative_energy_offpeak_kwh: float | None = None
    cumulative_energy_peak_produced_kwh: float | None = None
    cumulative_energy_offpeak_produced_kwh: float | None = None
    cumulative_energy_timestamp: int | None = None
    interval_energy_kwh: float | None = None
    interval_timestamp: int | None = None
    instantaneous_gas_m3: float | None = None
    cumulative_gas_m3: float | None = None
    cumulative_gas_timestamp: int | None = None
    is_offpeak_now: bool | None = None

    @property
    def has_reading(self) -> bool:
        """True once at least one reading has been committed."""
        return self.cumulative_energy_timestamp is not None

    @property
    def produced_kwh(self) -> float:
        return (self.cumulative_energy_offpeak_produced_kwh or 0.0) + (
            self.cumulative_energy_peak_produced_kwh or 0.0
        )

    def capabilities(self) -> dict[str, float | bool | None]:
        """Return the state keyed by hub capability name."""
        return {
            "measure_power": self.instantaneous_power_w,
            "meter_offPeak": self.is_offpeak_now,
            "measure_gas": self.instantaneous_gas_m3,
            "meter_gas": self.cumulative_gas_m3,
            "meter_power": self.cumulative_energy_kwh,
            "meter_power.peak": self.cumulative_energy_peak_kwh,
            "meter_power.offPeak": self.cumulative_energy_offpeak_kwh,
            "meter_power.producedPeak": self.cumulative_energy_peak_produced_kwh,
            "meter_power.producedOffPeak": self.cumulative_energy_offpeak_produced_kwh,
        }


# ---------------------------------------------------------------------------
# Hub events
# ---------------------------------------------------------------------------


class HubEvent(BaseModel):
    """Common envelope of every event spooled for the hub.

    Attributes:
        device_id: Device identifier configured for this daemon.
        ts: UTC time the event was produced.
        kind: Event discriminator.
    """

    device_id: str
    ts: datetime
    kind: str


class CapabilitiesEvent(HubEvent):
    kind: Literal["capabilities"] = "capabilities"
    values: dict[str, Any]


class AvailabilityEvent(HubEvent):
    kind: Literal["availability"] = "availability"
    available: bool
    reason: str | None = None


class TriggerEvent(HubEvent):
    kind: Literal["trigger"] = "trigger"
    event: str
    tokens: dict[str, Any]
