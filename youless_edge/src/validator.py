"""
Plausibility check for raw snapshots against the last committed meter state.

The LS120 occasionally returns partial or garbage readings. When reading
filtering is enabled, a snapshot is rejected if it is not newer than the
last committed reading or if any cumulative counter went backwards, so
monotonic totals are never corrupted. The one exception is the net total,
which may drop by as much as the production totals rose; a meter without
production counters gets no such allowance.

This is a pure function: no I/O, no clock. Rejections are logged with their
reason.

CHANGELOG:
- 2026-10-18: Allow net total to drop while production counters rise
- 2026-10-18: Initial creation (STORY-004)

TODO:
- None
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from youless_edge.src.models import MeterState, RawSnapshot

logger = logging.getLogger(__name__)

TOLERANCE: float = 1e-9
"""Decreases smaller than this are treated as floating-point noise."""

# (snapshot field, meter state field) pairs that must never decrease.
_MONOTONIC_FIELDS: tuple[tuple[str, str], ...] = (
    ("energy_peak_kwh", "cumulative_energy_peak_kwh"),
    ("energy_offpeak_kwh", "cumulative_energy_offpeak_kwh"),
    ("energy_peak_produced_kwh", "cumulative_energy_peak_produced_kwh"),
    ("energy_offpeak_produced_kwh", "cumulative_energy_offpeak_produced_kwh"),
    ("gas_m3", "cumulative_gas_m3"),
)


def is_valid_reading(raw: RawSnapshot, prev: MeterState) -> bool:
    """Return True if *raw* is a plausible successor of *prev*.

    Args:
        raw: The freshly fetched snapshot.
        prev: The last committed meter state.

    Returns:
        ``True`` when nothing has been committed yet, or when the snapshot is
        strictly newer and no cumulative counter decreased beyond
        :data:`TOLERANCE`.
    """
    if not prev.has_reading:
        return True

    if raw.timestamp <= prev.cumulative_energy_timestamp:  # type: ignore[operator]
        logger.warning(
            "Rejecting reading: timestamp %d not newer than %d",
            raw.timestamp,
            prev.cumulative_energy_timestamp,
        )
        return False

    for raw_field, state_field in _MONOTONIC_FIELDS:
        new = getattr(raw, raw_field)
        old = getattr(prev, state_field)
        if new is None or old is None:
            continue
        if new < old - TOLERANCE:
            logger.warning(
                "Rejecting reading: %s decreased from %.4f to %.4f",
                raw_field,
                old,
                new,
            )
            return False

    if prev.cumulative_energy_kwh is not None:
        # The net total legitimately drops by what was produced meanwhile.
        allowed_drop = max(raw.produced_kwh - prev.produced_kwh, 0.0)
        if raw.energy_kwh < prev.cumulative_energy_kwh - allowed_drop - TOLERANCE:
            logger.warning(
                "Rejecting reading: energy_kwh decreased from %.4f to %.4f",
                prev.cumulative_energy_kwh,
                raw.energy_kwh,
            )
            return False

    return True
