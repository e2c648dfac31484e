"""
State sink pushing meter state, availability and triggers to the hub.

:class:`StateSync` is the protocol the poll engine writes to.
:class:`SpoolStateSync` turns every call into a hub event model
(:class:`CapabilitiesEvent`, :class:`AvailabilityEvent` or
:class:`TriggerEvent`) and enqueues its JSON in the local spool; the
uploader drains the spool to the hub.

Availability is only enqueued on transitions, since the engine reports it on
every cycle.

CHANGELOG:
- 2026-10-18: Spool pydantic event models instead of hand-built dicts
- 2026-10-18: Initial creation (STORY-009)

TODO:
- None
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol

from youless_edge.src.models import (
    AvailabilityEvent,
    CapabilitiesEvent,
    HubEvent,
    TriggerEvent,
)

if TYPE_CHECKING:
    from youless_edge.src.spool import Spool

logger = logging.getLogger(__name__)

TARIFF_CHANGED = "tariff_changed"
POWER_CHANGED = "power_changed"


class StateSync(Protocol):
    """Sink for capability values, availability and trigger events."""

    async def set_capabilities(self, values: Mapping[str, Any]) -> None: ...

    async def set_available(self) -> None: ...

    async def set_unavailable(self, reason: str) -> None: ...

    async def trigger(self, event: str, tokens: Mapping[str, Any]) -> None: ...


class SpoolStateSync:
    """StateSync that enqueues hub events into a :class:`Spool`.

    Args:
        spool: An opened spool (or any object with async ``enqueue``).
        device_id: Device identifier embedded in every event.
    """

    def __init__(self, spool: Spool, device_id: str) -> None:
        self._spool = spool
        self._device_id = device_id
        self._available: bool | None = None
        self._reason: str | None = None

    @property
    def available(self) -> bool | None:
        """Last reported availability, ``None`` before the first report."""
        return self._available

    async def set_capabilities(self, values: Mapping[str, Any]) -> None:
        await self._enqueue(
            CapabilitiesEvent(device_id=self._device_id, ts=_now(), values=dict(values))
        )

    async def set_available(self) -> None:
        if self._available is True:
            return
        self._available = True
        self._reason = None
        logger.info("Device %s available", self._device_id)
        await self._enqueue(
            AvailabilityEvent(device_id=self._device_id, ts=_now(), available=True)
        )

    async def set_unavailable(self, reason: str) -> None:
        if self._available is False and reason == self._reason:
            return
        self._available = False
        self._reason = reason
        logger.warning("Device %s unavailable: %s", self._device_id, reason)
        await self._enqueue(
            AvailabilityEvent(
                device_id=self._device_id, ts=_now(), available=False, reason=reason
            )
        )

    async def trigger(self, event: str, tokens: Mapping[str, Any]) -> None:
        logger.info("Trigger %s %s", event, dict(tokens))
        await self._enqueue(
            TriggerEvent(
                device_id=self._device_id, ts=_now(), event=event, tokens=dict(tokens)
            )
        )

    async def _enqueue(self, event: HubEvent) -> None:
        await self._spool.enqueue(event.model_dump_json())


def _now() -> datetime:
    return datetime.now(tz=UTC)
