"""
Device session for the YouLess LS120 energy monitor.

Defines the :class:`DeviceClient` protocol the poll engine depends on and
:class:`YoulessClient`, an httpx implementation talking to the LS120's local
HTTP interface:

- ``/L?w=<password>``: log in (sets a session cookie).
- ``/d``: device info (model, firmware, MAC).
- ``/e?f=j``: readings snapshot (JSON list with one entry).
- ``/S?rb=``: reboot.
- ``/S?t=n``: synchronise the device clock via NTP.

Every transport or parse failure is raised as a :class:`DeviceError`
subclass; nothing else escapes the client. An HTTP 403 means the session
cookie expired, so the session is marked logged out and the next poll
cycle logs in again.

CHANGELOG:
- 2026-10-18: Mirror meter presence flags from the readings payload
- 2026-10-18: Initial creation (STORY-003)

TODO:
- None
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any, Protocol

import httpx

from youless_edge.src.errors import DeviceError, FetchError, LoginError
from youless_edge.src.models import RawSnapshot

if TYPE_CHECKING:
    from youless_edge.src.settings import DeviceSettings

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S: float = 10.0
"""Timeout per HTTP request to the LS120 in seconds."""


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class DeviceClient(Protocol):
    """Session capabilities the poll engine and supervisor rely on."""

    @property
    def logged_in(self) -> bool: ...

    @property
    def info(self) -> Mapping[str, str]: ...

    async def login(self, password: str | None = None, host: str | None = None) -> None:
        """Establish the session, optionally with new credentials.

        Raises:
            LoginError: If the device is unreachable or rejects the password.
        """
        ...

    async def fetch_advanced_status(self) -> RawSnapshot:
        """Fetch one readings snapshot.

        Raises:
            FetchError: On transport errors or an unparseable payload.
        """
        ...

    async def reboot(self) -> None: ...

    async def sync_time(self) -> None: ...

    async def close(self) -> None: ...


ClientFactory = Callable[["DeviceSettings"], DeviceClient]
"""Builds a fresh, not yet logged-in session from the current settings."""


# ---------------------------------------------------------------------------
# LS120 implementation
# ---------------------------------------------------------------------------


def _base_url(host: str) -> str:
    return host if host.startswith(("http://", "https://")) else f"http://{host}"


class YoulessClient:
    """httpx session for one LS120.

    Args:
        host: LS120 IP address or hostname.
        password: LS120 web password, empty when none is set.
        timeout_s: Timeout per HTTP request.
        transport: Optional httpx transport, used by tests.
    """

    def __init__(
        self,
        host: str,
        password: str = "",
        *,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._host = host
        self._password = password
        self._http = httpx.AsyncClient(
            base_url=_base_url(host),
            timeout=timeout_s,
            follow_redirects=True,
            transport=transport,
        )
        self._logged_in = False
        self._info: dict[str, str] = {}

    @classmethod
    def from_settings(
        cls,
        settings: DeviceSettings,
        *,
        timeout_s: float = DEFAULT_TIMEOUT_S,
    ) -> YoulessClient:
        return cls(settings.host, settings.password, timeout_s=timeout_s)

    @property
    def logged_in(self) -> bool:
        return self._logged_in

    @property
    def info(self) -> Mapping[str, str]:
        return self._info

    async def login(self, password: str | None = None, host: str | None = None) -> None:
        if password is not None:
            self._password = password
        if host is not None and host != self._host:
            self._host = host
            self._http.base_url = _base_url(host)
        self._logged_in = False

        try:
            if self._password:
                response = await self._http.get("/L", params={"w": self._password})
                if response.status_code == 403:
                    raise LoginError(f"{self._host} rejected the password")
                response.raise_for_status()
            response = await self._http.get("/d")
        except httpx.HTTPError as exc:
            raise LoginError(f"cannot log in to {self._host}: {exc}") from exc

        if response.status_code == 403:
            raise LoginError(f"{self._host} rejected the password")
        if response.is_error:
            raise LoginError(f"HTTP {response.status_code} from {self._host}/d")
        try:
            data = response.json()
        except ValueError as exc:
            raise LoginError(f"invalid device info from {self._host}") from exc

        self._info.update(
            {
                "model": str(data.get("model", "")),
                "firmware": str(data.get("fw", "")),
                "mac": str(data.get("mac", "")),
            }
        )
        self._logged_in = True
        logger.info("Logged in to %s (model=%s)", self._host, self._info["model"])

    async def fetch_advanced_status(self) -> RawSnapshot:
        try:
            response = await self._http.get("/e", params={"f": "j"})
        except httpx.HTTPError as exc:
            raise FetchError(f"cannot fetch readings from {self._host}: {exc}") from exc

        if response.status_code == 403:
            self._logged_in = False
            raise FetchError(f"session on {self._host} expired")
        if response.is_error:
            raise FetchError(f"HTTP {response.status_code} from {self._host}/e")

        try:
            payload = response.json()
            entry: dict[str, Any] = payload[0] if isinstance(payload, list) else payload
            snapshot = RawSnapshot.from_device(entry)
        except (ValueError, LookupError, TypeError, AttributeError) as exc:
            raise FetchError(f"invalid readings from {self._host}: {exc}") from exc

        self._info.update(
            {
                "has_p1_meter": _flag(entry.get("p1") or entry.get("p2")),
                "has_gas_meter": _flag(snapshot.has_gas_meter),
                "has_s0_meter": _flag(entry.get("ts0")),
            }
        )
        return snapshot

    async def reboot(self) -> None:
        await self._command({"rb": ""}, "reboot")

    async def sync_time(self) -> None:
        await self._command({"t": "n"}, "clock sync")

    async def close(self) -> None:
        await self._http.aclose()

    async def _command(self, params: dict[str, str], what: str) -> None:
        """Send a ``/S`` command and raise DeviceError on any failure."""
        try:
            response = await self._http.get("/S", params=params)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise DeviceError(f"{what} on {self._host} failed: {exc}") from exc
        logger.info("Sent %s to %s", what, self._host)


def _flag(value: object) -> str:
    return "true" if value else "false"
