"""
HTTPS batch uploader draining hub events from the spool.

Peeks the oldest events from the spool, POSTs them as ``{"events": [...]}``
to ``{hub_base_url}/v1/events`` with a bearer token, and acknowledges them
once the hub answers 200.

Failure handling:
- Network errors, timeouts, 5xx, 408 and 429: rows stay spooled and the
  backoff doubles (capped); a 429 ``Retry-After`` header overrides it.
- Other 4xx: the hub will never accept this batch, so it is dropped with an
  error log instead of blocking the queue forever. 401/403 are the exception:
  a rejected token is a configuration problem and the rows are kept.

The caller waits :attr:`Uploader.current_backoff` seconds (at least) before
the next attempt.

CHANGELOG:
- 2026-10-18: Drop batches the hub rejects as malformed
- 2026-10-18: Initial creation (STORY-010)

TODO:
- None
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from youless_edge.src.spool import Spool

logger = logging.getLogger(__name__)

_INITIAL_BACKOFF_S = 1.0
_DEFAULT_MAX_BACKOFF_S = 300.0
_RETRYABLE_STATUS = frozenset({408, 429})
_AUTH_STATUS = frozenset({401, 403})


class Uploader:
    """Batch uploader for the hub event endpoint.

    Owns one ``httpx.AsyncClient`` for its lifetime; close it with
    :meth:`aclose` or use the uploader as an async context manager.

    Args:
        hub_base_url: Base URL of the hub. Must start with ``https://``.
        hub_device_token: Per-device bearer token for hub authentication.
        batch_size: Maximum number of events per POST.
        max_backoff_s: Upper bound for the retry backoff.
        transport: Optional httpx transport, used by tests.

    Raises:
        ValueError: If *hub_base_url* does not start with ``https://``.
    """

    def __init__(
        self,
        hub_base_url: str,
        hub_device_token: str,
        batch_size: int,
        max_backoff_s: float = _DEFAULT_MAX_BACKOFF_S,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not hub_base_url.lower().startswith("https://"):
            raise ValueError(f"Hub base URL must use HTTPS (got: '{hub_base_url}').")
        self._batch_size = batch_size
        self._max_backoff_s = max_backoff_s
        self._current_backoff = _INITIAL_BACKOFF_S
        self._client = httpx.AsyncClient(
            base_url=hub_base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {hub_device_token}"},
            verify=True,
            transport=transport,
        )

    async def __aenter__(self) -> Uploader:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    @property
    def current_backoff(self) -> float:
        """Seconds to wait before the next attempt; 1s after a success."""
        return self._current_backoff

    async def upload_batch(self, spool: Spool) -> bool:
        """Upload the oldest pending events.

        Returns:
            ``True`` if a batch was accepted and acknowledged. ``False`` if
            the spool was empty or the upload failed or was dropped.
        """
        rows = await spool.peek(self._batch_size)
        if not rows:
            logger.debug("Spool empty, skipping upload.")
            return False

        rowids = [rowid for rowid, _ in rows]
        events = [json.loads(payload) for _, payload in rows]

        try:
            response = await self._client.post("/v1/events", json={"events": events})
        except httpx.TransportError as exc:
            logger.warning("Upload failed (network error): %s", exc)
            self._increase_backoff()
            return False

        status = response.status_code
        if status == 200:
            await spool.ack(rowids)
            logger.info("Uploaded %d events.", len(events))
            self._current_backoff = _INITIAL_BACKOFF_S
            return True

        if 400 <= status < 500 and status not in _RETRYABLE_STATUS | _AUTH_STATUS:
            logger.error(
                "Hub rejected batch of %d events (HTTP %d), dropping it: %s",
                len(events),
                status,
                response.text[:200],
            )
            await spool.ack(rowids)
            return False

        if status in _AUTH_STATUS:
            logger.error("Hub rejected the device token (HTTP %d)", status)
        self._increase_backoff(_retry_after(response))
        logger.warning(
            "Upload failed (HTTP %d), will retry after %.1fs backoff.",
            status,
            self._current_backoff,
        )
        return False

    def _increase_backoff(self, hint_s: float | None = None) -> None:
        """Double the backoff (or adopt the server's hint), capped."""
        proposed = hint_s if hint_s is not None else self._current_backoff * 2
        self._current_backoff = min(proposed, self._max_backoff_s)


def _retry_after(response: httpx.Response) -> float | None:
    """Seconds from a numeric ``Retry-After`` header, if any."""
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None
