"""
Edge daemon entrypoint for the YouLess-to-hub pipeline.

Runs two concurrent activities:
1. **Poll supervisor**: a LifecycleSupervisor ticking the PollEngine, which
   logs in to the LS120, fetches and validates readings, derives meter
   state and enqueues hub events into the local SQLite spool.
2. **Upload loop**: drains the spool to the hub over HTTPS.

Signals:
- SIGTERM/SIGINT set a shared asyncio.Event; the upload loop finishes its
  current iteration, the supervisor stops, and one final upload flush is
  attempted before exiting.
- SIGHUP re-reads the device settings file and routes any change through
  the supervisor's settings-change path (new credentials are verified
  before they are applied).

Structured JSON logging is used for all events. A HealthWriter tracks poll,
upload, watchdog and supervisor state in a JSON health file.

CHANGELOG:
- 2026-10-18: Reload device settings on SIGHUP
- 2026-10-18: Initial creation (STORY-012)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import hashlib
import json
import logging
import signal
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from youless_edge.src.errors import LoginError
from youless_edge.src.settings import read_device_settings

if TYPE_CHECKING:
    from youless_edge.src.health import HealthWriter
    from youless_edge.src.settings import SettingsStore
    from youless_edge.src.spool import Spool
    from youless_edge.src.supervisor import LifecycleSupervisor
    from youless_edge.src.uploader import Uploader

logger = logging.getLogger(__name__)

_RELOADABLE_FIELDS: tuple[str, ...] = (
    "host",
    "password",
    "polling_interval_s",
    "filter_readings",
)
"""Device settings an operator may change in the settings file at runtime."""


# ---------------------------------------------------------------------------
# Structured JSON logging setup
# ---------------------------------------------------------------------------


class _JsonFormatter(logging.Formatter):
    """One JSON object per log record."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry)


def configure_logging(level: int = logging.INFO) -> None:
    """Route all logging through a JSON formatter on stderr."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_JsonFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    # Request lines from the LS120 client would drown out everything else.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _masked_secret(value: str | None) -> str:
    """Return a short non-reversible fingerprint for diagnostics."""
    if not value:
        return "empty"
    digest = hashlib.sha256(value.encode("utf-8")).hexdigest()[:10]
    return f"len={len(value)} sha256={digest}"


def log_config_summary(settings: object) -> None:
    """Log the effective configuration at startup, secrets masked.

    Args:
        settings: An EdgeSettings instance (or any object with the same attrs).
    """
    logger.info(
        "Edge daemon starting with config: "
        "youless_host=%s, poll_interval_s=%s, filter_readings=%s, "
        "device_id=%s, hub_base_url=%s, batch_size=%s, upload_interval_s=%s, "
        "spool_path=%s, settings_path=%s, health_path=%s, request_timeout_s=%s, "
        "youless_password_masked=%s, hub_token_masked=%s",
        settings.youless_host,  # type: ignore[attr-defined]
        settings.poll_interval_s,  # type: ignore[attr-defined]
        settings.filter_readings,  # type: ignore[attr-defined]
        settings.device_id,  # type: ignore[attr-defined]
        settings.hub_base_url,  # type: ignore[attr-defined]
        settings.batch_size,  # type: ignore[attr-defined]
        settings.upload_interval_s,  # type: ignore[attr-defined]
        settings.spool_path,  # type: ignore[attr-defined]
        settings.settings_path,  # type: ignore[attr-defined]
        settings.health_path,  # type: ignore[attr-defined]
        settings.request_timeout_s,  # type: ignore[attr-defined]
        _masked_secret(settings.youless_password),  # type: ignore[attr-defined]
        _masked_secret(settings.hub_device_token),  # type: ignore[attr-defined]
    )


# ---------------------------------------------------------------------------
# Upload side
# ---------------------------------------------------------------------------


async def _upload_once(
    *,
    uploader: Uploader,
    spool: Spool,
    health: HealthWriter | None = None,
) -> bool:
    """Execute a single upload cycle. Never raises.

    Returns:
        True if a batch was uploaded, False otherwise.
    """
    try:
        result = await uploader.upload_batch(spool)
        if result and health is not None:
            health.record_upload()
    except Exception:
        logger.error("Upload cycle error", exc_info=True)
        result = False

    if health is not None:
        try:
            health.set_spool_count(await spool.count())
        except Exception:
            logger.warning("Failed to write health file", exc_info=True)
    return result


async def _upload_loop(
    *,
    uploader: Uploader,
    spool: Spool,
    upload_interval_s: float,
    shutdown_event: asyncio.Event,
    health: HealthWriter | None = None,
) -> None:
    """Upload until shutdown_event is set.

    A full batch is followed immediately by the next one; otherwise the loop
    waits upload_interval_s, or the uploader's backoff if that is longer.
    """
    logger.info("Upload loop started (interval=%ss)", upload_interval_s)
    while not shutdown_event.is_set():
        uploaded = await _upload_once(uploader=uploader, spool=spool, health=health)
        if uploaded:
            continue
        delay = max(upload_interval_s, uploader.current_backoff)
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(shutdown_event.wait(), timeout=delay)
    logger.info("Upload loop stopped")


# ---------------------------------------------------------------------------
# Settings reload
# ---------------------------------------------------------------------------


async def reload_settings(
    *,
    supervisor: LifecycleSupervisor,
    store: SettingsStore,
) -> None:
    """Re-read the settings file and apply operator changes.

    Rejected credentials are logged and the previous settings are written
    back, so the file never holds values the daemon is not running with.
    """
    try:
        on_disk = read_device_settings(store.path)
    except Exception:
        logger.error("Cannot read settings file %s", store.path, exc_info=True)
        return

    current = store.settings
    changes = {
        name: getattr(on_disk, name)
        for name in _RELOADABLE_FIELDS
        if getattr(on_disk, name) != getattr(current, name)
    }
    if not changes:
        logger.info("Settings reload: no changes")
        return

    try:
        await supervisor.update_settings(**changes)
    except LoginError as exc:
        logger.error("New device settings rejected, keeping current ones: %s", exc)
        store.save()


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


async def run(
    *,
    supervisor: LifecycleSupervisor,
    uploader: Uploader,
    spool: Spool,
    upload_interval_s: float,
    shutdown_event: asyncio.Event,
    health: HealthWriter | None = None,
) -> None:
    """Start polling, upload until shutdown, then stop and flush once."""
    await supervisor.start()
    try:
        await _upload_loop(
            uploader=uploader,
            spool=spool,
            upload_interval_s=upload_interval_s,
            shutdown_event=shutdown_event,
            health=health,
        )
    finally:
        await supervisor.stop()

    logger.info("Attempting final upload flush before exit")
    await _upload_once(uploader=uploader, spool=spool, health=health)
    logger.info("Shutdown complete")


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


async def async_main() -> None:
    """Async entrypoint: load config, build components, run until signalled."""
    configure_logging()

    from youless_edge.src.client import YoulessClient
    from youless_edge.src.config import EdgeSettings
    from youless_edge.src.health import HealthWriter
    from youless_edge.src.metering import DefaultMeterLogic
    from youless_edge.src.poll_engine import PollEngine
    from youless_edge.src.settings import SettingsStore
    from youless_edge.src.spool import Spool
    from youless_edge.src.supervisor import LifecycleSupervisor
    from youless_edge.src.sync import SpoolStateSync
    from youless_edge.src.uploader import Uploader

    settings = EdgeSettings()
    log_config_summary(settings)
    store = SettingsStore.load(settings.settings_path, seed=settings)
    health = HealthWriter(settings.health_path)
    shutdown_event = asyncio.Event()
    background: set[asyncio.Task[None]] = set()

    async with (
        Spool(settings.spool_path) as spool,
        Uploader(
            hub_base_url=settings.hub_base_url,
            hub_device_token=settings.hub_device_token,
            batch_size=settings.batch_size,
        ) as uploader,
    ):
        engine = PollEngine(
            sync=SpoolStateSync(spool, settings.device_id),
            settings_store=store,
            logic=DefaultMeterLogic(),
        )
        supervisor = LifecycleSupervisor(
            engine=engine,
            settings_store=store,
            client_factory=functools.partial(
                YoulessClient.from_settings,
                timeout_s=settings.request_timeout_s,
            ),
            health=health,
        )

        def _on_reload() -> None:
            logger.info("Received SIGHUP, reloading device settings")
            task = asyncio.create_task(
                reload_settings(supervisor=supervisor, store=store)
            )
            background.add(task)
            task.add_done_callback(background.discard)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda: _handle_signal(shutdown_event))
        loop.add_signal_handler(signal.SIGHUP, _on_reload)

        await run(
            supervisor=supervisor,
            uploader=uploader,
            spool=spool,
            upload_interval_s=settings.upload_interval_s,
            shutdown_event=shutdown_event,
            health=health,
        )


def _handle_signal(shutdown_event: asyncio.Event) -> None:
    """Handle SIGTERM/SIGINT by setting the shutdown event."""
    logger.info("Received shutdown signal, initiating graceful shutdown")
    shutdown_event.set()


def main() -> None:
    """Synchronous entrypoint for the edge daemon."""
    asyncio.run(async_main())


if __name__ == "__main__":
    main()
