"""
Maintenance daemon: waits for the job store, then drives the cleanup and
failure notification sweeps on their own intervals until stopped.
"""

import asyncio
import signal
from datetime import timedelta

from janitor.config.logging import get_logger
from janitor.config.settings import Settings
from janitor.core.exceptions import ConfigurationError
from janitor.infra.database import Database
from janitor.infra.jobs.store import JobStoreClient, SqlJobStore
from janitor.infra.notifications.ledger import NotificationLedger, SqlNotificationLedger
from janitor.infra.notifications.sender import NotificationSender, SendGridSender
from janitor.maintenance.cleanup import CleanupResult, CleanupSweep
from janitor.maintenance.failure_notify import FailureNotifySweep, NotifyResult
from janitor.maintenance.tick_loop import TickLoop
from janitor.maintenance.timestamps import ExpirationPolicy

logger = get_logger(__name__)

# SIGUSR1/SIGUSR2 do not exist on Windows
SHUTDOWN_SIGNALS = tuple(
    getattr(signal, name)
    for name in ("SIGINT", "SIGTERM", "SIGUSR1", "SIGUSR2")
    if hasattr(signal, name)
)


def build_cleanup_sweep(
    settings: Settings, store: JobStoreClient, dry_run: bool = False
) -> CleanupSweep:
    return CleanupSweep(
        store,
        ExpirationPolicy(timedelta(seconds=settings.job_expiration_s)),
        normal_only=settings.cleanup_normal_jobs_only,
        dry_run=dry_run,
    )


def build_failure_notify_sweep(
    settings: Settings,
    store: JobStoreClient,
    ledger: NotificationLedger | None,
    sender: NotificationSender | None,
) -> FailureNotifySweep:
    """Raises ConfigurationError when notifications cannot be delivered."""
    if not settings.sendgrid_api_key or sender is None:
        raise ConfigurationError("No delivery credential configured (SENDGRID_API_KEY)")
    if ledger is None:
        raise ConfigurationError("No notification ledger available")

    return FailureNotifySweep(
        store,
        ledger,
        sender,
        settings.notify_recipient_list,
        environment=settings.environment,
    )


class MaintenanceDaemon:
    """Owns one TickLoop per enabled sweep."""

    def __init__(
        self,
        settings: Settings,
        store: JobStoreClient,
        ledger: NotificationLedger | None = None,
        sender: NotificationSender | None = None,
        database: Database | None = None,
    ):
        self.settings = settings
        self.database = database
        self.store = store
        self.ledger = ledger
        self.sender = sender
        self.loops: list[TickLoop] = []
        self._stop_requested = asyncio.Event()

        cleanup = build_cleanup_sweep(settings, store)
        self.loops.append(TickLoop("cleanup", cleanup.run, settings.cleanup_interval_s))

        try:
            notify = build_failure_notify_sweep(settings, store, ledger, sender)
        except ConfigurationError as e:
            self.notify_enabled = False
            logger.warning("failure_notify.disabled", reason=e.message)
        else:
            self.notify_enabled = True
            self.loops.append(
                TickLoop("failure_notify", notify.run, settings.notify_interval_s)
            )

    async def start(self) -> None:
        """Wait for the store to answer, then start every loop unless stopped meanwhile."""
        if self.database is not None:
            await self.database.wait_until_ready(
                self.settings.store_ready_timeout_s, stop=self._stop_requested
            )

        if self._stop_requested.is_set():
            return

        for loop in self.loops:
            loop.start()

        logger.info(
            "daemon.started",
            loops=[loop.name for loop in self.loops],
            cleanup_interval_s=self.settings.cleanup_interval_s,
            notify_interval_s=self.settings.notify_interval_s,
            job_expiration_s=self.settings.job_expiration_s,
        )

    def stop(self) -> None:
        logger.info("daemon.stopping")
        self._stop_requested.set()
        for loop in self.loops:
            loop.stop()

    async def join(self) -> None:
        await asyncio.gather(*(loop.join() for loop in self.loops))

    async def close(self) -> None:
        """Release the HTTP client and database connections."""
        aclose = getattr(self.sender, "aclose", None)
        if aclose is not None:
            await aclose()
        if self.database is not None:
            await self.database.close()

    async def run_forever(self) -> None:
        """Run until a shutdown signal; in-flight sweeps are allowed to finish."""
        event_loop = asyncio.get_running_loop()
        for sig in SHUTDOWN_SIGNALS:
            try:
                event_loop.add_signal_handler(sig, self._on_signal, sig)
            except NotImplementedError:
                # add_signal_handler is unavailable on Windows event loops
                pass

        try:
            await self.start()
            await self.join()
        finally:
            await self.close()
            logger.info("daemon.stopped")

    def _on_signal(self, sig: signal.Signals) -> None:
        logger.info("daemon.signal_received", signal=sig.name)
        self.stop()


def create_sender(settings: Settings) -> SendGridSender | None:
    """SendGrid sender when a credential is configured, otherwise None."""
    if not settings.sendgrid_api_key:
        return None
    return SendGridSender(
        settings.sendgrid_api_key,
        settings.notify_from_address,
        api_url=settings.sendgrid_api_url,
        timeout=settings.notify_timeout_s,
    )


def create_daemon(settings: Settings) -> MaintenanceDaemon:
    """Wire the SQL-backed store and ledger and the SendGrid sender."""
    database = Database(settings)
    return MaintenanceDaemon(
        settings,
        SqlJobStore(database, settings.jobs_collection),
        ledger=SqlNotificationLedger(database, settings.notifications_collection),
        sender=create_sender(settings),
        database=database,
    )


async def run_cleanup_once(settings: Settings, dry_run: bool = False) -> CleanupResult:
    """Run a single cleanup sweep against the configured store."""
    database = Database(settings)
    try:
        await database.wait_until_ready(settings.store_ready_timeout_s)
        sweep = build_cleanup_sweep(
            settings, SqlJobStore(database, settings.jobs_collection), dry_run=dry_run
        )
        return await sweep.run()
    finally:
        await database.close()


async def run_notify_once(settings: Settings) -> NotifyResult:
    """Run a single failure notification sweep; raises ConfigurationError when disabled."""
    database = Database(settings)
    sender = create_sender(settings)
    try:
        sweep = build_failure_notify_sweep(
            settings,
            SqlJobStore(database, settings.jobs_collection),
            SqlNotificationLedger(database, settings.notifications_collection),
            sender,
        )
        await database.wait_until_ready(settings.store_ready_timeout_s)
        return await sweep.run()
    finally:
        if sender is not None:
            await sender.aclose()
        await database.close()
