"""
Failure notifications with at-most-once delivery per failure occurrence.

A failure is identified by the job id together with its ``failedAt``
timestamp. A job that fails again later has a new ``failedAt`` and is
reported again. If the execution engine ever reused the same ``failedAt`` for
a second failure without an intervening success, that second failure would be
suppressed.
"""

import json
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime

from janitor.config.logging import get_logger
from janitor.core.exceptions import ConfigurationError, MalformedTimestampError
from janitor.infra.jobs.models import JobFilter, JobRecord
from janitor.infra.jobs.store import JobStoreClient
from janitor.infra.notifications.ledger import NotificationLedger
from janitor.infra.notifications.models import (
    DeliveryResult,
    NotificationKey,
    NotificationRecord,
)
from janitor.infra.notifications.sender import NotificationSender
from janitor.maintenance.timestamps import parse_timestamp, utc_now

logger = get_logger(__name__)


@dataclass(frozen=True)
class NotifyResult:
    scanned: int
    notified: int
    already_notified: int
    delivery_failures: int
    skipped_malformed: int
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class FailureNotifySweep:
    """Reports newly failed jobs to a fixed list of recipients."""

    def __init__(
        self,
        store: JobStoreClient,
        ledger: NotificationLedger,
        sender: NotificationSender,
        recipients: Sequence[str],
        *,
        environment: str | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        recipients = tuple(r for r in recipients if r)
        if not recipients:
            raise ConfigurationError("No notification recipients configured")

        self.store = store
        self.ledger = ledger
        self.sender = sender
        self.recipients = recipients
        self.environment = environment
        self.clock = clock

    def compose(self, job: JobRecord, failed_at: datetime) -> tuple[str, str]:
        """Build the subject and body sent for one failure."""
        prefix = f"[{self.environment}] " if self.environment else ""
        subject = f"{prefix}Job failed: {job.name} at {failed_at.isoformat()}"

        snapshot = json.dumps(job.to_snapshot(), indent=2, sort_keys=True, default=str)
        body = (
            f"Job \"{job.name}\" ({job.id}) failed at {failed_at.isoformat()}.\n"
            f"Reason: {job.fail_reason or 'unknown'}\n\n"
            f"Job record:\n{snapshot}\n"
        )
        return subject, body

    async def _deliver(self, job: JobRecord, subject: str, body: str) -> int:
        """Send to every recipient; returns how many deliveries failed."""
        failures = 0

        for recipient in self.recipients:
            try:
                result = await self.sender.send(recipient, subject, body)
            except Exception as e:
                result = DeliveryResult.failure(f"{e.__class__.__name__}: {e}")

            if not result.ok:
                failures += 1
                logger.error(
                    "failure_notify.delivery_failed",
                    job_id=job.id,
                    recipient=recipient,
                    reason=result.reason,
                )

        return failures

    async def run(self) -> NotifyResult:
        """
        Run one notification pass over all currently failed jobs.

        Store or ledger errors abort the pass; the next pass scans every
        failed job again, so nothing is lost.
        """
        scanned = 0
        notified = 0
        already_notified = 0
        delivery_failures = 0
        skipped = 0

        try:
            failed_jobs = await self.store.find(JobFilter.FAILED)

            for job in failed_jobs:
                scanned += 1

                try:
                    failed_at = parse_timestamp(job.failed_at, "failedAt")
                except MalformedTimestampError as e:
                    skipped += 1
                    logger.warning(
                        "failure_notify.invalid_failed_at",
                        job_id=job.id,
                        job_name=job.name,
                        value=e.details["value"],
                    )
                    continue

                key = NotificationKey(job_id=job.id, failed_at=failed_at)
                if await self.ledger.find_one(key) is not None:
                    already_notified += 1
                    continue

                subject, body = self.compose(job, failed_at)
                delivery_failures += await self._deliver(job, subject, body)

                # Recorded even when every delivery failed, so a failure is
                # never announced twice
                await self.ledger.replace(
                    key,
                    NotificationRecord(
                        key=key,
                        job_name=job.name,
                        recipients=self.recipients,
                        subject=subject,
                        body=body,
                        created_at=self.clock(),
                    ),
                    upsert=True,
                )
                notified += 1
                logger.info(
                    "failure_notify.job_notified",
                    job_id=job.id,
                    job_name=job.name,
                    failed_at=failed_at.isoformat(),
                )
        except Exception as e:
            logger.exception(
                "failure_notify.failed", scanned=scanned, notified=notified, error=str(e)
            )
            return NotifyResult(
                scanned, notified, already_notified, delivery_failures, skipped, error=str(e)
            )

        logger.info(
            "failure_notify.completed",
            scanned=scanned,
            notified=notified,
            already_notified=already_notified,
            delivery_failures=delivery_failures,
            skipped_malformed=skipped,
        )
        return NotifyResult(scanned, notified, already_notified, delivery_failures, skipped)
