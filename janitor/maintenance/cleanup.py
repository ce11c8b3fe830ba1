"""
Deletes jobs whose last execution finished longer ago than the expiration policy.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from janitor.config.logging import get_logger
from janitor.core.exceptions import MalformedTimestampError
from janitor.infra.jobs.models import JobFilter
from janitor.infra.jobs.store import JobStoreClient
from janitor.maintenance.timestamps import ExpirationPolicy, parse_timestamp, utc_now

logger = get_logger(__name__)


@dataclass(frozen=True)
class CleanupResult:
    scanned: int
    deleted: int
    skipped_malformed: int
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class CleanupSweep:
    """Removes stale job records from the job store."""

    def __init__(
        self,
        store: JobStoreClient,
        policy: ExpirationPolicy,
        *,
        normal_only: bool = True,
        dry_run: bool = False,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.policy = policy
        self.normal_only = normal_only
        self.dry_run = dry_run
        self.clock = clock

    async def run(self) -> CleanupResult:
        """
        Run one cleanup pass.

        Failures abort the current pass only; they are logged and reported on
        the returned result, never raised.
        """
        scanned = 0
        deleted = 0
        skipped = 0
        now = self.clock()
        threshold = self.policy.threshold(now)

        logger.info(
            "cleanup.started",
            threshold=threshold.isoformat(),
            dry_run=self.dry_run,
        )

        try:
            jobs = await self.store.find(
                JobFilter.NORMAL if self.normal_only else JobFilter.ALL
            )

            for job in jobs:
                scanned += 1

                # Pending or running jobs have not finished yet
                if job.last_finished_at is None:
                    continue

                try:
                    finished_at = parse_timestamp(job.last_finished_at, "lastFinishedAt")
                except MalformedTimestampError as e:
                    skipped += 1
                    logger.warning(
                        "cleanup.invalid_last_finished_at",
                        job_id=job.id,
                        job_name=job.name,
                        value=e.details["value"],
                    )
                    continue

                if not self.policy.is_expired(finished_at, now):
                    continue

                if not self.dry_run:
                    await self.store.cancel(job.id)
                deleted += 1
                logger.info(
                    "cleanup.job_deleted",
                    job_id=job.id,
                    job_name=job.name,
                    last_finished_at=finished_at.isoformat(),
                    dry_run=self.dry_run,
                )
        except Exception as e:
            logger.exception(
                "cleanup.failed", scanned=scanned, deleted=deleted, error=str(e)
            )
            return CleanupResult(scanned, deleted, skipped, error=str(e))

        logger.info(
            "cleanup.completed",
            scanned=scanned,
            deleted=deleted,
            skipped_malformed=skipped,
            dry_run=self.dry_run,
        )
        return CleanupResult(scanned, deleted, skipped)
