import os
from collections.abc import AsyncGenerator
from datetime import UTC, datetime

import pytest

from janitor.config.settings import Settings
from janitor.infra.database import Database
from janitor.infra.jobs.models import JobFilter, JobRecord, JobType, job_table
from janitor.infra.notifications.models import (
    DeliveryResult,
    NotificationKey,
    NotificationRecord,
    notification_table,
)

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


class InMemoryJobStore:
    """JobStoreClient keeping records in a dict, with injectable failures."""

    def __init__(self, jobs: list[JobRecord] | None = None):
        self.jobs: dict[str, JobRecord] = {job.id: job for job in jobs or []}
        self.cancelled: list[str] = []
        self.find_calls: list[JobFilter] = []
        self.find_errors: list[Exception] = []
        self.cancel_errors: list[Exception] = []

    def put(self, job: JobRecord) -> None:
        self.jobs[job.id] = job

    async def find(self, job_filter: JobFilter) -> list[JobRecord]:
        self.find_calls.append(job_filter)
        if self.find_errors:
            raise self.find_errors.pop(0)

        jobs = list(self.jobs.values())
        if job_filter == JobFilter.NORMAL:
            return [job for job in jobs if job.type == JobType.NORMAL.value]
        if job_filter == JobFilter.FAILED:
            return [job for job in jobs if job.is_failed]
        return jobs

    async def cancel(self, job_id: str) -> int:
        if self.cancel_errors:
            raise self.cancel_errors.pop(0)

        self.cancelled.append(job_id)
        return 1 if self.jobs.pop(job_id, None) is not None else 0


class InMemoryNotificationLedger:
    """NotificationLedger keeping records in a dict, with injectable failures."""

    def __init__(self):
        self.records: dict[NotificationKey, NotificationRecord] = {}
        self.lookups = 0
        self.writes = 0
        self.lookup_errors: list[Exception] = []

    async def find_one(self, key: NotificationKey) -> NotificationRecord | None:
        self.lookups += 1
        if self.lookup_errors:
            raise self.lookup_errors.pop(0)
        return self.records.get(key)

    async def replace(
        self, key: NotificationKey, record: NotificationRecord, upsert: bool = True
    ) -> None:
        self.writes += 1
        if key in self.records or upsert:
            self.records[key] = record


class RecordingSender:
    """NotificationSender that records every attempt."""

    def __init__(self, failing: set[str] | None = None, raising: set[str] | None = None):
        self.failing = failing or set()
        self.raising = raising or set()
        self.sent: list[tuple[str, str, str]] = []

    async def send(self, recipient: str, subject: str, body: str) -> DeliveryResult:
        self.sent.append((recipient, subject, body))
        if recipient in self.raising:
            raise ConnectionError(f"connection to mail API lost for {recipient}")
        if recipient in self.failing:
            return DeliveryResult.failure("mailbox unavailable")
        return DeliveryResult.success()

    @property
    def recipients(self) -> list[str]:
        return [recipient for recipient, _, _ in self.sent]


def failed_job(job_id: str, failed_at, name: str = "send-report", **kwargs) -> JobRecord:
    return JobRecord(
        id=job_id,
        name=name,
        last_finished_at=failed_at,
        failed_at=failed_at,
        fail_reason=kwargs.pop("fail_reason", "boom"),
        **kwargs,
    )


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
def ledger() -> InMemoryNotificationLedger:
    return InMemoryNotificationLedger()


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
async def database() -> AsyncGenerator[Database, None]:
    """PostgreSQL-backed database with fresh job and ledger tables."""
    database_url = os.getenv("DATABASE_URL")

    if not database_url or "postgresql" not in database_url:
        pytest.skip("No PostgreSQL database available for testing")

    db = Database(Settings(database_url=database_url))
    job_table(db.settings.jobs_collection, db.metadata)
    notification_table(db.settings.notifications_collection, db.metadata)
    async with db.engine.begin() as conn:
        await conn.run_sync(db.metadata.drop_all)
        await conn.run_sync(db.metadata.create_all)

    yield db

    async with db.engine.begin() as conn:
        await conn.run_sync(db.metadata.drop_all)
    await db.close()
