"""
Job store access used by the maintenance sweeps.
"""

from typing import Protocol

from sqlalchemy import Select, and_, delete, select

from janitor.config.logging import get_logger
from janitor.infra.database import Database
from janitor.infra.jobs.models import JobFilter, JobRecord, JobType, job_table

logger = get_logger(__name__)


class JobStoreClient(Protocol):
    """Queryable, mutable collection of job records."""

    async def find(self, job_filter: JobFilter) -> list[JobRecord]: ...

    async def cancel(self, job_id: str) -> int: ...


class SqlJobStore:
    """JobStoreClient backed by the execution engine's job table."""

    def __init__(self, database: Database, table_name: str):
        self.database = database
        self.table = job_table(table_name, database.metadata)

    def select_jobs(self, job_filter: JobFilter) -> Select:
        jobs = self.table.c
        query = select(self.table)

        if job_filter == JobFilter.NORMAL:
            query = query.where(jobs["type"] == JobType.NORMAL.value)
        elif job_filter == JobFilter.FAILED:
            query = query.where(
                and_(
                    jobs.lastFinishedAt.is_not(None),
                    jobs.failedAt.is_not(None),
                    jobs.lastFinishedAt == jobs.failedAt,
                )
            )

        return query.order_by(jobs["_id"])

    async def find(self, job_filter: JobFilter) -> list[JobRecord]:
        async with self.database.SessionLocal() as session:
            result = await session.execute(self.select_jobs(job_filter))
            return [JobRecord.from_row(row) for row in result.mappings().all()]

    async def cancel(self, job_id: str) -> int:
        """Remove a job record; returns the number of rows deleted."""
        async with self.database.SessionLocal() as session:
            result = await session.execute(
                delete(self.table).where(self.table.c["_id"] == job_id)
            )
            await session.commit()

        if result.rowcount == 0:
            logger.debug("job.cancel_missing", job_id=job_id, table=self.table.name)
        return result.rowcount
