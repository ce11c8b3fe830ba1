"""
Job records as written by the job execution engine.

The janitor never creates jobs; it only reads them and deletes expired ones.
The table name is configurable, so tables are built per name on the
database's metadata rather than declared once at import time.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, TIMESTAMP, Column, Integer, MetaData, Table, Text


class JobType(str, Enum):
    """Job type tags used by the execution engine."""

    NORMAL = "normal"
    SINGLE = "single"


class JobFilter(str, Enum):
    """Predicates the job store knows how to evaluate."""

    ALL = "all"
    NORMAL = "normal"
    FAILED = "failed"


def job_table(name: str, metadata: MetaData) -> Table:
    """Job table shared with the execution engine, registered under ``name``."""
    if name in metadata.tables:
        return metadata.tables[name]

    return Table(
        name,
        metadata,
        Column("_id", Text, primary_key=True),
        Column("name", Text, nullable=False),
        Column(
            "type", Text, nullable=False, default=JobType.NORMAL.value, comment="normal|single"
        ),
        Column("data", JSON, nullable=True),
        Column("priority", Integer, nullable=False, default=0),
        Column("failCount", Integer, nullable=True),
        Column("failReason", Text, nullable=True),
        Column("nextRunAt", TIMESTAMP(timezone=True), nullable=True),
        Column("lastRunAt", TIMESTAMP(timezone=True), nullable=True),
        Column("lastFinishedAt", TIMESTAMP(timezone=True), nullable=True),
        Column("failedAt", TIMESTAMP(timezone=True), nullable=True),
    )


@dataclass(frozen=True)
class JobRecord:
    """
    Read-only view of a job.

    Timestamps are kept as the store returned them; they are parsed by the
    sweeps so that one malformed record cannot break a whole run.
    """

    id: str
    name: str
    type: str = JobType.NORMAL.value
    last_finished_at: Any = None
    failed_at: Any = None
    data: dict[str, Any] | None = None
    priority: int = 0
    fail_count: int | None = None
    fail_reason: str | None = None
    last_run_at: Any = None
    next_run_at: Any = None

    @property
    def is_failed(self) -> bool:
        """A job failed when its last finish is also its failure."""
        return (
            self.last_finished_at is not None
            and self.failed_at is not None
            and self.last_finished_at == self.failed_at
        )

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "JobRecord":
        return cls(
            id=row["_id"],
            name=row["name"],
            type=row["type"],
            last_finished_at=row["lastFinishedAt"],
            failed_at=row["failedAt"],
            data=row["data"],
            priority=row["priority"],
            fail_count=row["failCount"],
            fail_reason=row["failReason"],
            last_run_at=row["lastRunAt"],
            next_run_at=row["nextRunAt"],
        )

    def to_snapshot(self) -> dict[str, Any]:
        """JSON-friendly dump of the record for diagnostics."""
        return {
            "_id": self.id,
            "name": self.name,
            "type": self.type,
            "data": self.data,
            "priority": self.priority,
            "failCount": self.fail_count,
            "failReason": self.fail_reason,
            "lastRunAt": _isoformat(self.last_run_at),
            "lastFinishedAt": _isoformat(self.last_finished_at),
            "failedAt": _isoformat(self.failed_at),
            "nextRunAt": _isoformat(self.next_run_at),
        }


def _isoformat(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value
