from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, TIMESTAMP, Column, MetaData, Table, Text, func


@dataclass(frozen=True)
class NotificationKey:
    """Identity of one failure occurrence: a job id and its failure time."""

    job_id: str
    failed_at: datetime


@dataclass(frozen=True)
class NotificationRecord:
    """Payload sent for a failure, kept for audit and deduplication."""

    key: NotificationKey
    job_name: str
    recipients: tuple[str, ...]
    subject: str
    body: str
    created_at: datetime


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of delivering one message to one recipient."""

    ok: bool
    reason: str | None = None

    @classmethod
    def success(cls) -> "DeliveryResult":
        return cls(ok=True)

    @classmethod
    def failure(cls, reason: str) -> "DeliveryResult":
        return cls(ok=False, reason=reason)


def notification_table(name: str, metadata: MetaData) -> Table:
    """Ledger table, one row per failure already reported, registered under ``name``."""
    if name in metadata.tables:
        return metadata.tables[name]

    return Table(
        name,
        metadata,
        Column("job_id", Text, primary_key=True),
        Column("failed_at", TIMESTAMP(timezone=True), primary_key=True),
        Column("job_name", Text, nullable=False),
        Column("recipients", JSON, nullable=False, default=list),
        Column("subject", Text, nullable=False),
        Column("body", Text, nullable=False),
        Column(
            "created_at",
            TIMESTAMP(timezone=True),
            nullable=False,
            server_default=func.now(),
            default=lambda: datetime.now(UTC),
        ),
    )


def record_from_row(row: Mapping[str, Any]) -> NotificationRecord:
    return NotificationRecord(
        key=NotificationKey(job_id=row["job_id"], failed_at=row["failed_at"]),
        job_name=row["job_name"],
        recipients=tuple(row["recipients"] or ()),
        subject=row["subject"],
        body=row["body"],
        created_at=row["created_at"],
    )
