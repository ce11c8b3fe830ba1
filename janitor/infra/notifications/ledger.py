"""
Durable record of failures already reported to operators.
"""

from typing import Protocol

from sqlalchemy import and_, select, update
from sqlalchemy.dialects.postgresql import insert

from janitor.infra.database import Database
from janitor.infra.notifications.models import (
    NotificationKey,
    NotificationRecord,
    notification_table,
    record_from_row,
)


class NotificationLedger(Protocol):
    """Keyed collection of sent failure notifications."""

    async def find_one(self, key: NotificationKey) -> NotificationRecord | None: ...

    async def replace(
        self, key: NotificationKey, record: NotificationRecord, upsert: bool = True
    ) -> None: ...


class SqlNotificationLedger:
    """NotificationLedger stored in a PostgreSQL table keyed by (job_id, failed_at)."""

    def __init__(self, database: Database, table_name: str):
        self.database = database
        self.table = notification_table(table_name, database.metadata)

    async def find_one(self, key: NotificationKey) -> NotificationRecord | None:
        async with self.database.SessionLocal() as session:
            result = await session.execute(
                select(self.table).where(self._matches(key))
            )
            row = result.mappings().one_or_none()
        return record_from_row(row) if row else None

    async def replace(
        self, key: NotificationKey, record: NotificationRecord, upsert: bool = True
    ) -> None:
        """
        Overwrite the record stored under ``key``.

        With ``upsert`` the record is inserted when missing; otherwise a
        missing key is left alone.
        """
        values = {
            "job_name": record.job_name,
            "recipients": list(record.recipients),
            "subject": record.subject,
            "body": record.body,
            "created_at": record.created_at,
        }

        if upsert:
            statement = (
                insert(self.table)
                .values(job_id=key.job_id, failed_at=key.failed_at, **values)
                .on_conflict_do_update(
                    index_elements=[self.table.c.job_id, self.table.c.failed_at],
                    set_=values,
                )
            )
        else:
            statement = update(self.table).where(self._matches(key)).values(**values)

        async with self.database.SessionLocal() as session:
            await session.execute(statement)
            await session.commit()

    def _matches(self, key: NotificationKey):
        return and_(
            self.table.c.job_id == key.job_id,
            self.table.c.failed_at == key.failed_at,
        )
