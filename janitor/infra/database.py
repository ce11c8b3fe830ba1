import asyncio
import time

from sqlalchemy import MetaData, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from janitor.config.logging import get_logger
from janitor.config.settings import Settings
from janitor.core.exceptions import StoreNotReadyError
from janitor.infra.notifications.models import notification_table

logger = get_logger(__name__)


class Database:
    """Database connection, session management and the table registry."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.metadata = MetaData()
        self.engine = create_async_engine(
            settings.database_url,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_timeout=settings.db_pool_timeout,
            pool_recycle=settings.db_pool_recycle,
            echo=settings.debug,
        )
        self.SessionLocal = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    async def ping(self) -> float:
        """Run a trivial query and return its round trip in milliseconds."""
        start = time.perf_counter()
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return (time.perf_counter() - start) * 1000

    async def wait_until_ready(
        self,
        timeout_s: float,
        poll_s: float = 1.0,
        stop: asyncio.Event | None = None,
    ) -> bool:
        """
        Block until the store answers a ping or ``timeout_s`` elapses.

        Returns False without raising when ``stop`` is set while waiting.
        """
        stop = stop or asyncio.Event()
        deadline = time.monotonic() + timeout_s
        while not stop.is_set():
            try:
                response_time_ms = await self.ping()
            except Exception as e:
                if time.monotonic() >= deadline:
                    raise StoreNotReadyError(
                        "Job store is not reachable",
                        details={"timeout_s": timeout_s, "error": str(e)},
                    ) from e
                logger.warning("store.not_ready", error=str(e))
                try:
                    await asyncio.wait_for(stop.wait(), timeout=poll_s)
                except TimeoutError:
                    pass
            else:
                logger.info("store.ready", response_time_ms=round(response_time_ms, 2))
                return True

        logger.info("store.wait_cancelled")
        return False

    async def create_ledger_table(self, table_name: str) -> None:
        """Create the notification ledger table if it does not exist."""
        table = notification_table(table_name, self.metadata)
        async with self.engine.begin() as conn:
            await conn.run_sync(self.metadata.create_all, tables=[table])

    async def close(self):
        """Close database connections."""
        await self.engine.dispose()
