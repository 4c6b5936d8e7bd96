"""
Bounded asynchronous write queue for fire-and-forget event ingestion
"""

from typing import Awaitable, Callable, List, Optional
import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import StorageError
from app.core.metrics import INGEST_FAILURES, INGEST_QUEUE_DEPTH
from app.models.analytics import AnalyticsEvent

logger = logging.getLogger(__name__)

EventWriter = Callable[[AnalyticsEvent], Awaitable[None]]


def session_writer(service, session_factory: async_sessionmaker) -> EventWriter:
    """
    Writer that stores each event in a fresh session. A detached copy is
    written on every attempt so a rolled-back try leaves no state behind.
    """
    async def write(event: AnalyticsEvent) -> None:
        session: AsyncSession
        async with session_factory() as session:
            await service.persist(session, event.detached_copy())

    return write


class EventWriteQueue:
    """
    Decouples ingestion latency from the database round-trip.

    Delivery is at-least-once: failed writes are retried with exponential
    backoff, and exhausted retries are logged with the full event. When the
    queue is full the event is written inline instead of being dropped.
    """

    def __init__(
        self,
        writer: EventWriter,
        maxsize: int = 10000,
        workers: int = 2,
        max_retries: int = 3,
        backoff_seconds: float = 0.2,
    ):
        self.writer = writer
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.worker_count = max(1, workers)
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self._workers: List[asyncio.Task] = []
        self.is_running = False

    async def start(self):
        """Start the worker tasks"""
        if self.is_running:
            return
        self.is_running = True
        self._workers = [
            asyncio.create_task(self._worker(n), name=f"analytics-writer-{n}")
            for n in range(self.worker_count)
        ]
        logger.info(f"Event write queue started with {self.worker_count} workers")

    async def stop(self, timeout: Optional[float] = 30.0):
        """Drain pending events, then stop the workers"""
        if not self.is_running:
            return
        self.is_running = False
        try:
            await asyncio.wait_for(self.queue.join(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error(
                f"Event write queue stopped with {self.queue.qsize()} events still pending"
            )

        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Event write queue stopped")

    async def submit(self, event: AnalyticsEvent) -> None:
        """
        Hand an event over for storage. Returns once it is queued, or once
        it has been written when the queue cannot take it.
        """
        if not self.is_running:
            await self._write_with_retry(event)
            return

        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("Event write queue full, writing inline")
            await self._write_with_retry(event)
            return
        INGEST_QUEUE_DEPTH.set(self.queue.qsize())

    async def _worker(self, number: int):
        while True:
            event = await self.queue.get()
            try:
                await self._write_with_retry(event)
            except StorageError:
                # Already logged with the event payload
                pass
            except Exception:
                logger.exception(f"Writer {number} failed on {event.event_type} event")
            finally:
                self.queue.task_done()
                INGEST_QUEUE_DEPTH.set(self.queue.qsize())

    async def _write_with_retry(self, event: AnalyticsEvent) -> None:
        for attempt in range(self.max_retries + 1):
            try:
                await self.writer(event)
                return
            except Exception as e:
                if attempt == self.max_retries:
                    INGEST_FAILURES.labels(stage="queue").inc()
                    logger.error(
                        f"Giving up on {event.event_type} event after {attempt + 1} attempts: {type(e).__name__}",
                        extra={"context": {"event": event.to_dict()}}
                    )
                    if isinstance(e, StorageError):
                        raise
                    raise StorageError() from e
                delay = self.backoff_seconds * (2 ** attempt)
                logger.warning(
                    f"Write attempt {attempt + 1} for {event.event_type} event failed, retrying in {delay:.2f}s"
                )
                await asyncio.sleep(delay)
