"""
Audit Recorder: persists audit entries off the request path.

Entries are sharded by ``(entity_type, entity_id)`` onto bounded asyncio
queues, one worker per queue, so entries for the same entity are written in
the order they were submitted. Ordering across entities is not guaranteed.

Backpressure: when a shard queue is full the entry is dropped with a warning
(or, with a non-zero enqueue timeout, after waiting that long). A write that
keeps failing is retried with exponential backoff, then reported to the
alert sink and dropped; it never fails the request that produced it.
"""

import asyncio
import logging
import zlib
from typing import Awaitable, Callable, List, Optional

from app.core.audit import AuditLogEntry, AuditLogRepository
from app.core.config import settings
from app.core.exceptions import AuditWriteFailure
from app.core.metrics import audit_entries_dropped_total, audit_entries_written_total, audit_write_retries_total

logger = logging.getLogger("wfm.audit")

_STOP = object()


class AlertSink:
    """Operational alert channel for audit entries that could not be persisted."""

    def __init__(self):
        self.logger = logging.getLogger("wfm.audit.alerts")

    async def alert(self, failure: AuditWriteFailure, entry: AuditLogEntry) -> None:
        self.logger.critical(
            f"Audit entry dropped: {failure}",
            extra={
                "log_id": entry.log_id,
                "tenant_id": entry.tenant_id,
                "actor_ref": entry.actor_ref,
                "entity": entry.shard_key,
                "action": entry.action.value,
                "attempts": failure.attempts,
            },
        )


class AuditRecorder:
    def __init__(
        self,
        repository: AuditLogRepository,
        *,
        worker_count: int = settings.AUDIT_WORKER_COUNT,
        queue_max_size: int = settings.AUDIT_QUEUE_MAX_SIZE,
        enqueue_timeout: float = settings.AUDIT_ENQUEUE_TIMEOUT_SECONDS,
        max_retries: int = settings.AUDIT_MAX_RETRIES,
        retry_backoff: float = settings.AUDIT_RETRY_BACKOFF_SECONDS,
        alert_sink: Optional[AlertSink] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._repository = repository
        self._worker_count = max(1, worker_count)
        self._queue_max_size = max(1, queue_max_size // self._worker_count)
        self._enqueue_timeout = enqueue_timeout
        self._max_retries = max_retries
        self._retry_backoff = retry_backoff
        self._alert_sink = alert_sink or AlertSink()
        self._sleep = sleep
        self._queues: List[asyncio.Queue] = []
        self._workers: List[asyncio.Task] = []
        self._accepting = False

    @property
    def running(self) -> bool:
        return bool(self._workers)

    @property
    def pending(self) -> int:
        return sum(q.qsize() for q in self._queues)

    async def start(self) -> None:
        if self._workers:
            return
        self._queues = [asyncio.Queue(maxsize=self._queue_max_size) for _ in range(self._worker_count)]
        self._workers = [
            asyncio.create_task(self._worker(queue), name=f"audit-writer-{i}")
            for i, queue in enumerate(self._queues)
        ]
        self._accepting = True
        logger.info(
            f"Audit recorder started: {self._worker_count} workers, "
            f"{self._queue_max_size} entries per queue"
        )

    async def stop(self, drain: bool = True, timeout: Optional[float] = 30.0) -> None:
        """
        Stop accepting entries and shut the workers down.

        Args:
            drain: Persist everything already queued before returning
            timeout: Upper bound on the drain; workers still busy afterwards are cancelled
        """
        if not self._workers:
            return
        self._accepting = False

        if drain:
            for queue in self._queues:
                await queue.put(_STOP)
            _, still_running = await asyncio.wait(self._workers, timeout=timeout)
            if still_running:
                logger.warning(f"Audit drain timed out; cancelling {len(still_running)} workers")
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)

        abandoned = 0
        for queue in self._queues:
            while not queue.empty():
                if queue.get_nowait() is not _STOP:
                    abandoned += 1
        if abandoned:
            audit_entries_dropped_total.labels(reason="shutdown").inc(abandoned)
            logger.error(f"{abandoned} audit entries were not persisted before shutdown")

        self._workers = []
        self._queues = []
        logger.info("Audit recorder stopped")

    async def record(self, entry: AuditLogEntry) -> bool:
        """
        Hand an entry to its shard queue.

        Returns:
            True if queued, False if dropped (recorder stopped or queue full)
        """
        if not self._accepting:
            audit_entries_dropped_total.labels(reason="not_running").inc()
            logger.warning(f"Audit recorder not running, dropping {entry.log_id}")
            return False

        queue = self._queues[zlib.crc32(entry.shard_key.encode()) % self._worker_count]
        try:
            if self._enqueue_timeout > 0:
                await asyncio.wait_for(queue.put(entry), timeout=self._enqueue_timeout)
            else:
                queue.put_nowait(entry)
        except (asyncio.QueueFull, asyncio.TimeoutError):
            audit_entries_dropped_total.labels(reason="queue_full").inc()
            logger.warning(f"Audit queue full, dropping {entry.log_id} ({entry.shard_key} {entry.action.value})")
            return False
        return True

    async def flush(self) -> None:
        """Wait until every entry queued so far has been persisted or dropped."""
        await asyncio.gather(*(queue.join() for queue in self._queues))

    async def _worker(self, queue: asyncio.Queue) -> None:
        while True:
            item = await queue.get()
            try:
                if item is _STOP:
                    return
                await self._persist(item)
            finally:
                queue.task_done()

    async def _persist(self, entry: AuditLogEntry) -> None:
        attempt = 0
        while True:
            attempt += 1
            try:
                await self._repository.append(entry)
                audit_entries_written_total.inc()
                return
            except Exception as e:
                if attempt > self._max_retries:
                    await self._drop(AuditWriteFailure(entry.log_id, attempt, e), entry)
                    return
                delay = self._retry_backoff * (2 ** (attempt - 1))
                audit_write_retries_total.inc()
                logger.warning(
                    f"Audit write failed for {entry.log_id} (attempt {attempt}), retrying in {delay:.2f}s: {e}"
                )
                await self._sleep(delay)

    async def _drop(self, failure: AuditWriteFailure, entry: AuditLogEntry) -> None:
        audit_entries_dropped_total.labels(reason="write_failed").inc()
        try:
            await self._alert_sink.alert(failure, entry)
        except Exception as e:
            logger.critical(f"Alert sink failed while reporting {failure}: {e}")
