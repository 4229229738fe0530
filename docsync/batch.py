"""
Mutation queue and executor.

Individually submitted requests are grouped per document, cut into calls of at
most `batch_size` requests, and submitted with at most `max_concurrency` calls
outstanding. A failed call sends each of its requests back to the queue (one
priority step lower) until the request runs out of retries.
"""

import asyncio
import itertools
import time
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import structlog

from docsync.config import API_MAX_BATCH_SIZE, SyncSettings
from docsync.errors import AuthenticationError, QueueTimeoutError
from docsync.events import EventEmitter
from docsync.models import BatchResult, FailedRequest, MutationRequest, QueueStats, generate_request_id
from docsync.remote.service import DocumentService

logger = structlog.get_logger(__name__)

MAX_CONCURRENCY_LIMIT = 50
PRIORITIZE_BOOST = 100


class RepeatingTimer:
    """
    Calls `callback` every `interval` seconds on the running event loop until stopped.
    The first call happens immediately. Each instance owns its own task.
    """

    def __init__(self, interval: float, callback: Callable[[], Union[None, Awaitable[None]]]):
        self.interval = interval
        self._callback = callback
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        """Starts the timer on the running loop. Returns False if there is no running loop."""
        if self.running:
            return True
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return False
        self._task = loop.create_task(self._run())
        return True

    def cancel(self):
        """Stops the timer. Called from inside the callback, the current tick still runs to completion."""
        if self._task is not None and not self._task.done() and self._task is not _current_task():
            self._task.cancel()
        self._task = None

    async def _run(self):
        task = asyncio.current_task()
        while self._task is task:
            result = self._callback()
            if asyncio.iscoroutine(result):
                await result
            if self._task is not task:
                break
            await asyncio.sleep(self.interval)


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class MutationQueue(EventEmitter):
    def __init__(
        self,
        service: DocumentService,
        max_concurrency: Optional[int] = None,
        batch_size: Optional[int] = None,
        tick_interval: Optional[float] = None,
        poll_interval: Optional[float] = None,
        settings: Optional[SyncSettings] = None,
    ):
        super().__init__()
        if service is None or not service.is_authenticated():
            raise AuthenticationError("Document service must be authenticated")

        self.settings = settings or SyncSettings()
        self.service = service
        self._max_batch_size = min(self.settings.max_batch_size, API_MAX_BATCH_SIZE)
        self.max_concurrency = self._clamp_concurrency(max_concurrency or self.settings.max_concurrency)
        self.batch_size = self._clamp_batch_size(batch_size or self.settings.batch_size)
        self.poll_interval = poll_interval or self.settings.poll_interval

        # Queue partitions. pending entries are (sequence, request); sequence breaks priority ties.
        self._pending: List[tuple] = []
        self._in_flight: Dict[str, MutationRequest] = {}
        self._completed: "OrderedDict[str, BatchResult]" = OrderedDict()
        self._failed: "OrderedDict[str, FailedRequest]" = OrderedDict()

        self._sequence = itertools.count()
        self._active_calls: set = set()
        self._document_locks: Dict[str, asyncio.Lock] = {}
        self._locks_loop: Optional[asyncio.AbstractEventLoop] = None
        self._timer = RepeatingTimer(tick_interval or self.settings.tick_interval, self._tick)

    # --- configuration ---

    def _clamp_concurrency(self, value: int) -> int:
        return max(1, min(value, MAX_CONCURRENCY_LIMIT))

    def _clamp_batch_size(self, value: int) -> int:
        return max(1, min(value, self._max_batch_size))

    def set_max_concurrency(self, value: int):
        self.max_concurrency = self._clamp_concurrency(value)
        logger.info(f"Max concurrency set to {self.max_concurrency}")

    def set_batch_size(self, value: int):
        self.batch_size = self._clamp_batch_size(value)
        logger.info(f"Batch size set to {self.batch_size}")

    def get_config(self) -> Dict[str, Any]:
        return {
            "max_concurrency": self.max_concurrency,
            "batch_size": self.batch_size,
            "is_processing": self.is_processing,
        }

    @property
    def is_processing(self) -> bool:
        return self._timer.running

    # --- submission ---

    def enqueue(self, request: MutationRequest):
        """
        Accepts a request into the pending set and wakes the executor.
        The queue keeps its own copy; later changes to `request` have no effect.
        """
        owned = request.model_copy(deep=True)
        self._push(owned)
        logger.debug(f"Added request {owned.id} to queue", pending=len(self._pending))
        self.emit("request_enqueued", owned)
        self._ensure_running()

    def enqueue_batch(self, requests: List[MutationRequest]):
        for request in requests:
            self.enqueue(request)

    def _push(self, request: MutationRequest):
        self._pending.append((next(self._sequence), request))

    async def execute_batch(
        self, document_id: str, payloads: List[Dict[str, Any]], timeout: Optional[float] = None
    ) -> List[BatchResult]:
        """
        Enqueues every payload for one document and waits until each has completed or failed.
        Results come back in payload order.
        """
        timeout = self.settings.batch_timeout if timeout is None else timeout
        batch_key = generate_request_id()[:8]
        ids = [f"batch-{batch_key}-{i}" for i in range(len(payloads))]

        logger.info(f"Creating batch of {len(payloads)} requests for document {document_id}")
        self.enqueue_batch(
            [
                MutationRequest(
                    id=request_id,
                    document_id=document_id,
                    payload=payload,
                    max_retries=self.settings.default_max_retries,
                )
                for request_id, payload in zip(ids, payloads)
            ]
        )

        deadline = time.monotonic() + timeout
        while not all(i in self._completed or i in self._failed for i in ids):
            if time.monotonic() > deadline:
                raise QueueTimeoutError(f"Batch for document {document_id} did not finish within {timeout}s")
            self._ensure_running()
            await asyncio.sleep(self.poll_interval)

        results = []
        for request_id in ids:
            if request_id in self._completed:
                results.append(self._completed[request_id])
            else:
                failure = self._failed[request_id]
                results.append(BatchResult(success=False, request_id=request_id, error=failure.error))
        return results

    async def wait_for_completion(self, timeout: Optional[float] = None) -> QueueStats:
        """Resolves once nothing is pending or in flight. Raises QueueTimeoutError otherwise."""
        timeout = self.settings.completion_timeout if timeout is None else timeout
        deadline = time.monotonic() + timeout
        while True:
            stats = self.get_stats()
            if stats.pending == 0 and stats.in_flight == 0:
                return stats
            if time.monotonic() > deadline:
                raise QueueTimeoutError("Batch operation timeout")
            self._ensure_running()
            await asyncio.sleep(self.poll_interval)

    # --- pending-set management ---

    def _find_pending(self, request_id: str) -> int:
        for index, (_, request) in enumerate(self._pending):
            if request.id == request_id:
                return index
        return -1

    def cancel(self, request_id: str) -> bool:
        index = self._find_pending(request_id)
        if index < 0:
            return False
        self._pending.pop(index)
        logger.info(f"Cancelled request {request_id}")
        self.emit("request_cancelled", request_id)
        return True

    def prioritize(self, request_id: str) -> bool:
        index = self._find_pending(request_id)
        if index < 0:
            return False
        request = self._pending[index][1]
        request.priority += PRIORITIZE_BOOST
        logger.info(f"Prioritized request {request_id}", priority=request.priority)
        self.emit("request_prioritized", request)
        return True

    def retry_failed(self) -> int:
        failed = list(self._failed.values())
        logger.info(f"Retrying {len(failed)} failed requests")
        self._failed.clear()
        for entry in failed:
            request = entry.request
            request.retry_count = 0
            self._push(request)
            self.emit("request_enqueued", request)
        if failed:
            self._ensure_running()
        return len(failed)

    def clear(self):
        """Drops pending, completed and failed entries. In-flight calls finish on their own."""
        self._pending.clear()
        self._completed.clear()
        self._failed.clear()
        logger.info("Queue cleared")
        self.emit("queue_cleared")

    # --- reporting ---

    def get_stats(self) -> QueueStats:
        completed = len(self._completed)
        failed = len(self._failed)
        return QueueStats(
            pending=len(self._pending),
            in_flight=len(self._in_flight),
            completed=completed,
            failed=failed,
            total_processed=completed + failed,
        )

    def get_failed_requests(self) -> List[FailedRequest]:
        return list(self._failed.values())

    def get_result(self, request_id: str) -> Optional[BatchResult]:
        if request_id in self._completed:
            return self._completed[request_id]
        if request_id in self._failed:
            return BatchResult(success=False, request_id=request_id, error=self._failed[request_id].error)
        return None

    # --- executor ---

    def _ensure_running(self):
        if not self._timer.running and self._timer.start():
            logger.debug("Started batch processing")
            self.emit("processing_started")

    def stop(self):
        """Halts dequeuing. Pending work stays queued; outstanding calls finish normally."""
        was_running = self._timer.running
        self._timer.cancel()
        if was_running:
            logger.debug("Stopped batch processing")
            self.emit("processing_stopped")

    async def close(self):
        self.stop()
        if self._active_calls:
            await asyncio.gather(*self._active_calls, return_exceptions=True)

    def _tick(self):
        if len(self._active_calls) >= self.max_concurrency:
            return

        if not self._pending:
            if not self._in_flight:
                self.stop()
            return

        # Stable sort: priority descending, then insertion order.
        self._pending.sort(key=lambda entry: (-entry[1].priority, entry[0]))

        groups: "OrderedDict[str, List[tuple]]" = OrderedDict()
        for entry in self._pending:
            groups.setdefault(entry[1].document_id, []).append(entry)

        dispatched = set()
        for document_id, entries in groups.items():
            while entries and len(self._active_calls) < self.max_concurrency:
                chunk, entries = entries[: self.batch_size], entries[self.batch_size :]
                batch = [request for _, request in chunk]
                for _, request in chunk:
                    dispatched.add(request.id)
                    self._in_flight[request.id] = request
                self._submit(document_id, batch)
            if len(self._active_calls) >= self.max_concurrency:
                break

        self._pending = [entry for entry in self._pending if entry[1].id not in dispatched]

    def _submit(self, document_id: str, batch: List[MutationRequest]):
        task = asyncio.get_running_loop().create_task(self._run_batch(document_id, batch))
        self._active_calls.add(task)
        task.add_done_callback(self._active_calls.discard)

    async def _run_batch(self, document_id: str, batch: List[MutationRequest]):
        # Calls for one document reach the service in the order they were dequeued.
        loop = asyncio.get_running_loop()
        if self._locks_loop is not loop:
            # Locks belong to the loop they were first awaited on.
            self._document_locks = {}
            self._locks_loop = loop
        lock = self._document_locks.setdefault(document_id, asyncio.Lock())
        try:
            async with lock:
                self.emit("batch_started", {"document_id": document_id, "request_count": len(batch)})
                logger.info(f"Executing batch of {len(batch)} requests for {document_id}")
                started = time.monotonic()
                try:
                    replies = await self.service.batch_update(document_id, [r.payload for r in batch])
                except Exception as e:
                    logger.warning(f"Batch execution failed for {document_id}", error=str(e))
                    self._handle_failure(batch, e)
                    return
        except asyncio.CancelledError:
            # An interrupted call counts as not sent: the requests go back to pending.
            for request in batch:
                self._in_flight.pop(request.id, None)
                self._push(request)
            logger.warning(f"Batch for {document_id} was cancelled, requeued {len(batch)} requests")
            raise

        duration = time.monotonic() - started
        logger.info(f"Batch executed successfully ({duration * 1000:.0f}ms)", document_id=document_id)
        for index, request in enumerate(batch):
            self._in_flight.pop(request.id, None)
            response = replies[index] if replies and index < len(replies) else None
            result = BatchResult(success=True, request_id=request.id, response=response)
            self._completed[request.id] = result
            self.emit("request_completed", result)

        self.emit(
            "batch_completed",
            {"document_id": document_id, "request_count": len(batch), "duration": duration},
        )

    def _handle_failure(self, batch: List[MutationRequest], error: BaseException):
        for request in batch:
            self._in_flight.pop(request.id, None)
            request.retry_count += 1

            if request.retry_count < request.max_retries:
                request.priority -= 1
                self._push(request)
                logger.info(
                    f"Retrying request {request.id} (attempt {request.retry_count + 1}/{request.max_retries})"
                )
                self.emit("request_retry", request)
            else:
                self._failed[request.id] = FailedRequest(request=request, error=error)
                logger.error(f"Request {request.id} failed after {request.retry_count} retries", error=str(error))
                self.emit(
                    "request_failed",
                    {"request_id": request.id, "error": error, "retries": request.retry_count},
                )
