"""
Tests for docsync.batch: the mutation queue and executor.

Run: pytest test_batch.py
"""

import asyncio

import pytest

from docsync.batch import MutationQueue, RepeatingTimer
from docsync.errors import AuthenticationError, QueueTimeoutError, RemoteServiceError
from docsync.models import MutationRequest
from docsync.remote.service import DocumentService

FAST = dict(tick_interval=0.01, poll_interval=0.01)


class RecordingService(DocumentService):
    """Records every call; fails while `failing` is set, and always for `failing_documents`."""

    def __init__(self, failing=False, latency=0.0, authenticated=True, failing_documents=()):
        self.failing = failing
        self.failing_documents = set(failing_documents)
        self.latency = latency
        self.authenticated = authenticated
        self.calls = []
        self.active = {}
        self.max_active = {}

    def is_authenticated(self):
        return self.authenticated

    async def batch_update(self, document_id, requests):
        self.active[document_id] = self.active.get(document_id, 0) + 1
        self.max_active[document_id] = max(self.max_active.get(document_id, 0), self.active[document_id])
        try:
            if self.latency:
                await asyncio.sleep(self.latency)
            self.calls.append((document_id, [r["tag"] for r in requests]))
            if self.failing or document_id in self.failing_documents:
                raise RemoteServiceError("Internal error", status=500, kind="server_error")
            return [{"tag": r["tag"]} for r in requests]
        finally:
            self.active[document_id] -= 1

    async def get_document(self, document_id):
        return {"documentId": document_id, "body": {"content": []}}


def _request(tag, document_id="doc-1", **kwargs):
    return MutationRequest(id=tag, document_id=document_id, payload={"tag": tag}, **kwargs)


def test_unauthenticated_service_is_rejected():
    with pytest.raises(AuthenticationError):
        MutationQueue(RecordingService(authenticated=False))


def test_limits_are_clamped():
    queue = MutationQueue(RecordingService(), max_concurrency=100, batch_size=1000)
    assert queue.max_concurrency == 50
    assert queue.batch_size == 500

    queue.set_batch_size(0)
    queue.set_max_concurrency(-3)
    assert queue.get_config() == {"max_concurrency": 1, "batch_size": 1, "is_processing": False}


def test_enqueue_takes_a_private_copy():
    queue = MutationQueue(RecordingService(), **FAST)
    request = _request("a")
    queue.enqueue(request)
    request.priority = 999
    request.payload["tag"] = "changed"

    queued = queue._pending[0][1]
    assert queued.priority == 0
    assert queued.payload == {"tag": "a"}


def test_all_requests_complete():
    service = RecordingService()
    queue = MutationQueue(service, batch_size=2, **FAST)
    completed = []
    queue.on("request_completed", completed.append)

    async def scenario():
        for tag in "abcde":
            queue.enqueue(_request(tag))
        return await queue.wait_for_completion(timeout=5)

    stats = asyncio.run(scenario())
    assert stats.pending == 0 and stats.in_flight == 0
    assert stats.completed == 5
    assert stats.total_processed == 5
    assert len(completed) == 5
    assert all(len(tags) <= 2 for _, tags in service.calls)
    assert queue.get_result("c").response == {"tag": "c"}


def test_exhausted_retries_end_in_failed_set():
    """With an always-failing service every request is tried max_retries times, then fails."""
    service = RecordingService(failing=True)
    queue = MutationQueue(service, max_concurrency=1, batch_size=1, **FAST)
    failures = []
    retries = []
    queue.on("request_failed", failures.append)
    queue.on("request_retry", retries.append)

    async def scenario():
        for tag in ("a", "b", "c"):
            queue.enqueue(_request(tag, max_retries=3))
        return await queue.wait_for_completion(timeout=5)

    stats = asyncio.run(scenario())
    assert stats.failed == 3
    assert stats.completed == 0
    assert len(service.calls) == 9
    assert len(retries) == 6
    assert len(failures) == 3
    for entry in queue.get_failed_requests():
        assert entry.request.retry_count == entry.request.max_retries == 3
        assert isinstance(entry.error, RemoteServiceError)
        assert entry.error.transient


def test_retry_failed_after_service_recovers():
    service = RecordingService(failing=True)
    queue = MutationQueue(service, max_concurrency=1, batch_size=1, **FAST)

    async def scenario():
        queue.enqueue(_request("a", max_retries=1))
        queue.enqueue(_request("b", max_retries=1))
        await queue.wait_for_completion(timeout=5)
        assert queue.get_stats().failed == 2

        service.failing = False
        assert queue.retry_failed() == 2
        return await queue.wait_for_completion(timeout=5)

    stats = asyncio.run(scenario())
    assert stats.failed == 0
    assert stats.completed == 2
    assert queue.get_result("a").success


def test_priority_then_insertion_order():
    service = RecordingService()
    queue = MutationQueue(service, max_concurrency=1, batch_size=1, **FAST)

    # No running loop yet: requests stay pending until the queue is awaited.
    queue.enqueue(_request("low"))
    queue.enqueue(_request("first"))
    queue.enqueue(_request("high", priority=5))
    queue.enqueue(_request("second"))
    assert queue.prioritize("second")
    assert not queue.prioritize("missing")

    asyncio.run(queue.wait_for_completion(timeout=5))
    assert [tags[0] for _, tags in service.calls] == ["second", "high", "low", "first"]


def test_cancel_pending_request():
    service = RecordingService()
    queue = MutationQueue(service, **FAST)
    queue.enqueue(_request("a"))
    queue.enqueue(_request("b"))

    assert queue.cancel("a")
    assert not queue.cancel("a")
    assert queue.get_stats().pending == 1

    asyncio.run(queue.wait_for_completion(timeout=5))
    assert service.calls == [("doc-1", ["b"])]


def test_execute_batch_returns_results_in_payload_order():
    service = RecordingService()
    queue = MutationQueue(service, batch_size=2, **FAST)

    async def scenario():
        return await queue.execute_batch("doc-1", [{"tag": str(i)} for i in range(5)], timeout=5)

    results = asyncio.run(scenario())
    assert [r.response for r in results] == [{"tag": str(i)} for i in range(5)]
    assert all(r.success for r in results)


def test_execute_batch_reports_failures():
    queue = MutationQueue(RecordingService(failing=True), **FAST)
    queue.settings.default_max_retries = 1

    results = asyncio.run(queue.execute_batch("doc-1", [{"tag": "x"}], timeout=5))
    assert len(results) == 1
    assert not results[0].success
    assert isinstance(results[0].error, RemoteServiceError)


def test_calls_for_one_document_do_not_overlap():
    service = RecordingService(latency=0.02)
    queue = MutationQueue(service, max_concurrency=5, batch_size=1, **FAST)

    async def scenario():
        for tag in "abcd":
            queue.enqueue(_request(tag))
        queue.enqueue(_request("x", document_id="doc-2"))
        await queue.wait_for_completion(timeout=5)

    asyncio.run(scenario())
    assert service.max_active["doc-1"] == 1
    assert [tags[0] for doc, tags in service.calls if doc == "doc-1"] == ["a", "b", "c", "d"]


def test_wait_timeout_leaves_queue_intact():
    service = RecordingService(latency=0.3)
    queue = MutationQueue(service, **FAST)

    async def scenario():
        queue.enqueue(_request("slow"))
        with pytest.raises(QueueTimeoutError):
            await queue.wait_for_completion(timeout=0.05)
        stats = queue.get_stats()
        assert stats.pending + stats.in_flight == 1
        await queue.close()

    asyncio.run(scenario())


def test_clear_and_stop():
    queue = MutationQueue(RecordingService(), **FAST)
    events = []
    queue.on("queue_cleared", lambda: events.append("cleared"))
    queue.on("processing_stopped", lambda: events.append("stopped"))

    async def scenario():
        queue.enqueue(_request("a"))
        assert queue.is_processing
        queue.stop()
        assert not queue.is_processing
        queue.clear()

    asyncio.run(scenario())
    assert queue.get_stats().pending == 0
    assert events == ["stopped", "cleared"]


def test_repeating_timer_ticks_until_cancelled():
    ticks = []

    async def scenario():
        timer = RepeatingTimer(0.01, lambda: ticks.append(1))
        assert timer.start()
        await asyncio.sleep(0.05)
        timer.cancel()
        count = len(ticks)
        await asyncio.sleep(0.03)
        return count

    count = asyncio.run(scenario())
    assert count >= 2
    assert len(ticks) == count
    assert not RepeatingTimer(1, lambda: None).start()


def test_cancelled_call_goes_back_to_pending():
    """A call cut off when its loop shuts down leaves nothing stuck in flight."""
    service = RecordingService(latency=3600)
    queue = MutationQueue(service, **FAST)

    async def stalled():
        queue.enqueue(_request("a"))
        with pytest.raises(QueueTimeoutError):
            await queue.wait_for_completion(timeout=0.05)

    asyncio.run(stalled())
    stats = queue.get_stats()
    assert stats.in_flight == 0, "Interrupted request still counted as in flight"
    assert stats.pending == 1

    service.latency = 0
    stats = asyncio.run(queue.wait_for_completion(timeout=5))
    assert stats.completed == 1 and stats.pending == 0 and stats.in_flight == 0
    assert service.calls == [("doc-1", ["a"])]


def test_failing_document_does_not_block_others():
    service = RecordingService(failing_documents={"bad"})
    queue = MutationQueue(service, max_concurrency=1, batch_size=1, **FAST)
    queue.settings.default_max_retries = 3

    async def scenario():
        return await asyncio.gather(
            queue.execute_batch("bad", [{"tag": "bad-0"}], timeout=5),
            queue.execute_batch("good", [{"tag": "good-0"}, {"tag": "good-1"}], timeout=5),
        )

    bad, good = asyncio.run(scenario())
    assert [r.success for r in good] == [True, True]
    assert [r.response for r in good] == [{"tag": "good-0"}, {"tag": "good-1"}]
    assert not bad[0].success
    assert isinstance(bad[0].error, RemoteServiceError)

    good_calls = [i for i, (doc, _) in enumerate(service.calls) if doc == "good"]
    bad_calls = [i for i, (doc, _) in enumerate(service.calls) if doc == "bad"]
    assert len(bad_calls) == 3
    assert good_calls[0] < bad_calls[-1], "Healthy document waited for the failing one to run out of retries"


def test_execute_batch_survives_external_stop():
    """Stopping the queue while execute_batch waits does not leave it waiting forever."""
    service = RecordingService()
    queue = MutationQueue(service, batch_size=1, **FAST)
    stops = []
    queue.on("batch_started", lambda _: queue.stop())
    queue.on("processing_stopped", lambda: stops.append(1))

    results = asyncio.run(queue.execute_batch("doc-1", [{"tag": str(i)} for i in range(3)], timeout=5))
    assert all(r.success for r in results)
    assert [r.response for r in results] == [{"tag": str(i)} for i in range(3)]
    assert len(stops) >= 1
