"""
Tests for the per-page worker pool.

Tests ParallelProcessor without mocks - real concurrency tests.
"""

import threading
import time

import pytest

from infra.external_tool import CancelToken
from infra.pipeline.parallel import ParallelProcessor
from pipeline.publish.errors import Cancelled, ExternalToolFailure


def test_parallel_processor_basic():
    """Every item is processed; results come back in any order."""
    def worker(item, token):
        return item * 2

    processor = ParallelProcessor(max_workers=4, description="Test processing")
    results = processor.process(list(range(10)), worker)

    assert sorted(results) == [i * 2 for i in range(10)]
    assert processor.stats["succeeded"] == 10
    assert processor.stats["failed"] == 0


def test_parallel_processor_empty():
    processor = ParallelProcessor(max_workers=2)
    assert processor.process([], lambda item, token: item) == []


def test_parallel_processor_runs_concurrently():
    """Four sleeping items on four workers take about one sleep."""
    def worker(item, token):
        time.sleep(0.3)
        return item

    start = time.time()
    ParallelProcessor(max_workers=4).process([1, 2, 3, 4], worker)
    assert time.time() - start < 1.0


def test_parallel_processor_progress_callback():
    calls = []
    lock = threading.Lock()

    def on_progress(completed, total):
        with lock:
            calls.append((completed, total))

    ParallelProcessor(max_workers=3, progress_callback=on_progress).process(
        list(range(6)), lambda item, token: item
    )

    assert sorted(calls) == [(i, 6) for i in range(1, 7)]


def test_parallel_processor_first_error_cancels_rest():
    """The first failure is re-raised and items not yet started never run."""
    started = []

    def worker(item, token):
        started.append(item)
        if item == 0:
            raise ExternalToolFailure("c44", [], 1)
        time.sleep(0.05)
        return item

    processor = ParallelProcessor(max_workers=1)
    with pytest.raises(ExternalToolFailure):
        processor.process(list(range(5)), worker)

    assert started == [0]
    assert processor.stats["skipped"] == 4


def test_parallel_processor_running_items_see_cancel():
    """Items already running observe the pool token after a sibling failed."""
    observed = []

    def worker(item, token):
        if item == "fail":
            time.sleep(0.1)
            raise ExternalToolFailure("djvumake", [], 2)
        for _ in range(50):
            if token.is_cancelled():
                observed.append(item)
                raise Cancelled("stopped")
            time.sleep(0.02)
        return item

    with pytest.raises(ExternalToolFailure):
        ParallelProcessor(max_workers=2).process(["slow", "fail"], worker)

    assert observed == ["slow"]


def test_parallel_processor_caller_cancel():
    token = CancelToken()
    token.cancel()

    with pytest.raises(Cancelled):
        ParallelProcessor(max_workers=2, cancel_token=token).process([1, 2, 3], lambda item, t: item)


def test_parallel_processor_does_not_cancel_caller_token():
    token = CancelToken()

    def worker(item, t):
        raise ValueError("boom")

    with pytest.raises(ValueError):
        ParallelProcessor(max_workers=2, cancel_token=token).process([1], worker)

    assert not token.is_cancelled()
