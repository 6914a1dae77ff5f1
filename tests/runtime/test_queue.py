"""Tests for the de-duplicating work queue."""

import threading

import pytest

from converge.runtime.queue import WorkQueue


class FakeMonotonic:
    def __init__(self):
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def mono() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def queue(mono) -> WorkQueue:
    return WorkQueue(clock=mono)


class TestWorkQueue:
    def test_deduplicates(self, queue):
        queue.add("a")
        queue.add("a")
        queue.add("b")
        assert len(queue) == 2
        assert queue.get(timeout=0) == "a"
        assert queue.get(timeout=0) == "b"
        assert queue.get(timeout=0) is None

    def test_key_not_handed_out_twice_while_processing(self, queue):
        queue.add("a")
        assert queue.get(timeout=0) == "a"

        queue.add("a")
        assert queue.get(timeout=0) is None

        queue.done("a")
        assert queue.get(timeout=0) == "a"

    def test_done_without_readd_drops_key(self, queue):
        queue.add("a")
        queue.get(timeout=0)
        queue.done("a")
        assert len(queue) == 0

    def test_add_after_waits_for_deadline(self, queue, mono):
        queue.add_after("a", 5.0)
        assert queue.get(timeout=0) is None
        assert queue.delayed() == [("a", 5.0)]

        mono.now += 5.0
        assert queue.get(timeout=0) == "a"

    def test_non_positive_delay_adds_now(self, queue):
        queue.add_after("a", 0)
        assert queue.get(timeout=0) == "a"

    def test_shutdown_unblocks_get(self):
        queue = WorkQueue()
        results = []
        t = threading.Thread(target=lambda: results.append(queue.get()))
        t.start()
        queue.shutdown()
        t.join(timeout=2)
        assert results == [None]
        assert queue.is_shutdown

    def test_adds_after_shutdown_ignored(self, queue):
        queue.shutdown()
        queue.add("a")
        queue.add_after("b", 1.0)
        assert len(queue) == 0
        assert queue.delayed() == []
