"""Controller — a bounded worker pool that drives the dispatcher.

Watches the store for topology changes (and changes to children a
topology controls), queues the topology's key, and lets N worker threads
run one reconciliation pass per key. The work queue guarantees a key is
never processed by two workers at once.

After each pass:

- ``ReconcileResult.requeue`` schedules the key again after its delay
- a raised error schedules it again after the error's ``retry_after`` or
  the key's exponential backoff
- anything else forgets the key's backoff

Usage (programmatic)::

    controller = Controller(dispatcher, settings)
    controller.watch(store)
    controller.start()
    ...
    controller.stop()
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from converge.core.errors import categorize_error, get_retry_after, is_retryable
from converge.core.logging import get_logger
from converge.core.settings import ControllerSettings
from converge.core.timestamps import utc_now
from converge.reconcile.dispatcher import TOPOLOGY_KIND, Dispatcher
from converge.runtime.backoff import ExponentialBackoff, KeyedBackoff
from converge.runtime.queue import WorkQueue
from converge.store.memory import EventType, InMemoryStore, WatchEvent

logger = get_logger(__name__)


def make_key(namespace: str, name: str) -> str:
    return f"{namespace}/{name}"


def split_key(key: str) -> tuple[str, str]:
    namespace, _, name = key.partition("/")
    return namespace, name


@dataclass
class ControllerStats:
    """Aggregate statistics for a controller."""

    passes: int = 0
    failures: int = 0
    requeues: int = 0
    started_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "passes": self.passes,
            "failures": self.failures,
            "requeues": self.requeues,
            "started_at": self.started_at.isoformat() if self.started_at else None,
        }


class Controller:
    """Runs reconciliation passes for queued topologies."""

    def __init__(
        self,
        dispatcher: Dispatcher,
        settings: ControllerSettings | None = None,
        queue: WorkQueue | None = None,
        backoff: KeyedBackoff | None = None,
    ):
        self.dispatcher = dispatcher
        self.settings = settings or dispatcher.settings
        self.queue = queue or WorkQueue()
        self.backoff = backoff or KeyedBackoff(ExponentialBackoff(
            base_delay=self.settings.backoff_base_seconds,
            max_delay=self.settings.backoff_max_seconds,
        ))
        self.stats = ControllerStats()
        self._shutdown = threading.Event()
        self._stats_lock = threading.Lock()
        self._pool: ThreadPoolExecutor | None = None
        self._futures: list[Future] = []

    # ------------------------------------------------------------------ #
    # Event intake
    # ------------------------------------------------------------------ #

    def enqueue(self, namespace: str, name: str) -> None:
        self.queue.add(make_key(namespace, name))

    def watch(self, store: InMemoryStore) -> None:
        """Queue topologies whenever they or a child they control change."""
        store.subscribe(self._on_event)

    def _on_event(self, event: WatchEvent) -> None:
        if event.kind == TOPOLOGY_KIND:
            if event.type is not EventType.DELETED:
                self.enqueue(event.namespace, event.name)
            return
        for ref in event.owner_references:
            if ref.controller and ref.kind == TOPOLOGY_KIND:
                self.enqueue(event.namespace, ref.name)

    # ------------------------------------------------------------------ #
    # Processing
    # ------------------------------------------------------------------ #

    def process_next(self, timeout: float | None = None) -> bool:
        """Take one key off the queue and reconcile it; False if none came."""
        key = self.queue.get(timeout=timeout)
        if key is None:
            return False
        try:
            self._reconcile_key(key)
        finally:
            self.queue.done(key)
        return True

    def _reconcile_key(self, key: str) -> None:
        namespace, name = split_key(key)
        with self._stats_lock:
            self.stats.passes += 1
        try:
            result = self.dispatcher.reconcile(namespace, name)
        except Exception as e:
            delay = get_retry_after(e)
            if delay is None:
                delay = self.backoff.when(key)
            with self._stats_lock:
                self.stats.failures += 1
            logger.warning("controller.pass_failed", key=key, error=str(e),
                           error_type=type(e).__name__, category=categorize_error(e).value,
                           retryable=is_retryable(e), retry_in=round(delay, 3))
            self.queue.add_after(key, delay)
            return

        self.backoff.forget(key)
        if result.requeue:
            with self._stats_lock:
                self.stats.requeues += 1
            self.queue.add_after(key, result.requeue_after or 0.0)

    def drain(self, max_passes: int = 100) -> int:
        """Process keys that are due now, synchronously; returns passes run."""
        passes = 0
        while passes < max_passes and self.process_next(timeout=0):
            passes += 1
        return passes

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def start(self) -> None:
        """Start the worker threads (non-blocking)."""
        workers = self.settings.workers
        logger.info("controller.start", workers=workers)
        self.stats.started_at = utc_now()
        self._pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="converge-worker")
        self._futures = [self._pool.submit(self._worker_loop) for _ in range(workers)]

    def _worker_loop(self) -> None:
        while not self._shutdown.is_set():
            self.process_next(timeout=0.5)

    def stop(self, wait: bool = True) -> None:
        """Stop accepting work and let running passes finish."""
        self._shutdown.set()
        self.queue.shutdown()
        if self._pool is not None:
            self._pool.shutdown(wait=wait)
            self._pool = None
        logger.info("controller.stop", **self.stats.to_dict())

    def __enter__(self) -> Controller:
        self.start()
        return self

    def __exit__(self, *args) -> None:
        self.stop()
