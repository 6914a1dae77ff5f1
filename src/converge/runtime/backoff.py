"""Per-key exponential backoff for failed reconciliation passes.

A failed pass is requeued after a delay that doubles with every
consecutive failure of the same key, capped at ``max_delay``. A pass that
succeeds (or requeues on its own schedule) forgets the key.

Example:
    >>> backoff = KeyedBackoff(ExponentialBackoff(base_delay=0.005, max_delay=300, jitter=False))
    >>> backoff.when("openstack/octavia")
    0.005
    >>> backoff.when("openstack/octavia")
    0.01
    >>> backoff.forget("openstack/octavia")
"""

from __future__ import annotations

import random
import threading
from dataclasses import dataclass


@dataclass
class ExponentialBackoff:
    """Exponential backoff with optional jitter.

    Delay = min(base_delay * (multiplier ** attempt), max_delay) +/- jitter

    Attributes:
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap in seconds
        multiplier: Exponential multiplier (default: 2)
        jitter: Add randomness to prevent thundering herd
        jitter_range: Range of jitter as fraction of delay (0.0-1.0)
    """

    base_delay: float = 0.005
    max_delay: float = 300.0
    multiplier: float = 2.0
    jitter: bool = True
    jitter_range: float = 0.1

    def next_delay(self, attempt: int) -> float:
        """Calculate exponential backoff delay for a zero-based attempt."""
        delay = min(self.base_delay * (self.multiplier ** attempt), self.max_delay)
        if self.jitter:
            jitter_amount = delay * self.jitter_range
            delay += random.uniform(-jitter_amount, jitter_amount)
            delay = max(0.0, min(delay, self.max_delay))
        return delay


class KeyedBackoff:
    """Tracks consecutive failures per key."""

    def __init__(self, strategy: ExponentialBackoff | None = None):
        self.strategy = strategy or ExponentialBackoff()
        self._failures: dict[str, int] = {}
        self._lock = threading.Lock()

    def when(self, key: str) -> float:
        """Record a failure for ``key`` and return the delay before retrying it."""
        with self._lock:
            attempt = self._failures.get(key, 0)
            self._failures[key] = attempt + 1
        return self.strategy.next_delay(attempt)

    def failures(self, key: str) -> int:
        with self._lock:
            return self._failures.get(key, 0)

    def forget(self, key: str) -> None:
        with self._lock:
            self._failures.pop(key, None)
