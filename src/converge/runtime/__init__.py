"""Runtime: work queue, backoff and the worker pool that drives passes."""

from converge.runtime.backoff import ExponentialBackoff, KeyedBackoff
from converge.runtime.controller import Controller, ControllerStats
from converge.runtime.queue import WorkQueue

__all__ = [
    "ExponentialBackoff",
    "KeyedBackoff",
    "Controller",
    "ControllerStats",
    "WorkQueue",
]
