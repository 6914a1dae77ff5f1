"""Resource store and the idempotent upsert primitive."""

from converge.store.memory import EventType, InMemoryStore, WatchEvent
from converge.store.upsert import OperationResult, create_or_update, set_controller_reference

__all__ = [
    "EventType",
    "InMemoryStore",
    "WatchEvent",
    "OperationResult",
    "create_or_update",
    "set_controller_reference",
]
