"""In-memory resource store.

Stands in for the external object store the controller runs against. It
honors the parts of that contract the pipeline relies on:

- optimistic concurrency via ``metadata.resource_version``
- a status subresource (``update`` ignores status, ``update_status``
  writes only status)
- generation bumps on spec changes
- finalizers: deleting an object that still carries finalizers only
  stamps ``deletion_timestamp``; the object goes away once the last
  finalizer is removed
- owner-based garbage collection of controlled children
- watch notifications to subscribers

Objects are deep-copied on the way in and out, so callers never share
state with the store.
"""

from __future__ import annotations

import copy
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel

from converge.core.errors import ConflictError, NotFoundError
from converge.core.logging import get_logger
from converge.core.models import OwnerReference
from converge.core.timestamps import Clock, utc_now

logger = get_logger(__name__)

_Key = tuple[str, str, str]


class EventType(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"


@dataclass(frozen=True)
class WatchEvent:
    type: EventType
    kind: str
    name: str
    namespace: str
    owner_references: tuple[OwnerReference, ...] = field(default_factory=tuple)


Subscriber = Callable[[WatchEvent], None]


def _spec_view(obj: BaseModel) -> dict[str, Any]:
    return obj.model_dump(exclude={"metadata", "status"})


def _meta_view(obj: BaseModel) -> dict[str, Any]:
    return obj.metadata.model_dump(
        include={"labels", "annotations", "finalizers", "owner_references"}
    )


class InMemoryStore:
    """Thread-safe store of pydantic objects keyed by (kind, namespace, name).

    Attributes:
        writes: Number of persisted mutations, for idempotence checks.
    """

    def __init__(self, clock: Clock = utc_now):
        self._objects: dict[_Key, BaseModel] = {}
        self._lock = threading.RLock()
        self._clock = clock
        self._version = 0
        self._subscribers: list[Subscriber] = []
        self.writes = 0

    # ── Watch ────────────────────────────────────────────────────

    def subscribe(self, callback: Subscriber) -> None:
        self._subscribers.append(callback)

    def _notify(self, events: list[WatchEvent]) -> None:
        for event in events:
            for callback in self._subscribers:
                callback(event)

    @staticmethod
    def _event(event_type: EventType, obj: BaseModel) -> WatchEvent:
        meta = obj.metadata
        return WatchEvent(
            type=event_type,
            kind=obj.kind,
            name=meta.name,
            namespace=meta.namespace,
            owner_references=tuple(meta.owner_references),
        )

    # ── Helpers ──────────────────────────────────────────────────

    @staticmethod
    def _key(kind: str, name: str, namespace: str) -> _Key:
        return (kind, namespace, name)

    def _next_version(self) -> int:
        self._version += 1
        return self._version

    def _require(self, kind: str, name: str, namespace: str) -> BaseModel:
        current = self._objects.get(self._key(kind, name, namespace))
        if current is None:
            raise NotFoundError(kind=kind, name=name, namespace=namespace)
        return current

    @staticmethod
    def _check_version(current: BaseModel, incoming: BaseModel) -> None:
        if incoming.metadata.resource_version != current.metadata.resource_version:
            raise ConflictError(
                f"{current.kind} {current.metadata.namespace}/{current.metadata.name} "
                f"was modified (version {incoming.metadata.resource_version} "
                f"!= {current.metadata.resource_version})"
            ).with_context(resource_kind=current.kind, resource_name=current.metadata.name)

    # ── Reads ────────────────────────────────────────────────────

    def get(self, kind: str, name: str, namespace: str) -> Any:
        with self._lock:
            return self._require(kind, name, namespace).model_copy(deep=True)

    def list(self, kind: str, namespace: str | None = None) -> list[Any]:
        with self._lock:
            return [
                obj.model_copy(deep=True)
                for (k, ns, _), obj in sorted(self._objects.items())
                if k == kind and (namespace is None or ns == namespace)
            ]

    # ── Writes ───────────────────────────────────────────────────

    def create(self, obj: Any) -> Any:
        with self._lock:
            meta = obj.metadata
            key = self._key(obj.kind, meta.name, meta.namespace)
            if key in self._objects:
                raise ConflictError(f"{obj.kind} {meta.namespace}/{meta.name} already exists")
            stored = obj.model_copy(deep=True)
            stored.metadata.generation = 1
            stored.metadata.resource_version = self._next_version()
            stored.metadata.deletion_timestamp = None
            self._objects[key] = stored
            self.writes += 1
            result = stored.model_copy(deep=True)
        logger.debug("store.created", kind=obj.kind, name=meta.name, namespace=meta.namespace)
        self._notify([self._event(EventType.ADDED, result)])
        return result

    def update(self, obj: Any) -> Any:
        """Write metadata and spec; status in ``obj`` is ignored."""
        events: list[WatchEvent] = []
        with self._lock:
            meta = obj.metadata
            current = self._require(obj.kind, meta.name, meta.namespace)
            self._check_version(current, obj)

            spec_changed = _spec_view(obj) != _spec_view(current)
            if not spec_changed and _meta_view(obj) == _meta_view(current):
                return current.model_copy(deep=True)

            stored = obj.model_copy(deep=True)
            stored.status = copy.deepcopy(current.status)
            stored.metadata.uid = current.metadata.uid
            stored.metadata.deletion_timestamp = current.metadata.deletion_timestamp
            stored.metadata.generation = current.metadata.generation + (1 if spec_changed else 0)
            stored.metadata.resource_version = self._next_version()
            self.writes += 1

            if stored.metadata.deletion_timestamp is not None and not stored.metadata.finalizers:
                self._remove(stored, events)
            else:
                self._objects[self._key(obj.kind, meta.name, meta.namespace)] = stored
                events.append(self._event(EventType.MODIFIED, stored))
            result = stored.model_copy(deep=True)
        self._notify(events)
        return result

    def update_status(self, obj: Any) -> Any:
        """Write only the status of ``obj``."""
        with self._lock:
            meta = obj.metadata
            current = self._require(obj.kind, meta.name, meta.namespace)
            self._check_version(current, obj)
            if obj.status == current.status:
                return current.model_copy(deep=True)
            stored = current.model_copy(deep=True)
            stored.status = obj.model_copy(deep=True).status
            stored.metadata.resource_version = self._next_version()
            self._objects[self._key(obj.kind, meta.name, meta.namespace)] = stored
            self.writes += 1
            result = stored.model_copy(deep=True)
        self._notify([self._event(EventType.MODIFIED, result)])
        return result

    def delete(self, kind: str, name: str, namespace: str) -> None:
        """Request deletion; objects with finalizers linger until released."""
        events: list[WatchEvent] = []
        with self._lock:
            current = self._require(kind, name, namespace)
            if current.metadata.finalizers:
                if current.metadata.deletion_timestamp is None:
                    current.metadata.deletion_timestamp = self._clock()
                    current.metadata.resource_version = self._next_version()
                    self.writes += 1
                    events.append(self._event(EventType.MODIFIED, current))
            else:
                self.writes += 1
                self._remove(current, events)
        self._notify(events)

    def _remove(self, obj: BaseModel, events: list[WatchEvent]) -> None:
        meta = obj.metadata
        self._objects.pop(self._key(obj.kind, meta.name, meta.namespace), None)
        events.append(self._event(EventType.DELETED, obj))
        logger.debug("store.deleted", kind=obj.kind, name=meta.name, namespace=meta.namespace)
        self._collect_garbage(meta.uid, events)

    def _collect_garbage(self, owner_uid: str, events: list[WatchEvent]) -> None:
        dependents = [
            o for o in self._objects.values()
            if any(ref.uid == owner_uid for ref in o.metadata.owner_references)
        ]
        for child in dependents:
            if child.metadata.finalizers:
                if child.metadata.deletion_timestamp is None:
                    child.metadata.deletion_timestamp = self._clock()
                    child.metadata.resource_version = self._next_version()
                    events.append(self._event(EventType.MODIFIED, child))
            else:
                self._remove(child, events)

    def __len__(self) -> int:
        with self._lock:
            return len(self._objects)
