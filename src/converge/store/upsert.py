"""Idempotent create-or-update against the resource store.

``create_or_update`` fetches a resource (or initializes an empty one),
lets a mutation callback set the desired fields and owner linkage, and
persists only when the result differs from what is stored. Calling it
every pass with unchanged inputs produces no writes.

Persistence errors are returned to the caller unmodified. Nothing here
waits for a resource to become ready.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from typing import Any

from converge.core.errors import AlreadyOwnedError, NotFoundError
from converge.core.models import ObjectMeta, OwnerReference, Resource
from converge.core.protocols import ResourceStore


class OperationResult(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


Mutation = Callable[[Resource], None]


def set_controller_reference(owner: Any, obj: Any) -> None:
    """Mark ``owner`` as the controller of ``obj``.

    Raises:
        AlreadyOwnedError: ``obj`` is controlled by a different owner
    """
    current = obj.metadata.controller_reference()
    if current is not None:
        if current.uid != owner.metadata.uid:
            raise AlreadyOwnedError(
                f"{obj.kind} {obj.metadata.name} is already controlled by "
                f"{current.kind} {current.name}"
            ).with_context(resource_kind=obj.kind, resource_name=obj.metadata.name)
        return
    obj.metadata.owner_references.append(OwnerReference(
        kind=owner.kind,
        name=owner.metadata.name,
        uid=owner.metadata.uid,
    ))


def create_or_update(
    store: ResourceStore,
    kind: str,
    name: str,
    namespace: str,
    mutate: Mutation,
) -> tuple[Resource, OperationResult]:
    """Upsert one resource.

    Args:
        store: Resource store
        kind: Resource kind
        name: Resource name
        namespace: Resource namespace
        mutate: Sets desired fields on the fetched or fresh resource.
            Changes it makes to ``status`` are not persisted.

    Returns:
        The persisted resource and what happened to it
    """
    try:
        current = store.get(kind, name, namespace)
    except NotFoundError:
        fresh = Resource(kind=kind, metadata=ObjectMeta(name=name, namespace=namespace))
        mutate(fresh)
        return store.create(fresh), OperationResult.CREATED

    before = current.model_dump(exclude={"status"})
    desired = current.model_copy(deep=True)
    mutate(desired)
    if desired.model_dump(exclude={"status"}) == before:
        return current, OperationResult.UNCHANGED
    return store.update(desired), OperationResult.UPDATED
