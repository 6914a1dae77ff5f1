"""Deletion Cascade — release owned external resources, then the topology.

When the topology carries a deletion timestamp, every database and
database account the controller placed its finalizer on gets that
finalizer removed. A resource that is already gone counts as released.
Only when every release succeeded is the controller's own finalizer
removed from the topology, which lets the store finish the deletion.
Any failure aborts the cascade for this pass with the topology's
finalizer still in place.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from converge.core.errors import NotFoundError
from converge.core.logging import get_logger
from converge.core.models import Topology
from converge.core.protocols import ResourceStore

logger = get_logger(__name__)

DATABASE_KIND = "Database"
ACCOUNT_KIND = "DatabaseAccount"


@dataclass
class CascadeReport:
    """What the cascade did, for logs and tests."""

    released: list[tuple[str, str]] = field(default_factory=list)
    already_gone: list[tuple[str, str]] = field(default_factory=list)


def owned_resources(topology: Topology, database_names: tuple[str, str]) -> list[tuple[str, str]]:
    """(kind, name) of every external resource carrying the controller's finalizer."""
    spec = topology.spec
    service_db, persistence_db = database_names
    return [
        (DATABASE_KIND, service_db),
        (ACCOUNT_KIND, spec.database_account),
        (DATABASE_KIND, persistence_db),
        (ACCOUNT_KIND, spec.persistence_database_account),
    ]


def release_finalizer(store: ResourceStore, kind: str, name: str, namespace: str,
                      finalizer: str) -> bool:
    """Remove ``finalizer`` from one resource.

    Returns:
        False when the resource no longer exists

    Raises:
        Whatever the store raises other than NotFoundError
    """
    try:
        obj = store.get(kind, name, namespace)
    except NotFoundError:
        return False
    if obj.metadata.remove_finalizer(finalizer):
        store.update(obj)
    return True


def run_cascade(
    store: ResourceStore,
    topology: Topology,
    finalizer: str,
    database_names: tuple[str, str],
) -> CascadeReport:
    """Release every owned resource, then the topology's own finalizer.

    ``topology.metadata`` is updated in place; persisting it is the
    caller's job.
    """
    report = CascadeReport()
    for kind, name in owned_resources(topology, database_names):
        if release_finalizer(store, kind, name, topology.namespace, finalizer):
            report.released.append((kind, name))
        else:
            report.already_gone.append((kind, name))
            logger.debug("deletion.already_gone", kind=kind, name=name)

    topology.metadata.remove_finalizer(finalizer)
    logger.info(
        "deletion.cascade_complete",
        released=len(report.released),
        already_gone=len(report.already_gone),
    )
    return report
