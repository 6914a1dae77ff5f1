"""
Collaborator contracts consumed by the reconciliation pipeline.

The pipeline never creates a deployment, renders a secret or runs a job
itself. It calls narrow collaborators and interprets their results. This
module is the single definition of those contracts.

Manifesto:
    Protocols define contracts without inheritance. They enable:
    - **Decoupling:** Stages depend on shape, not implementation
    - **Testability:** Any object matching the protocol works, so tests
      swap in recording fakes
    - **Narrowness:** Each collaborator exposes one or two calls

Architecture:
    ::

        protocols.py
        ├── ResourceStore                : get/create/update/delete + status subresource
        ├── SecretMaterializer           : ensure(templates) → content hash
        ├── JobRunner                    : run one-shot job, track completion
        ├── WorkloadManager              : create_or_patch / delete a deployment
        ├── NetworkAttachmentValidator   : exists(name)
        ├── RbacProvisioner              : reconcile(rules)
        ├── TransportProvisioner         : create_or_update(cluster) → secret name
        ├── NetworkProvisioner           : ensure management network
        ├── AssetImporter                : ensure_imported(entries)
        ├── SshAccessProvisioner         : ensure amphora ssh access config
        └── ManifestFetcher              : one GET returning text

    Errors are raised, never returned. A collaborator that cannot tell
    yet returns a requeue hint (``requeue_after``) instead of raising.

Guardrails:
    ❌ DON'T: Add implementation logic to protocol classes
    ✅ DO: Keep protocols pure contracts; implementations go in adapters

Tags:
    protocol, collaborators, contracts, reconciliation

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable

from converge.core.models import (
    JobOutcome,
    JobSpec,
    ManifestEntry,
    NetworkSummary,
    PolicyRule,
    Template,
    Topology,
    WorkloadSpec,
    WorkloadState,
)

# ---------------------------------------------------------------------------
# Resource store
# ---------------------------------------------------------------------------


@runtime_checkable
class ResourceStore(Protocol):
    """
    External store with optimistic concurrency.

    ``update`` writes metadata and spec, ``update_status`` writes only
    status; both raise ``ConflictError`` when the object's
    ``resource_version`` is stale and ``NotFoundError`` when it is gone.
    """

    def get(self, kind: str, name: str, namespace: str) -> Any:
        ...

    def create(self, obj: Any) -> Any:
        ...

    def update(self, obj: Any) -> Any:
        ...

    def update_status(self, obj: Any) -> Any:
        ...

    def delete(self, kind: str, name: str, namespace: str) -> None:
        ...

    def list(self, kind: str, namespace: str | None = None) -> list[Any]:
        ...


# ---------------------------------------------------------------------------
# Provisioning collaborators
# ---------------------------------------------------------------------------


@runtime_checkable
class SecretMaterializer(Protocol):
    def ensure(self, owner: Topology, templates: Sequence[Template],
               custom_data: dict[str, str]) -> str:
        """Materialize the templates; return a hash of the rendered content."""
        ...


@runtime_checkable
class JobRunner(Protocol):
    def run(
        self,
        owner: Topology,
        spec: JobSpec,
        hash_key: str,
        preserve_completed: bool,
        poll_interval: float,
        last_hash: str,
    ) -> JobOutcome:
        ...


@runtime_checkable
class WorkloadManager(Protocol):
    def create_or_patch(self, owner: Topology, spec: WorkloadSpec) -> WorkloadState:
        ...

    def delete(self, name: str, namespace: str) -> None:
        ...


@runtime_checkable
class NetworkAttachmentValidator(Protocol):
    def exists(self, name: str, namespace: str) -> bool:
        ...


@runtime_checkable
class RbacProvisioner(Protocol):
    def reconcile(self, owner: Topology, rules: Sequence[PolicyRule]) -> float | None:
        """Return a requeue delay while provisioning is incomplete, else None."""
        ...


@runtime_checkable
class TransportProvisioner(Protocol):
    def create_or_update(self, owner: Topology, cluster: str) -> str:
        """Return the transport secret name, or ``""`` while it is not reported yet."""
        ...


@runtime_checkable
class NetworkProvisioner(Protocol):
    def ensure(self, owner: Topology) -> NetworkSummary:
        ...


@runtime_checkable
class AssetImporter(Protocol):
    def ensure_imported(self, owner: Topology, entries: Sequence[ManifestEntry]) -> bool:
        """Return True once every entry is imported."""
        ...


@runtime_checkable
class SshAccessProvisioner(Protocol):
    def ensure(self, owner: Topology) -> None:
        """Create or refresh the ssh access config handed to amphorae."""
        ...


@runtime_checkable
class ManifestFetcher(Protocol):
    def fetch(self, url: str) -> str:
        ...


__all__ = [
    "ResourceStore",
    "SecretMaterializer",
    "JobRunner",
    "WorkloadManager",
    "NetworkAttachmentValidator",
    "RbacProvisioner",
    "TransportProvisioner",
    "NetworkProvisioner",
    "AssetImporter",
    "SshAccessProvisioner",
    "ManifestFetcher",
]
