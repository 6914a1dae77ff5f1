"""
Resource models: the declared topology, its status record, and the
generic child resources the controller provisions.

The external store holds pydantic models. Every stored object has a
``kind`` and an ``ObjectMeta``; the store compares ``spec`` (and other
non-metadata, non-status fields) to decide whether an update bumps the
generation.

Collaborator value types (job specs, workload states, manifest entries)
are plain frozen dataclasses: they never leave a single pass.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from converge.core.conditions import Condition

# =============================================================================
# METADATA
# =============================================================================


class OwnerReference(BaseModel):
    kind: str
    name: str
    uid: str
    controller: bool = True


class ObjectMeta(BaseModel):
    """Identity and lifecycle metadata shared by every stored object."""

    name: str
    namespace: str = "default"
    uid: str = Field(default_factory=lambda: uuid.uuid4().hex)
    generation: int = 1
    resource_version: int = 0
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    finalizers: list[str] = Field(default_factory=list)
    owner_references: list[OwnerReference] = Field(default_factory=list)
    deletion_timestamp: datetime | None = None

    def has_finalizer(self, token: str) -> bool:
        return token in self.finalizers

    def add_finalizer(self, token: str) -> bool:
        """Add ``token``; returns True if it was not present."""
        if token in self.finalizers:
            return False
        self.finalizers.append(token)
        return True

    def remove_finalizer(self, token: str) -> bool:
        """Remove ``token``; returns True if it was present."""
        if token not in self.finalizers:
            return False
        self.finalizers = [f for f in self.finalizers if f != token]
        return True

    def controller_reference(self) -> OwnerReference | None:
        for ref in self.owner_references:
            if ref.controller:
                return ref
        return None


class Resource(BaseModel):
    """A generic stored object: child workloads, databases, secrets, services."""

    kind: str
    metadata: ObjectMeta
    spec: dict[str, Any] = Field(default_factory=dict)
    data: dict[str, str] = Field(default_factory=dict)
    status: dict[str, Any] = Field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace


# =============================================================================
# DECLARED TOPOLOGY
# =============================================================================


class RoleSpec(BaseModel):
    """Desired state of one worker role."""

    replicas: int = Field(default=1, ge=0)
    container_image: str = ""
    network_attachments: list[str] = Field(default_factory=list)
    node_selector: dict[str, str] | None = None
    custom_service_config: str = ""


class ApiSpec(RoleSpec):
    """The API deployment is a role without barrier semantics."""


class ManagementNetworkSpec(BaseModel):
    manage: bool = True
    availability_zones: list[str] = Field(default_factory=list)


class TopologySpec(BaseModel):
    database_instance: str = "openstack"
    database_account: str = "octavia"
    persistence_database_account: str = "octavia-persistence"
    secret: str = "osp-secret"
    password_selector: str = "OctaviaPassword"
    service_user: str = "octavia"
    tenant_name: str = "service"
    transport_cluster: str = "rabbitmq"
    custom_service_config: str = ""
    default_config_overwrite: dict[str, str] = Field(default_factory=dict)
    preserve_jobs: bool = False
    node_selector: dict[str, str] | None = None
    api: ApiSpec = Field(default_factory=ApiSpec)
    health_manager: RoleSpec = Field(default_factory=RoleSpec)
    housekeeping: RoleSpec = Field(default_factory=RoleSpec)
    worker: RoleSpec = Field(default_factory=RoleSpec)
    management_network: ManagementNetworkSpec = Field(default_factory=ManagementNetworkSpec)
    asset_image: str = ""


class TopologyStatus(BaseModel):
    """Everything the controller records about a topology between passes."""

    conditions: list[Condition] = Field(default_factory=list)
    hash: dict[str, str] = Field(default_factory=dict)
    database_hostname: str = ""
    transport_secret: str = ""
    api_ready_count: int = 0
    role_ready_counts: dict[str, int] = Field(default_factory=dict)
    role_desired_counts: dict[str, int] = Field(default_factory=dict)
    observed_generation: int = 0
    asset_teardown_pending: bool = False


class Topology(BaseModel):
    kind: str = "Topology"
    metadata: ObjectMeta
    spec: TopologySpec = Field(default_factory=TopologySpec)
    status: TopologyStatus = Field(default_factory=TopologyStatus)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    def is_deleting(self) -> bool:
        return self.metadata.deletion_timestamp is not None


# =============================================================================
# COLLABORATOR VALUE TYPES
# =============================================================================


@dataclass(frozen=True)
class Template:
    """One rendered config or script bundle handed to the materializer."""

    name: str
    namespace: str
    kind: str
    data: dict[str, str] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PolicyRule:
    api_groups: tuple[str, ...]
    resources: tuple[str, ...]
    verbs: tuple[str, ...]
    resource_names: tuple[str, ...] = ()


@dataclass(frozen=True)
class JobSpec:
    name: str
    namespace: str
    command: str
    content_hash: str
    labels: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class JobOutcome:
    """What the job runner reports for one ``run`` call."""

    requeue_after: float | None = None
    changed: bool = False
    hash: str = ""


@dataclass(frozen=True)
class WorkloadSpec:
    name: str
    namespace: str
    image: str
    replicas: int = 1
    port: int | None = None
    labels: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class WorkloadState:
    requeue_after: float | None = None
    ready_count: int = 0
    desired_count: int = 0


@dataclass(frozen=True)
class NetworkSummary:
    network_id: str
    security_group_id: str


@dataclass(frozen=True)
class ManifestEntry:
    """One importable asset parsed from an upload listing."""

    name: str
    url: str
    checksum: str
