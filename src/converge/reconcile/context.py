"""Per-pass state threaded through every stage.

A ``PassContext`` is built by the dispatcher at the start of a pass from
a fresh read of the topology and handed to each stage in order. Stages
read and write ``ctx.status`` and ``ctx.conditions``; the dispatcher
merges both back into the stored topology with one optimistic write at
the end of the pass. Nothing survives a pass except what lands in the
status record.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from converge.core.conditions import ConditionList
from converge.core.models import NetworkSummary, Topology, TopologySpec, TopologyStatus
from converge.core.protocols import (
    AssetImporter,
    JobRunner,
    ManifestFetcher,
    NetworkAttachmentValidator,
    NetworkProvisioner,
    RbacProvisioner,
    ResourceStore,
    SecretMaterializer,
    SshAccessProvisioner,
    TransportProvisioner,
    WorkloadManager,
)
from converge.core.settings import ControllerSettings


@dataclass
class Collaborators:
    """The external collaborators one controller talks to."""

    store: ResourceStore
    materializer: SecretMaterializer
    jobs: JobRunner
    workloads: WorkloadManager
    attachments: NetworkAttachmentValidator
    rbac: RbacProvisioner
    transport: TransportProvisioner
    networks: NetworkProvisioner
    assets: AssetImporter
    fetcher: ManifestFetcher
    ssh_access: SshAccessProvisioner


@dataclass
class PassContext:
    """
    Everything one reconciliation pass reads and writes.

    Attributes:
        topology: Working copy of the declared topology
        conditions: The condition ledger being built this pass
        collaborators: External collaborators
        settings: Controller settings
        input_hashes: Content hashes feeding the aggregate input hash
        config_hash: Aggregate input hash, stamped onto workload specs
        networks_annotation: Verified network attachments, rendered
        network: Management network ids handed to role resources
        barrier_open: Whether the primary role has fully rolled out
        first_observation: The topology had no conditions when the pass began
    """

    topology: Topology
    conditions: ConditionList
    collaborators: Collaborators
    settings: ControllerSettings
    first_observation: bool = False
    input_hashes: dict[str, str] = field(default_factory=dict)
    config_hash: str = ""
    networks_annotation: str = ""
    network: NetworkSummary | None = None
    barrier_open: bool = False

    @property
    def name(self) -> str:
        return self.topology.metadata.name

    @property
    def namespace(self) -> str:
        return self.topology.metadata.namespace

    @property
    def spec(self) -> TopologySpec:
        return self.topology.spec

    @property
    def status(self) -> TopologyStatus:
        return self.topology.status

    @property
    def store(self) -> ResourceStore:
        return self.collaborators.store

    def labels(self, component: str | None = None) -> dict[str, str]:
        """Standard labels for children of this topology."""
        labels = {"service": "octavia", "owner": self.name}
        if component:
            labels["component"] = component
        return labels
