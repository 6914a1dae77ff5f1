"""Recording fakes for every collaborator contract, plus builders.

The fakes do the least that lets a pass converge: children come up ready
as soon as they are created, jobs complete on the first run, and every
call is recorded so tests can assert on what a pass touched.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from converge.core.conditions import ConditionList
from converge.core.errors import CollaboratorError
from converge.core.hashing import object_hash
from converge.core.models import (
    JobOutcome,
    JobSpec,
    ManifestEntry,
    NetworkSummary,
    ObjectMeta,
    PolicyRule,
    Resource,
    Template,
    Topology,
    TopologySpec,
    WorkloadSpec,
    WorkloadState,
)
from converge.core.settings import ControllerSettings
from converge.reconcile.context import Collaborators, PassContext
from converge.reconcile.deletion import DATABASE_KIND
from converge.reconcile.dispatcher import Dispatcher
from converge.reconcile.rollout import ROLE_KIND
from converge.reconcile.stages import API_KIND, SECRET_KIND
from converge.store.memory import InMemoryStore

NAMESPACE = "openstack"
NAME = "octavia"
TRANSPORT_SECRET = "rabbitmq-transport-octavia"


class TickingClock:
    """Deterministic clock that moves one second per reading."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


# =============================================================================
# STORE
# =============================================================================


class ReadyStore(InMemoryStore):
    """In-memory store whose workload children report ready on creation.

    ``ready_overrides`` maps a child name to the ready count it should
    report instead of its full replica count.
    """

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.ready_overrides: dict[str, int] = {}
        self.unready_databases: set[str] = set()

    def create(self, obj: Any) -> Any:
        if obj.kind == DATABASE_KIND and obj.metadata.name not in self.unready_databases:
            obj = obj.model_copy(deep=True)
            obj.status = {"ready": True, "hostname": f"{obj.metadata.name}.{obj.metadata.namespace}.svc"}
        elif obj.kind in (ROLE_KIND, API_KIND):
            obj = obj.model_copy(deep=True)
            desired = int(obj.spec.get("replicas", 1))
            ready = self.ready_overrides.get(obj.metadata.name, desired)
            obj.status = {"ready_count": ready, "desired_count": desired}
        return super().create(obj)


def set_child_status(store: InMemoryStore, kind: str, name: str, namespace: str = NAMESPACE,
                     **status: Any) -> Resource:
    """Overwrite a child's status the way its own controller would."""
    obj = store.get(kind, name, namespace)
    obj.status.update(status)
    return store.update_status(obj)


# =============================================================================
# COLLABORATORS
# =============================================================================


class FakeMaterializer:
    def __init__(self):
        self.calls: list[tuple[list[Template], dict[str, str]]] = []

    def ensure(self, owner, templates, custom_data) -> str:
        self.calls.append((list(templates), dict(custom_data)))
        return object_hash({
            "templates": [{"name": t.name, "data": t.data} for t in templates],
            "custom": custom_data,
        })


class FakeJobRunner:
    """Job runner that completes at once.

    ``own_hash`` makes it report a hash of its own rather than echoing the
    spec's; ``report_unchanged`` makes it claim nothing changed.
    """

    def __init__(
        self,
        requeue_after: float | None = None,
        own_hash: bool = False,
        report_unchanged: bool = False,
    ):
        self.requeue_after = requeue_after
        self.own_hash = own_hash
        self.report_unchanged = report_unchanged
        self.calls: list[JobSpec] = []

    def run(self, owner, spec, hash_key, preserve_completed, poll_interval, last_hash) -> JobOutcome:
        self.calls.append(spec)
        if self.requeue_after is not None:
            return JobOutcome(requeue_after=self.requeue_after)
        reported = f"job-{spec.content_hash[:8]}" if self.own_hash else spec.content_hash
        changed = not self.report_unchanged and reported != last_hash
        return JobOutcome(changed=changed, hash=reported)


class FakeWorkloads:
    def __init__(self, ready_count: int = 1, requeue_after: float | None = None):
        self.ready_count = ready_count
        self.requeue_after = requeue_after
        self.fail_deletes = 0
        self.patched: list[WorkloadSpec] = []
        self.deleted: list[tuple[str, str]] = []
        self.delete_attempts = 0

    def create_or_patch(self, owner, spec) -> WorkloadState:
        self.patched.append(spec)
        return WorkloadState(requeue_after=self.requeue_after, ready_count=self.ready_count,
                             desired_count=spec.replicas)

    def delete(self, name, namespace) -> None:
        self.delete_attempts += 1
        if self.fail_deletes > 0:
            self.fail_deletes -= 1
            raise CollaboratorError(f"cannot delete {name}")
        self.deleted.append((name, namespace))


class FakeAttachments:
    def __init__(self, available: set[str] | None = None):
        self.available = set(available or ())
        self.checked: list[str] = []

    def exists(self, name, namespace) -> bool:
        self.checked.append(name)
        return name in self.available


class FakeRbac:
    def __init__(self, requeue_after: float | None = None):
        self.requeue_after = requeue_after
        self.rules: list[PolicyRule] = []

    def reconcile(self, owner, rules) -> float | None:
        self.rules = list(rules)
        return self.requeue_after


class FakeTransport:
    def __init__(self, secret_name: str = TRANSPORT_SECRET):
        self.secret_name = secret_name
        self.calls: list[str] = []

    def create_or_update(self, owner, cluster) -> str:
        self.calls.append(cluster)
        return self.secret_name


class FakeNetworks:
    def __init__(self):
        self.calls = 0

    def ensure(self, owner) -> NetworkSummary:
        self.calls += 1
        return NetworkSummary(network_id="net-mgmt", security_group_id="sg-mgmt")


class FakeAssets:
    def __init__(self, complete: bool = True):
        self.complete = complete
        self.imported: list[list[ManifestEntry]] = []

    def ensure_imported(self, owner, entries) -> bool:
        self.imported.append(list(entries))
        return self.complete


class FakeFetcher:
    def __init__(self, body: str = "abc123 amphora-x64.qcow2\n", error: Exception | None = None):
        self.body = body
        self.error = error
        self.urls: list[str] = []

    def fetch(self, url) -> str:
        self.urls.append(url)
        if self.error is not None:
            raise self.error
        return self.body


class FakeSshAccess:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.owners: list[str] = []

    def ensure(self, owner) -> None:
        self.owners.append(owner.name)
        if self.error is not None:
            raise self.error


# =============================================================================
# BUILDERS
# =============================================================================


def make_topology(name: str = NAME, namespace: str = NAMESPACE, **spec: Any) -> Topology:
    return Topology(
        metadata=ObjectMeta(name=name, namespace=namespace),
        spec=TopologySpec(**spec),
    )


def make_secret(name: str, data: dict[str, str], namespace: str = NAMESPACE) -> Resource:
    return Resource(kind=SECRET_KIND, metadata=ObjectMeta(name=name, namespace=namespace), data=data)


def seed(store: InMemoryStore, topology: Topology, with_transport_secret: bool = True) -> Topology:
    """Create the service secret (and transport secret) and the topology."""
    store.create(make_secret(topology.spec.secret, {
        topology.spec.password_selector: "s3cret",
        "MetadataSecret": "m3ta",
    }, topology.namespace))
    if with_transport_secret:
        store.create(make_secret(TRANSPORT_SECRET, {"transport_url": "rabbit://octavia"},
                                 topology.namespace))
    return store.create(topology)


def make_collaborators(store: InMemoryStore | None = None, **overrides: Any) -> Collaborators:
    values = dict(
        store=store if store is not None else ReadyStore(),
        materializer=FakeMaterializer(),
        jobs=FakeJobRunner(),
        workloads=FakeWorkloads(),
        attachments=FakeAttachments(),
        rbac=FakeRbac(),
        transport=FakeTransport(),
        networks=FakeNetworks(),
        assets=FakeAssets(),
        fetcher=FakeFetcher(),
        ssh_access=FakeSshAccess(),
    )
    values.update(overrides)
    return Collaborators(**values)


def make_dispatcher(collaborators: Collaborators | None = None,
                    settings: ControllerSettings | None = None, clock=None) -> Dispatcher:
    kwargs: dict[str, Any] = {}
    if clock is not None:
        kwargs["clock"] = clock
    return Dispatcher(
        collaborators or make_collaborators(),
        settings=settings or ControllerSettings(_env_file=None),
        **kwargs,
    )


def make_context(
    collaborators: Collaborators | None = None,
    topology: Topology | None = None,
    settings: ControllerSettings | None = None,
    **fields: Any,
) -> PassContext:
    """A pass context over ``topology`` with an empty condition ledger."""
    collaborators = collaborators or make_collaborators()
    return PassContext(
        topology=topology or make_topology(),
        conditions=ConditionList(),
        collaborators=collaborators,
        settings=settings or ControllerSettings(_env_file=None),
        **fields,
    )


@dataclass
class ConvergeRun:
    passes: int = 0
    results: list[Any] = field(default_factory=list)


def run_until_converged(dispatcher: Dispatcher, name: str = NAME, namespace: str = NAMESPACE,
             max_passes: int = 20) -> ConvergeRun:
    """Run passes until one asks for no requeue."""
    run = ConvergeRun()
    while run.passes < max_passes:
        result = dispatcher.reconcile(namespace, name)
        run.passes += 1
        run.results.append(result)
        if not result.requeue:
            return run
    raise AssertionError(f"no convergence after {max_passes} passes")
