"""Tests for the individual stages of a convergence pass.

Each test builds a ``PassContext`` directly and runs one stage against
the in-memory store and the recording fakes.
"""

import json

import pytest

from _support.fakes import (
    TRANSPORT_SECRET,
    FakeAttachments,
    FakeJobRunner,
    FakeRbac,
    FakeTransport,
    ReadyStore,
    make_collaborators,
    make_context,
    make_secret,
    make_topology,
    seed,
)
from converge.core.conditions import ConditionStatus, ConditionType, Reason, Severity
from converge.core.errors import InvalidReferenceError, StageError
from converge.core.hashing import HashKey, object_hash
from converge.core.models import ManagementNetworkSpec, ObjectMeta, Resource, RoleSpec
from converge.reconcile.deletion import ACCOUNT_KIND, DATABASE_KIND
from converge.reconcile.stage_result import Outcome
from converge.reconcile.stages import (
    RBAC_RULES,
    STAGES,
    SUB_CONDITIONS,
    config_stage,
    converged_stage,
    credentials_stage,
    database_stage,
    init_stage,
    input_hash_stage,
    management_network_stage,
    migration_stage,
    network_attachments_stage,
    rbac_stage,
    release_stale_accounts,
    transport_stage,
)


@pytest.fixture
def rstore() -> ReadyStore:
    return ReadyStore()


def _ctx(store, topology=None, **collaborators):
    topology = topology or make_topology()
    return make_context(make_collaborators(store, **collaborators), topology)


def _mark_inputs_ready(ctx):
    for c in (ConditionType.INPUT_READY, ConditionType.DB_READY, ConditionType.SERVICE_CONFIG_READY):
        ctx.conditions.mark_true(c, "ok")


# ---------------------------------------------------------------------------
# Stage table
# ---------------------------------------------------------------------------


class TestStageTable:
    def test_order(self):
        assert [s.name for s in STAGES] == [
            "Init", "CredentialsResolved", "DatabaseReady", "ConfigRendered",
            "InputHashStable", "MigrationComplete", "RbacReady", "TransportReady",
            "NetworkAttachmentsVerified", "NetworkProvisioned", "APIDeployed",
            "PrimaryRoleReady", "DependentRolesDeployed", "AssetPipelineSettled",
            "Converged",
        ]

    def test_sub_conditions_exclude_ready(self):
        assert ConditionType.READY not in SUB_CONDITIONS
        assert len(SUB_CONDITIONS) == len(ConditionType) - 1


# ---------------------------------------------------------------------------
# Init
# ---------------------------------------------------------------------------


class TestInitStage:
    def test_new_instance_adds_finalizer_and_halts(self, rstore):
        ctx = _ctx(rstore)
        result = init_stage(ctx)

        assert result.halt
        assert ctx.topology.metadata.has_finalizer("openstack.org/octavia")
        assert all(ctx.conditions.has(c) for c in SUB_CONDITIONS)
        assert ctx.conditions.is_unknown(ConditionType.READY)

    def test_known_instance_proceeds(self, rstore):
        topology = make_topology()
        topology.metadata.add_finalizer("openstack.org/octavia")
        ctx = _ctx(rstore, topology)
        assert not init_stage(ctx).halt


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


class TestCredentialsStage:
    def test_missing_secret_requeues_with_waiting_condition(self, rstore):
        ctx = _ctx(rstore)
        result = credentials_stage(ctx)

        assert result.outcome is Outcome.REQUEUE
        assert result.requeue_after == 10.0
        cond = ctx.conditions.get(ConditionType.INPUT_READY)
        assert cond.status is ConditionStatus.FALSE
        assert cond.reason == Reason.REQUESTED.value
        assert cond.severity is Severity.INFO

    def test_missing_password_field_fails(self, rstore):
        rstore.create(make_secret("osp-secret", {"Other": "x"}))
        result = credentials_stage(_ctx(rstore))
        assert result.outcome is Outcome.FAIL
        assert isinstance(result.error, InvalidReferenceError)

    def test_secret_content_feeds_input_hash(self, rstore):
        topology = seed(rstore, make_topology())
        ctx = _ctx(rstore, topology)

        assert credentials_stage(ctx).is_continue
        assert "secret/osp-secret" in ctx.input_hashes
        assert ctx.conditions.is_true(ConditionType.INPUT_READY)

    def test_reported_transport_secret_is_hashed(self, rstore):
        topology = seed(rstore, make_topology())
        topology.status.transport_secret = TRANSPORT_SECRET
        ctx = _ctx(rstore, topology)

        credentials_stage(ctx)

        assert f"secret/{TRANSPORT_SECRET}" in ctx.input_hashes


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


class TestDatabaseStage:
    def test_creates_accounts_and_databases(self, rstore):
        topology = seed(rstore, make_topology())
        ctx = _ctx(rstore, topology)

        assert database_stage(ctx).is_continue

        accounts = rstore.list(ACCOUNT_KIND, "openstack")
        databases = rstore.list(DATABASE_KIND, "openstack")
        assert sorted(a.name for a in accounts) == ["octavia", "octavia-persistence"]
        assert sorted(d.name for d in databases) == ["octavia", "octavia_persistence"]
        assert all(a.metadata.has_finalizer("openstack.org/octavia") for a in accounts)
        assert all(d.metadata.controller_reference().uid == topology.metadata.uid for d in databases)
        assert ctx.status.database_hostname == "octavia.openstack.svc"
        assert ctx.conditions.is_true(ConditionType.DB_READY)
        assert ctx.conditions.is_true(ConditionType.DB_ACCOUNT_READY)

    def test_unready_database_requeues(self, rstore):
        rstore.unready_databases.add("octavia_persistence")
        ctx = _ctx(rstore, seed(rstore, make_topology()))

        result = database_stage(ctx)

        assert result.outcome is Outcome.REQUEUE
        assert result.requeue_after == 5.0
        assert ctx.conditions.get(ConditionType.DB_READY).status is ConditionStatus.FALSE

    def test_second_run_writes_nothing(self, rstore):
        ctx = _ctx(rstore, seed(rstore, make_topology()))
        database_stage(ctx)
        writes = rstore.writes
        database_stage(ctx)
        assert rstore.writes == writes


# ---------------------------------------------------------------------------
# Config + input hash
# ---------------------------------------------------------------------------


class TestConfigAndInputHash:
    def test_config_hash_recorded(self, rstore):
        ctx = _ctx(rstore, make_topology(custom_service_config="[DEFAULT]\ndebug=true"))
        assert config_stage(ctx).is_continue

        templates, custom = ctx.collaborators.materializer.calls[0]
        assert [t.kind for t in templates] == ["config", "scripts"]
        assert custom == {"custom.conf": "[DEFAULT]\ndebug=true"}
        assert "config" in ctx.input_hashes
        assert ctx.conditions.is_true(ConditionType.SERVICE_CONFIG_READY)

    def test_input_hash_change_halts_then_settles(self, rstore):
        ctx = _ctx(rstore)
        ctx.input_hashes = {"config": "abc"}

        first = input_hash_stage(ctx)
        assert first.halt
        assert ctx.status.hash["input"] == object_hash({"config": "abc"})

        second = input_hash_stage(ctx)
        assert not second.halt
        assert ctx.config_hash == object_hash({"config": "abc"})


# ---------------------------------------------------------------------------
# Migration
# ---------------------------------------------------------------------------


class TestMigrationStage:
    def test_requires_prerequisites(self, rstore):
        result = migration_stage(_ctx(rstore))
        assert result.outcome is Outcome.FAIL
        assert isinstance(result.error, StageError)

    def test_runs_job_and_records_hash(self, rstore):
        ctx = _ctx(rstore)
        _mark_inputs_ready(ctx)
        ctx.config_hash = "cfg"

        assert migration_stage(ctx).is_continue

        job = ctx.collaborators.jobs.calls[0]
        assert job.name == "octavia-db-sync"
        assert ctx.status.hash[HashKey.MIGRATION.value] == job.content_hash
        assert ctx.conditions.is_true(ConditionType.DB_SYNC_READY)

    def test_unchanged_hash_skips_job(self, rstore):
        ctx = _ctx(rstore)
        _mark_inputs_ready(ctx)
        ctx.config_hash = "cfg"
        migration_stage(ctx)

        result = migration_stage(ctx)

        assert result.reason == "migration hash unchanged"
        assert len(ctx.collaborators.jobs.calls) == 1

    def test_gate_ignores_runner_reported_hash(self, rstore):
        ctx = _ctx(rstore, jobs=FakeJobRunner(own_hash=True))
        _mark_inputs_ready(ctx)
        ctx.config_hash = "cfg"
        migration_stage(ctx)

        job = ctx.collaborators.jobs.calls[0]
        assert ctx.status.hash[HashKey.MIGRATION.value] == job.content_hash
        assert migration_stage(ctx).reason == "migration hash unchanged"
        assert len(ctx.collaborators.jobs.calls) == 1

    def test_completed_job_recorded_even_when_reported_unchanged(self, rstore):
        ctx = _ctx(rstore, jobs=FakeJobRunner(report_unchanged=True))
        _mark_inputs_ready(ctx)
        ctx.config_hash = "cfg"

        assert migration_stage(ctx).is_continue
        migration_stage(ctx)

        assert HashKey.MIGRATION.value in ctx.status.hash
        assert len(ctx.collaborators.jobs.calls) == 1
        assert ctx.conditions.is_true(ConditionType.DB_SYNC_READY)

    def test_running_job_requeues(self, rstore):
        ctx = _ctx(rstore, jobs=FakeJobRunner(requeue_after=5.0))
        _mark_inputs_ready(ctx)

        result = migration_stage(ctx)

        assert result.outcome is Outcome.REQUEUE
        assert HashKey.MIGRATION.value not in ctx.status.hash
        assert ctx.conditions.get(ConditionType.DB_SYNC_READY).status is ConditionStatus.FALSE


# ---------------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------------


class TestInfrastructureStages:
    def test_rbac_rules(self, rstore):
        ctx = _ctx(rstore)
        assert rbac_stage(ctx).is_continue
        assert ctx.collaborators.rbac.rules == list(RBAC_RULES)
        assert RBAC_RULES[0].resource_names == ("anyuid", "privileged")

    def test_rbac_pending_requeues(self, rstore):
        result = rbac_stage(_ctx(rstore, rbac=FakeRbac(requeue_after=3.0)))
        assert result.requeue_after == 3.0

    def test_transport_without_secret_requeues(self, rstore):
        ctx = _ctx(rstore, transport=FakeTransport(secret_name=""))
        result = transport_stage(ctx)
        assert result.outcome is Outcome.REQUEUE
        assert result.requeue_after == 10.0

    def test_new_transport_secret_halts(self, rstore):
        ctx = _ctx(rstore)
        assert transport_stage(ctx).halt
        assert ctx.status.transport_secret == TRANSPORT_SECRET
        assert not transport_stage(ctx).halt

    def test_missing_attachment_names_it(self, rstore):
        topology = make_topology(worker=RoleSpec(network_attachments=["octavia-net"]))
        ctx = _ctx(rstore, topology, attachments=FakeAttachments())

        result = network_attachments_stage(ctx)

        assert result.outcome is Outcome.REQUEUE
        assert ctx.conditions.get(ConditionType.NETWORK_ATTACHMENTS_READY).message == \
            "Network attachment octavia-net not found"

    def test_attachments_annotation(self, rstore):
        topology = make_topology(worker=RoleSpec(network_attachments=["octavia-net"]))
        ctx = _ctx(rstore, topology, attachments=FakeAttachments({"octavia-net"}))

        assert network_attachments_stage(ctx).is_continue
        assert json.loads(ctx.networks_annotation) == [{"name": "octavia-net", "namespace": "openstack"}]

    def test_unmanaged_network_skips(self, rstore):
        topology = make_topology(management_network=ManagementNetworkSpec(manage=False))
        ctx = _ctx(rstore, topology)

        management_network_stage(ctx)

        assert ctx.collaborators.networks.calls == 0
        assert ctx.network is None
        assert ctx.conditions.is_true(ConditionType.MANAGEMENT_NETWORK_READY)

    def test_managed_network_records_ids(self, rstore):
        ctx = _ctx(rstore)
        management_network_stage(ctx)
        assert ctx.network.network_id == "net-mgmt"


# ---------------------------------------------------------------------------
# Converged
# ---------------------------------------------------------------------------


class TestConvergedStage:
    def test_releases_stale_accounts(self, rstore):
        ctx = _ctx(rstore)
        rstore.create(Resource(
            kind=ACCOUNT_KIND,
            metadata=ObjectMeta(name="octavia-old", namespace="openstack",
                                finalizers=["openstack.org/octavia"]),
            spec={"database": "octavia"},
        ))
        rstore.create(Resource(
            kind=ACCOUNT_KIND,
            metadata=ObjectMeta(name="unrelated", namespace="openstack",
                                finalizers=["openstack.org/octavia"]),
            spec={"database": "keystone"},
        ))

        assert release_stale_accounts(ctx) == ["octavia-old"]
        assert rstore.get(ACCOUNT_KIND, "octavia-old", "openstack").metadata.finalizers == []
        assert rstore.get(ACCOUNT_KIND, "unrelated", "openstack").metadata.finalizers

    def test_requeues_while_barrier_closed(self, rstore):
        ctx = _ctx(rstore)
        result = converged_stage(ctx)
        assert result.requeue_after == 10.0
        assert ctx.status.observed_generation == ctx.topology.metadata.generation

    def test_marks_ready_when_everything_is_true(self, rstore):
        ctx = _ctx(rstore)
        ctx.barrier_open = True
        for c in SUB_CONDITIONS:
            ctx.conditions.mark_true(c, "ok")

        assert converged_stage(ctx).is_continue
        assert ctx.conditions.is_true(ConditionType.READY)
