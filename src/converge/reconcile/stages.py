"""The stages of a convergence pass, in the order they run.

Each stage is a plain function ``(PassContext) -> StageResult``. Stages
only call collaborators and the store; everything they learn goes into
``ctx.status`` or ``ctx.conditions``. ``STAGES`` is the ordered list the
pipeline driver iterates.

::

    Init → CredentialsResolved → DatabaseReady → ConfigRendered
         → InputHashStable → MigrationComplete → RbacReady → TransportReady
         → NetworkAttachmentsVerified → NetworkProvisioned → APIDeployed
         → PrimaryRoleReady → DependentRolesDeployed → AssetPipelineSettled
         → Converged
"""

from __future__ import annotations

import json

from converge.core.conditions import ConditionType, Reason, Severity, messages
from converge.core.errors import ConvergeError, InvalidReferenceError, NotFoundError, StageError
from converge.core.hashing import HashKey, object_hash, recorded_hash, set_hash
from converge.core.logging import get_logger
from converge.core.models import JobSpec, PolicyRule, Resource, Template
from converge.reconcile.assets import reconcile_assets
from converge.reconcile.context import PassContext
from converge.reconcile.deletion import ACCOUNT_KIND, DATABASE_KIND
from converge.reconcile.pipeline import Pipeline, Stage
from converge.reconcile.rollout import (
    DEPENDENT_ROLES,
    PRIMARY_ROLE,
    ROLE_PROFILES,
    deploy_child,
    mark_dependents_waiting,
    rollout,
)
from converge.reconcile.stage_result import StageResult
from converge.store.upsert import create_or_update, set_controller_reference

logger = get_logger(__name__)

SECRET_KIND = "Secret"
API_KIND = "APIController"
DB_SYNC_COMMAND = "octavia-db-manage upgrade head"

SUB_CONDITIONS = tuple(c for c in ConditionType if c is not ConditionType.READY)

RBAC_RULES = (
    PolicyRule(
        api_groups=("security.openshift.io",),
        resources=("securitycontextconstraints",),
        resource_names=("anyuid", "privileged"),
        verbs=("use",),
    ),
    PolicyRule(
        api_groups=("",),
        resources=("pods",),
        verbs=("create", "get", "list", "watch", "update", "patch", "delete"),
    ),
)


def _waiting(ctx: PassContext, condition: ConditionType, *args: str) -> None:
    ctx.conditions.mark_false(condition, Reason.REQUESTED, Severity.INFO,
                              messages(condition).waiting, *args)


def _ready(ctx: PassContext, condition: ConditionType) -> None:
    ctx.conditions.mark_true(condition, messages(condition).ready)


# =============================================================================
# INPUTS
# =============================================================================


def init_stage(ctx: PassContext) -> StageResult:
    """Ensure every condition exists and the finalizer is in place."""
    ctx.conditions.init(SUB_CONDITIONS)
    added = ctx.topology.metadata.add_finalizer(ctx.settings.finalizer)
    if added or ctx.first_observation:
        logger.info("topology.registered", finalizer_added=added)
        return StageResult.halt_pass("new instance")
    return StageResult.proceed()


def credentials_stage(ctx: PassContext) -> StageResult:
    """Verify the service secret and feed its content into the input hash."""
    spec = ctx.spec
    try:
        secret = ctx.store.get(SECRET_KIND, spec.secret, ctx.namespace)
    except NotFoundError:
        _waiting(ctx, ConditionType.INPUT_READY)
        return StageResult.requeue(ctx.settings.input_wait_seconds, f"secret {spec.secret} missing")

    if spec.password_selector not in secret.data:
        return StageResult.fail(InvalidReferenceError(
            "password_selector",
            spec.password_selector,
            f"secret {spec.secret} has no field {spec.password_selector}",
        ))
    ctx.input_hashes[f"secret/{secret.name}"] = object_hash(secret.data)

    transport_secret = ctx.status.transport_secret
    if transport_secret:
        try:
            transport = ctx.store.get(SECRET_KIND, transport_secret, ctx.namespace)
        except NotFoundError:
            logger.info("inputs.transport_secret_missing", secret=transport_secret)
        else:
            ctx.input_hashes[f"secret/{transport.name}"] = object_hash(transport.data)

    _ready(ctx, ConditionType.INPUT_READY)
    return StageResult.proceed()


def _database_pairs(ctx: PassContext) -> list[tuple[str, str]]:
    return [
        (ctx.settings.database_name, ctx.spec.database_account),
        (ctx.settings.persistence_database_name, ctx.spec.persistence_database_account),
    ]


def database_stage(ctx: PassContext) -> StageResult:
    """Ensure both databases and their accounts exist and carry the finalizer."""
    finalizer = ctx.settings.finalizer

    for database, account in _database_pairs(ctx):
        def mutate_account(obj: Resource, database: str = database, account: str = account) -> None:
            obj.spec = {"database": database, "username": account.replace("-", "_")}
            obj.metadata.labels.update(ctx.labels("database"))
            obj.metadata.add_finalizer(finalizer)

        try:
            create_or_update(ctx.store, ACCOUNT_KIND, account, ctx.namespace, mutate_account)
        except ConvergeError as e:
            return StageResult.fail(e, ConditionType.DB_ACCOUNT_READY)
    _ready(ctx, ConditionType.DB_ACCOUNT_READY)

    hostnames = []
    for database, account in _database_pairs(ctx):
        def mutate_database(obj: Resource, database: str = database, account: str = account) -> None:
            obj.spec = {
                "instance": ctx.spec.database_instance,
                "database": database,
                "account": account,
            }
            obj.metadata.labels.update(ctx.labels("database"))
            obj.metadata.add_finalizer(finalizer)
            set_controller_reference(ctx.topology, obj)

        db, _ = create_or_update(ctx.store, DATABASE_KIND, database, ctx.namespace, mutate_database)
        if not db.status.get("ready") or not db.status.get("hostname"):
            _waiting(ctx, ConditionType.DB_READY)
            return StageResult.requeue(ctx.settings.database_wait_seconds,
                                       f"database {database} not ready")
        hostnames.append(db.status["hostname"])

    ctx.status.database_hostname = hostnames[0]
    _ready(ctx, ConditionType.DB_READY)
    return StageResult.proceed()


def config_stage(ctx: PassContext) -> StageResult:
    """Render service config and scripts through the materializer."""
    spec = ctx.spec
    labels = ctx.labels()
    config = {
        "database_hostname": ctx.status.database_hostname,
        "database_account": spec.database_account,
        "persistence_database_account": spec.persistence_database_account,
        "transport_secret": ctx.status.transport_secret,
        "service_user": spec.service_user,
        "tenant_name": spec.tenant_name,
    }
    config.update(spec.default_config_overwrite)
    templates = [
        Template(name=f"{ctx.name}-config-data", namespace=ctx.namespace, kind="config",
                 data=config, labels=labels),
        Template(name=f"{ctx.name}-scripts", namespace=ctx.namespace, kind="scripts",
                 data={"db-sync": DB_SYNC_COMMAND}, labels=labels),
    ]
    custom_data = {"custom.conf": spec.custom_service_config} if spec.custom_service_config else {}

    ctx.input_hashes["config"] = ctx.collaborators.materializer.ensure(
        ctx.topology, templates, custom_data,
    )
    _ready(ctx, ConditionType.SERVICE_CONFIG_READY)
    return StageResult.proceed()


def input_hash_stage(ctx: PassContext) -> StageResult:
    """Record the aggregate input hash; a change ends the pass."""
    aggregate = object_hash(ctx.input_hashes)
    ctx.config_hash = aggregate
    if set_hash(ctx.status.hash, HashKey.INPUT, aggregate):
        logger.info("inputs.changed", hash=aggregate)
        return StageResult.halt_pass("input hash changed")
    return StageResult.proceed()


def migration_stage(ctx: PassContext) -> StageResult:
    """Run the database migration job when its inputs changed."""
    required = (ConditionType.INPUT_READY, ConditionType.DB_READY, ConditionType.SERVICE_CONFIG_READY)
    missing = [c.value for c in required if not ctx.conditions.is_true(c)]
    if missing:
        return StageResult.fail(StageError(f"migration entered before {', '.join(missing)}"))

    job = JobSpec(
        name=f"{ctx.name}-db-sync",
        namespace=ctx.namespace,
        command=DB_SYNC_COMMAND,
        content_hash=object_hash({"command": DB_SYNC_COMMAND, "input": ctx.config_hash}),
        labels=ctx.labels("db-sync"),
    )
    last = recorded_hash(ctx.status.hash, HashKey.MIGRATION)
    if last == job.content_hash:
        _ready(ctx, ConditionType.DB_SYNC_READY)
        return StageResult.skip("migration hash unchanged")

    outcome = ctx.collaborators.jobs.run(
        ctx.topology,
        job,
        HashKey.MIGRATION.value,
        ctx.spec.preserve_jobs,
        ctx.settings.migration_poll_seconds,
        last,
    )
    if outcome.requeue_after is not None:
        _waiting(ctx, ConditionType.DB_SYNC_READY)
        return StageResult.requeue(outcome.requeue_after, "migration job running")
    # The gate keys on our own content hash; the runner's hash is only logged.
    set_hash(ctx.status.hash, HashKey.MIGRATION, job.content_hash)
    logger.info("migration.complete", job=job.name, changed=outcome.changed, runner_hash=outcome.hash)

    _ready(ctx, ConditionType.DB_SYNC_READY)
    return StageResult.proceed()


# =============================================================================
# INFRASTRUCTURE
# =============================================================================


def rbac_stage(ctx: PassContext) -> StageResult:
    requeue_after = ctx.collaborators.rbac.reconcile(ctx.topology, RBAC_RULES)
    if requeue_after is not None:
        _waiting(ctx, ConditionType.RBAC_READY)
        return StageResult.requeue(requeue_after, "rbac pending")
    _ready(ctx, ConditionType.RBAC_READY)
    return StageResult.proceed()


def transport_stage(ctx: PassContext) -> StageResult:
    """Provision the transport; a newly reported secret ends the pass."""
    secret_name = ctx.collaborators.transport.create_or_update(ctx.topology, ctx.spec.transport_cluster)
    if not secret_name:
        _waiting(ctx, ConditionType.TRANSPORT_READY)
        return StageResult.requeue(ctx.settings.transport_wait_seconds, "transport secret not reported")

    changed = secret_name != ctx.status.transport_secret
    ctx.status.transport_secret = secret_name
    _ready(ctx, ConditionType.TRANSPORT_READY)
    if changed:
        logger.info("transport.secret_changed", secret=secret_name)
        return StageResult.halt_pass("transport secret changed")
    return StageResult.proceed()


def _all_attachments(ctx: PassContext) -> list[str]:
    names = set(ctx.spec.api.network_attachments)
    for profile in ROLE_PROFILES.values():
        names.update(getattr(ctx.spec, profile.spec_field).network_attachments)
    return sorted(names)


def network_attachments_stage(ctx: PassContext) -> StageResult:
    names = _all_attachments(ctx)
    for name in names:
        if not ctx.collaborators.attachments.exists(name, ctx.namespace):
            _waiting(ctx, ConditionType.NETWORK_ATTACHMENTS_READY, name)
            return StageResult.requeue(ctx.settings.network_attachment_wait_seconds,
                                       f"network attachment {name} missing")
    ctx.networks_annotation = (
        json.dumps([{"name": n, "namespace": ctx.namespace} for n in names]) if names else ""
    )
    _ready(ctx, ConditionType.NETWORK_ATTACHMENTS_READY)
    return StageResult.proceed()


def management_network_stage(ctx: PassContext) -> StageResult:
    if not ctx.spec.management_network.manage:
        ctx.conditions.mark_true(ConditionType.MANAGEMENT_NETWORK_READY, "Management network not managed")
        return StageResult.skip("management network not managed")
    ctx.network = ctx.collaborators.networks.ensure(ctx.topology)
    _ready(ctx, ConditionType.MANAGEMENT_NETWORK_READY)
    return StageResult.proceed()


# =============================================================================
# WORKLOADS
# =============================================================================


def api_stage(ctx: PassContext) -> StageResult:
    api = ctx.spec.api
    desired = {
        "replicas": api.replicas,
        "container_image": api.container_image,
        "network_attachments": list(api.network_attachments),
        "networks_annotation": ctx.networks_annotation,
        "node_selector": api.node_selector if api.node_selector is not None else ctx.spec.node_selector,
        "custom_service_config": api.custom_service_config,
        "config_hash": ctx.config_hash,
        "secret": ctx.spec.secret,
        "service_user": ctx.spec.service_user,
        "transport_secret": ctx.status.transport_secret,
        "database_hostname": ctx.status.database_hostname,
        "database_account": ctx.spec.database_account,
    }
    _, _, ready, _ = deploy_child(
        ctx, API_KIND, f"{ctx.name}-api", "api", desired, ConditionType.API_READY, api.replicas,
    )
    ctx.status.api_ready_count = ready
    return StageResult.proceed()


def primary_role_stage(ctx: PassContext) -> StageResult:
    outcome = rollout(ctx, PRIMARY_ROLE)
    ctx.barrier_open = outcome.fully_rolled_out
    if not ctx.barrier_open:
        logger.info(
            "rollout.barrier_closed",
            role=PRIMARY_ROLE.value,
            ready=outcome.ready_count,
            desired=outcome.desired_count,
        )
    return StageResult.proceed()


def dependent_roles_stage(ctx: PassContext) -> StageResult:
    if not ctx.barrier_open:
        mark_dependents_waiting(ctx)
        return StageResult.skip("primary role not fully rolled out")
    for role in DEPENDENT_ROLES:
        try:
            rollout(ctx, role)
        except ConvergeError as e:
            return StageResult.fail(e, ROLE_PROFILES[role].condition)
    return StageResult.proceed()


def asset_stage(ctx: PassContext) -> StageResult:
    """Refresh amphora ssh access, then move the asset pipeline along.

    A failed ssh refresh is raised and lands on the stage's condition.
    """
    ctx.collaborators.ssh_access.ensure(ctx.topology)
    return reconcile_assets(ctx)


# =============================================================================
# CONVERGED
# =============================================================================


def release_stale_accounts(ctx: PassContext) -> list[str]:
    """Drop the finalizer from accounts of our databases the topology no longer names."""
    finalizer = ctx.settings.finalizer
    in_use = {account for _, account in _database_pairs(ctx)}
    databases = {database for database, _ in _database_pairs(ctx)}
    released = []
    for account in ctx.store.list(ACCOUNT_KIND, ctx.namespace):
        if account.name in in_use or account.spec.get("database") not in databases:
            continue
        if account.metadata.remove_finalizer(finalizer):
            ctx.store.update(account)
            released.append(account.name)
            logger.info("accounts.released", account=account.name)
    return released


def converged_stage(ctx: PassContext) -> StageResult:
    release_stale_accounts(ctx)
    ctx.status.observed_generation = ctx.topology.metadata.generation

    if not ctx.barrier_open:
        return StageResult.requeue(ctx.settings.barrier_poll_seconds, "primary role rolling out")
    if not ctx.conditions.all_sub_conditions_true():
        return StageResult.requeue(ctx.settings.barrier_poll_seconds, "sub-conditions pending")
    _ready(ctx, ConditionType.READY)
    return StageResult.proceed()


STAGES: tuple[Stage, ...] = (
    Stage("Init", init_stage),
    Stage("CredentialsResolved", credentials_stage, ConditionType.INPUT_READY),
    Stage("DatabaseReady", database_stage, ConditionType.DB_READY),
    Stage("ConfigRendered", config_stage, ConditionType.SERVICE_CONFIG_READY),
    Stage("InputHashStable", input_hash_stage, ConditionType.INPUT_READY),
    Stage("MigrationComplete", migration_stage, ConditionType.DB_SYNC_READY),
    Stage("RbacReady", rbac_stage, ConditionType.RBAC_READY),
    Stage("TransportReady", transport_stage, ConditionType.TRANSPORT_READY),
    Stage("NetworkAttachmentsVerified", network_attachments_stage,
          ConditionType.NETWORK_ATTACHMENTS_READY),
    Stage("NetworkProvisioned", management_network_stage, ConditionType.MANAGEMENT_NETWORK_READY),
    Stage("APIDeployed", api_stage, ConditionType.API_READY),
    Stage("PrimaryRoleReady", primary_role_stage, ROLE_PROFILES[PRIMARY_ROLE].condition),
    Stage("DependentRolesDeployed", dependent_roles_stage),
    Stage("AssetPipelineSettled", asset_stage, ConditionType.ASSETS_READY),
    Stage("Converged", converged_stage, ConditionType.DB_ACCOUNT_READY),
)


def default_pipeline() -> Pipeline:
    return Pipeline(STAGES)
