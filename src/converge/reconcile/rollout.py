"""Staged Rollout Barrier — primary role first, dependent roles after.

Each worker role gets one ``RoleController`` child resource, upserted
from the role's spec plus the topology-wide inputs (config hash,
management network, transport secret). The health manager is the
primary role: until its ready count equals its desired count over the
currently observed resource, no dependent role resource is created or
touched at all.

The role set is fixed. ``ROLE_PROFILES`` maps every ``Role`` to its
condition, spec field and messages, and is checked for totality at
import time.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from converge.core.conditions import ConditionList, ConditionType, Reason, Severity, messages
from converge.core.logging import get_logger
from converge.core.models import Resource, RoleSpec
from converge.reconcile.context import PassContext
from converge.store.upsert import OperationResult, create_or_update, set_controller_reference

logger = get_logger(__name__)

ROLE_KIND = "RoleController"


class Role(str, Enum):
    HEALTH_MANAGER = "healthmanager"
    HOUSEKEEPING = "housekeeping"
    WORKER = "worker"


@dataclass(frozen=True)
class RoleProfile:
    condition: ConditionType
    spec_field: str
    primary: bool = False


ROLE_PROFILES: dict[Role, RoleProfile] = {
    Role.HEALTH_MANAGER: RoleProfile(ConditionType.HEALTH_MANAGER_READY, "health_manager", primary=True),
    Role.HOUSEKEEPING: RoleProfile(ConditionType.HOUSEKEEPING_READY, "housekeeping"),
    Role.WORKER: RoleProfile(ConditionType.WORKER_READY, "worker"),
}

if set(ROLE_PROFILES) != set(Role):  # pragma: no cover
    raise RuntimeError("every role needs a profile")
if sum(p.primary for p in ROLE_PROFILES.values()) != 1:  # pragma: no cover
    raise RuntimeError("exactly one role must be primary")

PRIMARY_ROLE = next(r for r, p in ROLE_PROFILES.items() if p.primary)
DEPENDENT_ROLES = tuple(r for r, p in ROLE_PROFILES.items() if not p.primary)

BARRIER_MESSAGE = f"Waiting for {PRIMARY_ROLE.value} to be fully rolled out"


@dataclass(frozen=True)
class RolloutOutcome:
    role: Role
    ready_count: int
    desired_count: int
    operation: OperationResult
    resource: Resource

    @property
    def fully_rolled_out(self) -> bool:
        return self.ready_count == self.desired_count


def role_resource_name(topology_name: str, role: Role) -> str:
    return f"{topology_name}-{role.value}"


def _role_spec(ctx: PassContext, role: Role) -> RoleSpec:
    return getattr(ctx.spec, ROLE_PROFILES[role].spec_field)


def _desired_spec(ctx: PassContext, role: Role, spec: RoleSpec) -> dict[str, Any]:
    network = ctx.network
    return {
        "role": role.value,
        "replicas": spec.replicas,
        "container_image": spec.container_image,
        "network_attachments": list(spec.network_attachments),
        "node_selector": spec.node_selector if spec.node_selector is not None else ctx.spec.node_selector,
        "custom_service_config": spec.custom_service_config,
        "config_hash": ctx.config_hash,
        "secret": ctx.spec.secret,
        "service_user": ctx.spec.service_user,
        "tenant_name": ctx.spec.tenant_name,
        "transport_secret": ctx.status.transport_secret,
        "database_hostname": ctx.status.database_hostname,
        "management_network_id": network.network_id if network else "",
        "security_group_id": network.security_group_id if network else "",
    }


def read_counts(resource: Resource, fallback_desired: int) -> tuple[int, int]:
    """Ready and desired counts as reported by the child's own status."""
    ready = int(resource.status.get("ready_count", 0))
    desired = int(resource.status.get("desired_count", fallback_desired))
    return ready, desired


def deploy_child(
    ctx: PassContext,
    kind: str,
    name: str,
    component: str,
    desired_spec: dict[str, Any],
    condition: ConditionType,
    fallback_desired: int,
) -> tuple[Resource, OperationResult, int, int]:
    """Upsert a workload-bearing child and fold its readiness into ``condition``.

    While the child reports fewer ready than desired replicas the
    condition is a waiting False; once it has fully rolled out the
    child's own ledger is mirrored, or the condition is marked True when
    the child has no conditions yet.
    """

    def mutate(obj: Resource) -> None:
        obj.spec = desired_spec
        obj.metadata.labels.update(ctx.labels(component))
        set_controller_reference(ctx.topology, obj)

    resource, op = create_or_update(ctx.store, kind, name, ctx.namespace, mutate)
    if op is not OperationResult.UNCHANGED:
        logger.info("child.upserted", kind=kind, name=name, operation=op.value)

    ready, desired = read_counts(resource, fallback_desired)
    if ready == desired:
        child = ConditionList.from_list(resource.status.get("conditions"))
        ctx.conditions.adopt(child, condition, messages(condition).ready)
    else:
        ctx.conditions.mark_false(
            condition, Reason.REQUESTED, Severity.INFO, messages(condition).waiting,
        )
    return resource, op, ready, desired


def rollout(ctx: PassContext, role: Role) -> RolloutOutcome:
    """Upsert the role's resource and mirror its readiness into the ledger."""
    profile = ROLE_PROFILES[role]
    spec = _role_spec(ctx, role)
    resource, op, ready, desired = deploy_child(
        ctx,
        ROLE_KIND,
        role_resource_name(ctx.name, role),
        role.value,
        _desired_spec(ctx, role, spec),
        profile.condition,
        spec.replicas,
    )
    ctx.status.role_ready_counts[role.value] = ready
    ctx.status.role_desired_counts[role.value] = desired
    return RolloutOutcome(role=role, ready_count=ready, desired_count=desired,
                          operation=op, resource=resource)


def mark_dependents_waiting(ctx: PassContext) -> None:
    """Record that dependent roles are held back by the barrier."""
    for role in DEPENDENT_ROLES:
        condition = ROLE_PROFILES[role].condition
        if ctx.conditions.is_true(condition):
            continue
        ctx.conditions.mark_false(
            condition, Reason.REQUESTED, Severity.INFO, BARRIER_MESSAGE,
        )
