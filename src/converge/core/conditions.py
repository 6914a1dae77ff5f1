"""
Condition Aggregator - the typed readiness ledger of a topology.

A topology's readiness is a set of named sub-conditions (database ready,
config rendered, roles deployed, ...) plus an umbrella ``Ready`` that is
True only when every sub-condition is True. Every False condition carries
a reason, a severity and a message, so an operator can diagnose a stuck
topology from its status alone.

Manifesto:
    - **Stable timestamps:** ``last_transition_time`` moves only when the
      status flips; re-asserting the same status keeps the old time
    - **Nothing is dropped:** Conditions from a previous pass survive
      unless explicitly superseded
    - **One summary rule:** ``mirror`` ranks False/Error > False/Warning >
      False/Info > Unknown > True everywhere a ledger is summarized

Architecture:
    ::

        ConditionList (ordered, keyed by type)
        ┌──────────────────┬────────┬───────────┬──────────┬─────────┐
        │ type             │ status │ reason    │ severity │ message │
        ├──────────────────┼────────┼───────────┼──────────┼─────────┤
        │ Ready            │ False  │ Requested │ Info     │ ...     │
        │ InputReady       │ True   │ Ready     │          │ ...     │
        │ DBReady          │ False  │ Requested │ Info     │ ...     │
        └──────────────────┴────────┴───────────┴──────────┴─────────┘

        child.conditions.mirror("APIReady") → one Condition summarizing
        the child, set into the parent ledger under "APIReady"

Tags:
    conditions, readiness, status, aggregation

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from converge.core.timestamps import Clock, utc_now


class ConditionStatus(str, Enum):
    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class Severity(str, Enum):
    ERROR = "Error"
    WARNING = "Warning"
    INFO = "Info"
    NONE = ""


class Reason(str, Enum):
    INIT = "Init"
    REQUESTED = "Requested"
    ERROR = "Error"
    READY = "Ready"


class ConditionType(str, Enum):
    """Every condition the controller maintains on a topology."""

    READY = "Ready"
    INPUT_READY = "InputReady"
    DB_ACCOUNT_READY = "DBAccountReady"
    DB_READY = "DBReady"
    SERVICE_CONFIG_READY = "ServiceConfigReady"
    DB_SYNC_READY = "DBSyncReady"
    RBAC_READY = "RbacReady"
    TRANSPORT_READY = "TransportReady"
    NETWORK_ATTACHMENTS_READY = "NetworkAttachmentsReady"
    MANAGEMENT_NETWORK_READY = "ManagementNetworkReady"
    API_READY = "APIReady"
    HEALTH_MANAGER_READY = "HealthManagerReady"
    HOUSEKEEPING_READY = "HousekeepingReady"
    WORKER_READY = "WorkerReady"
    ASSETS_READY = "AssetsReady"


def _type_key(ctype: ConditionType | str) -> str:
    return ctype.value if isinstance(ctype, ConditionType) else ctype


# =============================================================================
# MESSAGE CATALOGUE
# =============================================================================


@dataclass(frozen=True)
class ConditionMessages:
    """Operator-facing messages for one condition type.

    ``error`` takes the error text as its single ``{}`` placeholder.
    """

    init: str
    ready: str
    waiting: str
    error: str


MESSAGES: dict[ConditionType, ConditionMessages] = {
    ConditionType.READY: ConditionMessages(
        "Setup started", "Setup complete", "Setup in progress", "Setup failed: {}"),
    ConditionType.INPUT_READY: ConditionMessages(
        "Input data not checked", "Input data complete",
        "Input data resources missing", "Input data error occurred {}"),
    ConditionType.DB_ACCOUNT_READY: ConditionMessages(
        "Database account not started", "Database account created",
        "Database account creation in progress", "Database account error occurred {}"),
    ConditionType.DB_READY: ConditionMessages(
        "Database not started", "Database created",
        "Database creation in progress", "Database error occurred {}"),
    ConditionType.SERVICE_CONFIG_READY: ConditionMessages(
        "Service config not started", "Service config create completed",
        "Service config create in progress", "Service config error occurred {}"),
    ConditionType.DB_SYNC_READY: ConditionMessages(
        "Database sync not started", "Database sync completed",
        "Database sync job still running", "Database sync error occurred {}"),
    ConditionType.RBAC_READY: ConditionMessages(
        "RBAC not started", "RBAC rules created",
        "RBAC provisioning in progress", "RBAC error occurred {}"),
    ConditionType.TRANSPORT_READY: ConditionMessages(
        "Transport not started", "Transport secret available",
        "Transport secret not yet reported", "Transport error occurred {}"),
    ConditionType.NETWORK_ATTACHMENTS_READY: ConditionMessages(
        "Network attachments not checked", "Network attachments verified",
        "Network attachment {} not found", "Network attachment error occurred {}"),
    ConditionType.MANAGEMENT_NETWORK_READY: ConditionMessages(
        "Management network not started", "Management network ready",
        "Management network provisioning in progress",
        "Management network error occurred {}"),
    ConditionType.API_READY: ConditionMessages(
        "API not started", "API deployment ready",
        "API deployment in progress", "API error occurred {}"),
    ConditionType.HEALTH_MANAGER_READY: ConditionMessages(
        "Health manager not started", "Health manager ready",
        "Health manager deployment in progress", "Health manager error occurred {}"),
    ConditionType.HOUSEKEEPING_READY: ConditionMessages(
        "Housekeeping not started", "Housekeeping ready",
        "Housekeeping deployment in progress",
        "Housekeeping error occurred {}"),
    ConditionType.WORKER_READY: ConditionMessages(
        "Worker not started", "Worker ready",
        "Worker deployment in progress",
        "Worker error occurred {}"),
    ConditionType.ASSETS_READY: ConditionMessages(
        "Asset import not started", "Assets imported",
        "Asset import in progress", "Asset import error occurred {}"),
}

_missing = set(ConditionType) - set(MESSAGES)
if _missing:  # pragma: no cover
    raise RuntimeError(f"condition types without messages: {sorted(m.value for m in _missing)}")


def messages(ctype: ConditionType) -> ConditionMessages:
    """Look up the message set for a condition type."""
    return MESSAGES[ctype]


# =============================================================================
# CONDITION
# =============================================================================


class Condition(BaseModel):
    """One readiness fact."""

    type: str
    status: ConditionStatus = ConditionStatus.UNKNOWN
    reason: str = Reason.INIT.value
    severity: Severity = Severity.NONE
    message: str = ""
    last_transition_time: datetime = Field(default_factory=utc_now)

    def is_true(self) -> bool:
        return self.status is ConditionStatus.TRUE

    def rank(self) -> int:
        """Lower rank means more severe."""
        if self.status is ConditionStatus.FALSE:
            return {Severity.ERROR: 0, Severity.WARNING: 1}.get(self.severity, 2)
        if self.status is ConditionStatus.UNKNOWN:
            return 3
        return 4


class ConditionList:
    """
    Ordered ledger of conditions keyed by type.

    Mutations never touch persistence; the dispatcher writes the ledger
    back into the status record at the end of a pass.

    Examples:
        >>> ledger = ConditionList()
        >>> ledger.init([ConditionType.DB_READY])
        >>> ledger.mark_true(ConditionType.DB_READY, "Database created")
        >>> ledger.all_sub_conditions_true()
        True
    """

    def __init__(
        self,
        conditions: Iterable[Condition] | None = None,
        clock: Clock = utc_now,
    ):
        self._clock = clock
        self._items: list[Condition] = [c.model_copy() for c in conditions or ()]

    # ── Construction ─────────────────────────────────────────────

    @classmethod
    def from_list(cls, raw: Iterable[Any] | None, clock: Clock = utc_now) -> ConditionList:
        """Build a ledger from condition models or plain dicts."""
        items = []
        for entry in raw or ():
            items.append(entry if isinstance(entry, Condition) else Condition.model_validate(entry))
        return cls(items, clock=clock)

    def to_list(self) -> list[Condition]:
        return [c.model_copy() for c in self._items]

    def copy(self) -> ConditionList:
        return ConditionList(self._items, clock=self._clock)

    def init(self, types: Iterable[ConditionType]) -> None:
        """
        Ensure every given type exists, plus ``Ready``.

        Missing types are added as Unknown/Init with their init message.
        Existing types are kept. ``Ready`` is always reset to Unknown.
        """
        self.set(Condition(
            type=ConditionType.READY.value,
            status=ConditionStatus.UNKNOWN,
            reason=Reason.INIT.value,
            message=MESSAGES[ConditionType.READY].init,
            last_transition_time=self._clock(),
        ))
        for ctype in types:
            if ctype is ConditionType.READY or self.has(ctype):
                continue
            self.mark_unknown(ctype, Reason.INIT, MESSAGES[ctype].init)

    # ── Access ───────────────────────────────────────────────────

    def __iter__(self) -> Iterator[Condition]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def get(self, ctype: ConditionType | str) -> Condition | None:
        key = _type_key(ctype)
        for c in self._items:
            if c.type == key:
                return c
        return None

    def has(self, ctype: ConditionType | str) -> bool:
        return self.get(ctype) is not None

    def is_true(self, ctype: ConditionType | str) -> bool:
        c = self.get(ctype)
        return c is not None and c.is_true()

    def is_unknown(self, ctype: ConditionType | str) -> bool:
        c = self.get(ctype)
        return c is None or c.status is ConditionStatus.UNKNOWN

    def all_sub_conditions_true(self) -> bool:
        """True when every condition other than ``Ready`` is True."""
        return all(c.is_true() for c in self._items if c.type != ConditionType.READY.value)

    # ── Mutation ─────────────────────────────────────────────────

    def set(self, condition: Condition) -> None:
        """Upsert a condition, keeping the transition time if the status is unchanged."""
        incoming = condition.model_copy()
        for i, existing in enumerate(self._items):
            if existing.type == incoming.type:
                if existing.status == incoming.status:
                    incoming.last_transition_time = existing.last_transition_time
                self._items[i] = incoming
                return
        self._items.append(incoming)

    def set_condition(
        self,
        ctype: ConditionType | str,
        status: ConditionStatus,
        reason: Reason | str,
        severity: Severity,
        message: str,
    ) -> None:
        self.set(Condition(
            type=_type_key(ctype),
            status=status,
            reason=reason.value if isinstance(reason, Reason) else reason,
            severity=severity,
            message=message,
            last_transition_time=self._clock(),
        ))

    def mark_true(self, ctype: ConditionType | str, message: str, *args: Any) -> None:
        self.set_condition(ctype, ConditionStatus.TRUE, Reason.READY, Severity.NONE,
                           message.format(*args) if args else message)

    def mark_false(
        self,
        ctype: ConditionType | str,
        reason: Reason | str,
        severity: Severity,
        message: str,
        *args: Any,
    ) -> None:
        self.set_condition(ctype, ConditionStatus.FALSE, reason, severity,
                           message.format(*args) if args else message)

    def mark_unknown(self, ctype: ConditionType | str, reason: Reason | str, message: str) -> None:
        self.set_condition(ctype, ConditionStatus.UNKNOWN, reason, Severity.NONE, message)

    def remove(self, ctype: ConditionType | str) -> None:
        key = _type_key(ctype)
        self._items = [c for c in self._items if c.type != key]

    # ── Summaries ────────────────────────────────────────────────

    def mirror(self, target: ConditionType | str) -> Condition | None:
        """
        Summarize the ledger as one condition of type ``target``.

        The most severe condition wins; ties keep ledger order. Any
        existing condition of type ``target`` is not considered.

        Returns:
            None when the ledger holds nothing to summarize
        """
        key = _type_key(target)
        candidates = [c for c in self._items if c.type != key]
        if not candidates:
            return None
        worst = min(candidates, key=lambda c: c.rank())
        mirrored = worst.model_copy()
        mirrored.type = key
        return mirrored

    def adopt(self, source: ConditionList, target: ConditionType, fallback_message: str) -> None:
        """Set ``target`` from a child's ledger, or mark it True when the child has none."""
        mirrored = source.mirror(target)
        if mirrored is None:
            self.mark_true(target, fallback_message)
        else:
            mirrored.last_transition_time = self._clock()
            self.set(mirrored)

    def restore_last_transition_times(self, saved: ConditionList) -> None:
        """Carry over transition times for conditions whose status did not change."""
        for i, current in enumerate(self._items):
            before = saved.get(current.type)
            if before is not None and before.status == current.status:
                restored = current.model_copy()
                restored.last_transition_time = before.last_transition_time
                self._items[i] = restored


__all__ = [
    "ConditionStatus",
    "Severity",
    "Reason",
    "ConditionType",
    "ConditionMessages",
    "MESSAGES",
    "messages",
    "Condition",
    "ConditionList",
]
