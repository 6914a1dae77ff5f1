"""Converge Core -- the primitives every reconciliation stage builds on.

Architecture::

    errors.py          Structured error hierarchy (ConvergeError, NotFoundError)
    conditions.py      Condition Aggregator (typed readiness ledger)
    hashing.py         Change-Hash Gate (content hashing + set_hash)
    models.py          Topology, status record, child resources, value types
    protocols.py       Collaborator contracts
    settings.py        ControllerSettings (pydantic-settings)
    logging.py         structlog configuration + pass-scoped context
    timestamps.py      UTC clock helpers (stdlib-only)
"""

from converge.core.conditions import (
    Condition,
    ConditionList,
    ConditionStatus,
    ConditionType,
    Reason,
    Severity,
)
from converge.core.errors import (
    ConflictError,
    ConvergeError,
    NotFoundError,
)
from converge.core.hashing import HashKey, object_hash, set_hash
from converge.core.models import ObjectMeta, Resource, Topology, TopologySpec, TopologyStatus

__all__ = [
    "Condition",
    "ConditionList",
    "ConditionStatus",
    "ConditionType",
    "Reason",
    "Severity",
    "ConvergeError",
    "NotFoundError",
    "ConflictError",
    "HashKey",
    "object_hash",
    "set_hash",
    "ObjectMeta",
    "Resource",
    "Topology",
    "TopologySpec",
    "TopologyStatus",
]
