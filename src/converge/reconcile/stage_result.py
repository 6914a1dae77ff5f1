"""Stage Result — uniform envelope for the outcome of one pipeline stage.

Manifesto:
    Every stage returns the same small value so the pipeline driver can
decide, without knowing anything about the stage, whether to advance,
stop and come back later, or stop and report. ``StageResult`` is that
value. It never outlives the pass that produced it.

ARCHITECTURE
────────────
::

    StageResult
      ├── .proceed()                  → Continue (advance)
      ├── .skip(reason)               → Continue, no work done
      ├── .halt(reason)               → Continue, but end the pass now
      ├── .requeue(after, reason)     → RequeueAfter(d)
      └── .fail(error, condition)     → Fail (owning condition → False)

    ReconcileResult ── what the dispatcher hands back to the caller:
      ├── .done()                     → nothing scheduled
      ├── .after(seconds)             → re-enter no sooner than seconds
      └── .immediately()              → re-enter as soon as possible

BEST PRACTICES
──────────────
- Prefer the factories over constructing directly.
- ``halt`` is for "the recorded state just moved; let the next pass act on
  it". It is not a failure and leaves no condition False.
- Pass ``condition`` to ``fail`` only when the failure belongs to a
  condition other than the stage's own.

Tags:
    reconcile, stage-result, envelope, requeue

Doc-Types:
    api-reference
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from converge.core.conditions import ConditionType, Reason, Severity


class Outcome(str, Enum):
    CONTINUE = "continue"
    REQUEUE = "requeue"
    FAIL = "fail"


@dataclass(frozen=True)
class StageResult:
    """
    Result of running one stage.

    Attributes:
        outcome: Continue, RequeueAfter or Fail
        requeue_after: Seconds before the next pass (REQUEUE only)
        error: The failure (FAIL only)
        halt: End the pass after this stage even though it continued
        reason: Free-text note for logs (skip/halt/requeue)
        condition: Condition to mark False on failure, overriding the
            stage's owning condition
        condition_reason: Reason recorded on the failed condition
        severity: Severity recorded on the failed condition
    """

    outcome: Outcome
    requeue_after: float | None = None
    error: BaseException | None = None
    halt: bool = False
    reason: str = ""
    condition: ConditionType | None = None
    condition_reason: Reason = Reason.ERROR
    severity: Severity = Severity.WARNING

    def __post_init__(self):
        if self.outcome is Outcome.FAIL and self.error is None:
            raise ValueError("a failed stage result needs an error")
        if self.outcome is Outcome.REQUEUE and (self.requeue_after is None or self.requeue_after < 0):
            raise ValueError("a requeue needs a non-negative delay")

    # =========================================================================
    # Factories
    # =========================================================================

    @classmethod
    def proceed(cls) -> StageResult:
        return cls(outcome=Outcome.CONTINUE)

    @classmethod
    def skip(cls, reason: str) -> StageResult:
        """Continue without doing any work (gate closed, nothing changed)."""
        return cls(outcome=Outcome.CONTINUE, reason=reason)

    @classmethod
    def halt_pass(cls, reason: str) -> StageResult:
        """Continue, but run no further stages this pass."""
        return cls(outcome=Outcome.CONTINUE, halt=True, reason=reason)

    @classmethod
    def requeue(cls, after: float, reason: str = "") -> StageResult:
        return cls(outcome=Outcome.REQUEUE, requeue_after=after, reason=reason)

    @classmethod
    def fail(
        cls,
        error: BaseException,
        condition: ConditionType | None = None,
        reason: Reason = Reason.ERROR,
        severity: Severity = Severity.WARNING,
    ) -> StageResult:
        return cls(
            outcome=Outcome.FAIL,
            error=error,
            condition=condition,
            condition_reason=reason,
            severity=severity,
        )

    # =========================================================================
    # Queries
    # =========================================================================

    @property
    def is_continue(self) -> bool:
        return self.outcome is Outcome.CONTINUE

    @property
    def stops_pass(self) -> bool:
        return self.outcome is not Outcome.CONTINUE or self.halt

    def to_dict(self) -> dict[str, Any]:
        """Serialize for logging."""
        result: dict[str, Any] = {"outcome": self.outcome.value}
        if self.requeue_after is not None:
            result["requeue_after"] = self.requeue_after
        if self.error is not None:
            result["error"] = str(self.error)
        if self.halt:
            result["halt"] = True
        if self.reason:
            result["reason"] = self.reason
        return result

    def __repr__(self) -> str:
        if self.outcome is Outcome.REQUEUE:
            return f"StageResult(REQUEUE({self.requeue_after}s))"
        if self.outcome is Outcome.FAIL:
            return f"StageResult(FAIL({type(self.error).__name__}))"
        return "StageResult(HALT)" if self.halt else "StageResult(CONTINUE)"


@dataclass(frozen=True)
class ReconcileResult:
    """What one reconciliation pass asks of its caller."""

    requeue: bool = False
    requeue_after: float | None = None

    @classmethod
    def done(cls) -> ReconcileResult:
        return cls()

    @classmethod
    def after(cls, seconds: float) -> ReconcileResult:
        return cls(requeue=True, requeue_after=seconds)

    @classmethod
    def immediately(cls) -> ReconcileResult:
        return cls(requeue=True, requeue_after=0.0)
