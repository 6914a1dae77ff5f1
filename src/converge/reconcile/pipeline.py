"""Stage Pipeline — runs an ordered list of stages for one pass.

The pipeline is an explicit list of ``Stage`` records, each a named
function returning a ``StageResult``. The driver runs them in order and
stops at the first stage that requeues, fails or halts. A pass always
starts again from the first stage; there is no resumption mid-list, so
every stage has to be cheap to re-enter.

Failures are recorded, not handled: the owning condition is marked
False with the error text, and the error itself is handed back to the
dispatcher unchanged. Exceptions a stage raises are treated the same way.

Example::

    pipeline = Pipeline([
        Stage("Init", init_stage),
        Stage("DatabaseReady", database_stage, ConditionType.DB_READY),
    ])
    run = pipeline.run(ctx)
    if run.error is not None:
        raise run.error
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from converge.core.conditions import ConditionType, messages
from converge.core.errors import ConvergeError
from converge.core.logging import get_logger
from converge.reconcile.context import PassContext
from converge.reconcile.stage_result import Outcome, ReconcileResult, StageResult

logger = get_logger(__name__)

StageFn = Callable[[PassContext], StageResult]


@dataclass(frozen=True)
class Stage:
    """One named step of the pipeline and the condition it owns."""

    name: str
    run: StageFn
    condition: ConditionType | None = None


@dataclass
class PipelineRun:
    """What happened during one run of the pipeline."""

    result: ReconcileResult
    completed: list[str] = field(default_factory=list)
    stopped_at: str | None = None
    error: BaseException | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class Pipeline:
    """Ordered stage driver."""

    def __init__(self, stages: Sequence[Stage]):
        names = [s.name for s in stages]
        duplicates = {n for n in names if names.count(n) > 1}
        if duplicates:
            raise ValueError(f"duplicate stage names: {sorted(duplicates)}")
        self._stages = tuple(stages)

    @property
    def stages(self) -> tuple[Stage, ...]:
        return self._stages

    def names(self) -> list[str]:
        return [s.name for s in self._stages]

    def run(self, ctx: PassContext) -> PipelineRun:
        run = PipelineRun(result=ReconcileResult.done())

        for stage in self._stages:
            started = time.monotonic()
            result = self._run_stage(stage, ctx)
            logger.debug(
                "stage.complete",
                stage=stage.name,
                duration_seconds=round(time.monotonic() - started, 6),
                **result.to_dict(),
            )

            if result.outcome is Outcome.FAIL:
                self._record_failure(stage, result, ctx)
                run.stopped_at = stage.name
                run.error = result.error
                return run

            if result.outcome is Outcome.REQUEUE:
                run.stopped_at = stage.name
                run.result = ReconcileResult.after(result.requeue_after)
                logger.info("stage.requeue", stage=stage.name,
                            requeue_after=result.requeue_after, reason=result.reason)
                return run

            run.completed.append(stage.name)
            if result.halt:
                run.stopped_at = stage.name
                run.result = ReconcileResult.immediately()
                logger.info("stage.halt", stage=stage.name, reason=result.reason)
                return run

        return run

    @staticmethod
    def _run_stage(stage: Stage, ctx: PassContext) -> StageResult:
        try:
            return stage.run(ctx)
        except Exception as e:
            logger.warning("stage.exception", stage=stage.name, error=str(e),
                           error_type=type(e).__name__)
            return StageResult.fail(e)

    @staticmethod
    def _record_failure(stage: Stage, result: StageResult, ctx: PassContext) -> None:
        error = result.error
        if isinstance(error, ConvergeError) and error.context.stage is None:
            error.with_context(stage=stage.name, topology=ctx.name, namespace=ctx.namespace)

        condition = result.condition or stage.condition
        if condition is not None:
            ctx.conditions.mark_false(
                condition,
                result.condition_reason,
                result.severity,
                messages(condition).error,
                str(error),
            )
        logger.warning(
            "stage.failed",
            stage=stage.name,
            condition=condition.value if condition else None,
            error=str(error),
            error_type=type(error).__name__,
        )
