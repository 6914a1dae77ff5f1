"""Top-level Dispatcher — one reconciliation pass for one topology.

The dispatcher fetches the topology, routes it either to the deletion
cascade or to the stage pipeline, and owns the single exit path that
persists what the pass learned:

1. conditions whose status did not change keep their old transition time
2. an undecided ``Ready`` becomes the mirror of the most severe
   sub-condition
3. metadata (finalizers) is written if it changed, then status is written
   if it changed, both with optimistic concurrency; a rejected write
   turns into an immediate requeue

A stage failure is persisted first and then raised to the caller
unchanged, even when the write was rejected; the caller's backoff decides
when to try again.
"""

from __future__ import annotations

from dataclasses import dataclass

from converge.core.conditions import ConditionList, ConditionType
from converge.core.errors import ConflictError, NotFoundError
from converge.core.logging import LogContext, get_logger
from converge.core.models import Topology
from converge.core.settings import ControllerSettings
from converge.core.timestamps import Clock, utc_now
from converge.reconcile.context import Collaborators, PassContext
from converge.reconcile.deletion import run_cascade
from converge.reconcile.pipeline import Pipeline, PipelineRun
from converge.reconcile.stage_result import ReconcileResult
from converge.reconcile.stages import default_pipeline

logger = get_logger(__name__)

TOPOLOGY_KIND = "Topology"


@dataclass
class PassReport:
    """Result of the last pass, kept for inspection."""

    result: ReconcileResult
    run: PipelineRun | None = None
    deleted: bool = False


class Dispatcher:
    """Entry point for reconciling one topology by name."""

    def __init__(
        self,
        collaborators: Collaborators,
        settings: ControllerSettings | None = None,
        pipeline: Pipeline | None = None,
        clock: Clock = utc_now,
    ):
        self.collaborators = collaborators
        self.settings = settings or ControllerSettings()
        self.pipeline = pipeline or default_pipeline()
        self._clock = clock
        self.last_report: PassReport | None = None

    @property
    def store(self):
        return self.collaborators.store

    def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        """Run one pass; raises the failing stage's error after persisting status."""
        with LogContext(topology=name, namespace=namespace):
            try:
                topology = self.store.get(TOPOLOGY_KIND, name, namespace)
            except NotFoundError:
                logger.info("topology.gone")
                self.last_report = PassReport(ReconcileResult.done())
                return ReconcileResult.done()

            if topology.is_deleting():
                return self._reconcile_delete(topology)
            return self._reconcile_normal(topology)

    # ── Normal path ──────────────────────────────────────────────

    def _reconcile_normal(self, topology: Topology) -> ReconcileResult:
        stored = topology.model_copy(deep=True)
        saved = ConditionList.from_list(topology.status.conditions, clock=self._clock)
        ctx = PassContext(
            topology=topology,
            conditions=saved.copy(),
            collaborators=self.collaborators,
            settings=self.settings,
            first_observation=len(saved) == 0,
        )

        run = self.pipeline.run(ctx)
        self._summarize(ctx, saved)
        persisted = self._persist(stored, ctx.topology)
        self.last_report = PassReport(run.result, run=run)

        if run.error is not None:
            logger.warning("pass.failed", stage=run.stopped_at, error=str(run.error))
            raise run.error
        if not persisted:
            return ReconcileResult.immediately()

        logger.info(
            "pass.complete",
            stopped_at=run.stopped_at,
            requeue=run.result.requeue,
            requeue_after=run.result.requeue_after,
        )
        return run.result

    def _summarize(self, ctx: PassContext, saved: ConditionList) -> None:
        conditions = ctx.conditions
        if conditions.is_unknown(ConditionType.READY):
            mirrored = conditions.mirror(ConditionType.READY)
            if mirrored is not None:
                mirrored.last_transition_time = self._clock()
                conditions.set(mirrored)
        conditions.restore_last_transition_times(saved)
        ctx.status.conditions = conditions.to_list()

    # ── Deletion path ────────────────────────────────────────────

    def _reconcile_delete(self, topology: Topology) -> ReconcileResult:
        stored = topology.model_copy(deep=True)
        logger.info("deletion.start")
        run_cascade(
            self.store,
            topology,
            self.settings.finalizer,
            (self.settings.database_name, self.settings.persistence_database_name),
        )
        try:
            persisted = self._persist(stored, topology)
        except NotFoundError:
            logger.debug("deletion.topology_removed")
            persisted = True
        if not persisted:
            self.last_report = PassReport(ReconcileResult.immediately())
            return ReconcileResult.immediately()
        self.last_report = PassReport(ReconcileResult.done(), deleted=True)
        logger.info("deletion.complete")
        return ReconcileResult.done()

    # ── Persistence ──────────────────────────────────────────────

    def _persist(self, stored: Topology, current: Topology) -> bool:
        """Write metadata then status, each only when it changed.

        Returns False when a concurrent writer got there first; the pass
        is then repeated against the fresh copy.
        """
        try:
            if current.metadata.finalizers != stored.metadata.finalizers:
                written = self.store.update(current)
                current.metadata.resource_version = written.metadata.resource_version
                if written.is_deleting() and not written.metadata.finalizers:
                    return True
            if current.status != stored.status:
                self.store.update_status(current)
        except ConflictError as e:
            logger.info("status.conflict", error=e.message)
            return False
        return True
