"""Reconciliation: the stage pipeline and the components it is built from.

Architecture::

    dispatcher.py      Entry point, routes to deletion or the pipeline, persists status
    pipeline.py        Ordered stage driver
    stages.py          The stages, in order (STAGES)
    stage_result.py    Continue / RequeueAfter / Fail envelope, ReconcileResult
    rollout.py         Primary → dependent role barrier
    assets.py          Transient asset upload sub-workflow
    deletion.py        Finalizer release cascade
    context.py         PassContext + Collaborators
"""

from converge.reconcile.context import Collaborators, PassContext
from converge.reconcile.dispatcher import Dispatcher
from converge.reconcile.pipeline import Pipeline, Stage
from converge.reconcile.stage_result import Outcome, ReconcileResult, StageResult
from converge.reconcile.stages import STAGES, default_pipeline

__all__ = [
    "Collaborators",
    "PassContext",
    "Dispatcher",
    "Pipeline",
    "Stage",
    "Outcome",
    "ReconcileResult",
    "StageResult",
    "STAGES",
    "default_pipeline",
]
