"""Reconciliation: planner, executor, output binder and the engine driving them."""

from proxyplane.reconcile.engine import Reconciler
from proxyplane.reconcile.executor import Executor
from proxyplane.reconcile.outputs import OutputBinder, Unavailable
from proxyplane.reconcile.planner import Planner, fingerprint_config
from proxyplane.reconcile.results import (
    Action,
    InstanceResult,
    Outcome,
    Plan,
    PlanEntry,
    ResultCollector,
    RunResult,
    RunStatus,
)

__all__ = [
    "Action",
    "Executor",
    "InstanceResult",
    "Outcome",
    "OutputBinder",
    "Plan",
    "PlanEntry",
    "Planner",
    "Reconciler",
    "ResultCollector",
    "RunResult",
    "RunStatus",
    "Unavailable",
    "fingerprint_config",
]
