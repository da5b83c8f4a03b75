"""Plan and run result types for reconciliation."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from proxyplane.graph.builder import ResourceGraph
from proxyplane.graph.expressions import InstanceKey
from proxyplane.state.models import StateRecord


class Action(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    NO_CHANGE = "no_change"
    DESTROY = "destroy"


class Outcome(str, Enum):
    APPLIED = "applied"
    NO_CHANGE = "no_change"
    DESTROYED = "destroyed"
    BLOCKED = "blocked"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def succeeded(self) -> bool:
        return self in (Outcome.APPLIED, Outcome.NO_CHANGE, Outcome.DESTROYED)


class RunStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    ERROR = "error"


@dataclass
class PlanEntry:
    """Planned action for one instance."""

    key: InstanceKey
    action: Action
    config: dict[str, Any] = field(default_factory=dict)
    fingerprint: str | None = None
    dependencies: list[InstanceKey] = field(default_factory=list)
    record: StateRecord | None = None


@dataclass
class Plan:
    """Ordered per-instance actions; creates/updates first, then destroys."""

    entries: list[PlanEntry]
    graph: ResourceGraph

    def entry(self, key: InstanceKey) -> PlanEntry | None:
        for entry in self.entries:
            if entry.key == key:
                return entry
        return None

    def by_action(self, action: Action) -> list[PlanEntry]:
        return [entry for entry in self.entries if entry.action == action]

    @property
    def counts(self) -> dict[str, int]:
        counts = {action.value: 0 for action in Action}
        for entry in self.entries:
            counts[entry.action.value] += 1
        return counts

    @property
    def has_changes(self) -> bool:
        return any(entry.action != Action.NO_CHANGE for entry in self.entries)


@dataclass
class InstanceResult:
    """Outcome of executing one plan entry."""

    key: InstanceKey
    action: Action
    outcome: Outcome
    attributes: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    blocked_by: InstanceKey | None = None
    attempts: int = 0


@dataclass
class RunResult:
    """Result of a reconciliation run."""

    status: RunStatus
    instances: dict[InstanceKey, InstanceResult] = field(default_factory=dict)
    outputs: dict[str, Any] = field(default_factory=dict)
    duration_seconds: float = 0.0
    run_id: str | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.status == RunStatus.SUCCESS

    def with_outcome(self, outcome: Outcome) -> list[InstanceResult]:
        return [result for result in self.instances.values() if result.outcome == outcome]

    @property
    def blocked(self) -> list[InstanceResult]:
        return self.with_outcome(Outcome.BLOCKED)

    @property
    def failed(self) -> list[InstanceResult]:
        return self.with_outcome(Outcome.FAILED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status.value,
            "duration_seconds": round(self.duration_seconds, 3),
            "error": self.error,
            "instances": [
                {
                    "key": str(result.key),
                    "action": result.action.value,
                    "outcome": result.outcome.value,
                    "error": result.error,
                    "blocked_by": str(result.blocked_by) if result.blocked_by else None,
                    "attempts": result.attempts,
                }
                for result in self.instances.values()
            ],
            "outputs": {name: jsonable(value) for name, value in self.outputs.items()},
        }


def jsonable(value: Any) -> Any:
    to_dict = getattr(value, "to_dict", None)
    return to_dict() if callable(to_dict) else value


class ResultCollector:
    """Aggregates per-instance results during execution."""

    def __init__(self, run_id: str | None = None) -> None:
        self._results: dict[InstanceKey, InstanceResult] = {}
        self._run_id = run_id

    def record(self, result: InstanceResult) -> None:
        self._results[result.key] = result

    def get(self, key: InstanceKey) -> InstanceResult | None:
        return self._results.get(key)

    @property
    def results(self) -> dict[InstanceKey, InstanceResult]:
        return dict(self._results)

    def finalize(self, duration: float, outputs: dict[str, Any] | None = None) -> RunResult:
        """Return the final result with status derived from instance outcomes."""
        status = RunStatus.SUCCESS
        if any(not result.outcome.succeeded for result in self._results.values()):
            status = RunStatus.PARTIAL_FAILURE
        return RunResult(
            status=status,
            instances=dict(self._results),
            outputs=outputs or {},
            duration_seconds=duration,
            run_id=self._run_id,
        )
