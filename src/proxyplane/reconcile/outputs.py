"""Output binding against final post-apply attributes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from proxyplane.graph.builder import ResourceGraph
from proxyplane.graph.declarations import OutputDeclaration
from proxyplane.graph.expressions import (
    CollectionReference,
    InstanceKey,
    iter_references,
)
from proxyplane.reconcile.results import InstanceResult, Outcome
from proxyplane.state.models import StateRecord


@dataclass(frozen=True)
class Unavailable:
    """Marker for an output whose inputs were not applied in this run."""

    reason: str

    def __str__(self) -> str:
        return f"(unavailable: {self.reason})"

    def to_dict(self) -> dict[str, Any]:
        return {"unavailable": True, "reason": self.reason}


class _MissingAttribute(Exception):
    def __init__(self, key: InstanceKey, attribute: str) -> None:
        super().__init__(f"{key} did not report {attribute}")


def _referenced_keys(graph: ResourceGraph, output: OutputDeclaration) -> list[InstanceKey]:
    keys: list[InstanceKey] = []
    for ref in iter_references(output.expression):
        if isinstance(ref, CollectionReference):
            targets = graph.members(ref.kind, ref.name)
        else:
            targets = [ref.target]
        keys.extend(key for key in targets if key not in keys)
    return keys


class OutputBinder:
    """Resolves declared outputs once execution has finished."""

    def bind(
        self,
        graph: ResourceGraph,
        results: dict[InstanceKey, InstanceResult],
    ) -> dict[str, Any]:
        attributes: dict[InstanceKey, dict[str, Any]] = {}
        unavailable: dict[InstanceKey, str] = {}
        for key in graph.order:
            result = results.get(key)
            if result is None:
                unavailable[key] = "not applied"
            elif result.outcome in (Outcome.APPLIED, Outcome.NO_CHANGE):
                attributes[key] = result.attributes
            else:
                unavailable[key] = result.outcome.value
        return {
            output.name: self._resolve(graph, output, attributes, unavailable)
            for output in graph.outputs
        }

    def bind_from_state(
        self,
        graph: ResourceGraph,
        records: list[StateRecord],
    ) -> dict[str, Any]:
        """Resolve outputs from recorded state, without executing anything."""
        recorded = {record.key: record.attributes for record in records}
        attributes = {key: recorded[key] for key in graph.order if key in recorded}
        unavailable = {key: "not applied" for key in graph.order if key not in recorded}
        return {
            output.name: self._resolve(graph, output, attributes, unavailable)
            for output in graph.outputs
        }

    def _resolve(
        self,
        graph: ResourceGraph,
        output: OutputDeclaration,
        attributes: dict[InstanceKey, dict[str, Any]],
        unavailable: dict[InstanceKey, str],
    ) -> Any:
        for key in _referenced_keys(graph, output):
            if key in unavailable:
                return Unavailable(f"{key} {unavailable[key]}")

        def lookup(key: InstanceKey, attribute: str) -> Any:
            if attribute not in attributes[key]:
                raise _MissingAttribute(key, attribute)
            return attributes[key][attribute]

        try:
            return graph.evaluate(output.expression, lookup)
        except _MissingAttribute as exc:
            return Unavailable(str(exc))
