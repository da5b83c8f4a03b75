"""
Dependency graph construction.

Turns a declaration set into a DAG of resource instances. Edges point from
a referencing instance to every instance it references; a collection
reference adds an edge to every member of the referenced declaration.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import structlog

from proxyplane.core.errors import CycleError, DeclarationError, UnresolvedReferenceError
from proxyplane.graph.declarations import (
    DeclarationSet,
    OutputDeclaration,
    ResourceInstance,
    expand,
)
from proxyplane.graph.expressions import (
    CollectionReference,
    Expression,
    InstanceKey,
    Reference,
    evaluate,
    iter_references,
)
from proxyplane.graph.kinds import BUILTIN_KINDS, ResourceKind

logger = structlog.get_logger()


@dataclass
class ResourceGraph:
    """Instances in declaration order plus their dependency edges."""

    instances: dict[InstanceKey, ResourceInstance]
    dependencies: dict[InstanceKey, list[InstanceKey]]
    order: list[InstanceKey]
    members_by_address: dict[tuple[str, str], list[InstanceKey]]
    outputs: list[OutputDeclaration] = field(default_factory=list)

    def members(self, kind: str, name: str) -> list[InstanceKey]:
        return list(self.members_by_address.get((kind, name), []))

    def evaluate(self, expr: Expression, lookup: Any) -> Any:
        return evaluate(expr, lookup, self.members)


class GraphBuilder:
    """Builds a ResourceGraph from declarations (pure transform)."""

    def __init__(self, kinds: dict[str, ResourceKind] | None = None) -> None:
        self._kinds = kinds if kinds is not None else BUILTIN_KINDS

    def build(self, declarations: DeclarationSet) -> ResourceGraph:
        instances = expand(declarations)
        by_key = {instance.key: instance for instance in instances}

        members: dict[tuple[str, str], list[InstanceKey]] = {}
        for_each_addresses = {
            (d.kind, d.name) for d in declarations.resources if d.for_each is not None
        }
        for declaration in declarations.resources:
            members[(declaration.kind, declaration.name)] = []
        for instance in instances:
            members[instance.key.address].append(instance.key)

        for instance in instances:
            self._validate_config(instance)

        dependencies: dict[InstanceKey, list[InstanceKey]] = {}
        for instance in instances:
            deps: list[InstanceKey] = []
            source = str(instance.key)
            for ref in iter_references(instance.config):
                for target in self._targets(source, ref, by_key, members, for_each_addresses):
                    if target not in deps:
                        deps.append(target)
            for explicit in instance.depends_on:
                for target in self._explicit_targets(source, explicit, by_key, members):
                    if target not in deps:
                        deps.append(target)
            dependencies[instance.key] = deps

        for output in declarations.outputs:
            for ref in iter_references(output.expression):
                self._targets(f"output.{output.name}", ref, by_key, members, for_each_addresses)

        order = self._topological_order(instances, dependencies)
        logger.debug("graph_built", instances=len(instances), outputs=len(declarations.outputs))

        return ResourceGraph(
            instances=by_key,
            dependencies=dependencies,
            order=order,
            members_by_address=members,
            outputs=list(declarations.outputs),
        )

    def _validate_config(self, instance: ResourceInstance) -> None:
        kind = self._kinds.get(instance.key.kind)
        if kind is None:
            raise DeclarationError(f"{instance.key} has unknown kind {instance.key.kind!r}")
        unknown = [name for name in instance.config.keys() if name not in kind.inputs]
        if unknown:
            raise DeclarationError(
                f"{instance.key} sets unknown attributes: {', '.join(sorted(unknown))}"
            )

    def _check_attribute(self, source: str, kind_name: str, attribute: str, target: str) -> None:
        kind = self._kinds.get(kind_name)
        if kind is None or not kind.has_attribute(attribute):
            raise UnresolvedReferenceError(source, f"{target}.{attribute}", "not an attribute")

    def _targets(
        self,
        source: str,
        ref: Reference | CollectionReference,
        by_key: dict[InstanceKey, ResourceInstance],
        members: dict[tuple[str, str], list[InstanceKey]],
        for_each_addresses: set[tuple[str, str]],
    ) -> list[InstanceKey]:
        address = (ref.kind, ref.name)
        if address not in members:
            raise UnresolvedReferenceError(source, str(ref))
        if isinstance(ref, CollectionReference):
            self._check_attribute(source, ref.kind, ref.attribute, f"{ref.kind}.{ref.name}")
            return members[address]

        if ref.index is None and address in for_each_addresses:
            raise UnresolvedReferenceError(
                source, str(ref), "a for_each declaration and needs an index"
            )
        if ref.target not in by_key:
            raise UnresolvedReferenceError(source, str(ref))
        self._check_attribute(source, ref.kind, ref.attribute, str(ref.target))
        return [ref.target]

    def _explicit_targets(
        self,
        source: str,
        target: InstanceKey,
        by_key: dict[InstanceKey, ResourceInstance],
        members: dict[tuple[str, str], list[InstanceKey]],
    ) -> list[InstanceKey]:
        if target in by_key:
            return [target]
        if target.index is None and target.address in members:
            return members[target.address]
        raise UnresolvedReferenceError(source, str(target))

    def _topological_order(
        self,
        instances: list[ResourceInstance],
        dependencies: dict[InstanceKey, list[InstanceKey]],
    ) -> list[InstanceKey]:
        """Kahn's algorithm, ties broken by declaration order."""
        remaining = {instance.key: len(set(dependencies[instance.key])) for instance in instances}
        dependents: dict[InstanceKey, list[InstanceKey]] = {key: [] for key in remaining}
        for key, deps in dependencies.items():
            for dep in set(deps):
                dependents[dep].append(key)

        position = {instance.key: instance.position for instance in instances}
        ready = sorted((key for key, count in remaining.items() if count == 0), key=position.get)
        order: list[InstanceKey] = []

        while ready:
            key = ready.pop(0)
            order.append(key)
            for dependent in dependents[key]:
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    ready.append(dependent)
            ready.sort(key=position.get)

        if len(order) != len(instances):
            stuck = [instance.key for instance in instances if remaining[instance.key] > 0]
            raise CycleError(_find_cycle(stuck, dependencies))

        return order


def _find_cycle(
    candidates: list[InstanceKey],
    dependencies: dict[InstanceKey, list[InstanceKey]],
) -> list[str]:
    """Return one reference cycle among ``candidates`` (e.g. ["A", "B", "A"])."""
    candidate_set = set(candidates)

    def dfs(node: InstanceKey, path: list[InstanceKey], visited: set[InstanceKey]):
        if node in path:
            start = path.index(node)
            return path[start:] + [node]
        if node in visited:
            return None
        visited.add(node)
        path.append(node)
        for dep in dependencies.get(node, []):
            if dep in candidate_set:
                cycle = dfs(dep, path.copy(), visited)
                if cycle:
                    return cycle
        return None

    for start in candidates:
        cycle = dfs(start, [], set())
        if cycle:
            return [str(key) for key in cycle]
    return [str(key) for key in candidates]
