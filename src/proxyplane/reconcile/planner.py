"""
Planner: diff desired configuration against recorded state.

Instances are visited in topological order. References are resolved
against the planning view of already-visited instances: the resolved
desired config, overlaid with recorded attributes for instances that keep
their provider identity (no_change and update). Attributes of instances
still to be created resolve to ``UNKNOWN``.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any

import structlog

from proxyplane.core.errors import ResourceNotFound, UnresolvedReferenceError
from proxyplane.graph.builder import ResourceGraph
from proxyplane.graph.expressions import UNKNOWN, InstanceKey
from proxyplane.providers.base import ProviderContext, ResourceProvider
from proxyplane.reconcile.results import Action, Plan, PlanEntry
from proxyplane.state.base import StateStore
from proxyplane.state.models import StateRecord

logger = structlog.get_logger()


def fingerprint_config(config: dict[str, Any]) -> str:
    """Deterministic SHA-256 over the canonical JSON form of a resolved config."""
    canonical = json.dumps(config, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def teardown_order(records: list[StateRecord]) -> list[StateRecord]:
    """Order records so that dependents come before their dependencies."""
    by_key = {record.key: record for record in records}
    visited: set[InstanceKey] = set()
    ordered: list[StateRecord] = []

    def visit(record: StateRecord) -> None:
        if record.key in visited:
            return
        visited.add(record.key)
        for dep in record.dependencies:
            if dep in by_key:
                visit(by_key[dep])
        ordered.append(record)

    for record in records:
        visit(record)
    return list(reversed(ordered))


class Planner:
    """Builds a Plan from a resource graph and the state store."""

    def __init__(
        self,
        state: StateStore,
        provider: ResourceProvider | None = None,
        ctx: ProviderContext | None = None,
    ) -> None:
        self._state = state
        self._provider = provider
        self._ctx = ctx

    async def plan(
        self,
        graph: ResourceGraph,
        *,
        refresh: bool = False,
        destroy: bool = False,
    ) -> Plan:
        records = {record.key: record for record in await self._state.list()}

        if destroy:
            entries = [self._destroy_entry(record) for record in teardown_order(list(records.values()))]
            plan = Plan(entries=entries, graph=graph)
            logger.info("plan_built", mode="destroy", **plan.counts)
            return plan

        views: dict[InstanceKey, dict[str, Any]] = {}
        entries: list[PlanEntry] = []

        for key in graph.order:
            instance = graph.instances[key]
            record = records.get(key)
            if refresh and record is not None:
                record = await self._refresh(record)

            def lookup(target: InstanceKey, attribute: str, _source: InstanceKey = key) -> Any:
                if target not in views:
                    raise UnresolvedReferenceError(str(_source), f"{target}.{attribute}")
                return views[target].get(attribute, UNKNOWN)

            config = graph.evaluate(instance.config, lookup)
            fingerprint = fingerprint_config(config)

            if record is None:
                action = Action.CREATE
                views[key] = dict(config)
            elif record.fingerprint == fingerprint:
                action = Action.NO_CHANGE
                views[key] = {**config, **record.attributes}
            else:
                action = Action.UPDATE
                views[key] = {**record.attributes, **config}

            entries.append(
                PlanEntry(
                    key=key,
                    action=action,
                    config=config,
                    fingerprint=fingerprint,
                    dependencies=list(graph.dependencies[key]),
                    record=record,
                )
            )

        orphans = [record for key, record in records.items() if key not in graph.instances]
        entries.extend(self._destroy_entry(record) for record in teardown_order(orphans))

        plan = Plan(entries=entries, graph=graph)
        logger.info("plan_built", mode="apply", **plan.counts)
        return plan

    def _destroy_entry(self, record: StateRecord) -> PlanEntry:
        return PlanEntry(
            key=record.key,
            action=Action.DESTROY,
            dependencies=list(record.dependencies),
            record=record,
        )

    async def _refresh(self, record: StateRecord) -> StateRecord | None:
        """Re-read a recorded instance; None when it was deleted out of band."""
        if self._provider is None or self._ctx is None or record.resource_id is None:
            return record
        try:
            attributes = await self._provider.read(record.key.kind, record.resource_id, self._ctx)
        except ResourceNotFound:
            logger.warning("instance_missing_remotely", key=str(record.key))
            return None
        return StateRecord(
            key=record.key,
            fingerprint=record.fingerprint,
            attributes={**record.attributes, **attributes},
            dependencies=record.dependencies,
            updated_at=record.updated_at,
        )
