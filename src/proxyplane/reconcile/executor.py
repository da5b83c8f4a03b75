"""
Executor: apply a plan against a resource provider.

Every plan entry runs as its own task. A task first waits until each
instance it depends on has reached a terminal outcome, then takes a slot
in the bounded worker pool for its provider call. Independent branches
therefore run in parallel while dependency chains stay sequential.

Failures never roll back instances applied earlier in the run; dependents
of a failed instance are reported as blocked.
"""

from __future__ import annotations

import asyncio
from typing import Any

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from proxyplane.core.errors import (
    InstanceFailed,
    ProviderPermanentError,
    ProviderTransientError,
    ProxyPlaneError,
    ResourceNotFound,
    StateError,
)
from proxyplane.graph.builder import ResourceGraph
from proxyplane.graph.expressions import InstanceKey
from proxyplane.logging import bind_context
from proxyplane.providers.base import ProviderContext, ResourceProvider
from proxyplane.reconcile.planner import fingerprint_config
from proxyplane.reconcile.results import (
    Action,
    InstanceResult,
    Outcome,
    Plan,
    PlanEntry,
    ResultCollector,
)
from proxyplane.state.base import StateStore
from proxyplane.state.models import StateRecord

logger = structlog.get_logger()


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "provider_call_retry",
        attempt=retry_state.attempt_number,
        error=str(exc),
        sleep=round(retry_state.next_action.sleep, 3) if retry_state.next_action else 0,
    )


def _recorded(entry: PlanEntry) -> StateRecord:
    if entry.record is None:
        raise StateError(f"{entry.key} has no recorded state", details={"instance": str(entry.key)})
    return entry.record


class Executor:
    """Applies plan entries in dependency order with bounded parallelism."""

    def __init__(
        self,
        provider: ResourceProvider,
        state: StateStore,
        ctx: ProviderContext,
        *,
        max_workers: int = 8,
        retry_attempts: int = 5,
        backoff_multiplier: float = 0.5,
        backoff_min: float = 0.5,
        backoff_max: float = 20.0,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self._provider = provider
        self._state = state
        self._ctx = ctx
        self._max_workers = max_workers
        self._retry_attempts = max(1, retry_attempts)
        self._wait = wait_exponential(multiplier=backoff_multiplier, min=backoff_min, max=backoff_max)
        self.cancel_event = cancel_event or asyncio.Event()

    def cancel(self) -> None:
        """Stop scheduling instances that have not started yet."""
        self.cancel_event.set()

    async def execute(self, plan: Plan, collector: ResultCollector | None = None) -> ResultCollector:
        collector = collector or ResultCollector(run_id=self._ctx.run_id)
        if not plan.entries:
            return collector

        self._graph: ResourceGraph = plan.graph
        self._collector = collector
        self._pool = asyncio.Semaphore(self._max_workers)
        self._done = {entry.key: asyncio.Event() for entry in plan.entries}
        self._attributes: dict[InstanceKey, dict[str, Any]] = {}
        self._waits = self._compute_waits(plan)

        await asyncio.gather(*(self._run_entry(entry) for entry in plan.entries))
        return collector

    def _compute_waits(self, plan: Plan) -> dict[InstanceKey, list[InstanceKey]]:
        """Entries each entry must wait for before it may start."""
        planned = {entry.key for entry in plan.entries}
        waits: dict[InstanceKey, list[InstanceKey]] = {}
        for entry in plan.entries:
            if entry.action != Action.DESTROY:
                waits[entry.key] = [dep for dep in entry.dependencies if dep in planned]
                continue
            # Tear down dependents first, and let surviving dependents drop
            # their reference before the target goes away.
            waits[entry.key] = [
                other.key
                for other in plan.entries
                if other.key != entry.key
                and other.record is not None
                and entry.key in other.record.dependencies
            ]
        return waits

    def _blocking_cause(self, entry: PlanEntry) -> tuple[Outcome, InstanceKey] | None:
        for dep in self._waits[entry.key]:
            result = self._collector.get(dep)
            if result is None:
                continue
            if result.outcome == Outcome.CANCELLED:
                return Outcome.CANCELLED, dep
            if result.outcome == Outcome.FAILED:
                return Outcome.BLOCKED, dep
            if result.outcome == Outcome.BLOCKED:
                return Outcome.BLOCKED, result.blocked_by or dep
        return None

    async def _run_entry(self, entry: PlanEntry) -> None:
        log = bind_context(key=str(entry.key), action=entry.action.value)
        try:
            for dep in self._waits[entry.key]:
                await self._done[dep].wait()

            cause = self._blocking_cause(entry)
            if cause is not None:
                outcome, root = cause
                log.warning("instance_skipped", outcome=outcome.value, blocked_by=str(root))
                self._finish(entry, outcome, blocked_by=root, error=f"dependency {root} {outcome.value}")
                return

            if self.cancel_event.is_set():
                self._finish(entry, Outcome.CANCELLED, error="run cancelled")
                return

            async with self._pool:
                if self.cancel_event.is_set():
                    self._finish(entry, Outcome.CANCELLED, error="run cancelled")
                    return
                await self._apply(entry, log)
        finally:
            self._done[entry.key].set()

    def _finish(
        self,
        entry: PlanEntry,
        outcome: Outcome,
        *,
        attributes: dict[str, Any] | None = None,
        error: str | None = None,
        blocked_by: InstanceKey | None = None,
        attempts: int = 0,
    ) -> None:
        if attributes is not None:
            self._attributes[entry.key] = attributes
        self._collector.record(
            InstanceResult(
                key=entry.key,
                action=entry.action,
                outcome=outcome,
                attributes=attributes or {},
                error=error,
                blocked_by=blocked_by,
                attempts=attempts,
            )
        )

    async def _apply(self, entry: PlanEntry, log: Any) -> None:
        attempts = 0

        async def call(method: Any, *args: Any) -> Any:
            nonlocal attempts
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(ProviderTransientError),
                stop=stop_after_attempt(self._retry_attempts),
                wait=self._wait,
                before_sleep=_log_retry,
                reraise=True,
            ):
                with attempt:
                    attempts += 1
                    return await method(entry.key.kind, *args, self._ctx)

        try:
            if entry.action == Action.NO_CHANGE and not self._dependency_applied(entry):
                record = _recorded(entry)
                self._finish(
                    entry, Outcome.NO_CHANGE, attributes={**entry.config, **record.attributes}
                )
                return

            if entry.action == Action.DESTROY:
                await self._destroy(entry, call)
                log.info("instance_destroyed", attempts=attempts)
                self._finish(entry, Outcome.DESTROYED, attempts=attempts)
                return

            config = self._resolve_actual(entry)
            fingerprint = fingerprint_config(config)

            if entry.action in (Action.UPDATE, Action.NO_CHANGE):
                # A planned no_change is re-checked once a dependency was applied
                record = _recorded(entry)
                if record.fingerprint == fingerprint:
                    log.info("instance_unchanged_at_apply")
                    self._finish(
                        entry, Outcome.NO_CHANGE, attributes={**config, **record.attributes}
                    )
                    return
                attributes = await call(self._provider.update, record.resource_id, config)
            else:
                attributes = await call(self._provider.create, config)

            await self._state.put(
                StateRecord(
                    key=entry.key,
                    fingerprint=fingerprint,
                    attributes=attributes,
                    dependencies=list(entry.dependencies),
                )
            )
            log.info("instance_applied", attempts=attempts)
            self._finish(
                entry, Outcome.APPLIED, attributes={**config, **attributes}, attempts=attempts
            )
        except ProxyPlaneError as exc:
            failure = InstanceFailed(str(entry.key), exc)
            log.error(
                "instance_failed",
                error_type=type(exc).__name__,
                error=exc.message,
                attempts=attempts,
            )
            self._finish(entry, Outcome.FAILED, error=failure.message, attempts=attempts)
        except Exception as exc:
            log.error("instance_failed", error_type=type(exc).__name__, error=str(exc), exc_info=True)
            self._finish(entry, Outcome.FAILED, error=f"{entry.key} failed: {exc}", attempts=attempts)

    async def _destroy(self, entry: PlanEntry, call: Any) -> None:
        record = _recorded(entry)
        if record.resource_id is not None:
            try:
                await call(self._provider.delete, record.resource_id)
            except ResourceNotFound:
                logger.info("instance_already_gone", key=str(entry.key))
        await self._state.delete(entry.key)

    def _dependency_applied(self, entry: PlanEntry) -> bool:
        for dep in entry.dependencies:
            result = self._collector.get(dep)
            if result is not None and result.outcome == Outcome.APPLIED:
                return True
        return False

    def _resolve_actual(self, entry: PlanEntry) -> dict[str, Any]:
        """Resolve references against the post-apply attributes of dependencies."""
        instance = self._graph.instances[entry.key]

        def lookup(target: InstanceKey, attribute: str) -> Any:
            attributes = self._attributes.get(target)
            if attributes is None or attribute not in attributes:
                raise ProviderPermanentError(
                    f"{target} did not report attribute {attribute!r}",
                    details={"instance": str(entry.key)},
                )
            return attributes[attribute]

        return self._graph.evaluate(instance.config, lookup)
