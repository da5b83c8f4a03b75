"""Reconciliation engine: graph build, plan, execute, bind outputs."""

from __future__ import annotations

import asyncio
import time
import uuid
from typing import Any

import structlog

from proxyplane.config.settings import Settings, get_settings
from proxyplane.core.errors import ConfigurationError, StateError
from proxyplane.graph.builder import GraphBuilder, ResourceGraph
from proxyplane.graph.declarations import DeclarationSet
from proxyplane.graph.kinds import ResourceKind
from proxyplane.providers.base import ProviderContext, ResourceProvider
from proxyplane.reconcile.executor import Executor
from proxyplane.reconcile.outputs import OutputBinder
from proxyplane.reconcile.planner import Planner
from proxyplane.reconcile.results import Plan, ResultCollector, RunResult, RunStatus
from proxyplane.state.base import StateStore

logger = structlog.get_logger()


class Reconciler:
    """Drives one declaration set through build, plan, apply and output binding."""

    def __init__(
        self,
        provider: ResourceProvider,
        state: StateStore,
        *,
        settings: Settings | None = None,
        ctx: ProviderContext | None = None,
        kinds: dict[str, ResourceKind] | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.provider = provider
        self.state = state
        self.run_id = uuid.uuid4().hex[:12]
        self.ctx = ctx or ProviderContext.from_settings(self.settings, run_id=self.run_id)
        self._builder = GraphBuilder(kinds)
        self._binder = OutputBinder()

    def build_graph(self, declarations: DeclarationSet | dict[str, Any]) -> ResourceGraph:
        if isinstance(declarations, dict):
            declarations = DeclarationSet.from_dict(declarations)
        return self._builder.build(declarations)

    async def plan(
        self,
        declarations: DeclarationSet | dict[str, Any],
        *,
        refresh: bool = False,
        destroy: bool = False,
    ) -> Plan:
        graph = self.build_graph(declarations)
        planner = Planner(self.state, self.provider, self.ctx)
        return await planner.plan(graph, refresh=refresh, destroy=destroy)

    async def apply(
        self,
        declarations: DeclarationSet | dict[str, Any] | None = None,
        *,
        plan: Plan | None = None,
        refresh: bool = False,
        destroy: bool = False,
        cancel_event: asyncio.Event | None = None,
    ) -> RunResult:
        """Plan (unless a plan is given) and apply; configuration errors raise."""
        structlog.contextvars.bind_contextvars(run_id=self.run_id)
        try:
            started = time.monotonic()
            if plan is None:
                if declarations is None:
                    raise ValueError("declarations or plan is required")
                plan = await self.plan(declarations, refresh=refresh, destroy=destroy)

            executor = Executor(
                self.provider,
                self.state,
                self.ctx,
                max_workers=self.settings.max_workers,
                retry_attempts=self.settings.retry_attempts,
                backoff_multiplier=self.settings.retry_backoff_multiplier,
                backoff_min=self.settings.retry_backoff_min,
                backoff_max=self.settings.retry_backoff_max,
                cancel_event=cancel_event,
            )
            collector = await executor.execute(plan, ResultCollector(run_id=self.run_id))
            outputs = {} if destroy else self._binder.bind(plan.graph, collector.results)
            result = collector.finalize(time.monotonic() - started, outputs)
            logger.info(
                "run_finished",
                status=result.status.value,
                duration=round(result.duration_seconds, 3),
                failed=len(result.failed),
                blocked=len(result.blocked),
            )
            return result
        finally:
            structlog.contextvars.unbind_contextvars("run_id")

    async def run(
        self,
        declarations: DeclarationSet | dict[str, Any],
        *,
        refresh: bool = False,
        destroy: bool = False,
        cancel_event: asyncio.Event | None = None,
    ) -> RunResult:
        """Like ``apply`` but reports fatal errors as a RunResult with status ERROR."""
        try:
            return await self.apply(
                declarations, refresh=refresh, destroy=destroy, cancel_event=cancel_event
            )
        except (ConfigurationError, StateError) as exc:
            logger.error("run_aborted", error_type=type(exc).__name__, error=exc.message)
            return RunResult(status=RunStatus.ERROR, run_id=self.run_id, error=exc.message)

    async def outputs(self, declarations: DeclarationSet | dict[str, Any]) -> dict[str, Any]:
        """Resolve outputs from recorded state without calling the provider."""
        graph = self.build_graph(declarations)
        return self._binder.bind_from_state(graph, await self.state.list())
