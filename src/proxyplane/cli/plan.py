"""
CLI command for planning (dry-run) a reconciliation.
"""

from __future__ import annotations

import json
from typing import Any

from rich.markup import escape

from proxyplane.cli.common import load_document, resolve_settings, run_async, with_reconciler
from proxyplane.cli.ux import console, header, info, spinner
from proxyplane.core.errors import ExitCode, main_with_error_handling
from proxyplane.reconcile.engine import Reconciler
from proxyplane.reconcile.results import Action, Plan

ACTION_SYMBOLS = {
    Action.CREATE: ("+", "create"),
    Action.UPDATE: ("~", "update"),
    Action.DESTROY: ("-", "destroy"),
    Action.NO_CHANGE: ("=", "muted"),
}


def serialize_plan(plan: Plan) -> dict[str, Any]:
    return {
        "entries": [
            {
                "key": str(entry.key),
                "action": entry.action.value,
                "dependencies": [str(dep) for dep in entry.dependencies],
                "config": entry.config,
            }
            for entry in plan.entries
        ],
        "counts": plan.counts,
        "has_changes": plan.has_changes,
    }


def print_plan_summary(plan: Plan, declarations_path: str, verbose: bool = False) -> None:
    """Print the per-instance plan with a change summary."""
    header("Plan")
    console.print()

    if not plan.entries:
        info("No resources declared or recorded")
        console.print()
        return

    for entry in plan.entries:
        if entry.action == Action.NO_CHANGE and not verbose:
            continue
        symbol, style = ACTION_SYMBOLS[entry.action]
        console.print(f"  [{style}]{symbol} {escape(str(entry.key))}[/{style}]", highlight=False)
        if verbose and entry.dependencies:
            deps = escape(", ".join(str(dep) for dep in entry.dependencies))
            console.print(f"     [muted]└ after {deps}[/muted]", highlight=False)

    counts = plan.counts
    console.print()
    console.print(
        f"[bold]Plan:[/bold] {counts['create']} to create, {counts['update']} to update, "
        f"{counts['destroy']} to destroy, {counts['no_change']} unchanged"
    )
    if plan.has_changes:
        console.print()
        console.print("[muted]To apply these changes, run:[/muted]")
        console.print(f"  [info]proxyplane apply {declarations_path}[/info]")
    console.print()


def print_plan_json(plan: Plan) -> None:
    print(json.dumps(serialize_plan(plan), indent=2, default=str))


@main_with_error_handling()
def plan_command(
    declarations_path: str,
    output_format: str = "text",
    refresh: bool = False,
    destroy: bool = False,
    verbose: bool = False,
    provider: str | None = None,
    state_path: str | None = None,
    state_backend: str | None = None,
) -> int:
    """
    Preview the actions an apply would take.

    Args:
        declarations_path: Path to the declaration (or stack) YAML file
        output_format: text or json
        refresh: Read live attributes from the provider before diffing
        destroy: Plan the teardown of every recorded instance
        verbose: Include unchanged instances and dependency edges

    Returns:
        Exit code (0 for success)
    """
    settings = resolve_settings(
        provider=provider, state_path=state_path, state_backend=state_backend
    )
    document = load_document(declarations_path)

    async def _plan(reconciler: Reconciler) -> Plan:
        return await reconciler.plan(document, refresh=refresh, destroy=destroy)

    with spinner("Planning"):
        plan = run_async(with_reconciler(settings, _plan))

    if output_format == "json":
        print_plan_json(plan)
    else:
        print_plan_summary(plan, declarations_path, verbose=verbose)

    return ExitCode.SUCCESS
