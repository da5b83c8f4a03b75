"""
CLI commands for applying and destroying declared resources.
"""

from __future__ import annotations

import asyncio
import json
import signal
from typing import Any

from rich.markup import escape

from proxyplane.cli.common import load_document, resolve_settings, run_async, with_reconciler
from proxyplane.cli.ux import console, error, header, spinner, success, warning
from proxyplane.core.errors import ExitCode, main_with_error_handling
from proxyplane.reconcile.engine import Reconciler
from proxyplane.reconcile.outputs import Unavailable
from proxyplane.reconcile.results import Outcome, RunResult, RunStatus

OUTCOME_STYLES = {
    Outcome.APPLIED: ("✓", "success"),
    Outcome.NO_CHANGE: ("=", "muted"),
    Outcome.DESTROYED: ("-", "destroy"),
    Outcome.BLOCKED: ("⊘", "warning"),
    Outcome.FAILED: ("✗", "error"),
    Outcome.CANCELLED: ("…", "warning"),
}


def format_output_value(value: Any) -> str:
    if isinstance(value, Unavailable):
        return f"[warning]{escape(str(value))}[/warning]"
    if isinstance(value, (list, dict)):
        return json.dumps(value)
    return escape(str(value))


def print_run_summary(result: RunResult, verbose: bool = False) -> None:
    """Print per-instance outcomes, outputs and the aggregate status."""
    console.print()
    for instance in result.instances.values():
        if instance.outcome == Outcome.NO_CHANGE and not verbose:
            continue
        symbol, style = OUTCOME_STYLES[instance.outcome]
        line = f"  [{style}]{symbol} {escape(str(instance.key))}[/{style}] [muted]{instance.outcome.value}[/muted]"
        if instance.attempts > 1:
            line += f" [muted]({instance.attempts} attempts)[/muted]"
        console.print(line, highlight=False)
        if instance.error and instance.outcome != Outcome.CANCELLED:
            console.print(f"     [muted]└[/muted] {escape(instance.error)}", highlight=False)

    if result.outputs:
        header("Outputs")
        for name, value in result.outputs.items():
            console.print(f"  [info]{name}[/info] = {format_output_value(value)}", highlight=False)

    console.print()
    duration = f" in {result.duration_seconds:.1f}s"
    counts = {outcome: len(result.with_outcome(outcome)) for outcome in Outcome}
    summary = ", ".join(f"{count} {outcome.value}" for outcome, count in counts.items() if count)
    if result.status == RunStatus.SUCCESS:
        success(f"Run {result.run_id} finished{duration}: {summary or 'nothing to do'}")
    elif result.status == RunStatus.PARTIAL_FAILURE:
        warning(f"Run {result.run_id} partially failed{duration}: {summary}")
    else:
        error(f"Run {result.run_id} aborted: {result.error}")
    console.print()


def print_run_json(result: RunResult) -> None:
    print(json.dumps(result.to_dict(), indent=2, default=str))


async def _apply(reconciler: Reconciler, document: dict[str, Any], *, refresh: bool, destroy: bool) -> RunResult:
    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        # First interrupt stops scheduling; in-flight calls finish and are recorded
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
    except (NotImplementedError, RuntimeError):
        pass
    try:
        return await reconciler.apply(
            document, refresh=refresh, destroy=destroy, cancel_event=cancel_event
        )
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass


def _exit_code(result: RunResult) -> int:
    if result.status == RunStatus.SUCCESS:
        return ExitCode.SUCCESS
    if result.status == RunStatus.PARTIAL_FAILURE:
        return ExitCode.PARTIAL_FAILURE
    return ExitCode.UNKNOWN_ERROR


def _run(
    declarations_path: str,
    *,
    destroy: bool,
    output_format: str,
    refresh: bool,
    verbose: bool,
    provider: str | None,
    state_path: str | None,
    state_backend: str | None,
) -> int:
    settings = resolve_settings(
        provider=provider, state_path=state_path, state_backend=state_backend
    )
    document = load_document(declarations_path)

    with spinner("Destroying" if destroy else "Applying"):
        result = run_async(
            with_reconciler(
                settings,
                lambda reconciler: _apply(reconciler, document, refresh=refresh, destroy=destroy),
            )
        )

    if output_format == "json":
        print_run_json(result)
    else:
        print_run_summary(result, verbose=verbose)
    return _exit_code(result)


@main_with_error_handling()
def apply_command(
    declarations_path: str,
    output_format: str = "text",
    refresh: bool = False,
    verbose: bool = False,
    provider: str | None = None,
    state_path: str | None = None,
    state_backend: str | None = None,
) -> int:
    """
    Reconcile the declared resources against the provider.

    Returns:
        Exit code (0 success, 2 partial failure, 10 configuration error)
    """
    return _run(
        declarations_path,
        destroy=False,
        output_format=output_format,
        refresh=refresh,
        verbose=verbose,
        provider=provider,
        state_path=state_path,
        state_backend=state_backend,
    )


@main_with_error_handling()
def destroy_command(
    declarations_path: str,
    output_format: str = "text",
    verbose: bool = False,
    provider: str | None = None,
    state_path: str | None = None,
    state_backend: str | None = None,
) -> int:
    """Tear down every recorded instance, dependents first."""
    return _run(
        declarations_path,
        destroy=True,
        output_format=output_format,
        refresh=False,
        verbose=verbose,
        provider=provider,
        state_path=state_path,
        state_backend=state_backend,
    )
