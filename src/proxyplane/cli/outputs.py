"""
CLI command for printing declared outputs from recorded state.
"""

from __future__ import annotations

import json
from typing import Any

from proxyplane.cli.apply import format_output_value
from proxyplane.cli.common import load_document, resolve_settings, run_async, with_reconciler
from proxyplane.cli.ux import console, info
from proxyplane.core.errors import ExitCode, main_with_error_handling
from proxyplane.reconcile.engine import Reconciler
from proxyplane.reconcile.results import jsonable


@main_with_error_handling()
def outputs_command(
    declarations_path: str,
    output_format: str = "text",
    state_path: str | None = None,
    state_backend: str | None = None,
) -> int:
    """Resolve outputs against recorded state without calling the provider."""
    settings = resolve_settings(state_path=state_path, state_backend=state_backend)
    document = load_document(declarations_path)

    async def _outputs(reconciler: Reconciler) -> dict[str, Any]:
        return await reconciler.outputs(document)

    # Outputs never reach the provider, so the in-memory one is enough
    values = run_async(
        with_reconciler(settings.model_copy(update={"provider": "memory"}), _outputs)
    )

    if output_format == "json":
        print(json.dumps({name: jsonable(value) for name, value in values.items()}, indent=2))
        return ExitCode.SUCCESS

    if not values:
        info("No outputs declared")
    for name, value in values.items():
        console.print(f"[info]{name}[/info] = {format_output_value(value)}", highlight=False)
    return ExitCode.SUCCESS
