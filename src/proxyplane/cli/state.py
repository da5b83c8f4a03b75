"""
CLI commands for inspecting recorded state.
"""

from __future__ import annotations

import json

from proxyplane.cli.common import resolve_settings, run_async, with_state
from proxyplane.cli.ux import console, info, print_key_value, print_table
from proxyplane.core.errors import ExitCode, StateError, main_with_error_handling
from proxyplane.graph.expressions import InstanceKey
from proxyplane.state.base import StateStore
from proxyplane.state.models import StateRecord


async def _list_records(state: StateStore) -> list[StateRecord]:
    return await state.list()


@main_with_error_handling()
def state_list_command(
    output_format: str = "text",
    state_path: str | None = None,
    state_backend: str | None = None,
) -> int:
    """List every recorded instance."""
    settings = resolve_settings(state_path=state_path, state_backend=state_backend)
    records = run_async(with_state(settings, _list_records))

    if output_format == "json":
        print(json.dumps([record.to_dict() for record in records], indent=2, default=str))
        return ExitCode.SUCCESS

    if not records:
        info("No instances recorded")
        return ExitCode.SUCCESS

    print_table(
        "Recorded instances",
        ["Instance", "ID", "Updated"],
        [[str(record.key), str(record.resource_id or ""), record.updated_at] for record in records],
    )
    return ExitCode.SUCCESS


@main_with_error_handling()
def state_show_command(
    address: str,
    output_format: str = "text",
    state_path: str | None = None,
    state_backend: str | None = None,
) -> int:
    """Show the recorded attributes of one instance."""
    key = InstanceKey.parse(address)
    settings = resolve_settings(state_path=state_path, state_backend=state_backend)

    async def _get(state: StateStore) -> StateRecord | None:
        return await state.get(key)

    record = run_async(with_state(settings, _get))
    if record is None:
        raise StateError(f"No recorded instance {key}", details={"address": address})

    if output_format == "json":
        print(json.dumps(record.to_dict(), indent=2, default=str))
        return ExitCode.SUCCESS

    print_key_value(
        {name: json.dumps(value) if isinstance(value, (dict, list)) else str(value)
         for name, value in sorted(record.attributes.items())},
        title=str(record.key),
    )
    console.print(f"\n  [muted]fingerprint {record.fingerprint[:16]}, updated {record.updated_at}[/muted]")
    if record.dependencies:
        console.print(
            f"  [muted]depends on {', '.join(str(dep) for dep in record.dependencies)}[/muted]"
        )
    return ExitCode.SUCCESS
