"""
CLI command for listing registered resource providers.
"""

from __future__ import annotations

import json

from proxyplane.cli.common import provider_context, resolve_settings, run_async
from proxyplane.cli.ux import print_table
from proxyplane.core.errors import ExitCode, main_with_error_handling
from proxyplane.providers import create_provider, list_providers


@main_with_error_handling()
def providers_command(output_format: str = "text", check: str | None = None) -> int:
    """List providers, optionally health-checking one of them."""
    if check:
        settings = resolve_settings(provider=check)
        health = run_async(create_provider(check).health_check(provider_context(settings)))
        payload = {"provider": check, "status": health.status, "details": health.details}
        if output_format == "json":
            print(json.dumps(payload, indent=2))
        else:
            print_table("Provider health", ["Provider", "Status", "Details"], [[check, health.status, health.details or ""]])
        return ExitCode.SUCCESS if health.status == "healthy" else ExitCode.PROVIDER_ERROR

    specs = list_providers()
    if output_format == "json":
        print(
            json.dumps(
                [
                    {"name": spec.name, "description": spec.description, "kinds": sorted(spec.kinds)}
                    for spec in specs
                ],
                indent=2,
            )
        )
        return ExitCode.SUCCESS

    print_table(
        "Providers",
        ["Name", "Description", "Kinds"],
        [[spec.name, spec.description or "", ", ".join(sorted(spec.kinds))] for spec in specs],
    )
    return ExitCode.SUCCESS
