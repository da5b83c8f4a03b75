"""
proxyplane command-line entry point.

Usage:
    proxyplane <command> [args]
"""

from __future__ import annotations

import argparse
import sys
from typing import Sequence

from proxyplane import __version__
from proxyplane.cli.apply import apply_command, destroy_command
from proxyplane.cli.outputs import outputs_command
from proxyplane.cli.plan import plan_command
from proxyplane.cli.providers import providers_command
from proxyplane.cli.state import state_list_command, state_show_command
from proxyplane.config.settings import get_settings
from proxyplane.logging import configure_logging


def _add_output(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--output", choices=["text", "json"], default="text",
                        help="Output format (default: text)")


def _add_state(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--state", dest="state_path", help="State file path (file backend)")
    parser.add_argument("--state-backend", choices=["file", "sql"],
                        help="State backend (default: PROXYPLANE_STATE_BACKEND or file)")


def _add_run_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("declarations", help="Path to declaration or stack YAML file")
    parser.add_argument("--provider", help="Resource provider (default: PROXYPLANE_PROVIDER or aws)")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Include unchanged instances and dependency details")
    _add_output(parser)
    _add_state(parser)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="proxyplane",
        description="Reconcile database proxy access resources",
    )
    parser.add_argument("--version", action="version", version=f"proxyplane {__version__}")
    parser.add_argument("--log-level", help="Log level (default: PROXYPLANE_LOG_LEVEL or INFO)")
    subparsers = parser.add_subparsers(dest="command")

    plan_parser = subparsers.add_parser("plan", help="Preview changes without applying them")
    _add_run_options(plan_parser)
    plan_parser.add_argument("--refresh", action="store_true",
                             help="Read live attributes from the provider before planning")
    plan_parser.add_argument("--destroy", action="store_true", help="Plan a full teardown")

    apply_parser = subparsers.add_parser("apply", help="Create or update declared resources")
    _add_run_options(apply_parser)
    apply_parser.add_argument("--refresh", action="store_true",
                              help="Read live attributes from the provider before planning")

    destroy_parser = subparsers.add_parser("destroy", help="Destroy every recorded resource")
    _add_run_options(destroy_parser)

    state_parser = subparsers.add_parser("state", help="Inspect recorded state")
    state_subparsers = state_parser.add_subparsers(dest="state_command")
    state_list_parser = state_subparsers.add_parser("list", help="List recorded instances")
    _add_output(state_list_parser)
    _add_state(state_list_parser)
    state_show_parser = state_subparsers.add_parser("show", help="Show one recorded instance")
    state_show_parser.add_argument("address", help='Instance address, e.g. secret.user["alice"]')
    _add_output(state_show_parser)
    _add_state(state_show_parser)

    outputs_parser = subparsers.add_parser("outputs", help="Print outputs from recorded state")
    outputs_parser.add_argument("declarations", help="Path to declaration or stack YAML file")
    _add_output(outputs_parser)
    _add_state(outputs_parser)

    providers_parser = subparsers.add_parser("providers", help="List resource providers")
    providers_parser.add_argument("--check", metavar="NAME", help="Health-check one provider")
    _add_output(providers_parser)

    return parser


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(args.log_level or settings.log_level, settings.log_format)

    if args.command in ("plan", "apply", "destroy"):
        common = {
            "output_format": args.output,
            "verbose": args.verbose,
            "provider": args.provider,
            "state_path": args.state_path,
            "state_backend": args.state_backend,
        }
        if args.command == "plan":
            sys.exit(plan_command(args.declarations, refresh=args.refresh, destroy=args.destroy, **common))
        if args.command == "apply":
            sys.exit(apply_command(args.declarations, refresh=args.refresh, **common))
        sys.exit(destroy_command(args.declarations, **common))

    if args.command == "state":
        state_options = {
            "output_format": args.output if args.state_command else "text",
        }
        if args.state_command == "list":
            sys.exit(state_list_command(state_path=args.state_path,
                                        state_backend=args.state_backend, **state_options))
        if args.state_command == "show":
            sys.exit(state_show_command(args.address, state_path=args.state_path,
                                        state_backend=args.state_backend, **state_options))
        parser.parse_args(["state", "--help"])
        return

    if args.command == "outputs":
        sys.exit(outputs_command(args.declarations, output_format=args.output,
                                 state_path=args.state_path, state_backend=args.state_backend))

    if args.command == "providers":
        sys.exit(providers_command(output_format=args.output, check=args.check))

    parser.print_help()
    sys.exit(1)


if __name__ == "__main__":  # pragma: no cover
    main()
