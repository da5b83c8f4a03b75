"""Reusable declaration stacks."""

from __future__ import annotations

from typing import Any, Callable

from proxyplane.core.errors import DeclarationError
from proxyplane.stacks.database_access import DatabaseAccessConfig, build_database_access

STACKS: dict[str, Callable[[dict[str, Any]], dict[str, Any]]] = {
    "database_access": build_database_access,
}


def resolve_document(document: dict[str, Any]) -> dict[str, Any]:
    """Expand a ``stack:`` document into a declaration document.

    Documents without a ``stack`` key are returned unchanged.
    """
    if "stack" not in document:
        return document
    name = document["stack"]
    builder = STACKS.get(name)
    if builder is None:
        raise DeclarationError(
            f"Unknown stack: {name}",
            details={"available": ", ".join(sorted(STACKS))},
        )
    unknown = set(document) - {"stack", "parameters"}
    if unknown:
        raise DeclarationError(f"Unknown stack document fields: {', '.join(sorted(unknown))}")
    return builder(document.get("parameters") or {})


__all__ = ["DatabaseAccessConfig", "STACKS", "build_database_access", "resolve_document"]
