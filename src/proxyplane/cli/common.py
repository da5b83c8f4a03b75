"""
Shared helpers for CLI commands: settings overrides, document loading and
provider/state construction.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Awaitable, Callable, TypeVar

from proxyplane.config.settings import Settings, get_settings
from proxyplane.graph.loader import read_document
from proxyplane.providers import create_provider
from proxyplane.providers.base import ProviderContext, ResourceProvider
from proxyplane.reconcile.engine import Reconciler
from proxyplane.stacks import resolve_document
from proxyplane.state import open_state_store
from proxyplane.state.base import StateStore

T = TypeVar("T")


def resolve_settings(
    *,
    provider: str | None = None,
    state_path: str | None = None,
    state_backend: str | None = None,
    region: str | None = None,
) -> Settings:
    """Apply command-line overrides on top of environment settings."""
    overrides: dict[str, Any] = {}
    if provider:
        overrides["provider"] = provider
    if state_path:
        overrides["state_path"] = Path(state_path)
    if state_backend:
        overrides["state_backend"] = state_backend
    if region:
        overrides["aws_region"] = region
    settings = get_settings()
    return settings.model_copy(update=overrides) if overrides else settings


def load_document(path: str) -> dict[str, Any]:
    """Read a declaration file, expanding ``stack:`` documents."""
    return resolve_document(read_document(path))


def build_provider(settings: Settings) -> ResourceProvider:
    return create_provider(settings.provider)


async def with_reconciler(
    settings: Settings,
    func: Callable[[Reconciler], Awaitable[T]],
    *,
    provider: ResourceProvider | None = None,
) -> T:
    """Run ``func`` with a reconciler whose state store is closed afterwards."""
    state: StateStore = open_state_store(settings)
    try:
        reconciler = Reconciler(
            provider or build_provider(settings),
            state,
            settings=settings,
        )
        return await func(reconciler)
    finally:
        await state.close()


async def with_state(settings: Settings, func: Callable[[StateStore], Awaitable[T]]) -> T:
    state = open_state_store(settings)
    try:
        return await func(state)
    finally:
        await state.close()


def run_async(coro: Awaitable[T]) -> T:
    """Run an async function from a sync CLI command."""
    return asyncio.run(coro)  # type: ignore[arg-type]


def provider_context(settings: Settings) -> ProviderContext:
    return ProviderContext.from_settings(settings)
