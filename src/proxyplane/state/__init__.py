"""State store: durable record of last-applied attributes per instance."""

from __future__ import annotations

from proxyplane.config.settings import Settings
from proxyplane.core.errors import ConfigurationError
from proxyplane.state.base import StateStore
from proxyplane.state.file_store import JsonFileStateStore
from proxyplane.state.models import StateRecord


def open_state_store(settings: Settings) -> StateStore:
    """Create the state store selected by ``settings.state_backend``."""
    if settings.state_backend == "file":
        return JsonFileStateStore(settings.state_path)
    if settings.state_backend == "sql":
        from proxyplane.state.sql_store import SqlStateStore

        return SqlStateStore(settings.database_url)
    raise ConfigurationError(
        f"Unknown state backend: {settings.state_backend}",
        details={"supported": "file, sql"},
    )


__all__ = [
    "JsonFileStateStore",
    "StateRecord",
    "StateStore",
    "open_state_store",
]
