"""
proxyplane configuration.

Pydantic-based settings read from PROXYPLANE_* environment variables and
an optional .env file.
"""

from proxyplane.config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
