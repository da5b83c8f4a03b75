from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

from proxyplane.config.settings import Settings


@dataclass(frozen=True)
class ProviderContext:
    """Provider and credential context threaded into every provider call."""

    region: str
    profile: str | None = None
    tags: dict[str, str] = field(default_factory=dict)
    run_id: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings, run_id: str | None = None) -> ProviderContext:
        return cls(
            region=settings.aws_region,
            profile=settings.aws_profile,
            tags=dict(settings.default_tags),
            run_id=run_id,
        )


@dataclass(frozen=True)
class ProviderHealth:
    status: Literal["healthy", "degraded", "unreachable"]
    details: str | None = None


class ResourceProvider(Protocol):
    """Contract for the cloud API behind each resource kind.

    Every call returns the full attribute map of the resource (inputs and
    computed outputs, always including ``id``). ``create`` must be safe to
    repeat with identical config: an existing resource with the same
    natural name is adopted, never duplicated.
    """

    name: str

    async def create(
        self, kind: str, config: dict[str, Any], ctx: ProviderContext
    ) -> dict[str, Any]:
        ...

    async def read(self, kind: str, resource_id: str, ctx: ProviderContext) -> dict[str, Any]:
        ...

    async def update(
        self, kind: str, resource_id: str, config: dict[str, Any], ctx: ProviderContext
    ) -> dict[str, Any]:
        ...

    async def delete(self, kind: str, resource_id: str, ctx: ProviderContext) -> None:
        ...

    async def health_check(self, ctx: ProviderContext) -> ProviderHealth:
        ...
