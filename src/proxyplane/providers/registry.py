from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

from proxyplane.core.errors import ConfigurationError

ProviderFactory = Callable[..., Any]


@dataclass(frozen=True)
class ProviderSpec:
    """Metadata describing a registered resource provider."""

    name: str
    factory: ProviderFactory
    kinds: frozenset[str] = field(default_factory=frozenset)
    description: str | None = None

    def supports(self, kind: str) -> bool:
        return kind in self.kinds


class ProviderRegistry:
    """In-memory registry of resource provider factories."""

    def __init__(self) -> None:
        self._providers: dict[str, ProviderSpec] = {}

    def register(
        self,
        name: str,
        factory: ProviderFactory,
        *,
        kinds: set[str] | frozenset[str] | None = None,
        description: str | None = None,
    ) -> None:
        if not name:
            raise ValueError("Provider name is required")
        self._providers[name] = ProviderSpec(
            name=name,
            factory=factory,
            kinds=frozenset(kinds or ()),
            description=description,
        )

    def get(self, name: str) -> ProviderSpec:
        spec = self._providers.get(name)
        if spec is None:
            raise ConfigurationError(
                f"Provider '{name}' is not registered",
                details={"registered": ", ".join(sorted(self._providers))},
            )
        return spec

    def create(self, name: str, **kwargs: Any) -> Any:
        return self.get(name).factory(**kwargs)

    def list(self) -> list[ProviderSpec]:
        return list(self._providers.values())


provider_registry = ProviderRegistry()


def register_provider(
    name: str,
    factory: ProviderFactory,
    *,
    kinds: set[str] | frozenset[str] | None = None,
    description: str | None = None,
) -> None:
    provider_registry.register(name, factory, kinds=kinds, description=description)


def create_provider(name: str, **kwargs: Any) -> Any:
    return provider_registry.create(name, **kwargs)


def list_providers() -> list[ProviderSpec]:
    return provider_registry.list()
