"""Resource provider interface, registry and built-in providers."""

from proxyplane.graph.kinds import BUILTIN_KINDS
from proxyplane.providers.base import ProviderContext, ProviderHealth, ResourceProvider
from proxyplane.providers.memory import InMemoryProvider
from proxyplane.providers.registry import (
    ProviderRegistry,
    ProviderSpec,
    create_provider,
    list_providers,
    provider_registry,
    register_provider,
)


def _aws_factory(**kwargs):
    from proxyplane.providers.aws import AwsProvider

    return AwsProvider(**kwargs)


register_provider(
    "memory",
    InMemoryProvider,
    kinds=set(BUILTIN_KINDS),
    description="Simulated cloud kept in process memory",
)
register_provider(
    "aws",
    _aws_factory,
    kinds=set(BUILTIN_KINDS),
    description="Secrets Manager, IAM and RDS proxy via aioboto3",
)

__all__ = [
    "InMemoryProvider",
    "ProviderContext",
    "ProviderHealth",
    "ProviderRegistry",
    "ProviderSpec",
    "ResourceProvider",
    "create_provider",
    "list_providers",
    "provider_registry",
    "register_provider",
]
